"""Typed failures raised by the servicing core.

Services raise these; the API layer renders them as
``{"error": {"kind": ..., "message": ...}}`` with the mapped status code.
Raw persistence errors never reach the caller; they are wrapped in
``UpstreamError`` and chained.
"""


class ServicingError(Exception):
    """Base exception for allocation and reporting failures."""

    kind = "servicing_error"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind, "message": self.message}


class ValidationError(ServicingError):
    """Bad amount, malformed filter, or an operation the current state forbids."""

    kind = "validation_error"
    status_code = 400


class NotFoundError(ServicingError):
    """Loan, balance snapshot, transaction or debtor is absent."""

    kind = "not_found"
    status_code = 404


class DuplicateError(ServicingError):
    """Repeated external transaction id."""

    kind = "duplicate"
    status_code = 409


class ConsistencyError(ServicingError):
    """current_debt no longer equals the sum of the buckets. Never corrected silently."""

    kind = "consistency_error"
    status_code = 500


class UpstreamError(ServicingError):
    """Persistence or network failure in an external collaborator."""

    kind = "upstream_error"
    status_code = 503
