"""Persist failures to ``error_logs`` as well as the Python logger.

Call ``log_error`` from an ``except`` block that owns a session, or
``log_error_standalone`` when the caller's session was rolled back (the
middleware and the online-payment gateway). A failure to persist is itself
only logged; it never replaces the original exception.
"""

from __future__ import annotations

import logging
import traceback as tb_module
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import ConsistencyError, ServicingError, UpstreamError
from app.models.error_log import ErrorLog, ErrorSeverity

logger = logging.getLogger("debtdesk.errors")

MESSAGE_MAX = 2000
TRACEBACK_MAX = 10000

_LOG_LEVELS = {
    ErrorSeverity.INFO: logging.INFO,
    ErrorSeverity.WARNING: logging.WARNING,
    ErrorSeverity.ERROR: logging.ERROR,
    ErrorSeverity.CRITICAL: logging.CRITICAL,
}


@dataclass(frozen=True)
class RequestContext:
    """HTTP details attached to an error row when one is available."""
    method: Optional[str] = None
    path: Optional[str] = None
    status_code: Optional[int] = None
    response_time_ms: Optional[float] = None
    user_id: Optional[int] = None
    ip_address: Optional[str] = None

    def describe(self) -> str:
        return f"{self.method or '?'} {self.path}" if self.path else ""


def _clean(value: object, max_len: Optional[int] = None) -> Optional[str]:
    """Replace control characters other than newline, CR and tab; ``None`` passes through."""
    if value is None:
        return None
    text = "".join(ch if ch >= " " or ch in "\n\r\t" else " " for ch in str(value))
    return text[:max_len] if max_len is not None else text


def severity_for(exc: BaseException) -> ErrorSeverity:
    """Broken balances and unreachable storage are critical; rejected input is a warning."""
    if isinstance(exc, (ConsistencyError, UpstreamError, SQLAlchemyError)):
        return ErrorSeverity.CRITICAL
    if isinstance(exc, ServicingError):
        return ErrorSeverity.WARNING
    return ErrorSeverity.ERROR


def _origin(exc: BaseException) -> tuple[Optional[str], Optional[str], Optional[int]]:
    """File, function and line of the innermost traceback frame."""
    frame = exc.__traceback__
    if frame is None:
        return None, None, None
    while frame.tb_next:
        frame = frame.tb_next
    code = frame.tb_frame.f_code
    return code.co_filename, code.co_name, frame.tb_lineno


def build_error_log(
    exc: BaseException,
    severity: ErrorSeverity,
    module: Optional[str],
    function_name: Optional[str],
    request: RequestContext,
) -> ErrorLog:
    line_number = None
    if module is None:
        module, detected_function, line_number = _origin(exc)
        function_name = function_name or detected_function

    return ErrorLog(
        severity=severity,
        error_type=type(exc).__name__,
        error_kind=exc.kind if isinstance(exc, ServicingError) else None,
        message=_clean(exc, MESSAGE_MAX),
        traceback=_clean(
            "".join(tb_module.format_exception(type(exc), exc, exc.__traceback__)),
            TRACEBACK_MAX,
        ),
        module=_clean(module, 300),
        function_name=_clean(function_name, 200),
        line_number=line_number,
        request_method=request.method,
        request_path=_clean(request.path, 500),
        status_code=request.status_code,
        response_time_ms=request.response_time_ms,
        user_id=request.user_id,
        ip_address=_clean(request.ip_address, 45),
    )


async def log_error(
    exc: BaseException,
    *,
    db: Optional[AsyncSession] = None,
    severity: Optional[ErrorSeverity] = None,
    module: Optional[str] = None,
    function_name: Optional[str] = None,
    request: Optional[RequestContext] = None,
) -> Optional[ErrorLog]:
    """Log *exc*; with a session, also add an ``ErrorLog`` row and flush it.

    The caller commits. Returns the row, or ``None`` when nothing was persisted.
    """
    severity = severity or severity_for(exc)
    request = request or RequestContext()

    prefix = request.describe()
    message = f"[{severity.value.upper()}] {type(exc).__name__}: {_clean(exc, MESSAGE_MAX)}"
    if prefix:
        message = f"{prefix} -> {message}"
    level = _LOG_LEVELS[severity]
    logger.log(level, message, exc_info=exc if level >= logging.ERROR else None)

    if db is None:
        return None

    entry = build_error_log(exc, severity, module, function_name, request)
    try:
        db.add(entry)
        await db.flush()
    except Exception as db_err:
        logger.warning("Could not persist error log: %s", db_err)
        return None
    return entry


async def log_error_standalone(
    exc: BaseException,
    *,
    severity: Optional[ErrorSeverity] = None,
    module: Optional[str] = None,
    function_name: Optional[str] = None,
    request: Optional[RequestContext] = None,
) -> Optional[ErrorLog]:
    """Same as ``log_error`` but in a fresh session that is committed here."""
    from app.database import async_session

    try:
        async with async_session() as db:
            entry = await log_error(
                exc, db=db, severity=severity, module=module,
                function_name=function_name, request=request,
            )
            await db.commit()
            return entry
    except Exception as db_err:
        logger.warning("Standalone error log failed: %s", db_err)
        return None
