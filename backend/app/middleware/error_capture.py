"""FastAPI middleware that captures unhandled exceptions and logs them to the DB.

Every 5xx response is automatically recorded in the error_logs table so
operators can see failed allocations and report requests.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

from fastapi import HTTPException, Request, Response
from jose import JWTError, jwt as jose_jwt
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import JSONResponse

from app.config import settings
from app.models.error_log import ErrorSeverity
from app.services.error_logger import RequestContext, log_error_standalone, severity_for

logger = logging.getLogger("debtdesk.middleware")


def _user_id_from_request(request: Request) -> Optional[int]:
    """Best-effort subject of the bearer token; never raises."""
    auth_header = request.headers.get("authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    try:
        payload = jose_jwt.decode(auth_header[7:], settings.secret_key, algorithms=["HS256"])
        return int(payload.get("sub", 0)) or None
    except (JWTError, ValueError, TypeError):
        return None


class ErrorCaptureMiddleware(BaseHTTPMiddleware):
    """Persists 5xx responses and rejected requests; turns unhandled exceptions into a 500."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        start = time.time()

        def context(status_code: int) -> RequestContext:
            return RequestContext(
                method=request.method,
                path=str(request.url.path),
                status_code=status_code,
                response_time_ms=round((time.time() - start) * 1000, 2),
                user_id=_user_id_from_request(request),
                ip_address=request.client.host if request.client else None,
            )

        try:
            response = await call_next(request)
        except HTTPException as exc:
            if exc.status_code < 500:
                raise
            await log_error_standalone(
                exc, severity=ErrorSeverity.ERROR,
                module="middleware.error_capture", request=context(exc.status_code),
            )
            raise
        except Exception as exc:
            await log_error_standalone(
                exc, severity=severity_for(exc),
                module="middleware.error_capture", request=context(500),
            )
            logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
            return JSONResponse(
                status_code=500,
                content={"error": {"kind": "internal_error", "message": "Internal Server Error"}},
            )

        status = response.status_code
        # Auth failures are routine and not recorded
        if status < 400 or status in (401, 403):
            return response

        await log_error_standalone(
            Exception(f"HTTP {status} on {request.method} {request.url.path}"),
            severity=ErrorSeverity.ERROR if status >= 500 else ErrorSeverity.WARNING,
            module="middleware.error_capture",
            function_name="dispatch",
            request=context(status),
        )
        return response
