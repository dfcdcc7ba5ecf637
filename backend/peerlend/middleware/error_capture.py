"""Request-level error capture.

Domain errors are rendered by the ``LendingError`` handler before they get
here; what this middleware sees as an exception is a genuine bug, turned
into a JSON 500 in the same ``{"detail", "code", "details"}`` shape.
Non-2xx responses are also recorded in ``error_logs``, except the statuses
in ``_SKIPPED_STATUSES`` which are ordinary traffic for a marketplace.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import JSONResponse

from peerlend.auth_utils import user_id_from_token
from peerlend.models.error_log import ErrorSeverity
from peerlend.services.error_logger import log_error_standalone

logger = logging.getLogger("peerlend.middleware")

# Unauthenticated, forbidden and lost-race responses
_SKIPPED_STATUSES = frozenset({401, 403, 409})

INTERNAL_ERROR_BODY = {"detail": "Internal Server Error", "code": "INTERNAL_ERROR", "details": {}}


def _caller_id(request: Request) -> Optional[int]:
    scheme, _, token = request.headers.get("authorization", "").partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return user_id_from_token(token)


class ErrorCaptureMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        started = time.perf_counter()

        def context(status_code: int) -> dict:
            return {
                "module": "middleware.error_capture",
                "function_name": "dispatch",
                "request_method": request.method,
                "request_path": request.url.path,
                "user_id": _caller_id(request),
                "status_code": status_code,
                "response_time_ms": round((time.perf_counter() - started) * 1000, 2),
            }

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
            await log_error_standalone(exc, severity=ErrorSeverity.CRITICAL, **context(500))
            return JSONResponse(status_code=500, content=INTERNAL_ERROR_BODY)

        status_code = response.status_code
        if status_code >= 400 and status_code not in _SKIPPED_STATUSES:
            severity = ErrorSeverity.ERROR if status_code >= 500 else ErrorSeverity.WARNING
            await log_error_standalone(
                Exception(f"HTTP {status_code} on {request.method} {request.url.path}"),
                severity=severity,
                **context(status_code),
            )
        return response
