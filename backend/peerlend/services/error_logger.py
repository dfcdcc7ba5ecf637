"""Error recording for PeerLend.

Every failure goes to the ``peerlend.errors`` logger; when a session is
available it is also written to ``error_logs`` so admins can review it.
Routers call ``log_error`` for unexpected exceptions and re-raise;
``best_effort`` blocks call it for side effects that failed after a loan
transition had already committed.
"""

from __future__ import annotations

import logging
import traceback as tb_module
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from peerlend.models.error_log import ErrorLog, ErrorSeverity

logger = logging.getLogger("peerlend.errors")

MAX_MESSAGE = 2000
MAX_TRACEBACK = 10000


def _clean(value: object, limit: Optional[int] = None) -> str:
    """Replace control characters other than newlines and tabs with spaces."""
    text = "".join(ch if (ch >= " " or ch in "\n\r\t") else " " for ch in str(value))
    return text[:limit] if limit is not None else text


def _innermost_frame(exc: BaseException) -> tuple[Optional[str], Optional[str], Optional[int]]:
    tb = exc.__traceback__
    if tb is None:
        return None, None, None
    while tb.tb_next:
        tb = tb.tb_next
    code = tb.tb_frame.f_code
    return code.co_filename, code.co_name, tb.tb_lineno


def build_error_entry(exc: BaseException, severity: ErrorSeverity, **context) -> ErrorLog:
    """Turn an exception plus request/loan context into an unsaved ErrorLog row."""
    filename, func_name, line_number = _innermost_frame(exc)
    module = context.get("module") or filename
    function_name = context.get("function_name") or func_name
    request_path = context.get("request_path")
    return ErrorLog(
        severity=severity,
        error_type=type(exc).__name__,
        message=_clean(exc, MAX_MESSAGE),
        traceback=_clean("".join(tb_module.format_exception(type(exc), exc, exc.__traceback__)), MAX_TRACEBACK),
        module=_clean(module, 300) if module else None,
        function_name=_clean(function_name, 200) if function_name else None,
        line_number=line_number,
        loan_request_id=context.get("loan_request_id"),
        user_id=context.get("user_id"),
        request_method=context.get("request_method"),
        request_path=_clean(request_path, 500) if request_path else None,
        status_code=context.get("status_code"),
        response_time_ms=context.get("response_time_ms"),
    )


async def log_error(
    exc: Exception,
    *,
    db: Optional[AsyncSession] = None,
    severity: ErrorSeverity = ErrorSeverity.ERROR,
    module: Optional[str] = None,
    function_name: Optional[str] = None,
    loan_request_id: Optional[int] = None,
    user_id: Optional[int] = None,
    request_method: Optional[str] = None,
    request_path: Optional[str] = None,
    status_code: Optional[int] = None,
    response_time_ms: Optional[float] = None,
) -> Optional[ErrorLog]:
    """Log ``exc`` and, given a session, persist it in its own commit.

    Whatever the session held is rolled back first; the failure being
    logged has usually left it unusable. Returns the stored row, or None
    when nothing was persisted.
    """
    where = f" (loan {loan_request_id})" if loan_request_id is not None else ""
    if request_path:
        where = f" on {request_method or '?'} {request_path}{where}"
    logger.error(
        "[%s] %s%s: %s",
        severity.value.upper(), type(exc).__name__, where, _clean(exc, MAX_MESSAGE),
        exc_info=exc,
    )

    if db is None:
        return None

    entry = build_error_entry(
        exc,
        severity,
        module=module,
        function_name=function_name,
        loan_request_id=loan_request_id,
        user_id=user_id,
        request_method=request_method,
        request_path=request_path,
        status_code=status_code,
        response_time_ms=response_time_ms,
    )
    try:
        await db.rollback()
        db.add(entry)
        await db.commit()
    except Exception as db_err:
        # The original error has already been logged above
        logger.warning("Could not store error log row: %s", db_err)
        return None
    return entry


async def log_error_standalone(exc: Exception, **kwargs) -> Optional[ErrorLog]:
    """``log_error`` on a fresh session, for callers without one (middleware)."""
    from peerlend.database import async_session

    try:
        async with async_session() as db:
            return await log_error(exc, db=db, **kwargs)
    except Exception as db_err:
        logger.warning("Standalone error logging failed: %s", db_err)
        return None
