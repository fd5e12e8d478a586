"""Centralised error logging: captures exceptions to the DB and Python logger.

Usage:
    from lendbook.services.error_logger import log_error
    try:
        ...
    except Exception as e:
        await log_error(e, db=db, module="api.loans", function_name="disburse_loan")

The error-capture middleware records unhandled request errors automatically.
"""

from __future__ import annotations

import logging
import traceback as tb_module
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from lendbook.models.error_log import ErrorLog, ErrorSeverity

logger = logging.getLogger("lendbook.errors")


def _sanitize_text(value: object, *, max_len: Optional[int] = None) -> str:
    """Replace control characters before persisting text."""
    text = str(value)
    text = "".join(ch if (ch >= " " or ch in "\n\r\t") else " " for ch in text)
    if max_len is not None:
        return text[:max_len]
    return text


def _build_entry(
    exc: BaseException,
    severity: ErrorSeverity,
    module: Optional[str],
    function_name: Optional[str],
    **context,
) -> ErrorLog:
    line_number = None
    if exc.__traceback__ is not None:
        frame = exc.__traceback__
        while frame.tb_next:
            frame = frame.tb_next
        module = module or frame.tb_frame.f_code.co_filename
        function_name = function_name or frame.tb_frame.f_code.co_name
        line_number = frame.tb_lineno

    return ErrorLog(
        severity=severity,
        error_type=type(exc).__name__,
        message=_sanitize_text(exc, max_len=2000),
        traceback=_sanitize_text(
            "".join(tb_module.format_exception(type(exc), exc, exc.__traceback__)),
            max_len=10000,
        ),
        module=_sanitize_text(module, max_len=300) if module else None,
        function_name=_sanitize_text(function_name, max_len=200) if function_name else None,
        line_number=line_number,
        request_method=context.get("request_method"),
        request_path=_sanitize_text(context["request_path"], max_len=500) if context.get("request_path") else None,
        status_code=context.get("status_code"),
        response_time_ms=context.get("response_time_ms"),
        user_id=context.get("user_id"),
    )


async def log_error(
    exc: BaseException,
    *,
    db: Optional[AsyncSession] = None,
    severity: ErrorSeverity = ErrorSeverity.ERROR,
    module: Optional[str] = None,
    function_name: Optional[str] = None,
    request_method: Optional[str] = None,
    request_path: Optional[str] = None,
    status_code: Optional[int] = None,
    response_time_ms: Optional[float] = None,
    user_id: Optional[int] = None,
) -> Optional[ErrorLog]:
    """Log an exception to the Python logger and, when a session is given, the DB.

    The row is written and committed on its own, so callers should pass a
    session whose business transaction has already been rolled back.
    """
    log_msg = f"[{severity.value.upper()}] {type(exc).__name__}: {_sanitize_text(exc, max_len=2000)}"
    if request_path:
        log_msg = f"{request_method or '?'} {request_path} -> {log_msg}"
    logger.error(log_msg, exc_info=exc)

    if db is None:
        return None

    try:
        entry = _build_entry(
            exc, severity, module, function_name,
            request_method=request_method,
            request_path=request_path,
            status_code=status_code,
            response_time_ms=response_time_ms,
            user_id=user_id,
        )
        db.add(entry)
        await db.commit()
        return entry
    except Exception as db_err:
        # Error logging must never take the request down with it.
        logger.warning("Failed to persist error log to DB: %s", db_err)
        await db.rollback()
        return None


async def log_error_standalone(exc: BaseException, **kwargs) -> Optional[ErrorLog]:
    """Log an error using a fresh DB session (for middleware use)."""
    from lendbook.database import async_session

    try:
        async with async_session() as db:
            return await log_error(exc, db=db, **kwargs)
    except Exception as db_err:
        logger.warning("Failed standalone error log: %s", db_err)
        return None
