"""Translation of service exceptions into HTTP errors."""

from fastapi import HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from lendbook.services.errors import LendbookError, ValidationError
from lendbook.services.error_logger import log_error


async def http_error(
    exc: LendbookError,
    *,
    db: AsyncSession,
    module: str,
    function_name: str,
    request: Request | None = None,
    user_id: int | None = None,
) -> HTTPException:
    """Build the HTTPException for *exc*, logging internal faults in full first.

    Validation failures name the offending field:
    ``{"detail": {"message": ..., "field": ...}}``.
    """
    if exc.internal:
        await log_error(
            exc,
            db=db,
            module=module,
            function_name=function_name,
            request_method=request.method if request else None,
            request_path=str(request.url.path) if request else None,
            status_code=exc.status_code,
            user_id=user_id,
        )
        if request is not None:
            request.state.error_logged = True
    if isinstance(exc, ValidationError):
        detail = {"message": exc.public_message, "field": exc.field}
    else:
        detail = exc.public_message
    return HTTPException(status_code=exc.status_code, detail=detail)
