from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.logging import get_logger
from app.services.crm.inbox.errors import InboxError

logger = get_logger(__name__)


async def inbox_error_handler(request: Request, exc: InboxError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning("inbox_error path=%s code=%s detail=%s", request.url.path, exc.code, exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"detail": {"code": exc.code, "detail": exc.detail}})


def register_error_handlers(app: FastAPI) -> None:
    """Map inbox errors that escape a route to the same body routes produce."""
    app.add_exception_handler(InboxError, inbox_error_handler)
