"""Exception handlers mapping deal failures to HTTP responses.

DealValidationError and InvalidStatusError become 400, DealNotFoundError
becomes 404. The body is ``{"error": message}``. Anything else is left to
propagate so LoggingMiddleware records it as a 500.
"""

from __future__ import annotations

import structlog
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from src.crm.deals.errors import DealError, DealNotFoundError

logger = structlog.get_logger(__name__)


def _status_for(exc: DealError) -> int:
    if isinstance(exc, DealNotFoundError):
        return status.HTTP_404_NOT_FOUND
    return status.HTTP_400_BAD_REQUEST


async def deal_error_handler(request: Request, exc: DealError) -> JSONResponse:
    """Render a DealError as ``{"error": message}`` with its mapped status."""
    status_code = _status_for(exc)
    logger.info(
        "deals.request_rejected",
        path=request.url.path,
        status_code=status_code,
        error=type(exc).__name__,
    )
    return JSONResponse(status_code=status_code, content={"error": str(exc)})


def register_exception_handlers(app: FastAPI) -> None:
    """Install the deal error handlers on ``app``."""
    app.add_exception_handler(DealError, deal_error_handler)
