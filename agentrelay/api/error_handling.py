from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from agentrelay.api.schemas import Envelope, ErrorBody
from agentrelay.logging import get_logger

logger = get_logger(__name__)


def _error_response(
    status_code: int,
    message: str,
    details: dict | list | None = None,
    code: str = "server_error",
) -> JSONResponse:
    error_body = ErrorBody(code=code, message=message, details=details)
    envelope = Envelope(status="error", error=error_body)
    return JSONResponse(status_code=status_code, content=envelope.model_dump())


def register_exception_handlers(app: FastAPI) -> None:
    """Install the envelope handler for uncaught exceptions.

    Webhook routes answer in the platform's own body format and catch their
    errors themselves; this covers the operational endpoints.
    """

    @app.exception_handler(Exception)
    async def handle_uncaught(request: Request, exc: Exception):
        logger.exception(
            "unhandled_exception",
            exc_info=exc,
            path=request.url.path,
            method=request.method,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return _error_response(500, "internal server error")
