from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions.

    Each subclass carries an HTTP ``status_code`` and a stable ``error_code``.
    Webhook routes catch these and answer in the external platform's body
    format.
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class UnsupportedPayloadError(ServiceError):
    """Webhook body could not be decoded into an object (400)."""
    status_code = 400
    error_code = "unsupported_payload"


class CompletionError(ServiceError):
    """Upstream chat completion failed (502).

    ``upstream_status`` holds the provider's HTTP status when there was one.
    """
    status_code = 502
    error_code = "upstream_error"

    def __init__(
        self,
        message: str,
        *,
        upstream_status: Optional[int] = None,
        detail: Optional[dict] = None,
    ) -> None:
        super().__init__(message, detail=detail)
        self.upstream_status = upstream_status


__all__ = [
    "ServiceError",
    "UnsupportedPayloadError",
    "CompletionError",
]
