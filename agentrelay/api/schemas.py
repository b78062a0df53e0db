from __future__ import annotations

from typing import Any, Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, Field


class ErrorBody(BaseModel):
    code: str
    message: str
    details: Optional[dict | list] = None


class Envelope(BaseModel):
    status: Literal["ok", "error"]
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=lambda: str(uuid4()))


class FetchResponseBody(BaseModel):
    """Body returned to the platform's fetchresponse poll.

    Always sent with HTTP 200; the platform decides whether to poll again
    from ``status``.
    """

    text: str
    success: bool
    status: Literal["completed", "processing", "error"]
    response: Optional[str] = None
    pending: Optional[bool] = None

    def to_payload(self) -> dict:
        return self.model_dump(exclude_none=True)


class InboundAck(BaseModel):
    success: bool = True
    message: str = "Message received and processing"
    status: Literal["received"] = "received"


class WebhookFailure(BaseModel):
    """Inbound webhook rejection in the platform's text/response format."""

    text: str
    success: bool = False
    response: str

    @classmethod
    def from_text(cls, text: str) -> "WebhookFailure":
        return cls(text=text, response=text)
