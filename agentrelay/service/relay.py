from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Literal, Optional

from agentrelay.logging import debug_enabled, get_logger, preview
from agentrelay.service.errors import CompletionError
from agentrelay.storage.base import ResponseSlotStore

logger = get_logger(__name__)

# Single in-request wait before a durable-store miss is reported as pending
FETCH_RETRY_DELAY_SECONDS = 3.0

EMPTY_COMPLETION_TEXT = "I couldn't respond."
PROCESSING_TEXT = "Processing your message..."
DEFAULT_FAILURE_TEXT = (
    "Sorry, I'm experiencing a technical issue. Please try again in a moment."
)
_FAILURE_TEXT_BY_STATUS = {
    401: "Incorrect API key configuration. Please contact administrator.",
    429: "Too many requests in progress. Please try again in a moment.",
}
SERVER_FAILURE_TEXT = "Issue with the AI service. Please try again later."


def failure_text(exc: BaseException) -> str:
    """Pick the user-facing apology for a failed completion."""
    status = exc.upstream_status if isinstance(exc, CompletionError) else None
    if status in _FAILURE_TEXT_BY_STATUS:
        return _FAILURE_TEXT_BY_STATUS[status]
    if status is not None and status >= 500:
        return SERVER_FAILURE_TEXT
    return DEFAULT_FAILURE_TEXT


@dataclass(frozen=True)
class FetchResult:
    """Outcome of one fetchresponse poll."""

    status: Literal["completed", "processing"]
    text: Optional[str] = None
    attempts: int = 1

    @property
    def completed(self) -> bool:
        return self.status == "completed"


class ResponseRelay:
    """Hands generated replies from the inbound webhook to the poll endpoint.

    Producer side: ``publish``/``publish_completion`` write exactly one slot
    per inbound message and never raise. Consumer side: ``fetch`` reads and
    removes the slot, retrying once after ``retry_delay`` when the store is
    durable, since with a shared cache the reply is often written by another
    instance moments after the first poll.
    """

    def __init__(
        self,
        store: ResponseSlotStore,
        *,
        retry_delay: float = FETCH_RETRY_DELAY_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.store = store
        self.retry_delay = retry_delay
        self._sleep = sleep

    @property
    def retries_on_miss(self) -> bool:
        return bool(getattr(self.store, "durable", False))

    async def publish(self, key: str, text: str) -> None:
        """Write ``text`` as the pending reply for ``key``."""
        await self.store.put(key, text)

    async def publish_completion(
        self, key: str, produce: Callable[[], Awaitable[str]]
    ) -> str:
        """Run the completion and publish its reply, or an apology if it fails.

        Returns the text that was published.
        """
        try:
            text = await produce()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            text = failure_text(exc)
            logger.error(
                "completion_failed",
                key=key,
                error_type=type(exc).__name__,
                error=str(exc),
                fallback=text,
            )
        else:
            if not text:
                text = EMPTY_COMPLETION_TEXT
        await self.publish(key, text)
        return text

    async def fetch(self, key: str) -> FetchResult:
        """Consume the reply for ``key`` if one is ready."""
        if debug_enabled():
            logger.debug("fetch_pending_keys", key=key, pending=await self.store.list_pending_keys())

        text = await self.store.get(key)
        if text is not None:
            return FetchResult(status="completed", text=text)
        if not self.retries_on_miss:
            logger.info("fetch_pending", key=key, attempts=1)
            return FetchResult(status="processing")

        logger.info("fetch_retrying", key=key, delay_seconds=self.retry_delay)
        await self._sleep(self.retry_delay)
        text = await self.store.get(key)
        if text is not None:
            logger.info("fetch_completed_on_retry", key=key, preview=preview(text))
            return FetchResult(status="completed", text=text, attempts=2)
        logger.info("fetch_pending", key=key, attempts=2)
        return FetchResult(status="processing", attempts=2)


__all__ = [
    "FETCH_RETRY_DELAY_SECONDS",
    "FetchResult",
    "PROCESSING_TEXT",
    "ResponseRelay",
    "failure_text",
]
