"""Producer and consumer paths of the response relay."""

import asyncio

import pytest

from agentrelay.service.errors import CompletionError
from agentrelay.service.relay import (
    EMPTY_COMPLETION_TEXT,
    FETCH_RETRY_DELAY_SECONDS,
    ResponseRelay,
    failure_text,
)
from agentrelay.storage.memory import MemorySlotStore


class DurableMemoryStore(MemorySlotStore):
    """In-process store that reports itself as shared, to exercise the retry."""

    durable = True


class RecordingSleep:
    def __init__(self, on_sleep=None):
        self.calls = []
        self.on_sleep = on_sleep

    async def __call__(self, delay):
        self.calls.append(delay)
        if self.on_sleep is not None:
            await self.on_sleep()


class TestPublishCompletion:
    @pytest.mark.asyncio
    async def test_reply_is_published(self):
        store = MemorySlotStore()
        relay = ResponseRelay(store)

        async def produce():
            return "Hello, how can I help?"

        published = await relay.publish_completion("wh1_user42", produce)

        assert published == "Hello, how can I help?"
        assert await store.get("wh1_user42") == "Hello, how can I help?"

    @pytest.mark.asyncio
    async def test_empty_reply_publishes_fallback(self):
        store = MemorySlotStore()
        relay = ResponseRelay(store)

        async def produce():
            return ""

        await relay.publish_completion("wh1_a", produce)

        assert await store.get("wh1_a") == EMPTY_COMPLETION_TEXT

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status,expected",
        [
            (401, "Incorrect API key configuration. Please contact administrator."),
            (429, "Too many requests in progress. Please try again in a moment."),
            (503, "Issue with the AI service. Please try again later."),
            (400, "Sorry, I'm experiencing a technical issue. Please try again in a moment."),
        ],
    )
    async def test_upstream_failure_publishes_apology(self, status, expected):
        store = MemorySlotStore()
        relay = ResponseRelay(store)

        async def produce():
            raise CompletionError("boom", upstream_status=status)

        assert await relay.publish_completion("wh1_a", produce) == expected
        assert await store.get("wh1_a") == expected

    @pytest.mark.asyncio
    async def test_unexpected_error_publishes_generic_apology(self):
        store = MemorySlotStore()
        relay = ResponseRelay(store)

        async def produce():
            raise RuntimeError("socket closed")

        await relay.publish_completion("wh1_a", produce)

        assert await store.get("wh1_a") == failure_text(RuntimeError())

    @pytest.mark.asyncio
    async def test_cancellation_is_not_published(self):
        store = MemorySlotStore()
        relay = ResponseRelay(store)

        async def produce():
            raise asyncio.CancelledError()

        with pytest.raises(asyncio.CancelledError):
            await relay.publish_completion("wh1_a", produce)
        assert await store.list_pending_keys() == []


class TestFetch:
    @pytest.mark.asyncio
    async def test_ready_reply_is_completed_and_consumed(self):
        store = MemorySlotStore()
        relay = ResponseRelay(store)
        await relay.publish("wh1_a", "reply")

        first = await relay.fetch("wh1_a")
        second = await relay.fetch("wh1_a")

        assert first.completed and first.text == "reply" and first.attempts == 1
        assert second.status == "processing"

    @pytest.mark.asyncio
    async def test_ephemeral_store_does_not_wait(self):
        sleep = RecordingSleep()
        relay = ResponseRelay(MemorySlotStore(), sleep=sleep)

        result = await relay.fetch("wh1_missing")

        assert result.status == "processing"
        assert result.attempts == 1
        assert sleep.calls == []

    @pytest.mark.asyncio
    async def test_durable_store_retries_once(self):
        sleep = RecordingSleep()
        relay = ResponseRelay(DurableMemoryStore(), sleep=sleep)

        result = await relay.fetch("wh1_missing")

        assert result.status == "processing"
        assert result.attempts == 2
        assert sleep.calls == [FETCH_RETRY_DELAY_SECONDS]

    @pytest.mark.asyncio
    async def test_reply_written_during_wait_is_delivered(self):
        store = DurableMemoryStore()

        async def late_producer():
            await store.put("wh1_a", "late reply")

        relay = ResponseRelay(store, sleep=RecordingSleep(on_sleep=late_producer))

        result = await relay.fetch("wh1_a")

        assert result.completed
        assert result.text == "late reply"
        assert result.attempts == 2
        assert await store.get("wh1_a") is None

    @pytest.mark.asyncio
    async def test_empty_reply_counts_as_completed(self):
        store = MemorySlotStore()
        relay = ResponseRelay(store)
        await relay.publish("wh1_a", "")

        result = await relay.fetch("wh1_a")

        assert result.completed
        assert result.text == ""

    def test_retry_follows_store_durability(self):
        assert ResponseRelay(MemorySlotStore()).retries_on_miss is False
        assert ResponseRelay(DurableMemoryStore()).retries_on_miss is True
