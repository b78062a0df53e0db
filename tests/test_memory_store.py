"""Tests for the in-process response slot store."""

import pytest

from agentrelay.storage.base import SLOT_TTL_SECONDS
from agentrelay.storage.memory import MemorySlotStore


@pytest.fixture
def store(clock):
    return MemorySlotStore(clock=clock)


class TestConsumeOnce:
    """A slot is handed out exactly once."""

    @pytest.mark.asyncio
    async def test_get_returns_value_then_absent(self, store):
        await store.put("wh1_user42", "Hello, how can I help?")

        assert await store.get("wh1_user42") == "Hello, how can I help?"
        assert await store.get("wh1_user42") is None

    @pytest.mark.asyncio
    async def test_never_written_and_consumed_look_the_same(self, store):
        await store.put("wh1_a", "reply")
        await store.get("wh1_a")

        assert await store.get("wh1_a") is None
        assert await store.get("wh1_never") is None

    @pytest.mark.asyncio
    async def test_empty_reply_is_not_absent(self, store):
        await store.put("wh1_a", "")

        assert await store.get("wh1_a") == ""
        assert await store.get("wh1_a") is None


class TestLastWriteWins:
    @pytest.mark.asyncio
    async def test_second_put_overwrites_first(self, store):
        await store.put("wh1_a", "first")
        await store.put("wh1_a", "second")

        assert await store.get("wh1_a") == "second"
        assert await store.get("wh1_a") is None

    @pytest.mark.asyncio
    async def test_overwrite_restarts_ttl(self, store, clock):
        await store.put("wh1_a", "first")
        clock.advance(SLOT_TTL_SECONDS - 1)
        await store.put("wh1_a", "second")
        clock.advance(SLOT_TTL_SECONDS - 1)

        assert await store.get("wh1_a") == "second"

    @pytest.mark.asyncio
    async def test_keys_are_independent(self, store):
        await store.put("wh1_a", "for a")
        await store.put("wh1_b", "for b")

        assert await store.get("wh1_b") == "for b"
        assert await store.get("wh1_a") == "for a"


class TestExpiry:
    """Unread slots disappear once the TTL elapses."""

    def test_default_ttl_is_ten_minutes(self):
        assert SLOT_TTL_SECONDS == 600
        assert MemorySlotStore().ttl_seconds == 600

    @pytest.mark.asyncio
    async def test_slot_readable_just_before_ttl(self, store, clock):
        await store.put("wh1_a", "reply")
        clock.advance(SLOT_TTL_SECONDS - 0.5)

        assert await store.get("wh1_a") == "reply"

    @pytest.mark.asyncio
    async def test_slot_absent_after_ttl(self, store, clock):
        await store.put("wh1_a", "reply")
        clock.advance(SLOT_TTL_SECONDS)

        assert await store.get("wh1_a") is None
        assert store.stats.expired == 1

    @pytest.mark.asyncio
    async def test_shortened_ttl(self, clock):
        store = MemorySlotStore(ttl_seconds=2, clock=clock)
        await store.put("wh1_a", "reply")
        clock.advance(3)

        assert await store.get("wh1_a") is None

    @pytest.mark.asyncio
    async def test_purge_expired_removes_only_stale(self, store, clock):
        await store.put("wh1_old", "old")
        clock.advance(SLOT_TTL_SECONDS / 2)
        await store.put("wh1_new", "new")
        clock.advance(SLOT_TTL_SECONDS / 2)

        assert store.purge_expired() == 1
        assert await store.list_pending_keys() == ["wh1_new"]
        assert await store.get("wh1_new") == "new"


class TestDiagnostics:
    @pytest.mark.asyncio
    async def test_list_pending_keys(self, store):
        await store.put("wh1_a", "a")
        await store.put("wh1_b", "b")
        await store.get("wh1_a")

        assert await store.list_pending_keys() == ["wh1_b"]

    @pytest.mark.asyncio
    async def test_delete_clears_slot(self, store):
        await store.put("wh1_a", "a")
        await store.delete("wh1_a")
        await store.delete("wh1_missing")

        assert await store.get("wh1_a") is None

    @pytest.mark.asyncio
    async def test_stats_track_activity(self, store):
        await store.put("wh1_a", "a")
        await store.get("wh1_a")
        await store.get("wh1_a")

        assert store.stats.snapshot() == {
            "puts": 1,
            "hits": 1,
            "misses": 1,
            "expired": 0,
            "failures": 0,
        }

    def test_backend_is_not_durable(self, store):
        assert store.backend == "memory"
        assert store.durable is False
        store.verify_connection()
