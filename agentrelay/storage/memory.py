from __future__ import annotations

import threading
import time
from typing import Callable, Dict, List, Optional, Tuple

from agentrelay.logging import get_logger, preview
from agentrelay.storage.base import SLOT_TTL_SECONDS, SlotStoreStats

logger = get_logger(__name__)


class MemorySlotStore:
    """In-process slot store.

    Slots live in a dict guarded by a lock. Expiry is lazy: every read, write
    and listing drops entries whose deadline has passed, and the application
    runs ``purge_expired`` periodically so abandoned slots do not pile up.

    Only correct when the inbound webhook and the fetchresponse poll reach
    the same process. Data is lost on restart.
    """

    backend = "memory"
    durable = False

    def __init__(
        self,
        *,
        ttl_seconds: float = SLOT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._slots: Dict[str, Tuple[str, float]] = {}
        self._lock = threading.Lock()
        self.stats = SlotStoreStats()

    def _expired(self, deadline: float, now: float) -> bool:
        return deadline <= now

    async def put(self, key: str, value: str) -> None:
        deadline = self._clock() + self.ttl_seconds
        with self._lock:
            replaced = key in self._slots
            self._slots[key] = (value, deadline)
            self.stats.puts += 1
        logger.info(
            "slot_stored",
            backend=self.backend,
            key=key,
            replaced=replaced,
            preview=preview(value),
        )

    async def get(self, key: str) -> Optional[str]:
        now = self._clock()
        with self._lock:
            entry = self._slots.pop(key, None)
            if entry is None:
                self.stats.misses += 1
                return None
            value, deadline = entry
            if self._expired(deadline, now):
                self.stats.expired += 1
                self.stats.misses += 1
                return None
            self.stats.hits += 1
        logger.info("slot_consumed", backend=self.backend, key=key, preview=preview(value))
        return value

    async def delete(self, key: str) -> None:
        with self._lock:
            self._slots.pop(key, None)

    async def list_pending_keys(self) -> List[str]:
        self.purge_expired()
        with self._lock:
            return list(self._slots.keys())

    def purge_expired(self) -> int:
        """Drop expired slots and return how many were removed."""
        now = self._clock()
        with self._lock:
            stale = [
                key
                for key, (_, deadline) in self._slots.items()
                if self._expired(deadline, now)
            ]
            for key in stale:
                del self._slots[key]
            self.stats.expired += len(stale)
        if stale:
            logger.info("slot_store_purged", backend=self.backend, removed=len(stale))
        return len(stale)

    def verify_connection(self) -> None:
        return None

    async def close(self) -> None:
        with self._lock:
            self._slots.clear()


__all__ = ["MemorySlotStore"]
