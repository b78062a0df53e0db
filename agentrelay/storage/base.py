from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Dict, List, Optional, Protocol

# Unread slots are purged this long after they were written
SLOT_TTL_SECONDS = 10 * 60


@dataclass
class SlotStoreStats:
    """Counters for store activity, including failures the store swallows."""

    puts: int = 0
    hits: int = 0
    misses: int = 0
    expired: int = 0
    failures: int = 0

    def snapshot(self) -> Dict[str, int]:
        return asdict(self)


class ResponseSlotStore(Protocol):
    """Consume-once handoff of generated replies keyed by correlation key.

    Implementations never raise from ``put``/``get``/``delete``/
    ``list_pending_keys``; backend failures are logged and counted in
    ``stats.failures`` instead.
    """

    backend: str
    durable: bool
    ttl_seconds: float
    stats: SlotStoreStats

    async def put(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``; last write wins, TTL restarts."""
        ...

    async def get(self, key: str) -> Optional[str]:
        """Return and remove the slot, or ``None`` when there is none."""
        ...

    async def delete(self, key: str) -> None: ...

    async def list_pending_keys(self) -> List[str]:
        """Diagnostic listing; order and liveness are not guaranteed."""
        ...

    def verify_connection(self) -> None: ...

    async def close(self) -> None: ...


__all__ = ["SLOT_TTL_SECONDS", "ResponseSlotStore", "SlotStoreStats"]
