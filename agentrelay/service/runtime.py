from __future__ import annotations

import threading
from typing import Optional
from urllib.parse import urlparse, urlunparse

from agentrelay.config import Settings, SlotBackend, get_settings, reset_settings_cache
from agentrelay.logging import get_logger
from agentrelay.service.completion import CompletionService
from agentrelay.service.relay import ResponseRelay
from agentrelay.storage.base import ResponseSlotStore
from agentrelay.storage.memory import MemorySlotStore
from agentrelay.storage.redis_cache import RedisSlotStore, SyncRedisSlotStore

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Mask the password in a URL for safe logging.

    Example: redis://:mypassword@localhost:6379 -> redis://:***@localhost:6379
    """
    if not url:
        return url
    try:
        parsed = urlparse(url)
        if parsed.password:
            netloc = parsed.hostname or ""
            if parsed.port:
                netloc = f"{netloc}:{parsed.port}"
            if parsed.username:
                netloc = f"{parsed.username}:***@{netloc}"
            else:
                netloc = f":***@{netloc}"
            return urlunparse((
                parsed.scheme,
                netloc,
                parsed.path,
                parsed.params,
                parsed.query,
                parsed.fragment,
            ))
        return url
    except ValueError:
        return "***url_parse_error***"


def _build_store(settings: Settings) -> ResponseSlotStore:
    if settings.slot_store_backend == SlotBackend.MEMORY:
        return MemorySlotStore()

    redis_error: Exception | None = None
    try:
        # Use sync Redis client in test mode to avoid event loop issues
        if settings.test_mode:
            store: ResponseSlotStore = SyncRedisSlotStore(
                settings.redis_url,
                token=settings.redis_token,
                socket_timeout=settings.redis_socket_timeout,
            )
        else:
            store = RedisSlotStore(
                settings.redis_url,
                token=settings.redis_token,
                socket_timeout=settings.redis_socket_timeout,
            )
        store.verify_connection()
        return store
    except Exception as exc:
        redis_error = exc

    if not settings.test_mode and not settings.allow_redis_fallback_dev:
        raise RuntimeError(
            "Redis is required for the shared response slot store; start Redis, set "
            "SLOT_STORE_BACKEND=memory for a single-process deployment, or set "
            "ALLOW_REDIS_FALLBACK_DEV=true for local fallback."
        ) from redis_error

    fallback_mode = "TEST_MODE" if settings.test_mode else "ALLOW_REDIS_FALLBACK_DEV"
    logger.warning(
        "redis_disabled_fallback",
        redis_url=_mask_url_password(settings.redis_url),
        error=str(redis_error),
        message=(
            f"Running without Redis under {fallback_mode}; pending replies are "
            "process-local and lost on restart."
        ),
        mode=fallback_mode,
    )
    return MemorySlotStore()


class Runtime:
    """Holds the service instances shared by the webhook routes."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        logger.info(
            "runtime_init_started",
            slot_store_backend=self.settings.slot_store_backend.value,
            test_mode=self.settings.test_mode,
        )
        self.store = _build_store(self.settings)
        self.relay = ResponseRelay(self.store)
        self.completion = CompletionService(
            api_key=self.settings.completion_api_key,
            base_url=self.settings.completion_base_url,
            model=self.settings.completion_model,
            temperature=self.settings.completion_temperature,
            system_prompt=self.settings.agent_system_prompt,
            timeout_seconds=self.settings.completion_timeout_seconds,
        )
        logger.info(
            "runtime_initialized",
            slot_store=self.store.backend,
            durable=self.store.durable,
            completion_model=self.completion.model,
            completion_configured=self.completion.is_configured,
        )

    async def close(self) -> None:
        await self.completion.close()
        await self.store.close()


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton in a thread-safe manner."""
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Reinitialize the runtime singleton for isolated test runs."""
    global runtime

    with _runtime_lock:
        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        if runtime is not None and isinstance(runtime.store, SyncRedisSlotStore):
            runtime.store._sync_client.close()
        runtime = Runtime(settings)
        return runtime
