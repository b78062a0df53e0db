from __future__ import annotations

import asyncio
import contextlib
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import Depends, FastAPI, Response

from agentrelay.api.error_handling import register_exception_handlers
from agentrelay.api.routes import router
from agentrelay.logging import get_logger, set_request_id
from agentrelay.service.runtime import Runtime, get_runtime
from agentrelay.storage.memory import MemorySlotStore

logger = get_logger(__name__)

__version__ = "0.1.0"

HEALTH_CHECK_TIMEOUT_SECONDS = 3

_sweep_task: asyncio.Task | None = None


async def _run_slot_sweep(store: MemorySlotStore, interval_seconds: int) -> None:
    """Background loop purging expired slots from the in-process store."""

    try:
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                store.purge_expired()
            except Exception as exc:  # pragma: no cover - best-effort cleanup
                logger.warning("slot_sweep_failed", error=str(exc))
    except asyncio.CancelledError:
        logger.info("slot_sweep_task_cancelled")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    global _sweep_task
    runtime = get_runtime()
    if isinstance(runtime.store, MemorySlotStore):
        _sweep_task = asyncio.create_task(
            _run_slot_sweep(runtime.store, runtime.settings.memory_sweep_interval_seconds)
        )
        logger.info(
            "slot_sweep_started",
            interval_seconds=runtime.settings.memory_sweep_interval_seconds,
        )

    yield

    try:
        if _sweep_task:
            _sweep_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await _sweep_task
            _sweep_task = None
        await get_runtime().close()
        logger.info("runtime_cleanup_complete")
    except Exception as exc:
        logger.error("shutdown_failed", error=str(exc))


app = FastAPI(title="Agent Relay", version=__version__, lifespan=lifespan)


@app.middleware("http")
async def add_request_id(request, call_next):
    """Tag each request with an ID taken from X-Request-ID or generated."""
    request_id = set_request_id(request.headers.get("X-Request-ID"))
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


register_exception_handlers(app)
app.include_router(router)


@app.get("/healthz")
async def health(runtime: Runtime = Depends(get_runtime)) -> Dict[str, Any]:
    """Report slot store connectivity and build info."""
    store = runtime.store
    try:
        await asyncio.wait_for(
            asyncio.to_thread(store.verify_connection), HEALTH_CHECK_TIMEOUT_SECONDS
        )
        store_ok = True
    except asyncio.TimeoutError:
        logger.error(
            "health_check_timeout",
            component="slot_store",
            timeout=HEALTH_CHECK_TIMEOUT_SECONDS,
        )
        store_ok = False
    except Exception as exc:
        logger.error("health_check_slot_store_failed", error=str(exc))
        store_ok = False

    return {
        "status": "healthy" if store_ok else "unhealthy",
        "checks": {
            "slot_store": {
                "status": "healthy" if store_ok else "unhealthy",
                "backend": store.backend,
                "durable": store.durable,
            }
        },
        "version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.get("/metrics", response_class=Response)
async def metrics(runtime: Runtime = Depends(get_runtime)) -> Response:
    """Prometheus-compatible metrics endpoint."""
    store = runtime.store
    stats = store.stats.snapshot()
    backend = store.backend
    lines = [
        "# HELP agentrelay_info Application version info",
        "# TYPE agentrelay_info gauge",
        f'agentrelay_info{{version="{__version__}"}} 1',
        "# HELP agentrelay_slot_durable Whether the slot store is shared across instances",
        "# TYPE agentrelay_slot_durable gauge",
        f'agentrelay_slot_durable{{backend="{backend}"}} {int(store.durable)}',
    ]
    counters = (
        ("agentrelay_slot_puts_total", "Replies written to the slot store", "puts"),
        ("agentrelay_slot_hits_total", "Polls that consumed a reply", "hits"),
        ("agentrelay_slot_misses_total", "Slot reads that found nothing", "misses"),
        ("agentrelay_slot_expired_total", "Slots dropped unread after their TTL", "expired"),
        (
            "agentrelay_slot_store_failures_total",
            "Slot store operations that failed and were absorbed",
            "failures",
        ),
    )
    for name, help_text, field in counters:
        lines.append(f"# HELP {name} {help_text}")
        lines.append(f"# TYPE {name} counter")
        lines.append(f'{name}{{backend="{backend}"}} {stats[field]}')
    return Response(content="\n".join(lines) + "\n", media_type="text/plain")


def create_app() -> FastAPI:
    return app
