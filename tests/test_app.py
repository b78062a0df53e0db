import asyncio

import pytest
from fastapi.testclient import TestClient

import agentrelay.app as app_module
from agentrelay.service.runtime import get_runtime
from agentrelay.storage.memory import MemorySlotStore


@pytest.fixture
def client():
    return TestClient(app_module.app)


class TestHealth:
    def test_healthz_reports_store(self, client):
        resp = client.get("/healthz")

        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "healthy"
        assert body["checks"]["slot_store"] == {
            "status": "healthy",
            "backend": "memory",
            "durable": False,
        }
        assert body["version"] == app_module.__version__

    def test_healthz_unhealthy_when_store_unreachable(self, client, monkeypatch):
        def refuse():
            raise ConnectionError("refused")

        monkeypatch.setattr(get_runtime().store, "verify_connection", refuse)

        body = client.get("/healthz").json()

        assert body["status"] == "unhealthy"
        assert body["checks"]["slot_store"]["status"] == "unhealthy"


class TestMetrics:
    def test_counters_follow_store_activity(self, client):
        client.post("/webhook/manychat/wh1", json={"contactId": "u1", "message": "Hi"})
        client.post("/webhook/manychat/wh1/fetchresponse", json={"contactId": "u1"})
        client.post("/webhook/manychat/wh1/fetchresponse", json={"contactId": "u1"})

        text = client.get("/metrics").text

        assert 'agentrelay_slot_durable{backend="memory"} 0' in text
        assert 'agentrelay_slot_puts_total{backend="memory"} 1' in text
        assert 'agentrelay_slot_hits_total{backend="memory"} 1' in text
        assert 'agentrelay_slot_misses_total{backend="memory"} 1' in text
        assert "# TYPE agentrelay_slot_expired_total counter" in text


class TestRequestId:
    def test_request_id_is_echoed(self, client):
        resp = client.get("/healthz", headers={"X-Request-ID": "req-123"})

        assert resp.headers["X-Request-ID"] == "req-123"

    def test_request_id_is_generated(self, client):
        resp = client.get("/healthz")

        assert resp.headers["X-Request-ID"]


class TestSlotSweep:
    @pytest.mark.asyncio
    async def test_sweep_purges_expired_slots(self, clock):
        store = MemorySlotStore(ttl_seconds=1, clock=clock)
        await store.put("wh1_a", "stale")
        clock.advance(5)

        task = asyncio.create_task(app_module._run_slot_sweep(store, 0))
        await asyncio.sleep(0.01)
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

        assert store.stats.expired == 1


class TestErrorEnvelope:
    def test_uncaught_error_returns_envelope(self, monkeypatch):
        def broken_snapshot():
            raise RuntimeError("stats unavailable")

        monkeypatch.setattr(get_runtime().store.stats, "snapshot", broken_snapshot)
        client = TestClient(app_module.app, raise_server_exceptions=False)

        resp = client.get("/metrics")

        assert resp.status_code == 500
        body = resp.json()
        assert body["status"] == "error"
        assert body["error"]["code"] == "server_error"
        assert body["error"]["message"] == "internal server error"
        assert body["request_id"]
