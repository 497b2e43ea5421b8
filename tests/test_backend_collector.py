"""
Backend Collector Tests
=======================
Sampling, derived statistics, alert callbacks, snapshot degradation, and the
async snapshot task lifecycle. The middleware is exercised through a small
FastAPI app and TestClient.
"""
import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from fastapi import FastAPI, HTTPException
from fastapi.testclient import TestClient

from perfwatch.collectors.backend_collector import BackendPerformanceMonitor
from perfwatch.collectors.middleware import PerformanceMiddleware
from perfwatch.models.request_record import RequestRecord


@pytest.fixture
def monitor():
    return BackendPerformanceMonitor(sample_rate=1.0, slow_threshold_ms=1000, rng=lambda: 0.5)


def _record(duration, status=200, path="/api/x", timestamp=None):
    kwargs = {"timestamp": timestamp} if timestamp else {}
    return RequestRecord(method="GET", path=path, status_code=status, duration_ms=duration, **kwargs)


class _Probe:
    def __init__(self, connected=True, status=None, error=None):
        self.connected = connected
        self.status = status or {}
        self.error = error

    def is_connected(self):
        return self.connected

    def server_status(self):
        if self.error:
            raise self.error
        return self.status


class TestSampling:

    def test_invalid_rate(self):
        with pytest.raises(ValueError):
            BackendPerformanceMonitor(sample_rate=1.5)

    def test_zero_rate_never_samples(self):
        m = BackendPerformanceMonitor(sample_rate=0.0, rng=lambda: 0.0)
        assert m.should_sample() is False

    def test_full_rate_always_samples(self):
        m = BackendPerformanceMonitor(sample_rate=1.0, rng=lambda: 0.999)
        assert m.should_sample() is True


class TestSummary:

    def test_empty_summary_is_none(self, monitor):
        assert monitor.summary() is None
        assert monitor.backend_bundle() is None

    def test_summary_statistics(self, monitor):
        for duration, status in [(100, 200), (200, 200), (300, 404), (1500, 500)]:
            monitor.record_request(_record(duration, status))

        summary = monitor.summary()
        assert summary.total_requests == 4
        assert summary.average_response_time == 525
        assert summary.median_response_time == 250
        assert summary.min_response_time == 100
        assert summary.max_response_time == 1500
        assert summary.p95_response_time == 1500
        assert summary.status_codes == {200: 2, 404: 1, 500: 1}
        assert summary.error_rate == 0.5
        assert summary.slow_requests == 1

    def test_recent_filters_by_cutoff(self, monitor):
        now = datetime.now(timezone.utc)
        monitor.record_request(_record(10, timestamp=now - timedelta(minutes=10)))
        monitor.record_request(_record(20, timestamp=now - timedelta(minutes=1)))
        recent = monitor.recent(minutes=5, now=now)
        assert [r.duration_ms for r in recent] == [20]

    def test_backend_bundle_fields(self, monitor):
        monitor.record_request(_record(1200, 200))
        bundle = monitor.backend_bundle()
        assert bundle.kind == "backend"
        assert bundle.get("average_response_time") == 1200
        assert bundle.get("error_rate") == 0
        assert bundle.get("status_codes.200") == 1

    def test_reset(self, monitor):
        monitor.record_request(_record(10))
        monitor.reset()
        assert monitor.summary() is None


class TestAlerts:

    def test_slow_request_callback(self):
        slow = MagicMock()
        m = BackendPerformanceMonitor(sample_rate=1.0, slow_threshold_ms=1000, on_slow_request=slow)
        m.record_request(_record(999))
        m.record_request(_record(1001))
        slow.assert_called_once()
        assert slow.call_args[0][0].duration_ms == 1001

    def test_callback_failure_does_not_propagate(self):
        m = BackendPerformanceMonitor(
            sample_rate=1.0, on_slow_request=MagicMock(side_effect=RuntimeError("boom")),
        )
        m.record_request(_record(5000))
        assert len(m.requests) == 1

    def test_high_memory_callback(self):
        high = MagicMock()
        m = BackendPerformanceMonitor(memory_threshold=-1.0, on_high_memory=high)
        snapshot = m.collect_system_metrics()
        assert snapshot is not None
        assert m.system is snapshot
        high.assert_called_once_with(snapshot)


class TestDatabaseSnapshot:

    def test_no_probe(self, monitor):
        assert monitor.collect_database_metrics() is None
        assert monitor.database_status == "no database probe configured"
        assert monitor.database_bundle() is None

    def test_disconnected(self):
        m = BackendPerformanceMonitor(database_probe=_Probe(connected=False))
        assert m.collect_database_metrics() is None
        assert m.database_status == "database not connected"

    def test_unreachable_drops_previous_snapshot(self):
        probe = _Probe(status={"connections": {"current": 1, "available": 10}})
        m = BackendPerformanceMonitor(database_probe=probe)
        assert m.collect_database_metrics() is not None

        probe.error = ConnectionError("timed out")
        assert m.collect_database_metrics() is None
        assert m.database is None
        assert m.database_status.startswith("database unreachable")

    def test_database_bundle(self):
        probe = _Probe(status={
            "connections": {"current": 90, "available": 100},
            "opcounters": {"query": 6000, "insert": 5000},
            "mem": {"resident": 256},
            "uptime": 100,
            "version": "7.0.2",
        })
        m = BackendPerformanceMonitor(database_probe=probe)
        m.collect_database_metrics()

        assert m.database_status == "ok"
        bundle = m.database_bundle()
        assert bundle.get("connections.current") == 90
        assert bundle.get("connections.available") == 100
        assert bundle.get("opcounters.total") == 11000
        assert bundle.get("opcounters.query") == 6000


class TestSnapshotTask:

    def test_start_and_stop(self):
        async def run_test():
            m = BackendPerformanceMonitor(snapshot_interval=3600)
            await m.start()
            await m.start()
            for _ in range(100):
                if m.database_status != "not collected":
                    break
                await asyncio.sleep(0.01)
            assert m.database_status == "no database probe configured"
            await m.stop()
            assert m._task is None

        asyncio.run(run_test())

    def test_get_metrics_shape(self, monitor):
        monitor.record_request(_record(50))
        metrics = monitor.get_metrics()
        assert set(metrics) == {"summary", "recent_requests", "system", "database", "database_status"}
        assert metrics["summary"]["total_requests"] == 1
        assert metrics["recent_requests"] == 1


class TestPerformanceMiddleware:

    def _app(self, monitor):
        app = FastAPI()
        app.add_middleware(PerformanceMiddleware, monitor=monitor)

        @app.get("/ok")
        async def ok():
            return {"ok": True}

        @app.get("/missing")
        async def missing():
            raise HTTPException(status_code=404, detail="nope")

        @app.get("/boom")
        async def boom():
            raise RuntimeError("handler failed")

        return app

    def test_records_sampled_requests(self, monitor):
        client = TestClient(self._app(monitor))
        assert client.get("/ok").status_code == 200
        assert client.get("/missing").status_code == 404

        records = monitor.requests.snapshot()
        assert [(r.path, r.status_code) for r in records] == [("/ok", 200), ("/missing", 404)]
        assert all(r.duration_ms >= 0 for r in records)

    def test_handler_exception_recorded_as_500(self, monitor):
        client = TestClient(self._app(monitor), raise_server_exceptions=False)
        assert client.get("/boom").status_code == 500
        assert monitor.requests.snapshot()[-1].status_code == 500

    def test_unsampled_requests_are_not_recorded(self):
        m = BackendPerformanceMonitor(sample_rate=0.0)
        client = TestClient(self._app(m))
        client.get("/ok")
        assert len(m.requests) == 0
