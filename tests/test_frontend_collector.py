"""
Frontend Collector Tests
========================
Session sampling, Core Web Vitals semantics, timing clamps, the error bound,
and the single fire-and-forget send (httpx client mocked).
"""
import asyncio
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from perfwatch.collectors.frontend_collector import (
    FrontendRuntimeCollector,
    NavigationTiming,
    PerformanceEntry,
    ResourceTiming,
    frontend_bundle_from_lighthouse,
    frontend_bundle_from_payload,
    navigation_breakdown,
    resource_breakdown,
)


def _collector(**kwargs):
    kwargs.setdefault("sample_rate", 1.0)
    kwargs.setdefault("rng", lambda: 0.0)
    c = FrontendRuntimeCollector(**kwargs)
    c.init()
    return c


def _ok_client():
    client = MagicMock()
    response = MagicMock()
    response.raise_for_status = MagicMock()
    client.post = AsyncMock(return_value=response)
    return client


class TestSampling:

    def test_invalid_rate(self):
        with pytest.raises(ValueError):
            FrontendRuntimeCollector(sample_rate=-0.1)

    def test_included_when_draw_below_rate(self):
        c = FrontendRuntimeCollector(sample_rate=0.1, rng=lambda: 0.05)
        assert c.init() is True

    def test_excluded_session_ignores_entries(self):
        c = FrontendRuntimeCollector(sample_rate=0.1, rng=lambda: 0.5)
        assert c.init() is False
        c.handle_entries("largest-contentful-paint", [PerformanceEntry("largest-contentful-paint", start_time=900)])
        c.record_error("oops")
        assert c.vitals == {}
        assert c.errors == []

    def test_single_draw_per_session(self):
        draws = iter([0.0, 0.99])
        c = FrontendRuntimeCollector(sample_rate=0.5, rng=lambda: next(draws))
        assert c.init() is True
        assert c.init() is True


class TestVitals:

    def test_lcp_frozen_after_user_input(self):
        c = _collector()
        c.handle_entries("largest-contentful-paint", [
            PerformanceEntry("largest-contentful-paint", start_time=1000),
            PerformanceEntry("largest-contentful-paint", start_time=1800),
        ])
        c.on_user_input()
        c.handle_entries("largest-contentful-paint", [PerformanceEntry("largest-contentful-paint", start_time=3000)])
        assert c.vitals["lcp"] == 1800
        assert c.interaction_count == 1

    def test_lcp_frozen_after_tab_hide(self):
        c = _collector()
        c.handle_entries("largest-contentful-paint", [PerformanceEntry("largest-contentful-paint", start_time=1200)])
        c.on_visibility_hidden()
        c.handle_entries("largest-contentful-paint", [PerformanceEntry("largest-contentful-paint", start_time=4000)])
        assert c.vitals["lcp"] == 1200

    def test_fid_uses_first_input_only(self):
        c = _collector()
        c.handle_entries("first-input", [PerformanceEntry("first-input", start_time=100, processing_start=150)])
        c.handle_entries("first-input", [PerformanceEntry("first-input", start_time=200, processing_start=900)])
        assert c.vitals["fid"] == 50

    def test_cls_ignores_shifts_after_input(self):
        c = _collector()
        c.handle_entries("layout-shift", [
            PerformanceEntry("layout-shift", value=0.05),
            PerformanceEntry("layout-shift", value=0.2, had_recent_input=True),
        ])
        first = c.vitals["cls"]
        c.handle_entries("layout-shift", [PerformanceEntry("layout-shift", value=0.03)])
        assert c.vitals["cls"] == pytest.approx(0.08)
        assert c.vitals["cls"] >= first

    def test_fcp_from_paint(self):
        c = _collector()
        c.handle_entries("paint", [
            PerformanceEntry("paint", name="first-paint", start_time=500),
            PerformanceEntry("paint", name="first-contentful-paint", start_time=812),
        ])
        assert c.vitals == {"fcp": 812}

    def test_unsupported_observers_degrade(self):
        c = _collector(supported_entry_types=["paint"])
        assert c.unsupported_observers == ["largest-contentful-paint", "first-input", "layout-shift"]
        c.handle_entries("largest-contentful-paint", [PerformanceEntry("largest-contentful-paint", start_time=900)])
        assert "lcp" not in c.vitals
        assert c.build_payload()["unsupported_observers"] == c.unsupported_observers


class TestTimings:

    def test_cross_origin_intervals_clamp_to_zero(self):
        breakdown = resource_breakdown(ResourceTiming(
            name="https://cdn.example.com/app.css",
            request_start=50, response_start=0, response_end=0,
            domain_lookup_start=0, domain_lookup_end=0, duration=120,
        ))
        assert breakdown["type"] == "css"
        assert breakdown["ttfb"] == 0
        assert breakdown["download"] == 0
        assert breakdown["duration"] == 120

    def test_initiator_type_wins(self):
        breakdown = resource_breakdown(ResourceTiming(name="/data.js", initiator_type="fetch"))
        assert breakdown["type"] == "fetch"

    def test_navigation_breakdown(self):
        nav = navigation_breakdown(NavigationTiming(
            start_time=0, domain_lookup_start=5, domain_lookup_end=15,
            connect_start=15, connect_end=45, secure_connection_start=25,
            request_start=50, response_start=150, response_end=200,
            dom_content_loaded_event_start=400, dom_content_loaded_event_end=420,
            load_event_start=900, load_event_end=950,
        ))
        assert nav["dns"] == 10
        assert nav["tcp"] == 30
        assert nav["ssl"] == 20
        assert nav["ttfb"] == 100
        assert nav["download"] == 50
        assert nav["dom_parse"] == 200
        assert nav["total"] == 950


class TestErrors:

    def test_error_list_is_bounded(self):
        c = _collector(max_errors=50)
        for i in range(60):
            c.record_error(f"error {i}", "app.js", 1, 1)
        assert len(c.errors) == 50
        assert c.dropped_errors == 10
        assert c.build_payload()["dropped_errors"] == 10

    def test_error_kinds(self):
        c = _collector()
        c.record_error("TypeError: x is undefined")
        c.record_rejection()
        c.record_resource_error("https://cdn.example.com/logo.png", "IMG")
        assert [e["type"] for e in c.errors] == ["javascript", "promise", "resource"]
        assert c.errors[1]["message"] == "Unhandled promise rejection"


class TestSend:

    def test_send_failure_is_swallowed(self):
        client = MagicMock()
        client.post = AsyncMock(side_effect=httpx.ConnectError("connection refused"))
        c = _collector(client=client)
        assert asyncio.run(c.send_metrics()) is False

    def test_sends_exactly_once(self):
        client = _ok_client()
        c = _collector(client=client, endpoint="/api/performance/metrics")

        async def run_test():
            assert await c.send_metrics() is True
            assert await c.send_metrics() is False

        asyncio.run(run_test())
        client.post.assert_awaited_once()
        assert client.post.call_args[0][0] == "/api/performance/metrics"

    def test_on_load_schedules_one_send(self):
        client = _ok_client()
        c = _collector(client=client, send_delay=0.01)

        async def run_test():
            assert c.on_load() is not None
            assert c.on_load() is None
            await asyncio.sleep(0.1)

        asyncio.run(run_test())
        client.post.assert_awaited_once()

    def test_on_load_for_excluded_session(self):
        c = FrontendRuntimeCollector(sample_rate=0.0, rng=lambda: 0.5)
        c.init()

        async def run_test():
            return c.on_load()

        assert asyncio.run(run_test()) is None


class TestBundles:

    def test_to_bundle(self):
        c = _collector()
        c.handle_entries("largest-contentful-paint", [PerformanceEntry("largest-contentful-paint", start_time=1800)])
        c.record_resources([ResourceTiming(name="/big.png", transfer_size=2_000_000, duration=400)])
        bundle = c.to_bundle()
        assert bundle.kind == "frontend"
        assert bundle.get("lcp") == 1800
        assert bundle.get("resource_count") == 1
        assert bundle.items[0]["size"] == 2_000_000

    def test_degraded_session_carries_failures(self):
        c = _collector(supported_entry_types=["paint"], max_errors=1)
        c.record_error("first", "app.js", 1, 1)
        c.record_error("second", "app.js", 2, 1)

        bundle = c.to_bundle()
        sources = [f["source"] for f in bundle.failures]
        assert sources == [
            "observer:largest-contentful-paint", "observer:first-input", "observer:layout-shift", "errors",
        ]
        assert bundle.failures[-1]["reason"] == "1 errors dropped past the capture limit"
        assert bundle.get("dropped_errors") == 1

    def test_bundle_is_isolated_from_payload(self):
        payload = {"vitals": {"lcp": 1000}, "resources": [{"name": "/a.js", "size": 1}]}
        bundle = frontend_bundle_from_payload(payload)
        payload["resources"][0]["size"] = 999
        assert bundle.items[0]["size"] == 1

    def test_lighthouse(self):
        lighthouse = {
            "audits": {
                "largest-contentful-paint": {"numericValue": 3100.5},
                "max-potential-fid": {"numericValue": 80},
                "cumulative-layout-shift": {"numericValue": 0.02},
            },
            "categories": {"performance": {"score": 0.72}},
        }
        bundle = frontend_bundle_from_lighthouse(lighthouse)
        assert bundle.get("lcp") == 3100.5
        assert bundle.get("fid") == 80
        assert bundle.get("performance_score") == pytest.approx(72)
        assert not bundle.has("fcp")
