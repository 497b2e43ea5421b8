"""
Performance API
===============
Routes the host application mounts next to its own routers.

    POST /api/performance/metrics   — ingest one browser collector payload
    GET  /api/performance/summary   — backend monitor's current summary
    POST /api/performance/report    — run the pipeline and persist a report

The monitor and the frontend store live on `app.state` (set up in the
main.py lifespan); nothing here is module-global.
"""
import asyncio
import logging
import threading
from dataclasses import replace
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from perfwatch.collectors.frontend_collector import frontend_bundle_from_payload
from perfwatch.models.metric_bundle import MetricBundle
from perfwatch.optimizer.engine import RunCancelled
from perfwatch.services.pipeline import PerformancePipeline, PipelineOptions
from perfwatch.services.report_writer import ReportWriteError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/performance", tags=["Performance"])

# Hard timeout ceiling (seconds)
_MAX_TIMEOUT = 120


class FrontendMetricsStore:
    """Latest frontend bundle, replaced wholesale on each ingest."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._latest: Optional[MetricBundle] = None
        self._received = 0

    def put(self, bundle: MetricBundle) -> None:
        with self._lock:
            self._latest = bundle
            self._received += 1

    def latest(self) -> Optional[MetricBundle]:
        return self._latest

    @property
    def received(self) -> int:
        return self._received


# ---------------------------------------------------------------------------
# Request / Response schemas
# ---------------------------------------------------------------------------
class ResourceEntry(BaseModel):
    name: str = ""
    type: str = "other"
    size: float = 0
    duration: float = 0
    blocked: float = 0
    dns: float = 0
    connect: float = 0
    ttfb: float = 0
    download: float = 0


class FrontendPayload(BaseModel):
    url: Optional[str] = None
    user_agent: Optional[str] = None
    timestamp: Optional[float] = None
    vitals: Dict[str, float] = {}
    navigation: Dict[str, float] = {}
    resources: List[ResourceEntry] = []
    errors: List[Dict[str, Any]] = []
    dropped_errors: int = 0
    interactions: Dict[str, float] = {}
    unsupported_observers: List[str] = []


class ReportRequest(BaseModel):
    stages: Optional[List[str]] = None
    lighthouse_path: Optional[str] = None
    timeout_seconds: Optional[int] = None


class ReportResponse(BaseModel):
    report_path: Optional[str]
    artifacts: Dict[str, str]
    summary: Dict[str, Any]
    prioritized_actions: List[Dict[str, Any]]
    skipped_categories: Dict[str, str]
    partial_failures: List[Dict[str, str]] = []


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------
@router.post("/metrics", status_code=202)
async def ingest_metrics(payload: FrontendPayload, request: Request):
    store: FrontendMetricsStore = request.app.state.frontend_store
    bundle = frontend_bundle_from_payload(payload.model_dump())
    store.put(bundle)
    logger.debug("Frontend payload ingested from %s", payload.url)
    return {"status": "accepted", "received": store.received}


@router.get("/summary")
async def get_summary(request: Request):
    return request.app.state.monitor.get_metrics()


@router.post("/report", response_model=ReportResponse)
async def create_report(body: ReportRequest, request: Request):
    """Run the selected stages and write a timestamped report."""
    options: PipelineOptions = getattr(request.app.state, "pipeline_options", None) or PipelineOptions()
    if body.lighthouse_path:
        options = replace(options, lighthouse_path=body.lighthouse_path)

    pipeline = PerformancePipeline(
        monitor=request.app.state.monitor,
        frontend_source=request.app.state.frontend_store.latest,
        options=options,
    )
    timeout = min(body.timeout_seconds or _MAX_TIMEOUT, _MAX_TIMEOUT)
    cancel_event = threading.Event()

    try:
        result = await asyncio.wait_for(
            asyncio.to_thread(pipeline.run, body.stages, cancel_event),
            timeout=timeout,
        )
    except asyncio.TimeoutError:
        cancel_event.set()
        logger.warning("[API] Report run timed out after %ss", timeout)
        raise HTTPException(status_code=504, detail=f"Report run timed out after {timeout}s")
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except RunCancelled as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except ReportWriteError as exc:
        logger.error("[API] Report could not be written: %s", exc)
        raise HTTPException(status_code=500, detail=str(exc))

    report = result.report
    return ReportResponse(
        report_path=result.report_path,
        artifacts=result.artifacts,
        summary=report.summary.model_dump(),
        prioritized_actions=[a.model_dump() for a in report.prioritized_actions],
        skipped_categories=report.skipped_categories,
        partial_failures=[f.model_dump() for f in report.partial_failures],
    )
