import uvicorn
import time
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from starlette.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from perfwatch.api.performance import FrontendMetricsStore, router as performance_router
from perfwatch.collectors.backend_collector import BackendPerformanceMonitor
from perfwatch.collectors.middleware import PerformanceMiddleware
from perfwatch.services.pipeline import PipelineOptions
from perfwatch.utils.logging_config import setup_logging

# Initialize enhanced logging
setup_logging()
logger = logging.getLogger("main")


# ---------------------------------------------------------------------------
# Logging Middleware
# ---------------------------------------------------------------------------
class LoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        client_host = request.client.host if request.client else "unknown"
        logger.debug("Incoming: %s %s from %s", request.method, request.url.path, client_host)

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error("Request failed: %s %s - Error: %s", request.method, request.url.path, e)
            raise
        process_time = (time.time() - start_time) * 1000
        logger.info(
            "Outgoing: %s %s - Status: %d - Time: %.2fms",
            request.method, request.url.path, response.status_code, process_time,
        )
        return response


def create_app(
    monitor: Optional[BackendPerformanceMonitor] = None,
    pipeline_options: Optional[PipelineOptions] = None,
    start_monitor: bool = True,
) -> FastAPI:
    """Build the host application around one monitor instance."""
    monitor = monitor or BackendPerformanceMonitor()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if start_monitor:
            await monitor.start()
        try:
            yield
        finally:
            await monitor.stop()

    app = FastAPI(title="perfwatch Performance API", lifespan=lifespan)
    app.state.monitor = monitor
    app.state.frontend_store = FrontendMetricsStore()
    app.state.pipeline_options = pipeline_options

    app.add_middleware(PerformanceMiddleware, monitor=monitor)
    app.add_middleware(LoggingMiddleware)

    # -----------------------------------------------------------------------
    # CORS: allow the React frontend (port 3000) to post metrics and read reports
    # -----------------------------------------------------------------------
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:3000",
            "http://127.0.0.1:3000",
            "http://localhost:8000",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Health endpoint
    @app.get("/health")
    async def health_check():
        return {"status": "ok", "database": monitor.database_status}

    app.include_router(performance_router)
    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run("main:app", host="127.0.0.1", port=8000, reload=True)
