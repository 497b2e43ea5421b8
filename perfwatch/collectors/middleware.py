"""
Performance Middleware
======================
Starlette middleware that wraps request handling for the backend monitor.

The sampling decision is made before the handler runs; unsampled requests
go straight to `call_next` with no timing overhead. A handler exception is
recorded as a 500 and re-raised so the host's error handling still applies.
"""
import time

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from perfwatch.collectors.backend_collector import BackendPerformanceMonitor
from perfwatch.models.request_record import RequestRecord


class PerformanceMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, monitor: BackendPerformanceMonitor):
        super().__init__(app)
        self.monitor = monitor

    async def dispatch(self, request: Request, call_next):
        if not self.monitor.should_sample():
            return await call_next(request)

        start = time.perf_counter()
        start_rss = self.monitor.current_rss()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            duration_ms = (time.perf_counter() - start) * 1000
            self.monitor.record_request(RequestRecord(
                method=request.method,
                path=request.url.path,
                status_code=status_code,
                duration_ms=duration_ms,
                memory_delta_bytes=self.monitor.current_rss() - start_rss,
            ))
