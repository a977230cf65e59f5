from __future__ import annotations

import time

from fastapi import APIRouter, HTTPException, Request
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

REQUEST_COUNT = Counter(
    "mdm_http_requests_total",
    "Total HTTP requests",
    ["method", "route", "status"],
)
REQUEST_LATENCY = Histogram(
    "mdm_http_request_duration_seconds",
    "Request duration seconds",
    ["method", "route"],
)
REPORTS_ACCEPTED = Counter("mdm_agent_reports_accepted_total", "Accepted agent reports", ["os_type"])
REPORTS_REJECTED = Counter("mdm_agent_reports_rejected_total", "Rejected agent reports", ["reason"])
TELEMETRY_WRITE_FAILURES = Counter(
    "mdm_telemetry_write_failures_total", "Telemetry category writes that failed", ["category"]
)
DIRECTORY_SYNC_RUNS = Counter("mdm_directory_sync_runs_total", "Directory sync runs", ["outcome"])
DIRECTORY_USERS_WRITTEN = Counter("mdm_directory_users_written_total", "Directory user rows inserted or updated")


def _route_template(request: Request) -> str:
    route = request.scope.get("route")
    path = getattr(route, "path", None)
    return str(path) if path else "unmatched"


class MetricsMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:  # type: ignore[override]
        start = time.monotonic()
        response = await call_next(request)
        duration = time.monotonic() - start
        route = _route_template(request)
        REQUEST_COUNT.labels(method=request.method, route=route, status=str(response.status_code)).inc()
        REQUEST_LATENCY.labels(method=request.method, route=route).observe(duration)
        return response


router = APIRouter(tags=["internal"])


@router.get("/internal/metrics")
def metrics(request: Request) -> Response:
    token = request.app.state.config.metrics_token
    if token:
        supplied = request.headers.get("X-Metrics-Token", "")
        if supplied != token:
            raise HTTPException(status_code=401, detail={"message": "metrics token required"})
    payload = generate_latest()
    return Response(content=payload, media_type=CONTENT_TYPE_LATEST)
