from __future__ import annotations
import time
from fastapi import Response, Request
from prometheus_client import (
    Counter, Histogram, CollectorRegistry,
    CONTENT_TYPE_LATEST, generate_latest,
)
from ..config import get_settings

S = get_settings()

REGISTRY = CollectorRegistry(auto_describe=True)

# ---------- Metric definitions ----------
HTTP_REQS = Counter("http_requests_total", "HTTP requests", ["method", "path", "status"], registry=REGISTRY)
HTTP_LATENCY = Histogram("http_request_duration_seconds", "HTTP request latency", ["method", "path"], registry=REGISTRY)

SIGNUPS      = Counter("signups_total",       "Signups by outcome",          ["ride_level", "outcome"], registry=REGISTRY)
CANCELLED    = Counter("cancellations_total", "Registrations cancelled",     ["mode"], registry=REGISTRY)
PROMOTED     = Counter("promotions_total",    "Waitlist promotions",         ["ride_level"], registry=REGISTRY)
RL_REJECTED  = Counter("rate_limit_rejections_total", "Requests rejected by the rate limiter", ["action"], registry=REGISTRY)
RL_FALLBACK  = Counter("rate_limit_store_failures_total", "Shared rate-limit store failures", ["mode"], registry=REGISTRY)
EMAIL_FAILED = Counter("notification_failures_total", "Notification emails that could not be sent", ["kind"], registry=REGISTRY)

# ---------- /metrics endpoint factory ----------
def metrics_app():
    async def _metrics(_: Request):
        if not S.METRICS_ENABLED:
            return Response(status_code=404)
        data = generate_latest(REGISTRY)
        return Response(content=data, media_type=CONTENT_TYPE_LATEST)
    return _metrics

# ---------- HTTP middleware for latency/counters ----------
def _path_label(scope) -> str:
    # matched route template, so arbitrary 404 paths share one label
    route = scope.get("route")
    return getattr(route, "path", None) or "unmatched"


class MetricsHTTPMiddleware:
    def __init__(self, app):
        self.app = app
    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            return await self.app(scope, receive, send)
        method = scope["method"]
        t0 = time.perf_counter()

        async def send_wrapper(message):
            if message["type"] == "http.response.start":
                path = _path_label(scope)
                HTTP_REQS.labels(method=method, path=path, status=message["status"]).inc()
                HTTP_LATENCY.labels(method=method, path=path).observe(time.perf_counter() - t0)
            await send(message)

        await self.app(scope, receive, send_wrapper)
