from __future__ import annotations

import time
from typing import Callable

from fastapi import Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, Info, generate_latest

from app.core.settings import S

METRICS_ENABLED = S.metrics_enabled

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
REQUEST_ERRORS = Counter(
    "http_request_errors_total",
    "Total HTTP requests resulting in server errors",
    ["method", "path", "status"],
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "path"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10),
)
UPTIME_SECONDS = Gauge(
    "app_uptime_seconds",
    "Application uptime in seconds",
)
APP_INFO = Info(
    "app",
    "Application metadata",
)

COMMENTS_CREATED = Counter(
    "comments_created_total",
    "Comments and replies created",
    ["kind"],
)
NOTIFICATIONS_CREATED = Counter(
    "notifications_created_total",
    "Notifications written at event time",
    ["type"],
)
LIKE_TOGGLES = Counter(
    "like_toggles_total",
    "Like/unlike toggles",
    ["target", "action"],
)
FOLLOW_TOGGLES = Counter(
    "follow_toggles_total",
    "Follow/unfollow toggles",
    ["action"],
)
PARTIAL_WRITE_COMPENSATIONS = Counter(
    "partial_write_compensations_total",
    "Two-document writes whose second half failed",
    ["what", "outcome"],
)

_START_TIME = time.monotonic()


def _route_path(request: Request) -> str:
    route = request.scope.get("route")
    if route and getattr(route, "path", None):
        return route.path
    return request.url.path


async def metrics_middleware(request: Request, call_next: Callable[[Request], Response]) -> Response:
    start = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    finally:
        # Route is resolved only after call_next, so the template path is read here.
        path = _route_path(request)
        REQUEST_LATENCY.labels(method=request.method, path=path).observe(time.perf_counter() - start)
        REQUEST_COUNT.labels(method=request.method, path=path, status=str(status_code)).inc()
        if status_code >= 500:
            REQUEST_ERRORS.labels(method=request.method, path=path, status=str(status_code)).inc()


def set_app_info(name: str, version: str) -> None:
    APP_INFO.info({"name": name, "version": version})


def metrics_endpoint() -> Response:
    UPTIME_SECONDS.set(time.monotonic() - _START_TIME)
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
