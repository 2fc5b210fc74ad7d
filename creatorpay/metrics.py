from __future__ import annotations

import time
from typing import Callable, Optional

from fastapi import Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, Info, generate_latest

from creatorpay.core.settings import S

METRICS_ENABLED = S.metrics_enabled

REQUEST_COUNT = Counter(
    "creatorpay_http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
REQUEST_ERRORS = Counter(
    "creatorpay_http_request_errors_total",
    "Total HTTP requests resulting in server errors",
    ["method", "path", "status"],
)
REQUEST_LATENCY = Histogram(
    "creatorpay_http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "path"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10),
)
IN_PROGRESS = Gauge(
    "creatorpay_http_requests_in_progress",
    "In-progress HTTP requests",
    ["method", "path"],
)
WEBHOOK_EVENTS = Counter(
    "creatorpay_gateway_webhook_events_total",
    "Gateway webhook deliveries by purchase kind and reconciliation outcome",
    ["kind", "outcome"],
)
CHECKOUTS = Counter(
    "creatorpay_checkouts_total",
    "Checkout initiations by purchase kind and result",
    ["kind", "result"],
)
PAYOUTS = Counter(
    "creatorpay_payouts_total",
    "Payout initiations by mode and result",
    ["mode", "result"],
)
UPTIME_SECONDS = Gauge(
    "creatorpay_uptime_seconds",
    "Application uptime in seconds",
)
APP_INFO = Info(
    "creatorpay",
    "Application metadata",
)

_START_TIME = time.monotonic()


def _route_path(request: Request) -> str:
    route = request.scope.get("route")
    if route and getattr(route, "path", None):
        return route.path
    return request.url.path


def record_webhook(kind: str, outcome: str) -> None:
    WEBHOOK_EVENTS.labels(kind=kind, outcome=outcome).inc()


def record_checkout(kind: str, result: str) -> None:
    CHECKOUTS.labels(kind=kind, result=result).inc()


def record_payout(mode: str, result: str) -> None:
    PAYOUTS.labels(mode=mode, result=result).inc()


async def metrics_middleware(request: Request, call_next: Callable[[Request], Response]) -> Response:
    path = _route_path(request)
    method = request.method
    start = time.perf_counter()
    IN_PROGRESS.labels(method=method, path=path).inc()
    status_code = 500
    response: Optional[Response] = None
    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    finally:
        IN_PROGRESS.labels(method=method, path=path).dec()
        REQUEST_LATENCY.labels(method=method, path=path).observe(time.perf_counter() - start)
        REQUEST_COUNT.labels(method=method, path=path, status=str(status_code)).inc()
        if status_code >= 500:
            REQUEST_ERRORS.labels(method=method, path=path, status=str(status_code)).inc()


def set_app_info(name: str, version: str) -> None:
    APP_INFO.info({"name": name, "version": version})


def metrics_endpoint() -> Response:
    UPTIME_SECONDS.set(time.monotonic() - _START_TIME)
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
