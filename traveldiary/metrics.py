from __future__ import annotations

import time
from typing import Callable, Optional

from fastapi import Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, Info, generate_latest

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
IN_PROGRESS = Gauge(
    "http_requests_in_progress",
    "In-progress HTTP requests",
    ["method", "path"],
)
UPTIME_SECONDS = Gauge(
    "app_uptime_seconds",
    "Application uptime in seconds",
)
APP_INFO = Info(
    "app",
    "Application metadata",
)

LOGIN_SUCCESSES = Counter("login_success_total", "Total successful logins")
LOGIN_FAILURES = Counter("login_failure_total", "Total failed logins")
NEW_USERS = Counter("new_users_total", "Total registered users")
FOLLOW_EVENTS = Counter("follow_events_total", "Follow graph changes", ["action"])
POSTS_CREATED = Counter("posts_created_total", "Total posts created")
REACTIONS = Counter("reactions_total", "Like/dislike toggles", ["target", "kind", "result"])
COMMENTS_CREATED = Counter("comments_created_total", "Total comments created", ["kind"])
STORY_VIEWS = Counter("story_views_total", "Story views recorded")
MESSAGES_SENT = Counter("messages_sent_total", "Chat messages sent", ["type"])
MAILS_SENT = Counter("business_mails_sent_total", "Business mails sent", ["kind"])
NOTIFICATIONS_CREATED = Counter("notifications_created_total", "Notification records written", ["type"])
PUSH_DELIVERIES = Counter("push_deliveries_total", "Push delivery attempts", ["outcome"])

_START_TIME = time.monotonic()


def _route_path(request: Request) -> str:
    route = request.scope.get("route")
    if route and getattr(route, "path", None):
        return route.path
    return request.url.path


def record_login(success: bool) -> None:
    (LOGIN_SUCCESSES if success else LOGIN_FAILURES).inc()


def record_push(success: bool) -> None:
    PUSH_DELIVERIES.labels(outcome="success" if success else "failure").inc()


async def metrics_middleware(request: Request, call_next: Callable[[Request], Response]) -> Response:
    path = _route_path(request)
    method = request.method
    start = time.perf_counter()
    IN_PROGRESS.labels(method=method, path=path).inc()
    status_code = 500
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
