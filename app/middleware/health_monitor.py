"""Request health monitoring middleware.

Keeps process-local counters behind the ``/health`` endpoint: in-flight
requests, slow requests and 5xx responses. Informational only.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from threading import Lock
from typing import TYPE_CHECKING, Any, ClassVar

from app.config import settings
from app.logging import get_logger

if TYPE_CHECKING:
    from starlette.types import ASGIApp, Message, Receive, Scope, Send

logger = get_logger(__name__)


@dataclass
class HealthStats:
    started_at: float = field(default_factory=time.monotonic)
    active_requests: int = 0
    total_requests: int = 0
    slow_requests: int = 0
    server_errors: int = 0
    last_error: str | None = None
    _lock: Lock = field(default_factory=Lock, repr=False)

    def request_started(self) -> None:
        with self._lock:
            self.active_requests += 1
            self.total_requests += 1

    def request_finished(self, path: str, status_code: int, elapsed: float, slow_threshold: float) -> None:
        with self._lock:
            self.active_requests = max(self.active_requests - 1, 0)
            if elapsed >= slow_threshold:
                self.slow_requests += 1
            if status_code >= 500:
                self.server_errors += 1
                self.last_error = f"{status_code} {path}"

    # request_finished counts the 500; this only keeps the exception name
    def record_exception(self, path: str, exc: BaseException) -> None:
        with self._lock:
            self.last_error = f"{type(exc).__name__} {path}"

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "status": "ok",
                "uptime_seconds": round(time.monotonic() - self.started_at, 3),
                "active_requests": self.active_requests,
                "total_requests": self.total_requests,
                "slow_requests": self.slow_requests,
                "server_errors": self.server_errors,
                "last_error": self.last_error,
            }


class HealthMonitorMiddleware:
    """Pure ASGI middleware feeding ``HealthStats``."""

    EXEMPT_PATHS: ClassVar[set[str]] = {"/health", "/metrics"}

    def __init__(
        self,
        app: ASGIApp,
        stats: HealthStats,
        slow_threshold_seconds: float | None = None,
    ):
        self.app = app
        self.stats = stats
        self.slow_threshold_seconds = (
            settings.slow_request_threshold_seconds if slow_threshold_seconds is None else slow_threshold_seconds
        )

    async def __call__(self, scope: Scope, receive: Receive, send: Send):
        if scope["type"] != "http" or scope.get("path") in self.EXEMPT_PATHS:
            await self.app(scope, receive, send)
            return

        path = scope.get("path", "")
        status_code = 500
        started = time.perf_counter()
        self.stats.request_started()

        async def send_with_status(message: Message):
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
            await send(message)

        failure: Exception | None = None
        try:
            await self.app(scope, receive, send_with_status)
        except Exception as exc:
            failure = exc
            raise
        finally:
            elapsed = time.perf_counter() - started
            self.stats.request_finished(path, status_code, elapsed, self.slow_threshold_seconds)
            if failure is not None:
                self.stats.record_exception(path, failure)
            if elapsed >= self.slow_threshold_seconds:
                logger.warning("slow_request path=%s status=%s elapsed_ms=%s", path, status_code, int(elapsed * 1000))
