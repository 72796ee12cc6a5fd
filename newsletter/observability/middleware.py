from __future__ import annotations

import uuid
from time import perf_counter
from typing import Any, Callable

import structlog
from starlette.datastructures import MutableHeaders

from newsletter.observability.spans import Span


logger = structlog.get_logger("newsletter.access")


class RequestSpanMiddleware:
    """Opens a root span carrying a fresh request_id around every HTTP request."""

    def __init__(self, app: Callable[..., Any]) -> None:
        self.app = app

    async def __call__(self, scope: dict[str, Any], receive: Callable[..., Any], send: Callable[..., Any]) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        request_id = str(uuid.uuid4())
        span = Span(
            "http request",
            parent=None,
            request_id=request_id,
            http_method=scope.get("method"),
            http_route=scope.get("path"),
        )

        start = perf_counter()
        status_code: int = 500

        async def send_wrapper(message: dict[str, Any]) -> None:
            nonlocal status_code

            if message.get("type") == "http.response.start":
                status_code = int(message.get("status", 500))
                headers = MutableHeaders(scope=message)
                headers["X-Request-ID"] = request_id

            await send(message)

        try:
            await span.instrument(self.app(scope, receive, send_wrapper))
        finally:
            elapsed_ms = (perf_counter() - start) * 1000.0
            span.record(http_status_code=status_code)
            with span:
                logger.info("http_request", status_code=status_code, elapsed_ms=round(elapsed_ms, 2))
            span.close()
