import time
import uuid

import structlog
from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.datastructures import MutableHeaders

from .logging import get_logger

REQUEST_ID_HEADER = "x-request-id"

log = get_logger(__name__)


class RequestContextMiddleware:
    """
    Tags every request with an id (client-supplied or uuid4), binds it into the
    log context, echoes it on the response, and writes one access line.
    """
    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope)
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        status_code = 500
        start = time.perf_counter()

        async def send_with_request_id(message):
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
                MutableHeaders(scope=message)[REQUEST_ID_HEADER] = request_id
            await send(message)

        try:
            await self.app(scope, receive, send_with_request_id)
        finally:
            log.info(
                "request",
                method=scope["method"],
                path=scope["path"],
                status=status_code,
                duration_ms=round((time.perf_counter() - start) * 1000, 2),
            )


class RateLimitMiddleware:
    """
    Token-bucket limiting per client. The limiter is looked up on app.state at
    request time, so a gateway started without one passes everything through.
    """
    def __init__(self, app, exempt_paths: frozenset[str] = frozenset({"/health"})):
        self.app = app
        self.exempt_paths = exempt_paths

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http" or scope["path"] in self.exempt_paths:
            await self.app(scope, receive, send)
            return

        limiter = getattr(scope["app"].state, "limiter", None)
        if limiter is None:
            await self.app(scope, receive, send)
            return

        request = Request(scope)
        client_host = request.client.host if request.client else "unknown"
        client_id = request.headers.get("x-api-key") or client_host

        allowed, remaining = await limiter.allow(client_id)
        if not allowed:
            log.warning("rate_limited", client=client_id)
            response = JSONResponse(
                {"detail": "Rate limit exceeded"},
                status_code=429,
                headers={"x-ratelimit-remaining": "0"},
            )
            await response(scope, receive, send)
            return

        async def send_with_remaining(message):
            if message["type"] == "http.response.start":
                MutableHeaders(scope=message)["x-ratelimit-remaining"] = str(int(remaining))
            await send(message)

        await self.app(scope, receive, send_with_remaining)
