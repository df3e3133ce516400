from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, Response, HTTPException
from fastapi.middleware.cors import CORSMiddleware
import httpx
from redis.asyncio import Redis

from .config import GatewaySettings
from .health import router as health_router
from .logging import get_logger, setup_logging
from .middleware import RateLimitMiddleware, RequestContextMiddleware
from .proxy import forward_request, raw_request_path
from .rate_limit import RateLimiter
from .routing import Router

log = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown logic."""
    settings: GatewaySettings = app.state.settings
    owned_client = False

    #---- Startup ----
    if settings.rate_limit_enabled and getattr(app.state, 'limiter', None) is None:
        redis = Redis.from_url(settings.redis_url)
        await redis.ping()

        limiter = RateLimiter.from_settings(redis, settings)
        await limiter.load()

        app.state.redis = redis
        app.state.limiter = limiter
        log.info("rate_limiter_ready", redis_url=settings.redis_url)

    if getattr(app.state, 'http_client', None) is None:
        app.state.http_client = httpx.AsyncClient(timeout=httpx.Timeout(settings.upstream_timeout))
        owned_client = True

    for rule in app.state.router.rules:
        log.info("route", prefix=rule.prefix, upstream=rule.upstream, rewrite=rule.rewrite)
    log.info("startup", port=settings.port)

    try:
        yield
    finally:
        #---- Shutdown ----
        if owned_client:
            await app.state.http_client.aclose()
            app.state.http_client = None
        if getattr(app.state, 'redis', None) is not None:
            await app.state.redis.aclose()
            app.state.redis = None
            app.state.limiter = None
        log.info("shutdown")


def create_app(settings: GatewaySettings,
               router: Router | None = None,
               http_client: httpx.AsyncClient | None = None) -> FastAPI:
    """
    Build the gateway application.

    `router` defaults to one built from settings.routes. A pre-built
    `http_client` is used as-is and left open on shutdown.
    """
    setup_logging(level=settings.log_level, json_logs=settings.log_json, service_name=settings.service_name)

    app = FastAPI(title="API Gateway", lifespan=lifespan)
    app.state.settings = settings
    app.state.router = router or Router(settings.routes)
    app.state.http_client = http_client
    app.state.limiter = None

    app.add_middleware(RateLimitMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestContextMiddleware)

    app.include_router(health_router)

    @app.api_route(
        path="/{path:path}",
        methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS", "HEAD"],
        include_in_schema=False,
    )
    async def proxy(path: str, request: Request) -> Response:
        match = request.app.state.router.match(raw_request_path(request))
        if match is None:
            raise HTTPException(status_code=404, detail="No upstream route found")

        return await forward_request(request, match, request.app.state.http_client)

    return app
