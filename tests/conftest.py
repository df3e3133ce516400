# Centralized pytest configuration file (fixtures, hooks, plugins, etc.)
import pytest
from asgi_lifespan import LifespanManager
from fastapi import FastAPI, Request, Response
from httpx import AsyncClient, ASGITransport
from redis.asyncio import Redis

from codex_gateway import app as gateway
from codex_gateway import core
from codex_gateway.config import CoreSettings, GatewaySettings, default_routes
from codex_gateway.rate_limit import RateLimiter
from codex_gateway.testing.fake_limiter import FakeRateLimiter

CORE_URL = 'http://core-server'
AUTH_URL = 'http://auth-service'


#----Settings for tests----
@pytest.fixture
def core_settings() -> CoreSettings:
    return CoreSettings(service_name='core-server', port=3001)


@pytest.fixture
def gateway_settings() -> GatewaySettings:
    return GatewaySettings(
        service_name='api-gateway',
        port=3000,
        routes=default_routes(core_url=CORE_URL, auth_url=AUTH_URL),
    )


@pytest.fixture
async def redis_client():
    """Real Redis client for integration testing"""
    redis = Redis.from_url('redis://localhost:6379', decode_responses=True)

    # Verify Redis is running
    try:
        await redis.ping()
    except Exception:
        await redis.aclose()
        pytest.skip('Redis not available')

    yield redis

    # Cleanup
    await redis.flushdb()
    await redis.aclose()


@pytest.fixture
def make_limiter(redis_client):
    """Factory for real rate limiters bound to the test Redis"""
    async def _make(capacity: int, rate: float) -> RateLimiter:
        limiter = RateLimiter(redis_client, capacity=capacity, rate=rate)
        await limiter.load()
        return limiter

    return _make


@pytest.fixture
def core_app(core_settings: CoreSettings) -> FastAPI:
    return core.create_app(core_settings)


@pytest.fixture
def auth_app() -> FastAPI:
    app = FastAPI()     # mock auth upstream; echoes what it received

    @app.get("/api/auth/fail")
    async def fail():
        return Response(content=b'{"error":"down"}', status_code=503, media_type="application/json")

    @app.head("/api/auth/blob")
    async def blob_head():
        return Response(status_code=200, headers={"content-length": "1234", "content-type": "application/octet-stream"})

    @app.get("/api/auth/stamped")
    async def stamped():
        return Response(content=b"{}", media_type="application/json",
                        headers={"server": "auth-upstream", "date": "Mon, 01 Jan 2024 00:00:00 GMT"})

    @app.api_route("/{path:path}", methods=["GET", "POST", "PUT", "DELETE", "PATCH"])
    async def echo(path: str, request: Request):
        return {
            "method": request.method,
            "path": request.url.path,
            "query": request.url.query,
            "body": (await request.body()).decode(),
            "received_headers": dict(request.headers),
        }

    return app


@pytest.fixture
def upstream_requests() -> list:
    """Every request the gateway sends upstream, in order."""
    return []


@pytest.fixture
async def upstream_client(core_app: FastAPI, auth_app: FastAPI, upstream_requests: list):
    """Outbound client for the gateway; both upstreams served in-process via ASGITransport"""
    async def record(request):
        upstream_requests.append(request)

    client = AsyncClient(
        mounts={
            CORE_URL: ASGITransport(app=core_app),
            AUTH_URL: ASGITransport(app=auth_app),
        },
        event_hooks={'request': [record]},
    )
    yield client
    await client.aclose()


@pytest.fixture
def gateway_app(gateway_settings: GatewaySettings, upstream_client: AsyncClient) -> FastAPI:
    return gateway.create_app(gateway_settings, http_client=upstream_client)


@pytest.fixture
async def gateway_client(gateway_app: FastAPI):
    """Gateway test client with upstreams served in-process"""
    # Lifespan management to handle async testing with the gateway app
    async with LifespanManager(gateway_app):
        gateway_app.state.limiter = FakeRateLimiter()

        # client with transport to gateway app
        gateway_transport = ASGITransport(app=gateway_app)
        async with AsyncClient(
                transport=gateway_transport,
                base_url="http://gateway") as client:
            yield client


@pytest.fixture
async def core_client(core_app: FastAPI):
    async with LifespanManager(core_app):
        async with AsyncClient(
                transport=ASGITransport(app=core_app),
                base_url="http://core") as client:
            yield client
