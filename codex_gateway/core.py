"""Origin service: health probe and a placeholder test route."""
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from .config import CoreSettings
from .health import router as health_router, utc_timestamp
from .logging import get_logger, setup_logging
from .middleware import RequestContextMiddleware

log = get_logger(__name__)


class CoreStatusResponse(BaseModel):
    message: str
    timestamp: str


@asynccontextmanager
async def lifespan(app: FastAPI):
    log.info("startup", port=app.state.settings.port)
    yield
    log.info("shutdown")


def create_app(settings: CoreSettings) -> FastAPI:
    setup_logging(level=settings.log_level, json_logs=settings.log_json, service_name=settings.service_name)

    app = FastAPI(title="Core Server", lifespan=lifespan)
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestContextMiddleware)

    app.include_router(health_router)

    @app.get("/api/test", response_model=CoreStatusResponse)
    async def api_test() -> CoreStatusResponse:
        return CoreStatusResponse(message="Core Server is running!", timestamp=utc_timestamp())

    return app
