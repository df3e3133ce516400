"""Process entry points: `core-server` and `api-gateway`."""
import uvicorn

from . import app as gateway
from . import core
from .config import CoreSettings, GatewaySettings


def _serve(application, settings) -> None:
    # uvicorn exits non-zero if the port cannot be bound
    uvicorn.run(
        application,
        host=settings.host,
        port=settings.port,
        log_config=None,    # logging is configured by the app factory
        access_log=False,
    )


def run_core() -> None:
    settings = CoreSettings.from_env()
    _serve(core.create_app(settings), settings)


def run_gateway() -> None:
    settings = GatewaySettings.from_env()
    _serve(gateway.create_app(settings), settings)
