from os import getenv
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError


class ConfigurationError(Exception):
    """Raised when environment configuration is invalid."""


class RouteRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    prefix: str
    upstream: str
    rewrite: str | None = None  # replacement for the matched prefix; None keeps the path


_ROUTES = TypeAdapter(tuple[RouteRule, ...])


def _env_bool(name: str, default: bool = False) -> bool:
    value = getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_list(name: str, default: str) -> tuple[str, ...]:
    return tuple(item.strip() for item in getenv(name, default).split(",") if item.strip())


def _env_float(name: str) -> float | None:
    value = getenv(name)
    if not value:
        return None
    try:
        return float(value)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be a number, got {value!r}") from exc


class ServiceSettings(BaseModel):
    """Settings shared by both services."""
    model_config = ConfigDict(frozen=True)

    service_name: str
    host: str = "0.0.0.0"
    port: int = Field(ge=0, le=65535)
    log_level: str = "INFO"
    log_json: bool = False
    cors_origins: tuple[str, ...] = ("*",)

    @classmethod
    def _common_env(cls, service_name: str, port: int) -> dict:
        return {
            "service_name": getenv("SERVICE_NAME", service_name),
            "host": getenv("HOST", "0.0.0.0"),
            "port": getenv("PORT", str(port)),
            "log_level": getenv("LOG_LEVEL", "INFO").upper(),
            "log_json": _env_bool("LOG_JSON"),
            "cors_origins": _env_list("CORS_ORIGINS", "*"),
        }


class CoreSettings(ServiceSettings):
    @classmethod
    def from_env(cls) -> "CoreSettings":
        try:
            return cls(**cls._common_env("core-server", 3001))
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid core-server configuration: {exc}") from exc


class GatewaySettings(ServiceSettings):
    routes: tuple[RouteRule, ...] = ()
    upstream_timeout: float | None = None   # None means no timeout

    #---- Rate limiting ----
    rate_limit_enabled: bool = False
    redis_url: str = "redis://localhost:6379"
    rate_limit_capacity: int = Field(default=50, gt=0)
    rate_limit_rate: float = Field(default=1.0, gt=0)

    @classmethod
    def from_env(cls) -> "GatewaySettings":
        try:
            return cls(
                **cls._common_env("api-gateway", 3000),
                routes=load_routes(),
                upstream_timeout=_env_float("UPSTREAM_TIMEOUT"),
                rate_limit_enabled=_env_bool("RATE_LIMIT_ENABLED"),
                redis_url=getenv("REDIS_URL", "redis://localhost:6379"),
                rate_limit_capacity=getenv("RATE_LIMIT_CAPACITY", "50"),
                rate_limit_rate=getenv("RATE_LIMIT_RATE", "1.0"),
            )
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid api-gateway configuration: {exc}") from exc


def default_routes(core_url: str, auth_url: str) -> tuple[RouteRule, ...]:
    return (
        RouteRule(prefix="/api/core", upstream=core_url, rewrite="/api"),
        RouteRule(prefix="/api/auth", upstream=auth_url),
    )


def load_routes() -> tuple[RouteRule, ...]:
    """
    Build the route table from the environment.

    GATEWAY_ROUTES (a JSON list of rules) replaces the default table entirely;
    otherwise the defaults point at CORE_SERVICE_URL and AUTH_SERVICE_URL.
    """
    raw = getenv("GATEWAY_ROUTES")
    if raw:
        try:
            return _ROUTES.validate_json(raw)
        except ValidationError as exc:
            raise ConfigurationError(f"GATEWAY_ROUTES is not a valid route list: {exc}") from exc

    return default_routes(
        core_url=getenv("CORE_SERVICE_URL", "http://localhost:3001"),
        auth_url=getenv("AUTH_SERVICE_URL", "http://localhost:3003"),
    )
