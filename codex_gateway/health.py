from datetime import datetime, timezone
from typing import Literal

from fastapi import APIRouter, Request
from pydantic import BaseModel


def utc_timestamp() -> str:
    """Current UTC time as ISO-8601 with millisecond precision, e.g. 2024-05-01T12:00:00.000Z"""
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class HealthResponse(BaseModel):
    status: Literal["healthy"] = "healthy"
    timestamp: str
    service: str
    port: int


router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health(request: Request) -> HealthResponse:
    """Liveness probe. Reports the service identity from app settings."""
    settings = request.app.state.settings
    return HealthResponse(
        timestamp=utc_timestamp(),
        service=settings.service_name,
        port=settings.port,
    )
