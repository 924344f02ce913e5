import time

from fastapi import APIRouter, Depends

from chatrelay.dependencies import get_gateway
from chatrelay.schemas.health import HealthResponse
from chatrelay.services.gateway import Gateway

router = APIRouter()

_start_time = time.monotonic()


@router.get("/health")
async def health_check(gateway: Gateway = Depends(get_gateway)) -> HealthResponse:
    """Liveness plus which providers have credentials configured."""
    providers = gateway.provider_status()
    return HealthResponse(
        status="ok" if any(providers.values()) else "degraded",
        providers=providers,
        uptime_seconds=round(time.monotonic() - _start_time, 1),
    )
