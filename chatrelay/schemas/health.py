from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str
    providers: dict[str, bool]  # provider -> credential configured
    uptime_seconds: float
