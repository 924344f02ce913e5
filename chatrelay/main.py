from contextlib import asynccontextmanager

import httpx
import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from chatrelay.api.v1.router import v1_router
from chatrelay.config import settings
from chatrelay.core.database import close_db, init_db
from chatrelay.core.exceptions import RelayError, relay_error_handler
from chatrelay.core.middleware import RequestLoggingMiddleware
from chatrelay.services.gateway import Gateway

_NAME_TO_LEVEL = {
    "debug": 10,
    "info": 20,
    "warning": 30,
    "warn": 30,
    "error": 40,
    "critical": 50,
}

structlog.configure(
    processors=[
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(
        _NAME_TO_LEVEL.get(settings.relay_log_level.lower(), 20)
    ),
)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    await init_db()

    # One shared outbound client; credentials are read once here
    http_client = httpx.AsyncClient(
        timeout=httpx.Timeout(
            connect=settings.relay_http_connect_timeout,
            read=settings.relay_http_read_timeout,
            write=5.0,
            pool=5.0,
        )
    )
    gateway = Gateway.from_settings(settings, http_client)
    app.state.gateway = gateway

    logger.info("chatrelay_starting", providers=gateway.provider_status())
    yield

    await http_client.aclose()
    await close_db()
    logger.info("chatrelay_stopping")


app = FastAPI(
    title="Chat Relay",
    description="Streaming gateway for interchangeable LLM providers",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_exception_handler(RelayError, relay_error_handler)

# Starlette: last-added = outermost
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.relay_cors_origins.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)

app.include_router(v1_router)


@app.get("/")
async def root():
    return {"service": "chatrelay", "version": "0.1.0"}
