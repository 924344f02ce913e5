from fastapi import APIRouter

from chatrelay.api.v1.chat import router as chat_router
from chatrelay.api.v1.conversations import router as conversations_router
from chatrelay.api.v1.health import router as health_router

v1_router = APIRouter()

v1_router.include_router(chat_router, tags=["Chat"])
v1_router.include_router(conversations_router, tags=["Conversations"])
v1_router.include_router(health_router, tags=["Health"])
