from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from chatrelay.dependencies import get_gateway
from chatrelay.schemas.chat import GenerationRequest
from chatrelay.services.frames import encode_frame
from chatrelay.services.gateway import Gateway

router = APIRouter()

STREAM_HEADERS = {"Cache-Control": "no-cache, no-transform"}


@router.post("/api/chat")
async def chat(
    request: GenerationRequest,
    gateway: Gateway = Depends(get_gateway),
):
    """Stream a generation as delimiter-framed records."""
    async def frame_generator():
        async for frame in gateway.stream(request):
            yield encode_frame(frame)

    return StreamingResponse(
        frame_generator(),
        media_type="text/plain; charset=utf-8",
        headers=STREAM_HEADERS,
    )
