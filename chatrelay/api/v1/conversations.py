from fastapi import APIRouter, Query, Response

from chatrelay.core.exceptions import ValidationError
from chatrelay.schemas.conversations import (
    Conversation,
    SaveConversationsRequest,
    SaveConversationsResponse,
)
from chatrelay.services.conversations import ConversationStore

router = APIRouter()

_store = ConversationStore()


@router.get("/api/conversations")
async def list_conversations(
    user_id: str | None = Query(default=None, alias="userId"),
) -> list[Conversation]:
    """Return the stored conversation collection of a user ([] when none)."""
    if not user_id:
        raise ValidationError("userId is required.")
    return await _store.load(user_id)


@router.post("/api/conversations")
async def save_conversations(body: SaveConversationsRequest) -> SaveConversationsResponse:
    """Replace the stored conversation collection of a user."""
    if not body.user_id:
        raise ValidationError("userId is required.")
    if body.conversations is None:
        raise ValidationError("conversations is required.")
    count = await _store.save(body.user_id, body.conversations)
    return SaveConversationsResponse(count=count)


@router.api_route("/api/conversations", methods=["PUT", "PATCH", "DELETE"], include_in_schema=False)
async def conversations_method_not_allowed() -> Response:
    return Response(status_code=405, headers={"Allow": "GET, POST"})
