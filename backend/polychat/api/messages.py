"""
Messages API endpoints.
"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from polychat.api.conversations import ConversationResponse, MessageResponse
from polychat.core.database import get_db
from polychat.core.exceptions import DataError
from polychat.core.logging import get_logger
from polychat.services.storage import ConversationStore

logger = get_logger(__name__)
router = APIRouter()


class UpdateMessageRequest(BaseModel):
    """Partial message update. Only fields that are sent change."""
    content: Optional[str] = None
    tokens: Optional[int] = None
    isStreaming: Optional[bool] = None
    provider: Optional[str] = None
    model: Optional[str] = None
    branchGroup: Optional[str] = None


class MessageHitResponse(BaseModel):
    """A matching message together with its conversation."""
    message: MessageResponse
    conversation: ConversationResponse


_FIELD_NAMES = {
    "content": "content",
    "tokens": "tokens",
    "isStreaming": "is_streaming",
    "provider": "provider",
    "model": "model",
    "branchGroup": "branch_group",
}


@router.get("/search", response_model=list[MessageHitResponse])
async def search_messages(
    q: str = Query(..., min_length=1),
    db: AsyncSession = Depends(get_db),
):
    """
    Search message content across non-archived conversations.
    """
    store = ConversationStore(db)
    hits = await store.search_messages(q)
    return [MessageHitResponse(**hit.to_dict()) for hit in hits]


@router.get("/{message_id}", response_model=MessageResponse)
async def get_message(
    message_id: str,
    db: AsyncSession = Depends(get_db),
):
    store = ConversationStore(db)
    message = await store.get_message(message_id)
    if not message:
        raise HTTPException(status_code=404, detail="Message not found")
    return MessageResponse(**message.to_dict())


@router.patch("/{message_id}", response_model=MessageResponse)
async def update_message(
    message_id: str,
    request: UpdateMessageRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Update a message. Editing content refreshes the conversation.
    """
    changes = {
        name: value
        for name, value in request.model_dump(exclude_unset=True).items()
        if value is not None or name not in ("content", "isStreaming")
    }
    store = ConversationStore(db)
    try:
        message = await store.update_message(
            message_id,
            **{_FIELD_NAMES[name]: value for name, value in changes.items()},
        )
    except DataError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return MessageResponse(**message.to_dict())


@router.delete("/{message_id}")
async def delete_message(
    message_id: str,
    db: AsyncSession = Depends(get_db),
):
    """
    Delete a message and every reply branching from it.
    """
    store = ConversationStore(db)
    try:
        deleted = await store.delete_message(message_id)
    except DataError as e:
        raise HTTPException(status_code=404, detail=str(e))

    logger.info("Message deleted via API", message_id=message_id, deleted=deleted)
    return {"message": "Message deleted", "messagesDeleted": deleted}
