"""
Conversations API endpoints.
"""
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from polychat.core.database import get_db
from polychat.core.exceptions import DataError
from polychat.core.logging import get_logger
from polychat.models import Conversation, Message
from polychat.services.adapter import get_provider
from polychat.services.storage import BranchManager, ConversationStore

logger = get_logger(__name__)
router = APIRouter()


# ========================================
# Request/Response Schemas
# ========================================

class CreateConversationRequest(BaseModel):
    """Request to create a new conversation."""
    title: str = Field(..., min_length=1, description="Conversation title")
    provider: str = Field(..., description="Provider id")
    model: str = Field(..., description="Model id")
    secondProvider: Optional[str] = Field(None, description="Second provider for dual mode")
    secondModel: Optional[str] = Field(None, description="Second model for dual mode")
    isDualMode: bool = False


class UpdateConversationRequest(BaseModel):
    """Partial conversation update. Only fields that are sent change."""
    title: Optional[str] = None
    provider: Optional[str] = None
    model: Optional[str] = None
    secondProvider: Optional[str] = None
    secondModel: Optional[str] = None
    isDualMode: Optional[bool] = None
    isArchived: Optional[bool] = None


class AppendMessageRequest(BaseModel):
    """Request to append a message to a conversation."""
    role: Literal["user", "assistant", "system"]
    content: str
    tokens: Optional[int] = None
    provider: Optional[str] = None
    model: Optional[str] = None
    threadId: Optional[str] = None
    parentMessageId: Optional[str] = None
    branchGroup: Optional[str] = None
    isStreaming: bool = False


class CreateBranchRequest(BaseModel):
    """Request to open a new thread at an existing message."""
    parentMessageId: str = Field(..., description="Message the branch grows from")
    content: str = Field(..., description="User prompt that opens the branch")
    provider: str
    model: str


class BranchResponseRequest(BaseModel):
    """Assistant reply to the user message of a branch."""
    userMessageId: str
    content: str
    provider: str
    model: str
    tokens: Optional[int] = None


class ConversationResponse(BaseModel):
    """Conversation response."""
    id: str
    title: str
    createdAt: Optional[str]
    updatedAt: Optional[str]
    provider: str
    model: str
    secondProvider: Optional[str] = None
    secondModel: Optional[str] = None
    isDualMode: bool = False
    isArchived: bool = False


class MessageResponse(BaseModel):
    """Message response."""
    id: str
    conversationId: str
    role: str
    content: str
    timestamp: Optional[str]
    tokens: Optional[int] = None
    isStreaming: bool = False
    provider: Optional[str] = None
    model: Optional[str] = None
    threadId: Optional[str] = None
    parentMessageId: Optional[str] = None
    branchGroup: Optional[str] = None


class BranchResponse(BaseModel):
    """Handle of a newly created branch."""
    messageId: str
    threadId: str


class ThreadResponse(BaseModel):
    """One branch with its messages."""
    id: str
    parentMessageId: Optional[str]
    provider: Optional[str]
    model: Optional[str]
    messages: list[MessageResponse]


_FIELD_NAMES = {
    "title": "title",
    "provider": "provider",
    "model": "model",
    "secondProvider": "second_provider",
    "secondModel": "second_model",
    "isDualMode": "is_dual_mode",
    "isArchived": "is_archived",
}


def _conversation_response(conversation: Conversation) -> ConversationResponse:
    return ConversationResponse(**conversation.to_dict())


def _message_response(message: Message) -> MessageResponse:
    return MessageResponse(**message.to_dict())


def _check_provider(provider_id: Optional[str]) -> None:
    if provider_id is not None and get_provider(provider_id) is None:
        raise HTTPException(status_code=422, detail=f"Unknown provider: {provider_id}")


# ========================================
# API Endpoints
# ========================================

@router.post("", response_model=ConversationResponse)
async def create_conversation(
    request: CreateConversationRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Create a new, empty conversation.
    """
    _check_provider(request.provider)
    _check_provider(request.secondProvider)

    store = ConversationStore(db)
    conversation = await store.create_conversation(
        title=request.title,
        provider=request.provider,
        model=request.model,
        second_provider=request.secondProvider,
        second_model=request.secondModel,
        is_dual_mode=request.isDualMode,
    )
    return _conversation_response(conversation)


@router.get("", response_model=list[ConversationResponse])
async def list_conversations(
    includeArchived: bool = Query(False),
    db: AsyncSession = Depends(get_db),
):
    """
    List conversations, most recently updated first.
    """
    store = ConversationStore(db)
    conversations = await store.list_conversations(include_archived=includeArchived)
    return [_conversation_response(c) for c in conversations]


@router.get("/search", response_model=list[ConversationResponse])
async def search_conversations(
    q: str = Query(..., min_length=1),
    db: AsyncSession = Depends(get_db),
):
    """
    Search conversation titles (case-insensitive).
    """
    store = ConversationStore(db)
    return [_conversation_response(c) for c in await store.search_conversations(q)]


@router.get("/{conversation_id}", response_model=ConversationResponse)
async def get_conversation(
    conversation_id: str,
    db: AsyncSession = Depends(get_db),
):
    store = ConversationStore(db)
    conversation = await store.get_conversation(conversation_id)
    if not conversation:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return _conversation_response(conversation)


@router.patch("/{conversation_id}", response_model=ConversationResponse)
async def update_conversation(
    conversation_id: str,
    request: UpdateConversationRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Update conversation fields. updatedAt is refreshed.
    """
    changes = {
        name: value
        for name, value in request.model_dump(exclude_unset=True).items()
        if value is not None or name in ("secondProvider", "secondModel")
    }
    _check_provider(changes.get("provider"))
    _check_provider(changes.get("secondProvider"))

    store = ConversationStore(db)
    try:
        conversation = await store.update_conversation(
            conversation_id,
            **{_FIELD_NAMES[name]: value for name, value in changes.items()},
        )
    except DataError as e:
        raise HTTPException(status_code=404, detail=str(e))

    logger.info("Conversation updated via API", conversation_id=conversation_id)
    return _conversation_response(conversation)


@router.post("/{conversation_id}/archive", response_model=ConversationResponse)
async def archive_conversation(
    conversation_id: str,
    db: AsyncSession = Depends(get_db),
):
    store = ConversationStore(db)
    try:
        conversation = await store.archive_conversation(conversation_id)
    except DataError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return _conversation_response(conversation)


@router.delete("/{conversation_id}")
async def delete_conversation(
    conversation_id: str,
    db: AsyncSession = Depends(get_db),
):
    """
    Delete a conversation and all of its messages.
    """
    store = ConversationStore(db)
    try:
        deleted = await store.delete_conversation(conversation_id)
    except DataError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return {"message": "Conversation deleted", "messagesDeleted": deleted}


# ========================================
# Messages
# ========================================

@router.get("/{conversation_id}/messages", response_model=list[MessageResponse])
async def list_messages(
    conversation_id: str,
    mainThreadOnly: bool = Query(False),
    db: AsyncSession = Depends(get_db),
):
    """
    Messages in chronological order; optionally only the main thread.
    """
    store = ConversationStore(db)
    if not await store.get_conversation(conversation_id):
        raise HTTPException(status_code=404, detail="Conversation not found")

    if mainThreadOnly:
        messages = await BranchManager(store).get_thread_messages(conversation_id)
    else:
        messages = await store.get_messages(conversation_id)
    return [_message_response(m) for m in messages]


@router.post("/{conversation_id}/messages", response_model=MessageResponse)
async def append_message(
    conversation_id: str,
    request: AppendMessageRequest,
    db: AsyncSession = Depends(get_db),
):
    store = ConversationStore(db)
    try:
        message = await store.append_message(
            conversation_id,
            request.role,
            request.content,
            tokens=request.tokens,
            provider=request.provider,
            model=request.model,
            thread_id=request.threadId,
            parent_message_id=request.parentMessageId,
            branch_group=request.branchGroup,
            is_streaming=request.isStreaming,
        )
    except DataError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return _message_response(message)


@router.get("/{conversation_id}/tree", response_model=list[MessageResponse])
async def get_message_tree(
    conversation_id: str,
    db: AsyncSession = Depends(get_db),
):
    """
    Main-thread messages followed by branch messages.
    """
    store = ConversationStore(db)
    if not await store.get_conversation(conversation_id):
        raise HTTPException(status_code=404, detail="Conversation not found")
    messages = await BranchManager(store).get_message_tree(conversation_id)
    return [_message_response(m) for m in messages]


# ========================================
# Branches
# ========================================

@router.get("/{conversation_id}/threads", response_model=list[ThreadResponse])
async def list_threads(
    conversation_id: str,
    db: AsyncSession = Depends(get_db),
):
    store = ConversationStore(db)
    if not await store.get_conversation(conversation_id):
        raise HTTPException(status_code=404, detail="Conversation not found")
    threads = await BranchManager(store).list_threads(conversation_id)
    return [ThreadResponse(**t.to_dict()) for t in threads]


@router.get(
    "/{conversation_id}/threads/{thread_id}/messages",
    response_model=list[MessageResponse],
)
async def get_thread_messages(
    conversation_id: str,
    thread_id: str,
    db: AsyncSession = Depends(get_db),
):
    store = ConversationStore(db)
    messages = await BranchManager(store).get_thread_messages(conversation_id, thread_id)
    if not messages:
        raise HTTPException(status_code=404, detail="Thread not found")
    return [_message_response(m) for m in messages]


@router.get(
    "/{conversation_id}/messages/{message_id}/branches",
    response_model=list[MessageResponse],
)
async def get_branching_point(
    conversation_id: str,
    message_id: str,
    db: AsyncSession = Depends(get_db),
):
    """
    Alternate continuations available at a message.
    """
    manager = BranchManager(ConversationStore(db))
    try:
        messages = await manager.get_branching_point(conversation_id, message_id)
    except DataError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return [_message_response(m) for m in messages]


@router.post("/{conversation_id}/branches", response_model=BranchResponse)
async def create_branch(
    conversation_id: str,
    request: CreateBranchRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Start a new thread at an existing message.
    """
    _check_provider(request.provider)

    manager = BranchManager(ConversationStore(db))
    try:
        handle = await manager.create_branch_from_message(
            conversation_id,
            request.parentMessageId,
            request.content,
            request.provider,
            request.model,
        )
    except DataError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return BranchResponse(**handle.to_dict())


@router.post(
    "/{conversation_id}/branches/{thread_id}/responses",
    response_model=MessageResponse,
)
async def add_branch_response(
    conversation_id: str,
    thread_id: str,
    request: BranchResponseRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Store the assistant reply for a branch.
    """
    manager = BranchManager(ConversationStore(db))
    try:
        message = await manager.add_branch_response(
            conversation_id,
            request.userMessageId,
            thread_id,
            request.content,
            request.provider,
            request.model,
            tokens=request.tokens,
        )
    except DataError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return _message_response(message)
