"""
Message database model.

A message without thread_id belongs to the conversation's main thread.
Branch messages carry a thread_id and point at the message they grew from.
"""
from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from polychat.core.database import Base
from polychat.models.conversation import (
    format_timestamp,
    new_id,
    parse_timestamp,
    utcnow,
)


class MessageRole(str, Enum):
    """Roles understood by every provider adapter."""
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class Message(Base):
    """Chat message stored in database."""

    __tablename__ = "messages"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    conversation_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    timestamp: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    tokens: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_streaming: Mapped[bool] = mapped_column(Boolean, default=False)
    provider: Mapped[str | None] = mapped_column(String(50), nullable=True)
    model: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Branching
    thread_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    parent_message_id: Mapped[str | None] = mapped_column(
        String(36), nullable=True, index=True
    )
    branch_group: Mapped[str | None] = mapped_column(String(36), nullable=True)

    __table_args__ = (
        Index("ix_messages_conversation_timestamp", "conversation_id", "timestamp"),
    )

    EDITABLE_FIELDS = frozenset({
        "content",
        "tokens",
        "is_streaming",
        "provider",
        "model",
        "branch_group",
    })

    @property
    def is_main_thread(self) -> bool:
        return self.thread_id is None

    def to_dict(self) -> dict:
        """Convert to dictionary for API response and export."""
        return {
            "id": self.id,
            "conversationId": self.conversation_id,
            "role": self.role,
            "content": self.content,
            "timestamp": format_timestamp(self.timestamp),
            "tokens": self.tokens,
            "isStreaming": self.is_streaming,
            "provider": self.provider,
            "model": self.model,
            "threadId": self.thread_id,
            "parentMessageId": self.parent_message_id,
            "branchGroup": self.branch_group,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Message":
        """Build a record from an exported dictionary, keeping its id."""
        return cls(
            id=str(data["id"]),
            conversation_id=str(data["conversationId"]),
            role=MessageRole(data["role"]).value,
            content=data.get("content", ""),
            timestamp=parse_timestamp(data.get("timestamp")) or utcnow(),
            tokens=data.get("tokens"),
            is_streaming=bool(data.get("isStreaming", False)),
            provider=data.get("provider"),
            model=data.get("model"),
            thread_id=data.get("threadId"),
            parent_message_id=(
                str(data["parentMessageId"]) if data.get("parentMessageId") is not None else None
            ),
            branch_group=data.get("branchGroup"),
        )
