"""
Conversation database model.
"""
import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, String, Index
from sqlalchemy.orm import Mapped, mapped_column

from polychat.core.database import Base


def utcnow() -> datetime:
    """Naive UTC now; SQLite DateTime columns do not keep tzinfo."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


def format_timestamp(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def parse_timestamp(value: str | datetime | None) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


class Conversation(Base):
    """Conversation stored in database."""

    __tablename__ = "conversations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    model: Mapped[str] = mapped_column(String(100), nullable=False)
    # Dual-compare mode
    second_provider: Mapped[str | None] = mapped_column(String(50), nullable=True)
    second_model: Mapped[str | None] = mapped_column(String(100), nullable=True)
    is_dual_mode: Mapped[bool] = mapped_column(Boolean, default=False)
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False)

    __table_args__ = (
        Index("ix_conversations_archived_updated", "is_archived", "updated_at"),
    )

    # Fields callers may change through update_conversation
    EDITABLE_FIELDS = frozenset({
        "title",
        "provider",
        "model",
        "second_provider",
        "second_model",
        "is_dual_mode",
        "is_archived",
    })

    def to_dict(self) -> dict:
        """Convert to dictionary for API response and export."""
        return {
            "id": self.id,
            "title": self.title,
            "createdAt": format_timestamp(self.created_at),
            "updatedAt": format_timestamp(self.updated_at),
            "provider": self.provider,
            "model": self.model,
            "secondProvider": self.second_provider,
            "secondModel": self.second_model,
            "isDualMode": self.is_dual_mode,
            "isArchived": self.is_archived,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Conversation":
        """Build a record from an exported dictionary, keeping its id."""
        created_at = parse_timestamp(data.get("createdAt")) or utcnow()
        return cls(
            id=str(data["id"]),
            title=data.get("title", ""),
            created_at=created_at,
            updated_at=parse_timestamp(data.get("updatedAt")) or created_at,
            provider=data["provider"],
            model=data["model"],
            second_provider=data.get("secondProvider"),
            second_model=data.get("secondModel"),
            is_dual_mode=bool(data.get("isDualMode", False)),
            is_archived=bool(data.get("isArchived", False)),
        )
