"""
Conversation Store - Database operations for conversations and messages.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import FlushError

from polychat.core.exceptions import DataError
from polychat.core.logging import get_logger
from polychat.models import ChatSettings, Conversation, Message, MessageRole
from polychat.models.conversation import utcnow

logger = get_logger(__name__)

EXPORT_VERSION = 1


@dataclass
class MessageHit:
    """A message matching a search, with its conversation."""
    message: Message
    conversation: Conversation

    def to_dict(self) -> dict:
        return {
            "message": self.message.to_dict(),
            "conversation": self.conversation.to_dict(),
        }


def _next_timestamp(current: Optional[datetime]) -> datetime:
    """Now, or just after `current` if the clock has not moved past it."""
    now = utcnow()
    if current is not None and now <= current:
        return current + timedelta(microseconds=1)
    return now


class ConversationStore:
    """
    Database store for conversations and messages.

    One store wraps one AsyncSession; concurrent tasks each use their own.
    Every public write commits its own transaction.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    # ========================================
    # Conversations
    # ========================================

    async def create_conversation(
        self,
        title: str,
        provider: str,
        model: str,
        second_provider: Optional[str] = None,
        second_model: Optional[str] = None,
        is_dual_mode: bool = False,
    ) -> Conversation:
        """Create an empty conversation. created_at and updated_at are equal."""
        now = utcnow()
        conversation = Conversation(
            title=title,
            provider=provider,
            model=model,
            second_provider=second_provider,
            second_model=second_model,
            is_dual_mode=is_dual_mode,
            is_archived=False,
            created_at=now,
            updated_at=now,
        )
        self.db.add(conversation)
        await self.db.commit()
        await self.db.refresh(conversation)

        logger.info(
            "Conversation created",
            conversation_id=conversation.id,
            provider=provider,
            model=model,
        )
        return conversation

    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        return await self.db.get(Conversation, conversation_id, populate_existing=True)

    async def _require_conversation(self, conversation_id: str) -> Conversation:
        conversation = await self.get_conversation(conversation_id)
        if conversation is None:
            raise DataError(f"Conversation not found: {conversation_id}")
        return conversation

    async def list_conversations(self, include_archived: bool = False) -> list[Conversation]:
        """Conversations ordered by most recently updated first."""
        stmt = select(Conversation)
        if not include_archived:
            stmt = stmt.where(Conversation.is_archived.is_(False))
        stmt = stmt.order_by(Conversation.updated_at.desc())

        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def _touch(self, conversation_id: str, timestamp: datetime) -> None:
        """Move updated_at forward to timestamp; never backward."""
        await self.db.execute(
            update(Conversation)
            .where(
                Conversation.id == conversation_id,
                Conversation.updated_at < timestamp,
            )
            .values(updated_at=timestamp)
        )

    async def update_conversation(self, conversation_id: str, **fields: Any) -> Conversation:
        """
        Update conversation fields and refresh updated_at.

        Raises:
            ValueError: unknown or read-only field
            DataError: conversation does not exist
        """
        unknown = set(fields) - Conversation.EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update conversation fields: {sorted(unknown)}")

        conversation = await self._require_conversation(conversation_id)
        for name, value in fields.items():
            setattr(conversation, name, value)
        await self.db.flush()
        await self._touch(conversation_id, _next_timestamp(conversation.updated_at))
        await self.db.commit()
        await self.db.refresh(conversation)

        logger.debug(
            "Conversation updated",
            conversation_id=conversation_id,
            fields=sorted(fields),
        )
        return conversation

    async def archive_conversation(self, conversation_id: str) -> Conversation:
        return await self.update_conversation(conversation_id, is_archived=True)

    async def delete_conversation(self, conversation_id: str) -> int:
        """
        Delete a conversation and all of its messages atomically.

        Returns:
            Number of messages deleted
        """
        await self._require_conversation(conversation_id)
        try:
            result = await self.db.execute(
                delete(Message).where(Message.conversation_id == conversation_id)
            )
            await self.db.execute(
                delete(Conversation).where(Conversation.id == conversation_id)
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "Conversation deleted",
            conversation_id=conversation_id,
            messages_deleted=result.rowcount,
        )
        return result.rowcount

    # ========================================
    # Messages
    # ========================================

    async def append_message(
        self,
        conversation_id: str,
        role: str | MessageRole,
        content: str,
        tokens: Optional[int] = None,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        thread_id: Optional[str] = None,
        parent_message_id: Optional[str] = None,
        branch_group: Optional[str] = None,
        is_streaming: bool = False,
    ) -> Message:
        """
        Append a message and refresh the conversation's updated_at.

        The message timestamp is strictly later than the conversation's
        previous updated_at, so messages keep their append order.

        Raises:
            ValueError: invalid role
            DataError: missing conversation, or a parent outside it
        """
        role_value = MessageRole(role).value
        conversation = await self._require_conversation(conversation_id)

        if thread_id is not None and parent_message_id is None:
            raise DataError("Thread messages must reference a parent message")
        if parent_message_id is not None:
            parent = await self.db.get(Message, parent_message_id)
            if parent is None or parent.conversation_id != conversation_id:
                raise DataError(
                    f"Parent message {parent_message_id} not found in conversation {conversation_id}"
                )

        timestamp = _next_timestamp(conversation.updated_at)
        message = Message(
            conversation_id=conversation_id,
            role=role_value,
            content=content,
            timestamp=timestamp,
            tokens=tokens,
            is_streaming=is_streaming,
            provider=provider,
            model=model,
            thread_id=thread_id,
            parent_message_id=parent_message_id,
            branch_group=branch_group,
        )
        self.db.add(message)

        try:
            await self.db.flush()
            await self._touch(conversation_id, timestamp)
            await self.db.commit()
        except IntegrityError as e:
            # Conversation was deleted between the lookup and the insert
            await self.db.rollback()
            raise DataError(f"Conversation not found: {conversation_id}") from e

        logger.debug(
            "Message appended",
            conversation_id=conversation_id,
            message_id=message.id,
            role=role_value,
            thread_id=thread_id,
        )
        return message

    async def get_message(self, message_id: str) -> Optional[Message]:
        return await self.db.get(Message, message_id, populate_existing=True)

    async def get_messages(self, conversation_id: str) -> list[Message]:
        """All messages of a conversation in chronological order."""
        result = await self.db.execute(
            select(Message)
            .where(Message.conversation_id == conversation_id)
            .order_by(Message.timestamp, Message.id)
        )
        return list(result.scalars().all())

    async def update_message(self, message_id: str, **fields: Any) -> Message:
        """
        Update message fields. Content edits refresh the conversation.

        Raises:
            ValueError: unknown or read-only field
            DataError: message does not exist
        """
        unknown = set(fields) - Message.EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update message fields: {sorted(unknown)}")

        message = await self.get_message(message_id)
        if message is None:
            raise DataError(f"Message not found: {message_id}")

        for name, value in fields.items():
            setattr(message, name, value)
        await self.db.flush()

        if "content" in fields:
            conversation = await self._require_conversation(message.conversation_id)
            await self._touch(conversation.id, _next_timestamp(conversation.updated_at))

        await self.db.commit()
        return message

    async def delete_message(self, message_id: str) -> int:
        """
        Delete a message together with every message descending from it,
        so no parent_message_id is left dangling.

        Returns:
            Number of messages deleted
        """
        message = await self.get_message(message_id)
        if message is None:
            raise DataError(f"Message not found: {message_id}")

        result = await self.db.execute(
            select(Message.id, Message.parent_message_id)
            .where(Message.conversation_id == message.conversation_id)
        )
        children: dict[str, list[str]] = {}
        for child_id, parent_id in result.all():
            if parent_id is not None:
                children.setdefault(parent_id, []).append(child_id)

        doomed = {message_id}
        frontier = [message_id]
        while frontier:
            current = frontier.pop()
            for child_id in children.get(current, []):
                if child_id not in doomed:
                    doomed.add(child_id)
                    frontier.append(child_id)

        try:
            await self.db.execute(delete(Message).where(Message.id.in_(doomed)))
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.debug("Message deleted", message_id=message_id, cascade_count=len(doomed) - 1)
        return len(doomed)

    # ========================================
    # Search
    # ========================================

    async def search_conversations(self, query: str) -> list[Conversation]:
        """Case-insensitive substring search over non-archived titles."""
        result = await self.db.execute(
            select(Conversation)
            .where(
                Conversation.is_archived.is_(False),
                func.lower(Conversation.title).contains(query.lower(), autoescape=True),
            )
            .order_by(Conversation.updated_at.desc())
        )
        return list(result.scalars().all())

    async def search_messages(self, query: str) -> list[MessageHit]:
        """Case-insensitive substring search over message content."""
        result = await self.db.execute(
            select(Message, Conversation)
            .join(Conversation, Message.conversation_id == Conversation.id)
            .where(
                Conversation.is_archived.is_(False),
                func.lower(Message.content).contains(query.lower(), autoescape=True),
            )
            .order_by(Message.timestamp)
        )
        return [MessageHit(message=m, conversation=c) for m, c in result.all()]

    # ========================================
    # Export / Import
    # ========================================

    async def export_data(self) -> dict:
        """Everything in the store, as a versioned JSON-ready payload."""
        conversations = await self.db.execute(
            select(Conversation)
            .order_by(Conversation.created_at)
            .execution_options(populate_existing=True)
        )
        messages = await self.db.execute(
            select(Message)
            .order_by(Message.timestamp, Message.id)
            .execution_options(populate_existing=True)
        )
        chat_settings = await self.db.execute(select(ChatSettings))

        payload = {
            "conversations": [c.to_dict() for c in conversations.scalars().all()],
            "messages": [m.to_dict() for m in messages.scalars().all()],
            "settings": [s.to_dict() for s in chat_settings.scalars().all()],
            "exportedAt": datetime.now(timezone.utc).isoformat(),
            "version": EXPORT_VERSION,
        }

        logger.info(
            "Data exported",
            conversations=len(payload["conversations"]),
            messages=len(payload["messages"]),
        )
        return payload

    async def import_data(self, payload: dict) -> dict:
        """
        Insert exported records verbatim, preserving ids, in one transaction.

        Raises:
            ValueError: unsupported payload version or malformed records
            DataError: records clash with existing ids
        """
        version = payload.get("version", EXPORT_VERSION)
        if not isinstance(version, int) or version > EXPORT_VERSION:
            raise ValueError(f"Unsupported export version: {version!r}")

        try:
            conversations = [Conversation.from_dict(c) for c in payload.get("conversations", [])]
            messages = [Message.from_dict(m) for m in payload.get("messages", [])]
            chat_settings = [ChatSettings.from_dict(s) for s in payload.get("settings", [])]
        except (KeyError, TypeError) as e:
            raise ValueError(f"Malformed import payload: {e!r}") from e

        try:
            self.db.add_all(conversations)
            await self.db.flush()
            self.db.add_all(messages)
            self.db.add_all(chat_settings)
            await self.db.commit()
        except (IntegrityError, FlushError) as e:
            await self.db.rollback()
            raise DataError("Import conflicts with existing records") from e

        counts = {
            "conversations": len(conversations),
            "messages": len(messages),
            "settings": len(chat_settings),
        }
        logger.info("Data imported", **counts)
        return counts

    async def clear_all(self) -> None:
        """Remove every conversation, message and saved setting."""
        try:
            await self.db.execute(delete(Message))
            await self.db.execute(delete(Conversation))
            await self.db.execute(delete(ChatSettings))
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        logger.info("All chat data cleared")
