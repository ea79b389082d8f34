"""
Branch Manager - alternate responses as threads hanging off existing messages.

The main thread is every message without a thread_id. A branch starts with a
user message whose thread_id is new and whose parent is the branching point;
its assistant reply points at that user message. All messages of a branch
share branch_group = the branching point id, so siblings grown from the same
point can be listed together.
"""
import uuid
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy import or_, select

from polychat.core.exceptions import DataError
from polychat.core.logging import get_logger
from polychat.models import Message, MessageRole
from polychat.services.storage.conversations import ConversationStore

logger = get_logger(__name__)


@dataclass(frozen=True)
class BranchHandle:
    message_id: str
    thread_id: str

    def to_dict(self) -> dict:
        return {"messageId": self.message_id, "threadId": self.thread_id}


@dataclass
class Thread:
    """One branch, grouped for display."""
    thread_id: str
    parent_message_id: Optional[str]
    provider: Optional[str]
    model: Optional[str]
    messages: list[Message] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "id": self.thread_id,
            "parentMessageId": self.parent_message_id,
            "provider": self.provider,
            "model": self.model,
            "messages": [m.to_dict() for m in self.messages],
        }


class BranchManager:
    """Creates branches and reconstructs thread views over ConversationStore."""

    def __init__(self, store: ConversationStore):
        self.store = store
        self.db = store.db

    async def create_branch_from_message(
        self,
        conversation_id: str,
        parent_message_id: str,
        user_text: str,
        provider: str,
        model: str,
    ) -> BranchHandle:
        """
        Start a new thread at an existing message.

        Args:
            conversation_id: Conversation owning the parent message
            parent_message_id: Branching point
            user_text: Prompt that opens the branch
            provider: Provider the branch will be answered by
            model: Model the branch will be answered by

        Returns:
            BranchHandle with the new user message id and thread id
        """
        thread_id = str(uuid.uuid4())
        message = await self.store.append_message(
            conversation_id,
            MessageRole.USER,
            user_text,
            provider=provider,
            model=model,
            thread_id=thread_id,
            parent_message_id=parent_message_id,
            branch_group=parent_message_id,
        )

        logger.info(
            "Branch created",
            conversation_id=conversation_id,
            parent_message_id=parent_message_id,
            thread_id=thread_id,
            provider=provider,
            model=model,
        )
        return BranchHandle(message_id=message.id, thread_id=thread_id)

    async def add_branch_response(
        self,
        conversation_id: str,
        user_message_id: str,
        thread_id: str,
        response_text: str,
        provider: str,
        model: str,
        tokens: Optional[int] = None,
    ) -> Message:
        """Store the assistant reply to a branch's user message."""
        user_message = await self.store.get_message(user_message_id)
        if user_message is None or user_message.conversation_id != conversation_id:
            raise DataError(
                f"Message {user_message_id} not found in conversation {conversation_id}"
            )
        if user_message.thread_id != thread_id:
            raise DataError(f"Message {user_message_id} is not part of thread {thread_id}")

        return await self.store.append_message(
            conversation_id,
            MessageRole.ASSISTANT,
            response_text,
            tokens=tokens,
            provider=provider,
            model=model,
            thread_id=thread_id,
            parent_message_id=user_message_id,
            branch_group=user_message.branch_group,
        )

    async def get_message_tree(self, conversation_id: str) -> list[Message]:
        """Main-thread messages first, then branch messages, each chronological."""
        messages = await self.store.get_messages(conversation_id)
        main_thread = [m for m in messages if m.is_main_thread]
        branches = [m for m in messages if not m.is_main_thread]
        return main_thread + branches

    async def get_thread_messages(
        self,
        conversation_id: str,
        thread_id: Optional[str] = None,
    ) -> list[Message]:
        """The main thread when thread_id is None, otherwise that thread."""
        stmt = select(Message).where(Message.conversation_id == conversation_id)
        if thread_id is None:
            stmt = stmt.where(Message.thread_id.is_(None))
        else:
            stmt = stmt.where(Message.thread_id == thread_id)

        result = await self.db.execute(stmt.order_by(Message.timestamp, Message.id))
        return list(result.scalars().all())

    async def get_branching_point(self, conversation_id: str, message_id: str) -> list[Message]:
        """
        Alternate continuations hanging off a message.

        Includes direct children, every message of the branches rooted at
        the message, and, for a main-thread message, the main-thread message
        that originally followed it.
        """
        anchor = await self.store.get_message(message_id)
        if anchor is None or anchor.conversation_id != conversation_id:
            raise DataError(f"Message {message_id} not found in conversation {conversation_id}")

        result = await self.db.execute(
            select(Message)
            .where(
                Message.conversation_id == conversation_id,
                or_(
                    Message.parent_message_id == message_id,
                    Message.branch_group == message_id,
                ),
            )
            .order_by(Message.timestamp, Message.id)
        )
        continuations = list(result.scalars().all())

        if anchor.is_main_thread:
            following = await self.db.execute(
                select(Message)
                .where(
                    Message.conversation_id == conversation_id,
                    Message.thread_id.is_(None),
                    Message.timestamp > anchor.timestamp,
                )
                .order_by(Message.timestamp, Message.id)
                .limit(1)
            )
            original = following.scalar_one_or_none()
            if original is not None and all(m.id != original.id for m in continuations):
                continuations.append(original)
                continuations.sort(key=lambda m: (m.timestamp, m.id))

        return continuations

    async def list_threads(self, conversation_id: str) -> list[Thread]:
        """Branch messages grouped by thread, in order of each thread's start."""
        threads: dict[str, Thread] = {}
        for message in await self.store.get_messages(conversation_id):
            if message.is_main_thread:
                continue
            thread = threads.get(message.thread_id)
            if thread is None:
                thread = Thread(
                    thread_id=message.thread_id,
                    parent_message_id=message.parent_message_id,
                    provider=message.provider,
                    model=message.model,
                )
                threads[message.thread_id] = thread
            thread.messages.append(message)
        return list(threads.values())
