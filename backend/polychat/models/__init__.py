from polychat.models.conversation import Conversation
from polychat.models.message import Message, MessageRole
from polychat.models.chat_settings import ChatSettings

__all__ = [
    "Conversation",
    "Message",
    "MessageRole",
    "ChatSettings",
]
