"""
Chat module - streaming exchanges with AI providers.
"""
from polychat.services.chat.client import (
    ChatClient,
    ChatResult,
    CompareResult,
    CompareTarget,
)
from polychat.services.chat.stream import ChatStream, LineBuffer, StreamState

__all__ = [
    "ChatClient",
    "ChatResult",
    "CompareResult",
    "CompareTarget",
    "ChatStream",
    "LineBuffer",
    "StreamState",
]
