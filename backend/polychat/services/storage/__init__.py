"""
Storage module - conversations, messages, branches and saved settings.
"""
from polychat.services.storage.conversations import (
    ConversationStore,
    MessageHit,
    EXPORT_VERSION,
)
from polychat.services.storage.branches import BranchHandle, BranchManager, Thread
from polychat.services.storage.settings import SettingsStore

__all__ = [
    "ConversationStore",
    "MessageHit",
    "EXPORT_VERSION",
    "BranchHandle",
    "BranchManager",
    "Thread",
    "SettingsStore",
]
