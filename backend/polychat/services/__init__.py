"""
Services module - Application business logic layer.

Modules:
- adapter: AI provider abstraction layer and model catalog
- chat: Streaming and non-streamed exchanges with providers
- storage: Conversations, messages, branches and saved settings
- security: Encryption of stored API keys
"""
# Main exports for convenience
from polychat.services.adapter import ChatMessage, ChatOptions, get_provider, list_providers
from polychat.services.chat import ChatClient, ChatStream
from polychat.services.storage import BranchManager, ConversationStore, SettingsStore

__all__ = [
    "ChatMessage",
    "ChatOptions",
    "get_provider",
    "list_providers",
    "ChatClient",
    "ChatStream",
    "BranchManager",
    "ConversationStore",
    "SettingsStore",
]
