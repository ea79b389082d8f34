"""
AI Adapter module - Provider abstraction layer.

Supports multiple AI providers:
- OpenAI (and compatible APIs)
- Anthropic Claude
- Google Gemini
"""
from polychat.services.adapter.provider import (
    AnthropicAdapter,
    ChatMessage,
    ChatOptions,
    GeminiAdapter,
    OpenAIAdapter,
    ProviderAdapter,
    ProviderCapabilities,
    TokenUsage,
    to_chat_messages,
)
from polychat.services.adapter.registry import (
    Model,
    ModelCost,
    Provider,
    PROVIDERS,
    get_model,
    get_provider,
    list_providers,
    require_provider,
)

__all__ = [
    "AnthropicAdapter",
    "ChatMessage",
    "ChatOptions",
    "GeminiAdapter",
    "OpenAIAdapter",
    "ProviderAdapter",
    "ProviderCapabilities",
    "TokenUsage",
    "to_chat_messages",
    "Model",
    "ModelCost",
    "Provider",
    "PROVIDERS",
    "get_model",
    "get_provider",
    "list_providers",
    "require_provider",
]
