"""
Provider registry - static catalog of supported backends and their models.
Read-only after import.
"""
from dataclasses import dataclass
from typing import Optional

from polychat.core.exceptions import ConfigError
from polychat.services.adapter.provider import (
    AnthropicAdapter,
    GeminiAdapter,
    OpenAIAdapter,
    ProviderAdapter,
    ProviderCapabilities,
)


@dataclass(frozen=True)
class ModelCost:
    """USD per 1000 tokens."""
    input: float
    output: float


@dataclass(frozen=True)
class Model:
    id: str
    name: str
    context_window: int
    cost_per_1k: Optional[ModelCost] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "maxTokens": self.context_window,
            "costPer1kTokens": (
                {"input": self.cost_per_1k.input, "output": self.cost_per_1k.output}
                if self.cost_per_1k else None
            ),
        }


@dataclass(frozen=True)
class Provider:
    id: str
    name: str
    base_url: str
    api_key_placeholder: str
    models: tuple[Model, ...]
    adapter: ProviderAdapter

    @property
    def capabilities(self) -> ProviderCapabilities:
        return self.adapter.capabilities

    def get_model(self, model_id: str) -> Optional[Model]:
        return next((m for m in self.models if m.id == model_id), None)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "baseUrl": self.base_url,
            "apiKeyPlaceholder": self.api_key_placeholder,
            "models": [m.to_dict() for m in self.models],
            "supportedFeatures": self.capabilities.to_dict(),
        }


PROVIDERS: tuple[Provider, ...] = (
    Provider(
        id="openai",
        name="OpenAI",
        base_url="https://api.openai.com/v1",
        api_key_placeholder="sk-...",
        models=(
            Model("gpt-4o", "GPT-4o", 128_000, ModelCost(0.005, 0.015)),
            Model("gpt-4o-mini", "GPT-4o Mini", 128_000, ModelCost(0.00015, 0.0006)),
            Model("gpt-4-turbo", "GPT-4 Turbo", 128_000, ModelCost(0.01, 0.03)),
            Model("gpt-3.5-turbo", "GPT-3.5 Turbo", 16_385, ModelCost(0.0005, 0.0015)),
        ),
        adapter=OpenAIAdapter(),
    ),
    Provider(
        id="anthropic",
        name="Anthropic Claude",
        base_url="https://api.anthropic.com/v1",
        api_key_placeholder="sk-ant-...",
        models=(
            Model("claude-3-5-sonnet-20241022", "Claude 3.5 Sonnet", 200_000, ModelCost(0.003, 0.015)),
            Model("claude-3-haiku-20240307", "Claude 3 Haiku", 200_000, ModelCost(0.00025, 0.00125)),
            Model("claude-3-opus-20240229", "Claude 3 Opus", 200_000, ModelCost(0.015, 0.075)),
        ),
        adapter=AnthropicAdapter(),
    ),
    Provider(
        id="google",
        name="Google Gemini",
        base_url="https://generativelanguage.googleapis.com/v1beta",
        api_key_placeholder="AIza...",
        models=(
            Model("gemini-1.5-pro", "Gemini 1.5 Pro", 2_000_000, ModelCost(0.0035, 0.0105)),
            Model("gemini-1.5-flash", "Gemini 1.5 Flash", 1_000_000, ModelCost(0.000075, 0.0003)),
            Model("gemini-pro", "Gemini Pro", 30_720, ModelCost(0.0005, 0.0015)),
        ),
        adapter=GeminiAdapter(),
    ),
)

_PROVIDERS_BY_ID = {provider.id: provider for provider in PROVIDERS}


def list_providers() -> list[Provider]:
    return list(PROVIDERS)


def get_provider(provider_id: str) -> Optional[Provider]:
    return _PROVIDERS_BY_ID.get(provider_id)


def require_provider(provider_id: str) -> Provider:
    """Look up a provider, raising ConfigError for unknown ids."""
    provider = get_provider(provider_id)
    if provider is None:
        known = ", ".join(_PROVIDERS_BY_ID)
        raise ConfigError(f"Unknown provider '{provider_id}'. Known providers: {known}")
    return provider


def get_model(provider_id: str, model_id: str) -> Optional[Model]:
    provider = get_provider(provider_id)
    return provider.get_model(model_id) if provider else None
