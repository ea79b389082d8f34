"""
AI Provider Adapter - Abstract layer for multiple LLM providers.
Supports OpenAI, Anthropic Claude and Google Gemini.

Adapters are pure translators: they build provider-native requests and
decode provider-native responses. The HTTP exchange itself lives in
polychat.services.chat.client.
"""
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Iterable, Optional

from polychat.core.config import settings
from polychat.core.exceptions import ProtocolError
from polychat.core.logging import get_logger

logger = get_logger(__name__)


SSE_DATA_PREFIX = "data:"
END_OF_STREAM = "[DONE]"

VALID_ROLES = ("user", "assistant", "system")


class ChatMessage:
    """Chat message structure."""

    def __init__(self, role: str, content: str):
        if role not in VALID_ROLES:
            raise ValueError(f"Unsupported message role: {role!r}")
        self.role = role
        self.content = content

    def to_dict(self) -> dict:
        return {"role": self.role, "content": self.content}

    @classmethod
    def coerce(cls, item: Any) -> "ChatMessage":
        """Accept ChatMessage, {role, content} dicts or stored Message rows."""
        if isinstance(item, ChatMessage):
            return item
        if isinstance(item, dict):
            return cls(item["role"], item.get("content", ""))
        return cls(item.role, item.content)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ChatMessage):
            return NotImplemented
        return self.role == other.role and self.content == other.content

    def __repr__(self) -> str:
        return f"ChatMessage(role={self.role!r}, content={self.content!r})"


def to_chat_messages(items: Iterable[Any]) -> list[ChatMessage]:
    return [ChatMessage.coerce(item) for item in items]


@dataclass
class ChatOptions:
    """Optional request parameters."""
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    system_prompt: Optional[str] = None


@dataclass(frozen=True)
class ProviderCapabilities:
    """Which request options a provider accepts."""
    supports_streaming: bool = True
    supports_system_messages: bool = True
    supports_max_tokens: bool = True
    supports_temperature: bool = True

    def to_dict(self) -> dict:
        return {
            "streaming": self.supports_streaming,
            "systemMessages": self.supports_system_messages,
            "maxTokens": self.supports_max_tokens,
            "temperature": self.supports_temperature,
        }


@dataclass
class TokenUsage:
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None


class ProviderAdapter(ABC):
    """Abstract base class for AI provider adapters."""

    provider_name = "unknown"
    capabilities = ProviderCapabilities()

    @abstractmethod
    def auth_headers(self, api_key: str) -> dict[str, str]:
        """Headers carrying the credential (may carry none)."""

    def query_params(self, api_key: str, stream: bool = True) -> dict[str, str]:
        """Query parameters for the request URL."""
        return {}

    @abstractmethod
    def endpoint(self, base_url: str, model_id: str, stream: bool = True) -> str:
        """Full request URL."""

    @abstractmethod
    def format_request(
        self,
        messages: list[ChatMessage],
        model_id: str,
        options: Optional[ChatOptions] = None,
        stream: bool = True,
    ) -> dict:
        """Map uniform messages into the provider's request body."""

    @abstractmethod
    def parse_complete(self, body: dict) -> str:
        """Extract the final text from a non-streamed response."""

    def parse_usage(self, body: dict) -> TokenUsage:
        return TokenUsage()

    @abstractmethod
    def _extract_fragment(self, event: dict) -> Optional[str]:
        """Pull the text token out of one decoded stream event."""

    def parse_stream_fragment(self, line: str) -> Optional[str]:
        """
        Decode one line of a streamed response.

        Returns the text token, or None for blank lines, non-data lines,
        the end-of-stream sentinel and anything that fails to decode.
        Undecodable lines are protocol noise and never abort the stream.
        """
        payload = self._data_payload(line)
        if not payload or payload == END_OF_STREAM:
            return None

        try:
            event = self._decode(payload)
            try:
                fragment = self._extract_fragment(event)
            except (KeyError, IndexError, TypeError, AttributeError) as e:
                raise ProtocolError(f"Unexpected event shape: {e!r}") from e
        except ProtocolError as e:
            logger.debug(
                "Skipping undecodable stream line",
                provider=self.provider_name,
                error=str(e),
            )
            return None

        if not isinstance(fragment, str) or not fragment:
            return None
        return fragment

    def is_end_of_stream(self, line: str) -> bool:
        """True when the line is the provider's end-of-stream sentinel."""
        return self._data_payload(line) == END_OF_STREAM

    @staticmethod
    def _data_payload(line: str) -> Optional[str]:
        stripped = line.strip()
        if not stripped.startswith(SSE_DATA_PREFIX):
            return None
        return stripped[len(SSE_DATA_PREFIX):].strip()

    @staticmethod
    def _decode(payload: str) -> dict:
        try:
            event = json.loads(payload)
        except json.JSONDecodeError as e:
            raise ProtocolError(f"Invalid JSON payload: {e.msg}") from e
        if not isinstance(event, dict):
            raise ProtocolError("Stream payload is not an object")
        return event


class OpenAIAdapter(ProviderAdapter):
    """
    Adapter for OpenAI-compatible APIs.
    System messages stay inline with the conversation.
    """

    provider_name = "openai"
    capabilities = ProviderCapabilities()

    def auth_headers(self, api_key: str) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {api_key}",
        }

    def endpoint(self, base_url: str, model_id: str, stream: bool = True) -> str:
        return f"{base_url}/chat/completions"

    def format_request(
        self,
        messages: list[ChatMessage],
        model_id: str,
        options: Optional[ChatOptions] = None,
        stream: bool = True,
    ) -> dict:
        options = options or ChatOptions()
        body: dict[str, Any] = {
            "model": model_id,
            "messages": [m.to_dict() for m in messages],
            "stream": stream,
        }
        if options.temperature is not None:
            body["temperature"] = options.temperature
        if options.max_tokens is not None:
            body["max_tokens"] = options.max_tokens
        return body

    def parse_complete(self, body: dict) -> str:
        choices = body.get("choices") or [{}]
        return (choices[0].get("message") or {}).get("content") or ""

    def parse_usage(self, body: dict) -> TokenUsage:
        usage = body.get("usage") or {}
        return TokenUsage(
            prompt_tokens=usage.get("prompt_tokens"),
            completion_tokens=usage.get("completion_tokens"),
            total_tokens=usage.get("total_tokens"),
        )

    def _extract_fragment(self, event: dict) -> Optional[str]:
        return event["choices"][0]["delta"].get("content")


class AnthropicAdapter(ProviderAdapter):
    """
    Adapter for Anthropic Claude API.
    System messages move to the top-level "system" field.
    """

    provider_name = "anthropic"
    capabilities = ProviderCapabilities()

    API_VERSION = "2023-06-01"
    CONTENT_DELTA = "content_block_delta"
    MESSAGE_STOP = "message_stop"

    def auth_headers(self, api_key: str) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {api_key}",
            "x-api-key": api_key,
            "anthropic-version": self.API_VERSION,
        }

    def endpoint(self, base_url: str, model_id: str, stream: bool = True) -> str:
        return f"{base_url}/messages"

    def format_request(
        self,
        messages: list[ChatMessage],
        model_id: str,
        options: Optional[ChatOptions] = None,
        stream: bool = True,
    ) -> dict:
        options = options or ChatOptions()

        # Extract system message
        system_parts = []
        chat_messages = []
        for msg in messages:
            if msg.role == "system":
                system_parts.append(msg.content)
            else:
                chat_messages.append(msg.to_dict())

        body: dict[str, Any] = {
            "model": model_id,
            "messages": chat_messages,
            "max_tokens": options.max_tokens or settings.DEFAULT_MAX_TOKENS,
            "stream": stream,
        }
        if system_parts:
            body["system"] = "\n".join(system_parts)
        if options.temperature is not None:
            body["temperature"] = options.temperature
        return body

    def parse_complete(self, body: dict) -> str:
        content = ""
        for block in body.get("content", []):
            if block.get("type", "text") == "text":
                content += block.get("text", "")
        return content

    def parse_usage(self, body: dict) -> TokenUsage:
        usage = body.get("usage") or {}
        prompt_tokens = usage.get("input_tokens")
        completion_tokens = usage.get("output_tokens")
        total_tokens = None
        if prompt_tokens is not None or completion_tokens is not None:
            total_tokens = (prompt_tokens or 0) + (completion_tokens or 0)
        return TokenUsage(prompt_tokens, completion_tokens, total_tokens)

    def is_end_of_stream(self, line: str) -> bool:
        payload = self._data_payload(line)
        if payload == END_OF_STREAM:
            return True
        if not payload:
            return False
        try:
            return self._decode(payload).get("type") == self.MESSAGE_STOP
        except ProtocolError:
            return False

    def _extract_fragment(self, event: dict) -> Optional[str]:
        if event.get("type") != self.CONTENT_DELTA:
            return None
        return event["delta"].get("text")


class GeminiAdapter(ProviderAdapter):
    """
    Adapter for Google Gemini API.

    Gemini has no system role: system text is folded into the first user
    message, separated by a blank line. Assistant turns use the "model" role.
    """

    provider_name = "google"
    capabilities = ProviderCapabilities(supports_system_messages=False)

    SYSTEM_SEPARATOR = "\n\n"

    def auth_headers(self, api_key: str) -> dict[str, str]:
        # Key travels as a query parameter
        return {"Content-Type": "application/json"}

    def query_params(self, api_key: str, stream: bool = True) -> dict[str, str]:
        params = {"key": api_key}
        if stream:
            params["alt"] = "sse"
        return params

    def endpoint(self, base_url: str, model_id: str, stream: bool = True) -> str:
        action = "streamGenerateContent" if stream else "generateContent"
        return f"{base_url}/models/{model_id}:{action}"

    def _convert_messages_to_gemini_format(
        self,
        messages: list[ChatMessage],
    ) -> list[dict]:
        """Convert OpenAI-style messages to Gemini contents."""
        system_instruction = self.SYSTEM_SEPARATOR.join(
            m.content for m in messages if m.role == "system"
        )
        contents = [
            {
                "role": "model" if msg.role == "assistant" else "user",
                "parts": [{"text": msg.content}],
                "_source_role": msg.role,
            }
            for msg in messages
            if msg.role != "system"
        ]

        if system_instruction:
            first_user = next(
                (c for c in contents if c["_source_role"] == "user"), None
            )
            if first_user is None:
                contents.insert(0, {
                    "role": "user",
                    "parts": [{"text": system_instruction}],
                    "_source_role": "system",
                })
            else:
                text = first_user["parts"][0]["text"]
                first_user["parts"][0]["text"] = (
                    f"{system_instruction}{self.SYSTEM_SEPARATOR}{text}"
                )

        for content in contents:
            del content["_source_role"]
        return contents

    def format_request(
        self,
        messages: list[ChatMessage],
        model_id: str,
        options: Optional[ChatOptions] = None,
        stream: bool = True,
    ) -> dict:
        options = options or ChatOptions()
        generation_config: dict[str, Any] = {}
        if options.temperature is not None:
            generation_config["temperature"] = options.temperature
        if options.max_tokens is not None:
            generation_config["maxOutputTokens"] = options.max_tokens
        return {
            "contents": self._convert_messages_to_gemini_format(messages),
            "generationConfig": generation_config,
        }

    @staticmethod
    def _candidate_text(body: dict) -> str:
        candidates = body.get("candidates") or []
        if not candidates:
            return ""
        parts = (candidates[0].get("content") or {}).get("parts") or []
        return "".join(part.get("text", "") for part in parts)

    def parse_complete(self, body: dict) -> str:
        return self._candidate_text(body)

    def parse_usage(self, body: dict) -> TokenUsage:
        usage_metadata = body.get("usageMetadata") or {}
        return TokenUsage(
            prompt_tokens=usage_metadata.get("promptTokenCount"),
            completion_tokens=usage_metadata.get("candidatesTokenCount"),
            total_tokens=usage_metadata.get("totalTokenCount"),
        )

    def _extract_fragment(self, event: dict) -> Optional[str]:
        return self._candidate_text(event)
