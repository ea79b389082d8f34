"""
Chat client - uniform entry point for talking to any registered provider.
"""
import asyncio
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional, Sequence
from urllib.parse import urlsplit

import httpx

from polychat.core.config import settings
from polychat.core.exceptions import ConfigError, TransportError
from polychat.core.logging import get_logger, AIDebugLogger
from polychat.services.adapter.provider import ChatMessage, ChatOptions, to_chat_messages
from polychat.services.adapter.registry import Provider, require_provider
from polychat.services.chat.stream import ChatStream

logger = get_logger(__name__)
debug_logger = AIDebugLogger(logger)


class ChatResult:
    """Result of a non-streamed request."""

    def __init__(
        self,
        content: str,
        prompt_tokens: int | None = None,
        completion_tokens: int | None = None,
        total_tokens: int | None = None,
    ):
        self.content = content
        self.prompt_tokens = prompt_tokens
        self.completion_tokens = completion_tokens
        self.total_tokens = total_tokens


@dataclass(frozen=True)
class CompareTarget:
    provider_id: str
    model_id: str
    api_key: Optional[str] = None


@dataclass
class CompareResult:
    provider_id: str
    model_id: str
    content: str = ""
    error: Optional[Exception] = field(default=None, repr=False)

    @property
    def ok(self) -> bool:
        return self.error is None


class ChatClient:
    """
    Issues chat requests against registered providers.

    Keys are resolved from the api_keys mapping, then from settings.
    An httpx.AsyncClient may be injected; otherwise one is created on
    first use and closed by aclose(). The owned client has no read
    timeout: callers impose deadlines by cancelling.
    """

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        api_keys: Optional[Mapping[str, str]] = None,
    ):
        self._http_client = http_client
        self._owns_client = http_client is None
        self._api_keys = dict(api_keys or {})

    async def __aenter__(self) -> "ChatClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    @property
    def http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=httpx.Timeout(None))
        return self._http_client

    async def aclose(self) -> None:
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    def resolve_api_key(self, provider_id: str, api_key: Optional[str] = None) -> str:
        key = api_key or self._api_keys.get(provider_id) or settings.get_api_key(provider_id)
        if not key:
            raise ConfigError(
                f"API key not set for provider '{provider_id}'. "
                f"Pass one explicitly or configure it in the environment."
            )
        return key

    def _apply_capabilities(
        self,
        provider: Provider,
        messages: list[ChatMessage],
        options: Optional[ChatOptions],
    ) -> tuple[list[ChatMessage], ChatOptions]:
        """Drop options the provider cannot take and inline the system prompt."""
        options = options or ChatOptions()
        caps = provider.capabilities

        dropped = []
        temperature = options.temperature
        if temperature is not None and not caps.supports_temperature:
            dropped.append("temperature")
            temperature = None
        max_tokens = options.max_tokens
        if max_tokens is not None and not caps.supports_max_tokens:
            dropped.append("max_tokens")
            max_tokens = None
        if dropped:
            logger.debug("Dropping unsupported options", provider=provider.id, options=dropped)

        if options.system_prompt:
            messages = [ChatMessage("system", options.system_prompt)] + messages

        return messages, ChatOptions(temperature=temperature, max_tokens=max_tokens)

    def _prepare(
        self,
        messages: Iterable[Any],
        provider_id: str,
        model_id: str,
        options: Optional[ChatOptions],
        api_key: Optional[str],
    ) -> tuple[Provider, list[ChatMessage], ChatOptions, str]:
        provider = require_provider(provider_id)
        if not model_id:
            raise ConfigError(f"No model selected for provider '{provider_id}'")
        key = self.resolve_api_key(provider_id, api_key)

        chat_messages = to_chat_messages(messages)
        if not chat_messages:
            raise ValueError("At least one message is required")

        if provider.get_model(model_id) is None:
            logger.debug("Model not in catalog", provider=provider_id, model=model_id)

        chat_messages, options = self._apply_capabilities(provider, chat_messages, options)
        return provider, chat_messages, options, key

    def stream(
        self,
        messages: Iterable[Any],
        provider_id: str,
        model_id: str,
        options: Optional[ChatOptions] = None,
        api_key: Optional[str] = None,
    ) -> ChatStream:
        """
        Start a streaming exchange.

        Configuration problems raise ConfigError here, before any request
        is made. The request itself is sent when iteration starts.
        """
        provider, chat_messages, options, key = self._prepare(
            messages, provider_id, model_id, options, api_key
        )
        if not provider.capabilities.supports_streaming:
            raise ConfigError(f"Provider '{provider_id}' does not support streaming")
        return ChatStream(
            self.http_client,
            provider,
            model_id,
            chat_messages,
            options,
            key,
        )

    async def complete(
        self,
        messages: Iterable[Any],
        provider_id: str,
        model_id: str,
        options: Optional[ChatOptions] = None,
        api_key: Optional[str] = None,
    ) -> str:
        """Stream a response and return it joined into one string."""
        stream = self.stream(messages, provider_id, model_id, options, api_key)
        return "".join([fragment async for fragment in stream])

    async def request(
        self,
        messages: Iterable[Any],
        provider_id: str,
        model_id: str,
        options: Optional[ChatOptions] = None,
        api_key: Optional[str] = None,
    ) -> ChatResult:
        """Send a non-streamed request and parse the complete response."""
        provider, chat_messages, options, key = self._prepare(
            messages, provider_id, model_id, options, api_key
        )
        adapter = provider.adapter
        url = adapter.endpoint(provider.base_url, model_id, stream=False)

        with debug_logger.track_call(
            provider=provider.id,
            model=model_id,
            endpoint=urlsplit(url).path,
            streaming=False,
        ) as call:
            call.add_messages([m.to_dict() for m in chat_messages])
            call.set_request_params(
                temperature=options.temperature,
                max_tokens=options.max_tokens,
            )

            try:
                response = await self.http_client.post(
                    url,
                    headers=adapter.auth_headers(key),
                    params=adapter.query_params(key, stream=False),
                    json=adapter.format_request(chat_messages, model_id, options, stream=False),
                )
            except httpx.HTTPError as e:
                raise TransportError(None, str(e) or type(e).__name__) from e

            call.set_status(response.status_code)
            if not response.is_success:
                raise TransportError(response.status_code, response.text)

            try:
                data = response.json()
            except ValueError as e:
                raise TransportError(response.status_code, "Response body is not valid JSON") from e

            content = adapter.parse_complete(data)
            usage = adapter.parse_usage(data)
            call.set_response(
                content=content,
                prompt_tokens=usage.prompt_tokens,
                completion_tokens=usage.completion_tokens,
                total_tokens=usage.total_tokens,
            )

            return ChatResult(
                content=content,
                prompt_tokens=usage.prompt_tokens,
                completion_tokens=usage.completion_tokens,
                total_tokens=usage.total_tokens,
            )

    async def compare(
        self,
        messages: Iterable[Any],
        targets: Sequence[CompareTarget],
        options: Optional[ChatOptions] = None,
    ) -> list[CompareResult]:
        """
        Stream the same conversation to several provider/model pairs at once.

        Every target runs as its own task with its own stream. A failing
        target is reported in its result and leaves the others running.
        """
        history = to_chat_messages(messages)

        async def run(target: CompareTarget) -> CompareResult:
            result = CompareResult(target.provider_id, target.model_id)
            try:
                stream = self.stream(
                    history, target.provider_id, target.model_id, options, target.api_key
                )
            except ConfigError as e:
                result.error = e
                return result

            try:
                async for _ in stream:
                    pass
            except TransportError as e:
                result.error = e
            result.content = stream.text
            return result

        tasks = [asyncio.create_task(run(target)) for target in targets]
        results = await asyncio.gather(*tasks)

        logger.info(
            "Comparison finished",
            targets=[f"{r.provider_id}/{r.model_id}" for r in results],
            failed=sum(1 for r in results if not r.ok),
        )
        return list(results)
