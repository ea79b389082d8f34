"""
Streaming engine - one HTTP exchange decoded into normalized text fragments.
"""
import asyncio
from enum import Enum
from typing import AsyncIterator, Optional
from urllib.parse import urlsplit

import httpx

from polychat.core.exceptions import TransportError
from polychat.core.logging import get_logger, AIDebugLogger
from polychat.services.adapter.provider import ChatMessage, ChatOptions
from polychat.services.adapter.registry import Provider

logger = get_logger(__name__)
debug_logger = AIDebugLogger(logger)


class StreamState(str, Enum):
    IDLE = "idle"
    SENDING = "sending"
    STREAMING = "streaming"
    COMPLETE = "complete"
    ERRORED = "errored"
    CANCELLED = "cancelled"


class LineBuffer:
    """
    Carry-over buffer for line-framed streams.

    Network reads split lines at arbitrary offsets. Each feed returns the
    lines completed so far and keeps the trailing partial line for the
    next read.
    """

    def __init__(self):
        self._pending = ""

    def feed(self, chunk: str) -> list[str]:
        self._pending += chunk
        lines = self._pending.split("\n")
        self._pending = lines.pop()
        return lines

    @property
    def pending(self) -> str:
        return self._pending

    def discard(self) -> str:
        """Drop the partial line, returning what was dropped."""
        leftover, self._pending = self._pending, ""
        return leftover


class ChatStream:
    """
    Single-pass async iterator over the text fragments of one response.

    Usage:
        stream = client.stream(messages, "openai", "gpt-4o")
        async for fragment in stream:
            ...
        await stream.cancel()  # from anywhere, to abort the transport
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        provider: Provider,
        model_id: str,
        messages: list[ChatMessage],
        options: ChatOptions,
        api_key: str,
    ):
        adapter = provider.adapter
        self.provider_id = provider.id
        self.model_id = model_id
        self.state = StreamState.IDLE
        self.error: Optional[TransportError] = None

        self._client = http_client
        self._adapter = adapter
        self._messages = messages
        self._options = options
        self._url = adapter.endpoint(provider.base_url, model_id, stream=True)
        self._headers = adapter.auth_headers(api_key)
        self._params = adapter.query_params(api_key, stream=True)
        self._body = adapter.format_request(messages, model_id, options, stream=True)

        self._buffer = LineBuffer()
        self._received: list[str] = []
        self._response: Optional[httpx.Response] = None
        self._cancelled = False
        self._iterator: Optional[AsyncIterator[str]] = None

    @property
    def request_body(self) -> dict:
        return self._body

    @property
    def fragments(self) -> int:
        return len(self._received)

    @property
    def text(self) -> str:
        """Everything received so far, kept even when the stream fails."""
        return "".join(self._received)

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def __aiter__(self) -> AsyncIterator[str]:
        if self._iterator is not None:
            raise RuntimeError("ChatStream can only be iterated once")
        self._iterator = self._iterate()
        return self._iterator

    async def cancel(self) -> None:
        """Abort the transport. The decode loop unwinds without raising."""
        self._cancelled = True
        if self.state == StreamState.IDLE:
            self.state = StreamState.CANCELLED
        response = self._response
        if response is not None and not response.is_closed:
            await response.aclose()

    async def aclose(self) -> None:
        """Cancel and finalize the iterator when consumed from this task."""
        await self.cancel()
        if self._iterator is not None:
            await self._iterator.aclose()

    async def _iterate(self) -> AsyncIterator[str]:
        if self._cancelled:
            return

        self.state = StreamState.SENDING
        with debug_logger.track_call(
            provider=self.provider_id,
            model=self.model_id,
            endpoint=urlsplit(self._url).path,
            streaming=True,
        ) as call:
            call.add_messages([m.to_dict() for m in self._messages])
            call.set_request_params(
                temperature=self._options.temperature,
                max_tokens=self._options.max_tokens,
            )

            try:
                async with self._client.stream(
                    "POST",
                    self._url,
                    headers=self._headers,
                    params=self._params,
                    json=self._body,
                ) as response:
                    self._response = response
                    call.set_status(response.status_code)

                    if not response.is_success:
                        error_text = await response.aread()
                        raise TransportError(
                            response.status_code,
                            error_text.decode("utf-8", errors="replace"),
                        )

                    self.state = StreamState.STREAMING
                    async for chunk in response.aiter_text():
                        finished = False
                        for line in self._buffer.feed(chunk):
                            if self._cancelled:
                                break
                            if self._adapter.is_end_of_stream(line):
                                finished = True
                                break
                            fragment = self._adapter.parse_stream_fragment(line)
                            if fragment is None:
                                continue
                            self._received.append(fragment)
                            call.add_fragment(fragment)
                            yield fragment
                        if finished or self._cancelled:
                            break

            except TransportError as e:
                self.state = StreamState.ERRORED
                self.error = e
                raise
            except (httpx.HTTPError, httpx.StreamError) as e:
                if self._cancelled:
                    # Caller aborted the transport under an in-flight read
                    self.state = StreamState.CANCELLED
                    call.set_cancelled()
                    return
                self.state = StreamState.ERRORED
                self.error = TransportError(None, str(e) or type(e).__name__)
                raise self.error from e
            except (GeneratorExit, asyncio.CancelledError):
                self.state = StreamState.CANCELLED
                call.set_cancelled()
                raise
            finally:
                self._response = None
                leftover = self._buffer.discard()
                if leftover.strip():
                    logger.debug(
                        "Discarding unterminated stream data",
                        provider=self.provider_id,
                        chars=len(leftover),
                    )

            if self._cancelled:
                self.state = StreamState.CANCELLED
                call.set_cancelled()
            else:
                self.state = StreamState.COMPLETE
