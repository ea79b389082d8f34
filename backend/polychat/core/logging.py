"""
Structured logging configuration.
Designed for easy debugging without exposing API keys or message content.
"""
import logging
import sys
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import List, Optional, Generator

import structlog
from structlog.types import Processor

from polychat.core.config import settings


def setup_logging() -> None:
    """Configure structured logging for the application."""

    # Common processors
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if settings.LOG_FORMAT == "json":
        # JSON format for production
        renderer = structlog.processors.JSONRenderer()
    else:
        # Console format for development
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=shared_processors + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=renderer,
            foreign_pre_chain=shared_processors,
        )
    )

    root_logger = logging.getLogger()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper()))

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


def _truncate_content(content: str, max_length: int = 0) -> str:
    """Truncate content if max_length is set."""
    if max_length <= 0:
        return content
    if len(content) <= max_length:
        return content
    return content[:max_length] + f"... [truncated, total {len(content)} chars]"


# ========================================
# Provider call logging
# ========================================

@dataclass
class AIMessageLog:
    """Structure for logging request messages."""
    role: str
    content: str
    content_length: int = 0

    def __post_init__(self):
        self.content_length = len(self.content)


@dataclass
class AICallLog:
    """Complete log entry for one provider exchange."""
    call_id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    provider: str = ""
    model: str = ""
    endpoint: str = ""
    streaming: bool = True

    # Request info
    request_messages: List[AIMessageLog] = field(default_factory=list)
    request_temperature: Optional[float] = None
    request_max_tokens: Optional[int] = None

    # Response info
    response_content_length: int = 0
    fragment_count: int = 0
    status_code: Optional[int] = None

    # Token usage
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None

    # Timing
    start_time: float = 0.0
    end_time: float = 0.0
    duration_ms: float = 0.0

    # Status: complete, errored or cancelled
    outcome: str = "complete"
    error_type: Optional[str] = None
    error_message: Optional[str] = None


class AIDebugLogger:
    """
    Tracks provider calls and logs a summary when each one finishes.

    Usage:
        debug_logger = AIDebugLogger(logger)
        with debug_logger.track_call("openai", "gpt-4o") as call:
            call.add_messages(messages)
            ...
            call.add_fragment(token)
    """

    def __init__(self, logger: structlog.stdlib.BoundLogger):
        self.logger = logger
        self.enabled = settings.AI_DEBUG_LOG
        self.max_length = settings.AI_DEBUG_LOG_MAX_LENGTH

    @contextmanager
    def track_call(
        self,
        provider: str,
        model: str,
        endpoint: str = "chat/completions",
        streaming: bool = True,
    ) -> Generator["AICallTracker", None, None]:
        """Context manager for tracking a provider call."""
        tracker = AICallTracker(
            logger=self.logger,
            enabled=self.enabled,
            max_length=self.max_length,
            provider=provider,
            model=model,
            endpoint=endpoint,
            streaming=streaming,
        )
        tracker.start()
        try:
            yield tracker
        except GeneratorExit:
            # Consumer stopped iterating before the stream finished
            tracker.set_cancelled()
            raise
        except Exception as e:
            if tracker.log.outcome == "complete":
                tracker.set_error(type(e).__name__, str(e))
            raise
        finally:
            tracker.finish()


class AICallTracker:
    """Tracker for a single provider call."""

    def __init__(
        self,
        logger: structlog.stdlib.BoundLogger,
        enabled: bool,
        max_length: int,
        provider: str,
        model: str,
        endpoint: str,
        streaming: bool = True,
    ):
        self.logger = logger
        self.enabled = enabled
        self.max_length = max_length
        self.log = AICallLog(
            provider=provider,
            model=model,
            endpoint=endpoint,
            streaming=streaming,
        )

    def start(self) -> None:
        """Mark the start of the call."""
        self.log.start_time = time.time()

        if self.enabled:
            self.logger.debug(
                "AI call started",
                call_id=self.log.call_id,
                provider=self.log.provider,
                model=self.log.model,
                endpoint=self.log.endpoint,
            )

    def add_message(self, role: str, content: str) -> None:
        """Add a message to the request log."""
        msg = AIMessageLog(role=role, content=content)
        self.log.request_messages.append(msg)

        if self.enabled:
            self.logger.debug(
                "AI request message",
                call_id=self.log.call_id,
                role=role,
                content_length=msg.content_length,
                content=_truncate_content(content, self.max_length),
            )

    def add_messages(self, messages: List[dict]) -> None:
        """Add multiple messages from a list of dicts."""
        for msg in messages:
            self.add_message(msg.get("role", "unknown"), msg.get("content", ""))

    def set_request_params(
        self,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> None:
        """Set request parameters."""
        self.log.request_temperature = temperature
        self.log.request_max_tokens = max_tokens

    def set_status(self, status_code: int) -> None:
        self.log.status_code = status_code

    def add_fragment(self, fragment: str) -> None:
        """Count one streamed fragment."""
        self.log.fragment_count += 1
        self.log.response_content_length += len(fragment)

        if self.enabled:
            self.logger.debug(
                "AI stream fragment",
                call_id=self.log.call_id,
                index=self.log.fragment_count,
                content=_truncate_content(fragment, self.max_length),
            )

    def set_response(
        self,
        content: str,
        prompt_tokens: Optional[int] = None,
        completion_tokens: Optional[int] = None,
        total_tokens: Optional[int] = None,
    ) -> None:
        """Set response data for a non-streamed call."""
        self.log.response_content_length = len(content)
        self.log.prompt_tokens = prompt_tokens
        self.log.completion_tokens = completion_tokens
        self.log.total_tokens = total_tokens

        if self.enabled:
            self.logger.debug(
                "AI response content",
                call_id=self.log.call_id,
                content_length=self.log.response_content_length,
                content=_truncate_content(content, self.max_length),
            )

    def set_error(self, error_type: str, error_message: str) -> None:
        """Set error information."""
        self.log.outcome = "errored"
        self.log.error_type = error_type
        self.log.error_message = error_message

    def set_cancelled(self) -> None:
        if self.log.outcome == "complete":
            self.log.outcome = "cancelled"

    def finish(self) -> None:
        """Mark the end of the call and log summary."""
        self.log.end_time = time.time()
        self.log.duration_ms = (self.log.end_time - self.log.start_time) * 1000

        total_request_chars = sum(m.content_length for m in self.log.request_messages)
        message_roles = [m.role for m in self.log.request_messages]

        if self.log.outcome == "errored":
            self.logger.error(
                "AI call failed",
                call_id=self.log.call_id,
                provider=self.log.provider,
                model=self.log.model,
                endpoint=self.log.endpoint,
                duration_ms=round(self.log.duration_ms, 2),
                status_code=self.log.status_code,
                fragment_count=self.log.fragment_count,
                error_type=self.log.error_type,
                error_message=self.log.error_message,
            )
            return

        self.logger.info(
            "AI call completed" if self.log.outcome == "complete" else "AI call cancelled",
            call_id=self.log.call_id,
            provider=self.log.provider,
            model=self.log.model,
            endpoint=self.log.endpoint,
            streaming=self.log.streaming,
            duration_ms=round(self.log.duration_ms, 2),
            message_count=len(self.log.request_messages),
            message_roles=message_roles,
            request_chars=total_request_chars,
            response_chars=self.log.response_content_length,
            fragment_count=self.log.fragment_count,
            prompt_tokens=self.log.prompt_tokens,
            completion_tokens=self.log.completion_tokens,
            total_tokens=self.log.total_tokens,
        )
