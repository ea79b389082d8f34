"""
Tests for provider adapters and the provider registry.
"""
import json

import pytest

from polychat.core.exceptions import ConfigError
from polychat.services.adapter import (
    AnthropicAdapter,
    ChatMessage,
    ChatOptions,
    GeminiAdapter,
    OpenAIAdapter,
    get_model,
    get_provider,
    list_providers,
    require_provider,
)


def data_line(event: dict) -> str:
    return f"data: {json.dumps(event)}"


# =============================================================================
# STREAM FRAGMENT PARSING
# =============================================================================


class TestStreamFragments:
    """Line-level decoding shared by every adapter."""

    @pytest.mark.parametrize("adapter", [OpenAIAdapter(), AnthropicAdapter(), GeminiAdapter()])
    def test_done_sentinel_is_end_of_stream(self, adapter):
        assert adapter.is_end_of_stream("data: [DONE]")
        assert adapter.parse_stream_fragment("data: [DONE]") is None

    @pytest.mark.parametrize("adapter", [OpenAIAdapter(), AnthropicAdapter(), GeminiAdapter()])
    @pytest.mark.parametrize("line", ["", "   ", ": keep-alive", "event: ping", "data: {not json", "data: [1, 2]"])
    def test_noise_lines_yield_nothing(self, adapter, line):
        assert adapter.parse_stream_fragment(line) is None
        assert not adapter.is_end_of_stream(line)

    def test_openai_delta_content(self):
        adapter = OpenAIAdapter()
        line = data_line({"choices": [{"delta": {"content": "Hi"}}]})
        assert adapter.parse_stream_fragment(line) == "Hi"

    def test_openai_role_only_delta_is_skipped(self):
        adapter = OpenAIAdapter()
        assert adapter.parse_stream_fragment(data_line({"choices": [{"delta": {"role": "assistant"}}]})) is None
        assert adapter.parse_stream_fragment(data_line({"choices": [{"delta": {"content": ""}}]})) is None

    def test_openai_unexpected_shape_is_skipped(self):
        adapter = OpenAIAdapter()
        assert adapter.parse_stream_fragment(data_line({"choices": []})) is None
        assert adapter.parse_stream_fragment(data_line({"unexpected": True})) is None

    def test_anthropic_only_content_deltas_carry_text(self):
        adapter = AnthropicAdapter()
        delta = data_line({"type": "content_block_delta", "delta": {"type": "text_delta", "text": "Hey"}})
        start = data_line({"type": "message_start", "message": {"id": "msg_1"}})

        assert adapter.parse_stream_fragment(delta) == "Hey"
        assert adapter.parse_stream_fragment(start) is None

    def test_anthropic_message_stop_ends_stream(self):
        adapter = AnthropicAdapter()
        assert adapter.is_end_of_stream(data_line({"type": "message_stop"}))
        assert not adapter.is_end_of_stream(data_line({"type": "content_block_stop", "index": 0}))

    def test_gemini_joins_candidate_parts(self):
        adapter = GeminiAdapter()
        line = data_line({
            "candidates": [{"content": {"role": "model", "parts": [{"text": "Hel"}, {"text": "lo"}]}}]
        })
        assert adapter.parse_stream_fragment(line) == "Hello"


# =============================================================================
# REQUEST FORMATTING
# =============================================================================


class TestRequestFormatting:
    """Provider-native request bodies."""

    def test_openai_keeps_system_inline(self):
        messages = [ChatMessage("system", "Be brief."), ChatMessage("user", "Hi")]
        body = OpenAIAdapter().format_request(messages, "gpt-4o", ChatOptions(temperature=0.5, max_tokens=10))

        assert body == {
            "model": "gpt-4o",
            "messages": [
                {"role": "system", "content": "Be brief."},
                {"role": "user", "content": "Hi"},
            ],
            "stream": True,
            "temperature": 0.5,
            "max_tokens": 10,
        }

    def test_zero_temperature_is_sent(self):
        body = OpenAIAdapter().format_request([ChatMessage("user", "Hi")], "gpt-4o", ChatOptions(temperature=0))
        assert body["temperature"] == 0
        assert "max_tokens" not in body

    def test_anthropic_extracts_system_and_defaults_max_tokens(self):
        messages = [
            ChatMessage("system", "Rule one."),
            ChatMessage("system", "Rule two."),
            ChatMessage("user", "Hi"),
            ChatMessage("assistant", "Hello"),
        ]
        body = AnthropicAdapter().format_request(messages, "claude-3-haiku-20240307")

        assert body["system"] == "Rule one.\nRule two."
        assert body["messages"] == [
            {"role": "user", "content": "Hi"},
            {"role": "assistant", "content": "Hello"},
        ]
        assert body["max_tokens"] == 4096
        assert body["stream"] is True

    def test_anthropic_auth_headers(self):
        headers = AnthropicAdapter().auth_headers("sk-ant-test")
        assert headers["Authorization"] == "Bearer sk-ant-test"
        assert headers["x-api-key"] == "sk-ant-test"
        assert headers["anthropic-version"] == "2023-06-01"

    def test_gemini_folds_system_into_first_user_message(self):
        messages = [
            ChatMessage("system", "Be brief."),
            ChatMessage("user", "Hi"),
            ChatMessage("assistant", "Hello"),
            ChatMessage("user", "Again"),
        ]
        body = GeminiAdapter().format_request(messages, "gemini-1.5-flash", ChatOptions(temperature=0.2, max_tokens=64))

        assert body["contents"] == [
            {"role": "user", "parts": [{"text": "Be brief.\n\nHi"}]},
            {"role": "model", "parts": [{"text": "Hello"}]},
            {"role": "user", "parts": [{"text": "Again"}]},
        ]
        assert body["generationConfig"] == {"temperature": 0.2, "maxOutputTokens": 64}

    def test_gemini_system_only_becomes_user_message(self):
        body = GeminiAdapter().format_request([ChatMessage("system", "Context")], "gemini-pro")
        assert body["contents"] == [{"role": "user", "parts": [{"text": "Context"}]}]

    def test_gemini_key_travels_as_query_parameter(self):
        adapter = GeminiAdapter()
        assert "Authorization" not in adapter.auth_headers("AIza-test")
        assert adapter.query_params("AIza-test", stream=True) == {"key": "AIza-test", "alt": "sse"}
        assert adapter.query_params("AIza-test", stream=False) == {"key": "AIza-test"}
        assert adapter.endpoint("https://g.test/v1beta", "gemini-pro", stream=True) == (
            "https://g.test/v1beta/models/gemini-pro:streamGenerateContent"
        )

    def test_invalid_role_rejected(self):
        with pytest.raises(ValueError):
            ChatMessage("tool", "x")


# =============================================================================
# COMPLETE RESPONSES
# =============================================================================


class TestCompleteResponses:
    """Non-streamed response parsing."""

    def test_openai_complete_and_usage(self):
        body = {
            "choices": [{"message": {"role": "assistant", "content": "Done"}}],
            "usage": {"prompt_tokens": 3, "completion_tokens": 1, "total_tokens": 4},
        }
        adapter = OpenAIAdapter()
        assert adapter.parse_complete(body) == "Done"
        assert adapter.parse_usage(body).total_tokens == 4

    def test_anthropic_concatenates_text_blocks(self):
        body = {
            "content": [{"type": "text", "text": "Part one. "}, {"type": "text", "text": "Part two."}],
            "usage": {"input_tokens": 5, "output_tokens": 7},
        }
        adapter = AnthropicAdapter()
        assert adapter.parse_complete(body) == "Part one. Part two."
        usage = adapter.parse_usage(body)
        assert (usage.prompt_tokens, usage.completion_tokens, usage.total_tokens) == (5, 7, 12)

    def test_gemini_complete(self):
        body = {"candidates": [{"content": {"parts": [{"text": "A"}, {"text": "B"}]}}]}
        assert GeminiAdapter().parse_complete(body) == "AB"
        assert GeminiAdapter().parse_complete({}) == ""


# =============================================================================
# REGISTRY
# =============================================================================


class TestRegistry:
    """Static provider catalog."""

    def test_catalog_ids(self):
        assert [p.id for p in list_providers()] == ["openai", "anthropic", "google"]

    def test_lookup(self):
        assert get_provider("anthropic").name == "Anthropic Claude"
        assert get_provider("mistral") is None
        assert get_model("openai", "gpt-4o-mini").name == "GPT-4o Mini"
        assert get_model("openai", "nope") is None

    def test_require_unknown_provider(self):
        with pytest.raises(ConfigError):
            require_provider("mistral")

    def test_gemini_capabilities(self):
        caps = get_provider("google").capabilities
        assert caps.supports_streaming
        assert not caps.supports_system_messages

    def test_to_dict_shape(self):
        data = get_provider("openai").to_dict()
        assert data["baseUrl"] == "https://api.openai.com/v1"
        assert data["models"][0]["id"] == "gpt-4o"
        assert data["supportedFeatures"]["streaming"] is True
