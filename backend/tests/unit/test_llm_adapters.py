"""Tests for the OpenAI-compatible and Claude adapters.

The SDK clients are replaced with AsyncMocks; only request shaping,
response mapping and error classification are exercised.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import anthropic
import openai
import pytest

from messagemind.providers.config import ProviderConfig
from messagemind.providers.errors import (
    AuthenticationError,
    ContentFilterError,
    ContextLengthError,
    ModelNotFoundError,
    ProviderError,
    RateLimitError,
    TransientError,
)
from messagemind.providers.llm.base import LLMMessage, TaskType
from messagemind.providers.llm.claude_adapter import (
    DEFAULT_CLAUDE_MODEL,
    ClaudeAdapter,
)
from messagemind.providers.llm.openai_adapter import OpenAIAdapter

_MESSAGES = [
    LLMMessage(role="system", content="You are a coach."),
    LLMMessage(role="user", content="<message>\nhi\n</message>"),
]


@pytest.fixture
def config() -> ProviderConfig:
    """Provider config with test keys and defaults."""
    return ProviderConfig(
        llm_provider="openai",
        openai_api_key="test-api-key",
        openai_base_url="https://llm.example.test/v1",
        anthropic_api_key="test-anthropic-key",
        default_model="base-model",
        default_max_tokens=400,
        default_temperature=0.5,
    )


def _status_error(cls: type, message: str, status: int, headers: dict | None = None):
    return cls(
        message=message,
        response=MagicMock(status_code=status, headers=headers or {}),
        body={"error": {"message": message}},
    )


# =============================================================================
# OpenAI-compatible adapter
# =============================================================================


@pytest.fixture
def openai_client():
    """Patched AsyncOpenAI client returning a canned completion."""
    with patch("messagemind.providers.llm.openai_adapter.AsyncOpenAI") as client_cls:
        client = AsyncMock()
        choice = MagicMock()
        choice.message.content = '{"intent": "chat"}'
        choice.finish_reason = "stop"
        response = MagicMock(choices=[choice])
        response.usage = MagicMock(prompt_tokens=120, completion_tokens=30)
        client.chat.completions.create = AsyncMock(return_value=response)
        client_cls.return_value = client
        yield client_cls, client


class TestOpenAIAdapter:
    """Request shaping and response mapping."""

    def test_client_uses_base_url_and_no_sdk_retries(
        self, config: ProviderConfig, openai_client
    ) -> None:
        """Retries are handled by with_retries, not the SDK."""
        client_cls, _ = openai_client

        OpenAIAdapter(config)

        client_cls.assert_called_once_with(
            api_key="test-api-key",
            base_url="https://llm.example.test/v1",
            timeout=config.request_timeout_seconds,
            max_retries=0,
        )

    async def test_json_mode_and_model_override(
        self, config: ProviderConfig, openai_client
    ) -> None:
        """JSON mode sets response_format; the routed model is used."""
        _, client = openai_client
        adapter = OpenAIAdapter(config)

        response = await adapter.complete(
            _MESSAGES,
            TaskType.SNAPSHOT_ANALYSIS,
            max_tokens=150,
            json_mode=True,
            model_override="routed-model",
        )

        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "routed-model"
        assert kwargs["max_tokens"] == 150
        assert kwargs["temperature"] == 0.5
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["messages"][0] == {"role": "system", "content": "You are a coach."}
        assert response.content == '{"intent": "chat"}'
        assert response.total_tokens == 150
        assert response.model == "routed-model"

    async def test_defaults_without_override(
        self, config: ProviderConfig, openai_client
    ) -> None:
        """Without overrides the configured defaults apply."""
        _, client = openai_client

        await OpenAIAdapter(config).complete(_MESSAGES, TaskType.DEEP_ANALYSIS)

        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "base-model"
        assert kwargs["max_tokens"] == 400
        assert "response_format" not in kwargs

    @pytest.mark.parametrize(
        ("error", "expected"),
        [
            (
                _status_error(openai.AuthenticationError, "Invalid API key", 401),
                AuthenticationError,
            ),
            (_status_error(openai.NotFoundError, "model missing", 404), ModelNotFoundError),
            (
                _status_error(openai.BadRequestError, "exceeds context_length", 400),
                ContextLengthError,
            ),
            (
                _status_error(openai.BadRequestError, "content_policy violation", 400),
                ContentFilterError,
            ),
            (_status_error(openai.BadRequestError, "bad params", 400), ProviderError),
            (_status_error(openai.InternalServerError, "upstream", 500), TransientError),
            (
                openai.APIConnectionError(message="Connection failed", request=MagicMock()),
                TransientError,
            ),
        ],
    )
    async def test_error_classification(
        self,
        config: ProviderConfig,
        openai_client,
        error: Exception,
        expected: type,
    ) -> None:
        """SDK errors map onto the provider error taxonomy."""
        _, client = openai_client
        client.chat.completions.create = AsyncMock(side_effect=error)

        with pytest.raises(expected):
            await OpenAIAdapter(config).complete(_MESSAGES, TaskType.SNAPSHOT_ANALYSIS)

    async def test_rate_limit_carries_retry_after(
        self, config: ProviderConfig, openai_client
    ) -> None:
        """The retry-after header becomes a retry hint."""
        _, client = openai_client
        client.chat.completions.create = AsyncMock(
            side_effect=_status_error(
                openai.RateLimitError, "Rate limit exceeded", 429, {"retry-after": "7"}
            )
        )

        with pytest.raises(RateLimitError) as exc_info:
            await OpenAIAdapter(config).complete(_MESSAGES, TaskType.SNAPSHOT_ANALYSIS)

        assert exc_info.value.retry_after_seconds == 7.0


# =============================================================================
# Claude adapter
# =============================================================================


@pytest.fixture
def claude_client():
    """Patched AsyncAnthropic client returning a canned message."""
    with patch("messagemind.providers.llm.claude_adapter.AsyncAnthropic") as client_cls:
        client = AsyncMock()
        block = MagicMock(type="text", text='{"intent": "chat"}')
        response = MagicMock(content=[block], stop_reason="end_turn")
        response.usage = MagicMock(input_tokens=90, output_tokens=40)
        client.messages.create = AsyncMock(return_value=response)
        client_cls.return_value = client
        yield client


class TestClaudeAdapter:
    """System prompt handling, model resolution and errors."""

    def test_non_claude_override_falls_back(
        self, config: ProviderConfig, claude_client
    ) -> None:
        """Routed open-model names are replaced by the default Claude model."""
        adapter = ClaudeAdapter(config)

        assert adapter.resolve_model("llama-3.3-70b-versatile") == DEFAULT_CLAUDE_MODEL
        sonnet = "claude-3-5-sonnet-20241022"
        assert adapter.resolve_model(sonnet) == sonnet

    async def test_system_prompt_and_json_instruction(
        self, config: ProviderConfig, claude_client
    ) -> None:
        """The system message moves to ``system`` with the JSON instruction."""
        response = await ClaudeAdapter(config).complete(
            _MESSAGES, TaskType.EXPANDED_ANALYSIS, json_mode=True
        )

        kwargs = claude_client.messages.create.call_args.kwargs
        assert kwargs["system"].startswith("You are a coach.")
        assert "Respond ONLY with valid JSON" in kwargs["system"]
        assert kwargs["messages"] == [
            {"role": "user", "content": "<message>\nhi\n</message>"}
        ]
        assert response.content == '{"intent": "chat"}'
        assert response.total_tokens == 130
        assert response.finish_reason == "end_turn"

    async def test_overloaded_is_transient(
        self, config: ProviderConfig, claude_client
    ) -> None:
        """5xx responses are retryable."""
        claude_client.messages.create = AsyncMock(
            side_effect=_status_error(anthropic.InternalServerError, "overloaded", 529)
        )

        with pytest.raises(TransientError):
            await ClaudeAdapter(config).complete(_MESSAGES, TaskType.SNAPSHOT_ANALYSIS)

    async def test_prompt_too_long_is_context_error(
        self, config: ProviderConfig, claude_client
    ) -> None:
        """Anthropic's 'prompt is too long' maps to ContextLengthError."""
        claude_client.messages.create = AsyncMock(
            side_effect=_status_error(anthropic.BadRequestError, "prompt is too long", 400)
        )

        with pytest.raises(ContextLengthError):
            await ClaudeAdapter(config).complete(_MESSAGES, TaskType.SNAPSHOT_ANALYSIS)
