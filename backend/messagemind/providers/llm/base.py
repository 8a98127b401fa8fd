"""AI collaborator interface.

The analysis processor makes exactly one non-streaming completion per
analysis through ``LLMProvider.complete``. Concrete adapters implement
``_send`` (one SDK call) and inherit request defaults, timing and the
structured request log from the base class.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

import structlog

from messagemind.providers.errors import ProviderError

if TYPE_CHECKING:
    from messagemind.providers.config import ProviderConfig

logger = structlog.get_logger()


class TaskType(Enum):
    """One task per analysis mode (logged, and keys the mock's canned replies)."""

    SNAPSHOT_ANALYSIS = "snapshot_analysis"
    EXPANDED_ANALYSIS = "expanded_analysis"
    DEEP_ANALYSIS = "deep_analysis"


@dataclass
class LLMMessage:
    """A single chat turn: ``role`` is "system", "user" or "assistant"."""

    role: str
    content: str


@dataclass
class CompletionRequest:
    """Fully resolved parameters for one provider call."""

    messages: list[LLMMessage]
    model: str
    max_tokens: int
    temperature: float
    json_mode: bool


@dataclass
class RawCompletion:
    """What an adapter reads back from its SDK response."""

    content: str | None
    input_tokens: int
    output_tokens: int
    finish_reason: str


@dataclass
class LLMResponse:
    """Completion returned to the analysis processor.

    Attributes:
        content: Model output (None when the provider returned no text).
        model: Model that served the call.
        input_tokens: Prompt tokens billed by the provider.
        output_tokens: Completion tokens billed by the provider.
        finish_reason: Provider stop reason ("stop", "length", "end_turn", ...).
        latency_ms: Wall time of the SDK call.
    """

    content: str | None
    model: str
    input_tokens: int
    output_tokens: int
    finish_reason: str
    latency_ms: float

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class LLMProvider(ABC):
    """Base class for AI provider adapters."""

    def __init__(self, config: "ProviderConfig") -> None:
        self.config = config

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Identifier used in logs and by the factory ("openai", "claude")."""
        ...

    @abstractmethod
    async def _send(self, request: CompletionRequest) -> RawCompletion:
        """Perform one SDK call.

        Raises:
            ProviderError: SDK failures, already classified.
        """
        ...

    def resolve_model(self, model_override: str | None) -> str:
        """The routed model when given, else the configured default."""
        return model_override or self.config.default_model

    async def complete(
        self,
        messages: list[LLMMessage],
        task: TaskType,
        max_tokens: int | None = None,
        temperature: float | None = None,
        json_mode: bool = False,
        model_override: str | None = None,
    ) -> LLMResponse:
        """Generate one completion.

        Args:
            messages: Conversation, system message first.
            task: Analysis task, for logging.
            max_tokens: Output cap; defaults to ``config.default_max_tokens``.
            temperature: Sampling temperature; defaults to the configured one.
            json_mode: Ask the provider for a bare JSON object.
            model_override: Model chosen by the mode router.

        Returns:
            LLMResponse with content, token usage and latency.

        Raises:
            ProviderError: The classified provider failure.
        """
        request = CompletionRequest(
            messages=messages,
            model=self.resolve_model(model_override),
            max_tokens=max_tokens if max_tokens is not None else self.config.default_max_tokens,
            temperature=(
                temperature if temperature is not None else self.config.default_temperature
            ),
            json_mode=json_mode,
        )
        log = logger.bind(
            provider=self.provider_name, model=request.model, task=task.value
        )
        log.info("llm_request_start", message_count=len(messages))

        started = time.monotonic()
        try:
            raw = await self._send(request)
        except ProviderError as e:
            log.error("llm_request_failed", error_type=type(e).__name__, error=str(e))
            raise
        latency_ms = (time.monotonic() - started) * 1000

        log.info(
            "llm_request_complete",
            input_tokens=raw.input_tokens,
            output_tokens=raw.output_tokens,
            latency_ms=latency_ms,
        )
        return LLMResponse(
            content=raw.content,
            model=request.model,
            input_tokens=raw.input_tokens,
            output_tokens=raw.output_tokens,
            finish_reason=raw.finish_reason,
            latency_ms=latency_ms,
        )
