"""Mock LLM provider for testing and local development.

Returns deterministic, schema-valid analysis JSON per task unless a test
configures something else.
"""

import json
from typing import Any

from messagemind.providers.llm.base import (
    CompletionRequest,
    LLMMessage,
    LLMProvider,
    LLMResponse,
    RawCompletion,
    TaskType,
)

_SNAPSHOT = {
    "intent": "Keeping the conversation going",
    "tone": "friendly",
    "category": "casual",
    "emotional_risk": "low",
    "recommended_timing": "Reply within a few hours",
    "interest_level": "medium",
    "suggested_replies": [
        "Haha that sounds fun, how did it go?",
        "Nice! Tell me more about it.",
    ],
}

_EXPANDED = {
    **_SNAPSHOT,
    "explanation": [
        "The message is light and open-ended.",
        "A question back keeps momentum without pressure.",
    ],
    "suggested_replies": [
        "Haha that sounds fun, how did it go?",
        "Nice! Tell me more about it.",
        "Okay now I'm curious, what happened next?",
    ],
}

_DEEP = {
    **_SNAPSHOT,
    "interest_level": "high",
    "explanation": {
        "meaning_breakdown": "They are sharing something personal and inviting a response.",
        "emotional_context": "Relaxed and upbeat.",
        "relationship_signals": "Investment is mutual so far.",
        "hidden_patterns": "Questions at the end of messages signal interest.",
    },
    "suggested_replies": {
        "playful": "Wait, you can't leave me hanging like that.",
        "confident": "Sounds like you had a great time. Tell me about it over coffee?",
        "safe": "That sounds fun, how did it go?",
        "bold": "I like hearing about your adventures. Let's make the next one together.",
        "escalation": "We should plan something this weekend.",
    },
    "conversation_flow": [
        {"you": "Ask a follow-up question", "them_reaction": "Shares more"},
        {"you_next": "Relate with a short story of your own"},
        {"you_next": "Suggest meeting up", "them_reaction": "Agrees or counters"},
    ],
    "escalation_advice": "Suggest a low-pressure plan once the banter flows.",
    "risk_mitigation": "Keep it light if replies get shorter.",
}

DEFAULT_RESPONSES: dict[TaskType, str] = {
    TaskType.SNAPSHOT_ANALYSIS: json.dumps(_SNAPSHOT),
    TaskType.EXPANDED_ANALYSIS: json.dumps(_EXPANDED),
    TaskType.DEEP_ANALYSIS: json.dumps(_DEEP),
}


class MockLLMProvider(LLMProvider):
    """Mock provider for testing.

    Attributes:
        responses: Pre-configured responses keyed by TaskType.
        calls: Record of all method invocations for test assertions.
        last_task: The most recent TaskType used in a call.
        error: Exception raised by every call when set.
    """

    @property
    def provider_name(self) -> str:
        """Return 'mock' for testing."""
        return "mock"

    def __init__(self, responses: dict[TaskType, str] | None = None) -> None:
        """Initialize mock provider with optional pre-configured responses.

        Args:
            responses: Dict mapping TaskType to response content. Tasks not
                listed return the canned schema-valid analysis.
        """
        # No ProviderConfig needed for the mock
        self.responses: dict[TaskType, str] = {**DEFAULT_RESPONSES, **(responses or {})}
        self.calls: list[dict[str, Any]] = []
        self.last_task: TaskType | None = None
        self.error: Exception | None = None

    def set_response(self, task: TaskType, content: str) -> None:
        """Set or update the response for a specific task type."""
        self.responses[task] = content

    def set_error(self, error: Exception | None) -> None:
        """Make every subsequent call raise ``error`` (None clears it)."""
        self.error = error

    def resolve_model(self, model_override: str | None) -> str:
        """Echo the requested model, or 'mock-model'."""
        return model_override or "mock-model"

    async def _send(self, request: CompletionRequest) -> RawCompletion:
        if self.error is not None:
            raise self.error
        return RawCompletion(
            content=self.responses[self.last_task or TaskType.SNAPSHOT_ANALYSIS],
            input_tokens=100,
            output_tokens=50,
            finish_reason="stop",
        )

    async def complete(
        self,
        messages: list[LLMMessage],
        task: TaskType,
        max_tokens: int | None = None,
        temperature: float | None = None,
        json_mode: bool = False,
        model_override: str | None = None,
    ) -> LLMResponse:
        """Record the call, then answer with the configured response for ``task``.

        Returns:
            LLMResponse with fixed token counts and a 10ms latency.
        """
        self.calls.append(
            {
                "method": "complete",
                "messages": messages,
                "task": task,
                "kwargs": {
                    "max_tokens": max_tokens,
                    "temperature": temperature,
                    "json_mode": json_mode,
                    "model_override": model_override,
                },
            }
        )
        self.last_task = task

        model = self.resolve_model(model_override)
        raw = await self._send(
            CompletionRequest(
                messages=messages,
                model=model,
                max_tokens=max_tokens or 0,
                temperature=temperature or 0.0,
                json_mode=json_mode,
            )
        )
        return LLMResponse(
            content=raw.content,
            model=model,
            input_tokens=raw.input_tokens,
            output_tokens=raw.output_tokens,
            finish_reason=raw.finish_reason,
            latency_ms=10,
        )

    def assert_called_with_task(self, task: TaskType) -> None:
        """Test helper to verify a task was called.

        Raises:
            AssertionError: If the task was not called.
        """
        tasks_called = [c["task"] for c in self.calls]
        assert task in tasks_called, f"Expected {task}, got {tasks_called}"
