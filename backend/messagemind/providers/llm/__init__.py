"""Chat-completion providers used to run message analyses."""

from messagemind.providers.llm.base import (
    LLMMessage,
    LLMProvider,
    LLMResponse,
    TaskType,
)

__all__ = ["LLMMessage", "LLMProvider", "LLMResponse", "TaskType"]
