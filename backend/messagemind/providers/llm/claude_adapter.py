"""Anthropic adapter, the alternative analysis provider.

The mode router picks open-model names, so any non-Claude model falls
back to ``DEFAULT_CLAUDE_MODEL``. Anthropic takes the system prompt as a
separate parameter and has no JSON mode; the JSON instruction is
appended to the system prompt instead.
"""

from typing import TYPE_CHECKING

import anthropic
from anthropic import AsyncAnthropic

from messagemind.providers.errors import TransientError, error_for_status, retry_after_from_headers
from messagemind.providers.llm.base import (
    CompletionRequest,
    LLMMessage,
    LLMProvider,
    RawCompletion,
)

if TYPE_CHECKING:
    from messagemind.providers.config import ProviderConfig

DEFAULT_CLAUDE_MODEL = "claude-3-5-haiku-20241022"

_JSON_INSTRUCTION = (
    "Respond ONLY with valid JSON. No explanations, no markdown, just the JSON object."
)


def _split_system(messages: list[LLMMessage], json_mode: bool) -> tuple[str | None, list[dict]]:
    """Separate the system prompt from the conversation turns."""
    system_parts = [m.content for m in messages if m.role == "system"]
    turns = [{"role": m.role, "content": m.content} for m in messages if m.role != "system"]
    if json_mode:
        system_parts.append(
            f"IMPORTANT: {_JSON_INSTRUCTION}" if system_parts else _JSON_INSTRUCTION
        )
    return ("\n\n".join(system_parts) or None), turns


class ClaudeAdapter(LLMProvider):
    """Adapter for the Anthropic Messages API."""

    def __init__(self, config: "ProviderConfig") -> None:
        super().__init__(config)
        self.client = AsyncAnthropic(
            api_key=config.anthropic_api_key,
            timeout=config.request_timeout_seconds,
            max_retries=0,
        )

    @property
    def provider_name(self) -> str:
        return "claude"

    def resolve_model(self, model_override: str | None) -> str:
        """Honor the override only when it is a Claude model."""
        if model_override and model_override.startswith("claude-"):
            return model_override
        return DEFAULT_CLAUDE_MODEL

    async def _send(self, request: CompletionRequest) -> RawCompletion:
        system, turns = _split_system(request.messages, request.json_mode)

        try:
            response = await self.client.messages.create(
                model=request.model,
                system=system or anthropic.NOT_GIVEN,
                messages=turns,  # type: ignore[arg-type]
                max_tokens=request.max_tokens,
                temperature=request.temperature,
            )
        except anthropic.APIStatusError as e:
            # 529 (overloaded) lands in the 5xx branch
            raise error_for_status(
                e.status_code,
                str(e),
                retry_after=retry_after_from_headers(e.response.headers),
            ) from e
        except anthropic.APIConnectionError as e:
            raise TransientError(str(e)) from e

        text = "".join(block.text for block in response.content if block.type == "text")
        return RawCompletion(
            content=text or None,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            finish_reason=response.stop_reason or "unknown",
        )
