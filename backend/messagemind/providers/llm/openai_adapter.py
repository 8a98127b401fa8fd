"""OpenAI-compatible chat-completions adapter.

Serves the default analysis models: with ``openai_base_url`` set it
targets a hosted open-model endpoint, otherwise OpenAI itself. SDK-level
retries are off; ``with_retries`` owns the retry budget.
"""

from typing import TYPE_CHECKING, Any

import openai
from openai import AsyncOpenAI

from messagemind.providers.errors import TransientError, error_for_status, retry_after_from_headers
from messagemind.providers.llm.base import CompletionRequest, LLMProvider, RawCompletion

if TYPE_CHECKING:
    from messagemind.providers.config import ProviderConfig


class OpenAIAdapter(LLMProvider):
    """Adapter for any endpoint speaking the chat-completions protocol."""

    def __init__(self, config: "ProviderConfig") -> None:
        super().__init__(config)
        self.client = AsyncOpenAI(
            api_key=config.openai_api_key,
            base_url=config.openai_base_url,
            timeout=config.request_timeout_seconds,
            max_retries=0,
        )

    @property
    def provider_name(self) -> str:
        return "openai"

    async def _send(self, request: CompletionRequest) -> RawCompletion:
        extra: dict[str, Any] = {}
        if request.json_mode:
            extra["response_format"] = {"type": "json_object"}

        try:
            response = await self.client.chat.completions.create(
                model=request.model,
                messages=[{"role": m.role, "content": m.content} for m in request.messages],
                max_tokens=request.max_tokens,
                temperature=request.temperature,
                **extra,
            )
        except openai.APIStatusError as e:
            raise error_for_status(
                e.status_code,
                str(e),
                retry_after=retry_after_from_headers(e.response.headers),
            ) from e
        except openai.APIConnectionError as e:
            # Includes APITimeoutError
            raise TransientError(str(e)) from e

        choice = response.choices[0]
        usage = response.usage
        return RawCompletion(
            content=choice.message.content,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
            finish_reason=choice.finish_reason or "stop",
        )
