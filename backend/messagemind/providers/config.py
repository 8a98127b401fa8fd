"""Settings consumed by the AI provider layer."""

import os
from dataclasses import dataclass

from messagemind.core.config import settings


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


@dataclass
class ProviderConfig:
    """What an adapter and the retry loop need to know.

    ``llm_provider`` selects the adapter ("openai", "claude" or "mock").
    Empty API keys are stored as None so the SDKs fall back to their own
    environment lookup. Retry delays are in milliseconds; the cap bounds
    each individual wait, not the total.
    """

    llm_provider: str = "openai"

    openai_api_key: str | None = None
    openai_base_url: str | None = None
    anthropic_api_key: str | None = None

    default_model: str = "llama-3.3-70b-versatile"
    default_max_tokens: int = 600
    default_temperature: float = 0.7
    request_timeout_seconds: float = 60.0

    max_retries: int = 2
    retry_base_delay_ms: int = 500
    retry_max_delay_ms: int = 8000

    @classmethod
    def from_env(cls) -> "ProviderConfig":
        """Build from ``settings``, plus LLM_MAX_RETRIES / LLM_RETRY_*_DELAY_MS."""
        return cls(
            llm_provider=settings.llm_provider,
            openai_api_key=settings.openai_api_key or None,
            openai_base_url=settings.openai_base_url or None,
            anthropic_api_key=settings.anthropic_api_key or None,
            default_model=settings.default_analysis_model,
            request_timeout_seconds=settings.analysis_timeout_seconds,
            max_retries=_env_int("LLM_MAX_RETRIES", cls.max_retries),
            retry_base_delay_ms=_env_int("LLM_RETRY_BASE_DELAY_MS", cls.retry_base_delay_ms),
            retry_max_delay_ms=_env_int("LLM_RETRY_MAX_DELAY_MS", cls.retry_max_delay_ms),
        )
