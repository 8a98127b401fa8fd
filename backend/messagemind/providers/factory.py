"""AI provider selection.

``LLM_PROVIDER`` picks the adapter once per process; the instance (and
its SDK connection pool) is then shared by every analysis.
"""

from collections.abc import Callable

from messagemind.providers.config import ProviderConfig
from messagemind.providers.llm.base import LLMProvider
from messagemind.providers.llm.claude_adapter import ClaudeAdapter
from messagemind.providers.llm.mock_adapter import MockLLMProvider
from messagemind.providers.llm.openai_adapter import OpenAIAdapter

_BUILDERS: dict[str, Callable[[ProviderConfig], LLMProvider]] = {
    "openai": OpenAIAdapter,
    "claude": ClaudeAdapter,
    "mock": lambda _config: MockLLMProvider(),
}

_llm_provider: LLMProvider | None = None


def get_llm_provider(config: ProviderConfig | None = None) -> LLMProvider:
    """Return the process-wide provider, building it on first use.

    Args:
        config: Used only when no provider exists yet. Defaults to
            ``ProviderConfig.from_env()``.

    Raises:
        ValueError: ``llm_provider`` names no known adapter.
    """
    global _llm_provider

    if _llm_provider is None:
        config = config or ProviderConfig.from_env()
        builder = _BUILDERS.get(config.llm_provider)
        if builder is None:
            raise ValueError(f"Unknown LLM provider: {config.llm_provider}")
        _llm_provider = builder(config)

    return _llm_provider


def reset_providers() -> None:
    """Drop the shared provider (tests, and after settings change)."""
    global _llm_provider
    _llm_provider = None
