"""AI provider layer: configuration, error taxonomy, retries and factory.

Analysis code depends on ``LLMProvider`` and the errors defined here,
never on a vendor SDK directly.
"""

from messagemind.providers.config import ProviderConfig
from messagemind.providers.errors import ProviderError, RateLimitError, TransientError
from messagemind.providers.factory import get_llm_provider, reset_providers

__all__ = [
    "ProviderConfig",
    "ProviderError",
    "RateLimitError",
    "TransientError",
    "get_llm_provider",
    "reset_providers",
]
