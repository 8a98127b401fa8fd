"""Provider error taxonomy.

Every adapter reports failures as one of these classes, so the analysis
processor needs a single set of handlers whichever SDK is in use. The
retry loop only retries TransientError and RateLimitError; everything
else fails the analysis (and refunds it) on the first attempt.

``error_for_status`` maps an HTTP status and provider message onto the
taxonomy. The OpenAI-compatible and Anthropic SDKs both raise status
errors carrying ``status_code`` and the raw response, so the adapters
share it.
"""

from collections.abc import Mapping

__all__ = [
    "ProviderError",
    "RateLimitError",
    "AuthenticationError",
    "ModelNotFoundError",
    "ContentFilterError",
    "ContextLengthError",
    "TransientError",
    "error_for_status",
    "retry_after_from_headers",
]

# Substrings providers use in 400 bodies for an oversized prompt
_CONTEXT_MARKERS = ("context_length", "prompt is too long", "maximum context")
_CONTENT_FILTER_MARKERS = ("content_policy", "content_filter", "safety")


class ProviderError(Exception):
    """Any failure talking to an AI provider."""


class RateLimitError(ProviderError):
    """The provider throttled the request (HTTP 429)."""

    def __init__(self, message: str, retry_after_seconds: float | None = None):
        """Initialize RateLimitError.

        Args:
            message: Error description from the provider.
            retry_after_seconds: Wait hint from the retry-after header, if sent.
        """
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


class AuthenticationError(ProviderError):
    """API key rejected (401/403)."""


class ModelNotFoundError(ProviderError):
    """The routed model does not exist on this provider."""


class ContentFilterError(ProviderError):
    """The provider refused the conversation on safety grounds."""


class ContextLengthError(ProviderError):
    """Prompt larger than the model's context window."""


class TransientError(ProviderError):
    """Connection failure, timeout or 5xx. Worth another attempt."""


def retry_after_from_headers(headers: Mapping[str, str] | None) -> float | None:
    """Seconds from a ``retry-after`` header, or None when absent or unparsable."""
    if not headers:
        return None
    value = headers.get("retry-after")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def error_for_status(
    status_code: int,
    message: str,
    *,
    retry_after: float | None = None,
) -> ProviderError:
    """Classify a provider HTTP error.

    Args:
        status_code: HTTP status returned by the provider.
        message: Provider error text (matched case-insensitively).
        retry_after: Wait hint for 429 responses.

    Returns:
        The ProviderError subclass instance to raise.
    """
    if status_code == 429:
        return RateLimitError(message, retry_after_seconds=retry_after)
    if status_code in (401, 403):
        return AuthenticationError(message)
    if status_code == 404:
        return ModelNotFoundError(message)
    if status_code >= 500:
        return TransientError(message)

    lowered = message.lower()
    if any(marker in lowered for marker in _CONTEXT_MARKERS):
        return ContextLengthError(message)
    if any(marker in lowered for marker in _CONTENT_FILTER_MARKERS):
        return ContentFilterError(message)
    return ProviderError(message)
