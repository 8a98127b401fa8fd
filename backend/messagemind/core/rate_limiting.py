"""Rate limiting for analysis submissions (slowapi).

Each submission may end in a paid AI call, so ``POST /analyses`` is
limited per account (``settings.rate_limit_analysis``). Signed-in
requests are keyed on the account id from the session token; requests
without a valid token share a per-IP bucket, and local mode (auth
disabled) keys on IP only.

Usage in routers:
    from messagemind.core.rate_limiting import limiter

    @router.post("")
    @limiter.limit(lambda: settings.rate_limit_analysis)
    async def submit_analysis(request: Request, ...):
        ...
"""

from fastapi import Request, Response
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from messagemind.core.auth import account_id_from_token
from messagemind.core.config import settings
from messagemind.core.responses import error_response

_DEFAULT_RETRY_AFTER_SECONDS = 60


def _rate_limit_key_func(request: Request) -> str:
    """Bucket key: ``{ip}`` (local), ``account:{id}`` or ``unauth:{ip}``."""
    if not settings.auth_enabled:
        return get_remote_address(request)

    account_id = account_id_from_token(request.cookies.get(settings.auth_cookie_name))
    if account_id is not None:
        return f"account:{account_id}"
    return f"unauth:{get_remote_address(request)}"


# In-memory storage (single instance). For multi-instance deployments,
# configure Redis storage via RATELIMIT_STORAGE_URL.
limiter = Limiter(
    key_func=_rate_limit_key_func,
    enabled=settings.rate_limit_enabled,
)


def _retry_after_seconds(exc: RateLimitExceeded) -> int:
    """Length of the exceeded window (60 for "10/minute")."""
    try:
        return int(exc.limit.limit.get_expiry())
    except (AttributeError, TypeError, ValueError):
        return _DEFAULT_RETRY_AFTER_SECONDS


def rate_limit_exceeded_handler(
    _request: Request,
    exc: RateLimitExceeded,
) -> Response:
    """Render a 429 RATE_LIMITED envelope with a Retry-After header.

    Args:
        request: The incoming request.
        exc: The rate limit exception raised by slowapi.

    Returns:
        JSONResponse with status 429.
    """
    return error_response(
        429,
        "RATE_LIMITED",
        f"Rate limit exceeded: {exc.detail}",
        headers={"Retry-After": str(_retry_after_seconds(exc))},
    )
