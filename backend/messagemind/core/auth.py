"""Session token helpers.

The account id is the JWT ``sub`` claim of the session cookie issued by
the sign-in service. Tokens are HS256 with audience, issuer and expiry
checked on every decode.
"""

import uuid
from datetime import UTC, datetime, timedelta

import jwt

from messagemind.core.config import settings

_ALGORITHM = "HS256"
_DEFAULT_EXPIRATION = timedelta(hours=1)


def create_session_token(
    account_id: uuid.UUID,
    *,
    secret: str | None = None,
    expires_delta: timedelta | None = None,
) -> str:
    """Create a signed session token for an account.

    Args:
        account_id: Account (user) UUID for the sub claim.
        secret: Signing secret. Defaults to ``settings.auth_secret``.
        expires_delta: Time until expiration. Defaults to 1 hour.

    Returns:
        Encoded JWT string.
    """
    now = datetime.now(UTC)
    payload = {
        "sub": str(account_id),
        "aud": settings.auth_audience,
        "iss": settings.auth_issuer,
        "exp": now + (expires_delta or _DEFAULT_EXPIRATION),
        "iat": now,
    }
    return jwt.encode(
        payload,
        secret or settings.auth_secret.get_secret_value(),
        algorithm=_ALGORITHM,
    )


def account_id_from_token(token: str | None) -> uuid.UUID | None:
    """Return the account id of a valid session token, else None.

    Expired, forged, wrong-audience and malformed tokens all return None;
    callers decide whether that is a 401 or an anonymous rate-limit key.
    """
    if not token:
        return None
    try:
        payload = jwt.decode(
            token,
            settings.auth_secret.get_secret_value(),
            algorithms=[_ALGORITHM],
            audience=settings.auth_audience,
            issuer=settings.auth_issuer,
        )
        return uuid.UUID(payload["sub"])
    except (jwt.InvalidTokenError, KeyError, ValueError, TypeError, AttributeError):
        return None
