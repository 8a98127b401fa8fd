"""Tests for rate limiting: 429 envelope, key function and enforcement.

Enforcement is checked on a minimal app with a low limit so the real
application's limiter storage is not shared with other tests.
"""

import json
from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from fastapi import FastAPI, Request
from httpx import ASGITransport, AsyncClient
from pydantic import SecretStr
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.requests import Request as StarletteRequest

from messagemind.core.config import settings
from messagemind.core.rate_limiting import (
    _rate_limit_key_func,
    rate_limit_exceeded_handler,
)
from tests.conftest import TEST_AUTH_SECRET, TEST_USER_ID, create_test_jwt


def _request() -> StarletteRequest:
    return StarletteRequest(
        {"type": "http", "method": "POST", "path": "/api/v1/analyses"}
    )


class TestRateLimitExceededHandler:
    """Tests for rate limit exceeded response format."""

    def test_returns_429_envelope(self):
        """Rate limit response uses the standard error envelope."""
        exc = MagicMock()
        exc.detail = "10 per 1 minute"

        response = rate_limit_exceeded_handler(_request(), exc)
        body = json.loads(response.body.decode())

        assert response.status_code == 429
        assert body["error"]["code"] == "RATE_LIMITED"
        assert "10 per 1 minute" in body["error"]["message"]

    def test_retry_after_is_window_length(self):
        """Retry-After is the length of the exceeded window."""
        exc = MagicMock()
        exc.detail = "100 per 1 hour"
        exc.limit.limit.get_expiry.return_value = 3600

        response = rate_limit_exceeded_handler(_request(), exc)

        assert response.headers.get("Retry-After") == "3600"

    def test_retry_after_fallback(self):
        """Retry-After falls back to 60 without limit information."""
        exc = MagicMock(spec=["detail"])
        exc.detail = "unexpected format"

        response = rate_limit_exceeded_handler(_request(), exc)

        assert response.headers.get("Retry-After") == "60"


class TestRateLimitKeyFunction:
    """Per-user keys when auth is enabled, IP otherwise."""

    @pytest.fixture
    def auth_enabled_settings(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Enable auth with the test secret for one test."""
        monkeypatch.setattr(settings, "auth_enabled", True)
        monkeypatch.setattr(settings, "auth_secret", SecretStr(TEST_AUTH_SECRET))

    def _make_request(
        self, *, client_host: str = "192.168.1.1", cookies: dict | None = None
    ) -> MagicMock:
        request = MagicMock()
        request.client.host = client_host
        request.cookies = cookies or {}
        return request

    def test_ip_when_auth_disabled(self, monkeypatch: pytest.MonkeyPatch):
        """Local mode keys on the client address."""
        monkeypatch.setattr(settings, "auth_enabled", False)

        assert _rate_limit_key_func(self._make_request(client_host="10.0.0.1")) == (
            "10.0.0.1"
        )

    def test_user_key_for_valid_jwt(self, auth_enabled_settings):  # noqa: ARG002
        """A valid session cookie keys on the account id."""
        request = self._make_request(
            cookies={settings.auth_cookie_name: create_test_jwt()}
        )

        assert _rate_limit_key_func(request) == f"account:{TEST_USER_ID}"

    @pytest.mark.parametrize(
        "token",
        [
            None,
            "invalid-jwt-token",
            create_test_jwt(expires_delta=timedelta(hours=-1)),
            create_test_jwt(secret="different-secret-that-does-not-match-the-real-one"),
        ],
        ids=["no-cookie", "garbage", "expired", "wrong-secret"],
    )
    def test_unauth_key_for_bad_tokens(
        self,
        auth_enabled_settings,  # noqa: ARG002
        token: str | None,
    ):
        """Anything but a valid token keys on 'unauth:{ip}'."""
        cookies = {settings.auth_cookie_name: token} if token else None
        request = self._make_request(client_host="198.51.100.10", cookies=cookies)

        assert _rate_limit_key_func(request) == "unauth:198.51.100.10"


class TestEnforcement:
    """slowapi blocks requests beyond the configured limit."""

    @staticmethod
    def _build_app(limit: str) -> FastAPI:
        limiter = Limiter(key_func=get_remote_address)
        app = FastAPI()
        app.state.limiter = limiter
        app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

        @app.post("/submit")
        @limiter.limit(lambda: limit)
        async def submit(request: Request) -> dict[str, str]:  # noqa: ARG001
            return {"status": "queued"}

        return app

    async def test_requests_beyond_limit_get_429(self):
        """The third request inside the window is rejected with Retry-After."""
        transport = ASGITransport(app=self._build_app("2/minute"))
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            statuses = [(await ac.post("/submit")).status_code for _ in range(3)]
            blocked = await ac.post("/submit")

        assert statuses == [200, 200, 429]
        assert blocked.json()["error"]["code"] == "RATE_LIMITED"
        assert blocked.headers["Retry-After"] == "60"
