# Tests for the token-bucket limiter and its use on the OAuth endpoints.

import pytest

from src.common import rate_limiter
from src.common.rate_limiter import RateLimiter, RateLimitInfo
from src.core.config import settings

from helpers import CONFIDENTIAL_ID, CONFIDENTIAL_SECRET, basic_auth

CONFIDENTIAL_AUTH = basic_auth(CONFIDENTIAL_ID, CONFIDENTIAL_SECRET)


class TestRateLimiter:
    def test_allows_up_to_capacity(self):
        limiter = RateLimiter(rate=0.01, capacity=3)

        outcomes = [limiter.check("10.0.0.1").allowed for _ in range(4)]
        assert outcomes == [True, True, True, False]

    def test_keys_are_independent(self):
        limiter = RateLimiter(rate=0.01, capacity=1)

        assert limiter.check("10.0.0.1").allowed
        assert not limiter.check("10.0.0.1").allowed
        assert limiter.check("10.0.0.2").allowed

    def test_refills_over_time(self, monkeypatch):
        clock = [1000.0]
        monkeypatch.setattr(rate_limiter.time, "monotonic", lambda: clock[0])
        limiter = RateLimiter(rate=1.0, capacity=1)

        assert limiter.check("ip").allowed
        assert not limiter.check("ip").allowed
        clock[0] += 1.0
        assert limiter.check("ip").allowed

    def test_cleanup_forgets_idle_keys(self, monkeypatch):
        clock = [1000.0]
        monkeypatch.setattr(rate_limiter.time, "monotonic", lambda: clock[0])
        limiter = RateLimiter(rate=0.01, capacity=1)
        limiter.check("ip")

        clock[0] += 7200.0
        assert limiter.cleanup() == 1
        assert limiter.check("ip").allowed

    def test_reset(self):
        limiter = RateLimiter(rate=0.01, capacity=1)
        limiter.check("ip")
        limiter.reset()
        assert limiter.check("ip").allowed


class TestRateLimitInfo:
    def test_headers_when_allowed(self):
        headers = RateLimitInfo(allowed=True, limit=60, remaining=59, reset_after=1.5).headers()
        assert headers == {
            "X-RateLimit-Limit": "60",
            "X-RateLimit-Remaining": "59",
            "X-RateLimit-Reset": "2",
        }

    def test_retry_after_when_denied(self):
        headers = RateLimitInfo(allowed=False, limit=60, remaining=0, reset_after=3.2).headers()
        assert headers["Retry-After"] == "4"


class TestEndpoints:
    @pytest.fixture
    def tight_limit(self, monkeypatch):
        monkeypatch.setitem(rate_limiter.limiters, rate_limiter.TOKEN, RateLimiter(rate=0.01, capacity=2))

    def _introspect(self, client):
        return client.post("/oauth/introspect", data={"token": "x"}, headers=CONFIDENTIAL_AUTH)

    def test_headers_on_success(self, client):
        response = self._introspect(client)

        assert response.status_code == 200
        assert response.headers["x-ratelimit-limit"] == str(settings.TOKEN_RATE_LIMIT_PER_MINUTE)

    def test_token_endpoints_share_a_budget(self, client, tight_limit):
        assert self._introspect(client).status_code == 200
        assert client.post("/oauth/revoke", data={"token": "x"}, headers=CONFIDENTIAL_AUTH).status_code == 200

        response = client.post(
            "/oauth/token",
            data={"grant_type": "refresh_token", "refresh_token": "x"},
            headers=CONFIDENTIAL_AUTH,
        )
        assert response.status_code == 429
        assert response.json()["error"] == "too_many_requests"
        assert int(response.headers["retry-after"]) >= 1
        assert response.headers["cache-control"] == "no-store"

    def test_discovery_is_not_limited(self, client, tight_limit):
        for _ in range(5):
            assert client.get("/.well-known/openid-configuration").status_code == 200

    def test_can_be_disabled(self, client, tight_limit, monkeypatch):
        monkeypatch.setattr(settings, "RATE_LIMIT_ENABLED", False)

        for _ in range(5):
            assert self._introspect(client).status_code == 200
