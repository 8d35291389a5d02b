"""Tests for the in-memory sliding-window rate limiter."""

from unittest.mock import MagicMock

import pytest
from fastapi import HTTPException

from collectdesk.middleware.rate_limit import (
    InMemoryRateLimiter,
    RateLimitConfig,
    client_ip,
)


def _request(headers=None, host="10.0.0.1"):
    request = MagicMock()
    request.headers = headers or {}
    request.client.host = host
    return request


class TestHit:

    def test_allows_up_to_limit(self):
        limiter = InMemoryRateLimiter()
        config = RateLimitConfig(max_requests=3, window_seconds=60)
        assert [limiter.hit("k", config) for _ in range(3)] == [0, 0, 0]
        assert limiter.hit("k", config) > 0

    def test_buckets_are_independent(self):
        limiter = InMemoryRateLimiter()
        config = RateLimitConfig(max_requests=1, window_seconds=60)
        assert limiter.hit("a", config) == 0
        assert limiter.hit("b", config) == 0
        assert limiter.hit("a", config) > 0

    def test_reset(self):
        limiter = InMemoryRateLimiter()
        config = RateLimitConfig(max_requests=1, window_seconds=60)
        limiter.hit("k", config)
        limiter.reset()
        assert limiter.hit("k", config) == 0


class TestCheckRateLimit:

    def test_raises_429_when_exceeded(self, monkeypatch):
        monkeypatch.setenv("TESTING", "0")
        limiter = InMemoryRateLimiter()
        request = _request()
        for _ in range(5):
            limiter.check_rate_limit(request, "admin_login")

        with pytest.raises(HTTPException) as exc_info:
            limiter.check_rate_limit(request, "admin_login")
        assert exc_info.value.status_code == 429
        assert exc_info.value.detail["error"] == "RATE_LIMIT_EXCEEDED"
        assert "Retry-After" in exc_info.value.headers

    def test_disabled_when_testing(self):
        limiter = InMemoryRateLimiter()
        request = _request()
        for _ in range(10):
            limiter.check_rate_limit(request, "admin_login")

    def test_unknown_rule_is_ignored(self, monkeypatch):
        monkeypatch.setenv("TESTING", "0")
        InMemoryRateLimiter().check_rate_limit(_request(), "no_such_rule")


class TestClientIp:

    def test_forwarded_for(self):
        assert client_ip(_request({"x-forwarded-for": "1.2.3.4, 10.0.0.2"})) == "1.2.3.4"

    def test_real_ip(self):
        assert client_ip(_request({"x-real-ip": "5.6.7.8"})) == "5.6.7.8"

    def test_peer_address(self):
        assert client_ip(_request()) == "10.0.0.1"
