"""
Unit tests for the fixed-window rate limiter
"""

import time
from unittest.mock import MagicMock

import pytest
from fastapi import HTTPException

from api.rate_limit import RateLimiter, get_client_ip
from core.config import settings


@pytest.fixture
def limiter():
    return RateLimiter("test", 3, 60, "Slow down", "1 minute")


@pytest.fixture
def trusted_proxy(monkeypatch):
    monkeypatch.setattr(settings, "TRUST_PROXY_HEADERS", True)


def _request(ip="10.0.0.1", forwarded=None):
    request = MagicMock()
    request.headers = {"x-forwarded-for": forwarded} if forwarded else {}
    request.client.host = ip
    request.url.path = "/api/traffic/live"
    return request


def _response():
    response = MagicMock()
    response.headers = {}
    return response


def test_allows_up_to_the_limit(limiter):
    remaining = [limiter.hit("a").remaining for _ in range(3)]

    assert remaining == [2, 1, 0]
    blocked = limiter.hit("a")
    assert blocked.allowed is False
    assert 1 <= blocked.retry_after <= 60


def test_clients_are_counted_separately(limiter):
    for _ in range(3):
        limiter.hit("a")

    assert limiter.hit("b").allowed is True


def test_window_resets():
    short = RateLimiter("short", 1, 1, "Slow down", "1 second")
    assert short.hit("a").allowed is True
    assert short.hit("a").allowed is False

    time.sleep(1.1)

    status = short.hit("a")
    assert status.allowed is True
    assert status.remaining == 0


def test_reset_clears_counters(limiter):
    for _ in range(3):
        limiter.hit("a")
    limiter.reset()

    assert limiter.hit("a").allowed is True


def test_limiters_do_not_share_counters(limiter):
    other = RateLimiter("other", 3, 60, "Slow down", "1 minute")
    for _ in range(3):
        limiter.hit("a")

    assert other.hit("a").allowed is True


def test_client_ip_ignores_forwarded_header_by_default():
    assert get_client_ip(_request(ip="10.0.0.9", forwarded="41.90.1.2")) == "10.0.0.9"


def test_client_ip_uses_forwarded_header_behind_trusted_proxy(trusted_proxy):
    assert get_client_ip(_request(forwarded="41.90.1.2, 10.0.0.1")) == "41.90.1.2"
    assert get_client_ip(_request(ip="10.0.0.9")) == "10.0.0.9"


@pytest.mark.asyncio
async def test_rotating_forwarded_header_does_not_bypass_limit(limiter):
    for i in range(3):
        await limiter(_request(forwarded=f"203.0.113.{i}"), _response())

    with pytest.raises(HTTPException) as exc_info:
        await limiter(_request(forwarded="203.0.113.99"), _response())

    assert exc_info.value.status_code == 429


@pytest.mark.asyncio
async def test_dependency_sets_headers(limiter):
    response = _response()

    await limiter(_request(), response)

    assert response.headers["X-RateLimit-Limit"] == "3"
    assert response.headers["X-RateLimit-Remaining"] == "2"


@pytest.mark.asyncio
async def test_dependency_raises_429(limiter):
    for _ in range(3):
        await limiter(_request(), _response())

    with pytest.raises(HTTPException) as exc_info:
        await limiter(_request(), _response())

    exc = exc_info.value
    assert exc.status_code == 429
    assert exc.detail == {"error": "Slow down", "retryAfter": "1 minute", "limit": "3 requests per 1 minute"}
    assert 1 <= int(exc.headers["Retry-After"]) <= 60
    assert exc.headers["X-RateLimit-Remaining"] == "0"
