import time
from collections import deque
from unittest.mock import patch

import pytest

from main import app
from utils import rate_limit
from utils.rate_limit import RATE_LIMITS, check_rate_limit


@pytest.mark.asyncio
async def test_local_window_allows_up_to_limit():
    with patch("utils.rate_limit.get_redis", return_value=None):
        results = [await check_rate_limit("acct", "payment") for _ in range(RATE_LIMITS["payment"] + 1)]

    assert all(r.allowed for r in results[:-1])
    assert results[-1].allowed is False
    assert results[-1].remaining == 0
    assert results[-1].retry_after >= 1


@pytest.mark.asyncio
async def test_windows_are_per_account_and_bucket():
    with patch("utils.rate_limit.get_redis", return_value=None):
        for _ in range(RATE_LIMITS["payment"]):
            await check_rate_limit("acct", "payment")

        assert (await check_rate_limit("acct", "payment")).allowed is False
        assert (await check_rate_limit("other", "payment")).allowed is True
        assert (await check_rate_limit("acct", "credits")).allowed is True


@pytest.mark.asyncio
async def test_redis_errors_fall_back_to_local_window():
    class BrokenRedis:
        def pipeline(self, transaction=True):
            raise ConnectionError("redis down")

    with patch("utils.rate_limit.get_redis", return_value=BrokenRedis()):
        result = await check_rate_limit("acct", "generation")

    assert result.allowed is True
    assert "ratelimit:generation:acct" in rate_limit._local_windows


@pytest.mark.asyncio
async def test_429_carries_rate_limit_headers(client):
    app.state.disable_rate_limits = False

    with patch("utils.rate_limit.get_redis", return_value=None):
        responses = [await client.post("/credits/deduct", json={"amount": 1}) for _ in range(6)]

    # payment bucket is 5, credits bucket is 30: all six deductions pass
    assert all(r.status_code == 200 for r in responses)

    with patch("utils.rate_limit.get_redis", return_value=None):
        purchases = [await client.post("/credits/purchase", json={"pack_id": "nope"}) for _ in range(6)]

    limited = purchases[-1]
    assert limited.status_code == 429
    assert limited.headers["X-RateLimit-Limit"] == "5"
    assert limited.headers["X-RateLimit-Remaining"] == "0"
    assert int(limited.headers["Retry-After"]) >= 1
    assert "X-RateLimit-Reset" in limited.headers
    assert limited.json()["retryAfter"] >= 1


@pytest.mark.asyncio
async def test_idle_local_windows_are_evicted(monkeypatch):
    now = time.time()
    rate_limit._local_windows["ratelimit:status:gone"] = deque([now - 120, now - 90])
    rate_limit._local_windows["ratelimit:status:recent"] = deque([now - 5])
    monkeypatch.setattr(rate_limit, "_local_last_evicted", 0.0)

    with patch("utils.rate_limit.get_redis", return_value=None):
        await check_rate_limit("acct", "status")

    assert "ratelimit:status:gone" not in rate_limit._local_windows
    assert "ratelimit:status:recent" in rate_limit._local_windows
    assert "ratelimit:status:acct" in rate_limit._local_windows
