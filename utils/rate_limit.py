"""
Rate Limiting
=============
Per-account sliding windows (60 s) kept in Redis sorted sets.

When Redis is not configured or unreachable the limiter keeps working with
an in-process window instead of rejecting traffic.
"""

import asyncio
import math
import time
import uuid
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, Optional

import redis.asyncio as redis
from fastapi import Depends, Request

from config.settings import get_settings
from errors import RateLimited
from utils.auth import get_current_user_id


WINDOW_SECONDS = 60

RATE_LIMITS: Dict[str, int] = {
    "generation": 10,
    "status": 60,
    "payment": 5,
    "upload": 20,
    "credits": 30,
    "general": 100,
}


@dataclass
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset: int  # epoch seconds when the oldest request leaves the window

    @property
    def retry_after(self) -> int:
        return max(1, math.ceil(self.reset - time.time()))


_local_windows: Dict[str, Deque[float]] = {}
_local_lock = asyncio.Lock()
_local_last_evicted = 0.0

_redis_client: Optional[redis.Redis] = None


def get_redis() -> Optional[redis.Redis]:
    global _redis_client
    url = get_settings().REDIS_URL
    if not url:
        return None
    if _redis_client is None:
        _redis_client = redis.from_url(url, decode_responses=True)
    return _redis_client


def _evict_idle_windows(now: float, window_seconds: int):
    """Drop windows whose every request has left the window. Runs at most once per window."""
    global _local_last_evicted
    if now - _local_last_evicted < window_seconds:
        return
    _local_last_evicted = now
    for key in [k for k, w in _local_windows.items() if not w or w[-1] <= now - window_seconds]:
        del _local_windows[key]


async def _check_local(key: str, limit: int, window_seconds: int) -> RateLimitResult:
    now = time.time()
    async with _local_lock:
        _evict_idle_windows(now, window_seconds)
        window = _local_windows.setdefault(key, deque())
        while window and window[0] <= now - window_seconds:
            window.popleft()
        allowed = len(window) < limit
        if allowed:
            window.append(now)
        oldest = window[0] if window else now
        return RateLimitResult(
            allowed=allowed,
            limit=limit,
            remaining=max(0, limit - len(window)),
            reset=math.ceil(oldest + window_seconds),
        )


async def _check_redis(client: redis.Redis, key: str, limit: int, window_seconds: int) -> RateLimitResult:
    now = time.time()
    member = f"{now}:{uuid.uuid4().hex[:8]}"

    async with client.pipeline(transaction=True) as pipe:
        pipe.zremrangebyscore(key, 0, now - window_seconds)
        pipe.zadd(key, {member: now})
        pipe.zcard(key)
        pipe.zrange(key, 0, 0, withscores=True)
        pipe.expire(key, window_seconds)
        _, _, count, oldest, _ = await pipe.execute()

    allowed = count <= limit
    if not allowed:
        # Rejected requests do not occupy the window
        await client.zrem(key, member)
        count -= 1

    oldest_score = oldest[0][1] if oldest else now
    return RateLimitResult(
        allowed=allowed,
        limit=limit,
        remaining=max(0, limit - count),
        reset=math.ceil(oldest_score + window_seconds),
    )


async def check_rate_limit(identifier: str, bucket: str) -> RateLimitResult:
    limit = RATE_LIMITS.get(bucket, RATE_LIMITS["general"])
    key = f"ratelimit:{bucket}:{identifier}"

    client = get_redis()
    if client is not None:
        try:
            return await _check_redis(client, key, limit, WINDOW_SECONDS)
        except Exception as e:
            print(f"⚠️ Rate limiter Redis error, using in-process window: {e}")

    return await _check_local(key, limit, WINDOW_SECONDS)


def rate_limit(bucket: str):
    """
    FastAPI dependency enforcing the `bucket` limit for the authenticated
    account. Resolves to the account id so routes can depend on it directly.
    """

    async def _dependency(request: Request, user_id: str = Depends(get_current_user_id)) -> str:
        if getattr(request.app.state, "disable_rate_limits", False) or not get_settings().RATE_LIMITS_ENABLED:
            return user_id

        result = await check_rate_limit(user_id, bucket)
        if not result.allowed:
            print(f"⚠️ Rate limit hit: {bucket} for {user_id}")
            raise RateLimited(
                limit=result.limit,
                remaining=result.remaining,
                retry_after=result.retry_after,
                reset=result.reset,
            )
        return user_id

    return _dependency
