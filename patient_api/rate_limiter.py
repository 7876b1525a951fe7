"""
Fixed-window rate limiting backed by Redis with an in-process counter cache.

Counters live in memory and are written through to Redis every few seconds,
so multiple API workers converge on a shared count without a Redis round trip
per request.
"""

import logging
import os
import time
from threading import Lock
from typing import Optional

import redis
from fastapi import HTTPException, Request, status

from . import config

logger = logging.getLogger(__name__)

redis_client: Optional[redis.Redis] = None

# {key: {"count": int, "reset_time": int, "last_sync": int}}
_windows: dict[str, dict] = {}
_windows_lock = Lock()

SYNC_INTERVAL_SECONDS = 10
CLEANUP_INTERVAL_SECONDS = 60
_last_cleanup = 0


def get_redis_client() -> redis.Redis:
    """Get or create the shared Redis client (REDIS_URL or REDIS_HOST/PORT)"""
    global redis_client

    if redis_client is None:
        redis_url = os.getenv("REDIS_URL")
        common = {
            "decode_responses": True,
            "socket_connect_timeout": 5,
            "socket_timeout": 10,
            "retry_on_timeout": True,
            "health_check_interval": 30,
        }
        if redis_url:
            logger.info("📡 Connecting to Redis via REDIS_URL")
            client = redis.from_url(redis_url, **common)
        else:
            host = os.getenv("REDIS_HOST", "localhost")
            port = int(os.getenv("REDIS_PORT", "6379"))
            logger.info(f"📡 Connecting to Redis at {host}:{port}")
            client = redis.Redis(
                host=host,
                port=port,
                password=os.getenv("REDIS_PASSWORD"),
                db=int(os.getenv("REDIS_DB", "0")),
                ssl=os.getenv("REDIS_SSL", "false").lower() == "true",
                **common,
            )
        client.ping()
        logger.info("✅ Redis connected")
        redis_client = client

    return redis_client


def _evict_expired_windows(now: int) -> None:
    """Drop finished windows; callers hold _windows_lock"""
    global _last_cleanup

    if now - _last_cleanup < CLEANUP_INTERVAL_SECONDS:
        return

    expired = [key for key, window in _windows.items() if now >= window["reset_time"]]
    for key in expired:
        del _windows[key]
    if expired:
        logger.debug(f"🧹 Cleaned up {len(expired)} expired rate limit windows")
    _last_cleanup = now


def check_rate_limit(
    key: str, limit: int, window_seconds: int, client: redis.Redis
) -> tuple[bool, int, int]:
    """
    Count one request against the window for key.

    Returns:
        Tuple of (is_allowed, current_count, ttl_seconds)
    """
    now = int(time.time())

    with _windows_lock:
        _evict_expired_windows(now)
        window = _windows.get(key)
        if window is None:
            window = {"count": 0, "reset_time": now + window_seconds, "last_sync": now}
            try:
                stored = client.get(key)
                ttl = client.ttl(key)
                if stored and ttl and ttl > 0:
                    window = {"count": int(stored), "reset_time": now + ttl, "last_sync": now}
            except redis.RedisError as e:
                logger.warning(f"⚠️ Could not load rate limit window from Redis: {e}")
            _windows[key] = window

        if now >= window["reset_time"]:
            window.update(count=0, reset_time=now + window_seconds, last_sync=0)

        allowed = window["count"] < limit
        if allowed:
            window["count"] += 1

        if now - window["last_sync"] >= SYNC_INTERVAL_SECONDS:
            try:
                client.set(key, window["count"], ex=max(1, window["reset_time"] - now))
                window["last_sync"] = now
            except redis.RedisError as e:
                logger.warning(f"⚠️ Failed to sync rate limit window to Redis: {e}")

        return allowed, window["count"], max(0, window["reset_time"] - now)


def client_ip(request: Request) -> str:
    """
    Client address for rate limiting.

    X-Forwarded-For is only read when the peer is a trusted proxy, and the
    nearest hop that is not itself a trusted proxy wins.
    """
    peer = request.client.host if request.client else "unknown"
    forwarded = request.headers.get("X-Forwarded-For")
    if not forwarded or peer not in config.TRUSTED_PROXY_IPS:
        return peer

    hops = [hop.strip() for hop in forwarded.split(",") if hop.strip()]
    for hop in reversed(hops):
        if hop not in config.TRUSTED_PROXY_IPS:
            return hop
    return peer


def create_rate_limiter(limit: int, window_seconds: int, key_prefix: str = "rate_limit"):
    """
    Build a per-IP rate limit dependency.

    Fails closed: when Redis is unreachable the request is rejected with 503.
    """

    async def rate_limiter(request: Request):
        key = f"{key_prefix}:{client_ip(request)}"
        try:
            allowed, count, ttl = check_rate_limit(key, limit, window_seconds, get_redis_client())
        except redis.RedisError as e:
            logger.error(f"❌ Rate limiting unavailable: {e}")
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Rate limiting service temporarily unavailable",
            ) from e

        if not allowed:
            logger.warning(f"🚫 Rate limit exceeded for {key_prefix} ({count}/{limit})")
            raise HTTPException(
                status_code=429,
                detail=f"Too many requests. Try again in {ttl} seconds.",
                headers={"Retry-After": str(ttl)},
            )

    return rate_limiter


# Sign-in and sign-up attempts per IP
rate_limit_auth = create_rate_limiter(limit=20, window_seconds=900, key_prefix="auth")

# Inbound pharmacy and telehealth webhooks per IP
rate_limit_webhook = create_rate_limiter(limit=100, window_seconds=60, key_prefix="webhook")
