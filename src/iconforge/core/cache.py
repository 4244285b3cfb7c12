"""Content-addressed cache for generation results.

Identical requests (same normalised prompt, size, quality and style) map to
the same cache key, so a repeated request is answered from Redis instead of
spending another paid prediction.

The cache is strictly optional.  When no Redis URL is configured, or Redis
cannot be reached at startup, :class:`ImageCache` runs disabled and every
lookup is a miss.  Read and write failures at request time are logged and
swallowed so that a flaky cache never fails a generation.
"""

from __future__ import annotations

import hashlib
import json
import logging
from typing import Any

import redis.asyncio as redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

CACHE_KEY_PREFIX = "image:"


def build_cache_key(prompt: str, size: str | None, quality: str | None, style: str | None) -> str:
    """Return the cache key for a generation request.

    The prompt is lower-cased and stripped before hashing so that trivially
    different spellings of the same request share an entry.

    Args:
        prompt: The prompt text as submitted.
        size: Requested size, e.g. ``"1024x1024"``.
        quality: ``"standard"`` or ``"hd"``.
        style: ``"vivid"`` or ``"natural"``.

    Returns:
        ``"image:"`` followed by the MD5 hex digest of the normalised request.
    """
    normalized = json.dumps(
        {
            "prompt": prompt.lower().strip(),
            "size": size,
            "quality": quality,
            "style": style,
        },
        separators=(",", ":"),
    )
    return CACHE_KEY_PREFIX + hashlib.md5(normalized.encode("utf-8")).hexdigest()


class ImageCache:
    """Redis-backed JSON cache with a fixed time-to-live.

    Attributes:
        ttl_seconds: Lifetime of each cached entry.
    """

    def __init__(self, client: Any | None = None, ttl_seconds: int = 3600) -> None:
        self._client = client
        self.ttl_seconds = ttl_seconds

    @classmethod
    async def connect(cls, redis_url: str | None, ttl_seconds: int = 3600) -> ImageCache:
        """Connect to Redis, falling back to a disabled cache on failure."""
        if not redis_url:
            logger.info("Redis not configured, caching disabled")
            return cls(None, ttl_seconds)

        client = redis.from_url(redis_url, encoding="utf-8", decode_responses=True)
        try:
            await client.ping()
        except (RedisError, OSError) as e:
            logger.warning(f"Redis connection failed, continuing without cache: {e}")
            await client.aclose()
            return cls(None, ttl_seconds)

        logger.info("Redis connection established")
        return cls(client, ttl_seconds)

    @property
    def enabled(self) -> bool:
        return self._client is not None

    async def get(self, key: str) -> dict | None:
        """Return the cached value for *key*, or ``None`` on miss or error."""
        if self._client is None:
            return None
        try:
            cached = await self._client.get(key)
        except (RedisError, OSError) as e:
            logger.warning(f"Cache retrieval failed: {e}")
            return None
        if not cached:
            return None
        try:
            return json.loads(cached)
        except ValueError:
            logger.warning(f"Discarding unreadable cache entry {key}")
            return None

    async def set(self, key: str, value: dict) -> None:
        if self._client is None:
            return
        try:
            await self._client.setex(key, self.ttl_seconds, json.dumps(value))
        except (RedisError, OSError) as e:
            logger.warning(f"Cache storage failed: {e}")

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
