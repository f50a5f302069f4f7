"""In-memory cache with TTL support."""

from __future__ import annotations

import asyncio
import time
from typing import Any

_cache: dict[str, tuple[float, Any]] = {}
_cache_lock = asyncio.Lock()


class CacheKeys:
    """Centralized cache key builders for consistency across endpoints."""

    @staticmethod
    def chats(user_email: str) -> str:
        """Cache key for a user's chat list."""
        return f"{CacheKeys.chats_prefix(user_email)}list"

    @staticmethod
    def chats_prefix(user_email: str) -> str:
        """Prefix for invalidating all chat list entries for a user."""
        return f"chats:{user_email.lower()}:"

    @staticmethod
    def placeholders(execution_id: str) -> str:
        """Cache key for the PHI placeholder table of a workflow execution."""
        return f"phi:{execution_id}"


async def get_cached(key: str) -> Any | None:
    now = time.monotonic()
    async with _cache_lock:
        entry = _cache.get(key)
        if not entry:
            return None
        expires_at, value = entry
        if now >= expires_at:
            _cache.pop(key, None)
            return None
        return value


async def set_cached(key: str, value: Any, ttl_seconds: int) -> None:
    expires_at = time.monotonic() + ttl_seconds
    async with _cache_lock:
        _cache[key] = (expires_at, value)


async def purge_expired() -> int:
    """Drop every expired entry and return how many were removed."""
    now = time.monotonic()
    async with _cache_lock:
        expired = [key for key, (expires_at, _value) in _cache.items() if now >= expires_at]
        for key in expired:
            _cache.pop(key, None)
        return len(expired)


async def clear_cache(prefix: str | None = None) -> None:
    async with _cache_lock:
        if prefix is None:
            _cache.clear()
            return
        for key in list(_cache.keys()):
            if key.startswith(prefix):
                _cache.pop(key, None)
