"""
Redis helpers: menu caching and login rate limiting.

Every method degrades gracefully: with Redis disabled or unreachable the
cache always misses and rate limits always allow the request.
"""
import os
import json
import logging
import time
import redis
from typing import Optional, List, Dict, Any, Tuple

logger = logging.getLogger(__name__)

MENU_CACHE_KEY = "menus:all"
MENU_VERSION_KEY = "menus:version"
RECONNECT_DELAY = 30


class RedisClient:
    """Lazily connected Redis client"""

    def __init__(self):
        self.enabled = os.getenv("REDIS_ENABLED", "1").lower() not in ("0", "false", "no")
        self.redis_host = os.getenv("REDIS_HOST", "localhost")
        redis_port_env = os.getenv("REDIS_SERVICE_PORT") or os.getenv("REDIS_PORT") or "6379"
        self.redis_port = int(str(redis_port_env).split(":")[-1])
        self.menu_ttl = int(os.getenv("MENU_CACHE_TTL", "60"))
        self.client = None
        self._retry_at = 0.0

    def _connect(self):
        if self.client is not None or not self.enabled:
            return self.client
        if time.monotonic() < self._retry_at:
            return None
        try:
            client = redis.Redis(
                host=self.redis_host,
                port=self.redis_port,
                decode_responses=True,
                socket_connect_timeout=2,
                socket_timeout=2
            )
            client.ping()
            self.client = client
        except redis.RedisError as e:
            logger.warning("Could not connect to Redis at %s:%s: %s", self.redis_host, self.redis_port, e)
            self.client = None
            self._retry_at = time.monotonic() + RECONNECT_DELAY
        return self.client

    def is_available(self) -> bool:
        """Check whether Redis can be used right now"""
        if self._connect() is None:
            return False
        try:
            self.client.ping()
            return True
        except redis.RedisError:
            return False

    # ========== Menu caching ==========
    # Menu lists are stored under a per-version key. Invalidation bumps the
    # version, so a list read from the database before a write can never be
    # served after it.

    def menu_cache_version(self) -> Optional[str]:
        """Current menu cache version, or None when caching is unavailable"""
        if not self.is_available():
            return None
        try:
            return str(self.client.get(MENU_VERSION_KEY) or 0)
        except redis.RedisError as e:
            logger.warning("Failed to read menu cache version: %s", e)
            return None

    def cache_menus(self, menus: List[Dict], version: Optional[str]) -> bool:
        if version is None or not self.is_available():
            return False
        try:
            self.client.setex(f"{MENU_CACHE_KEY}:{version}", self.menu_ttl, json.dumps(menus, default=str))
            return True
        except redis.RedisError as e:
            logger.warning("Failed to cache menus: %s", e)
            return False

    def get_cached_menus(self, version: Optional[str]) -> Optional[List[Dict]]:
        if version is None or not self.is_available():
            return None
        try:
            cached = self.client.get(f"{MENU_CACHE_KEY}:{version}")
            if cached:
                return json.loads(cached)
        except redis.RedisError as e:
            logger.warning("Failed to read menus from cache: %s", e)
        return None

    def invalidate_menus_cache(self) -> bool:
        """Retire the cached menu list after any menu or stock change"""
        if not self.is_available():
            return False
        try:
            self.client.incr(MENU_VERSION_KEY)
            return True
        except redis.RedisError as e:
            logger.warning("Failed to invalidate menu cache: %s", e)
            return False

    # ========== Rate limiting ==========

    def check_rate_limit(self, key: str, max_requests: int = 10, window: int = 60) -> Tuple[bool, int]:
        """
        Count a request against ``key``.
        Returns (allowed, remaining requests in the window).
        """
        if not self.is_available():
            return True, max_requests

        try:
            current = self.client.incr(key)
            if current == 1:
                self.client.expire(key, window)

            remaining = max(0, max_requests - current)
            return current <= max_requests, remaining
        except redis.RedisError as e:
            logger.warning("Rate limit check failed: %s", e)
            return True, max_requests

    def get_cache_info(self) -> Dict[str, Any]:
        if not self.is_available():
            return {"status": "unavailable"}
        try:
            version = str(self.client.get(MENU_VERSION_KEY) or 0)
            return {
                "status": "available",
                "menu_cache_version": version,
                "menus_cached": bool(self.client.exists(f"{MENU_CACHE_KEY}:{version}")),
            }
        except redis.RedisError as e:
            return {"status": "error", "error": str(e)}


redis_client = RedisClient()
