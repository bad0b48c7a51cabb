"""
Redis caching utilities.
Fail-open: when Redis is not configured or unreachable every call degrades
to a miss and the caller goes to the source.
"""
import json
import logging
from typing import Any, Optional

import redis

from .config import REDIS_URL

logger = logging.getLogger(__name__)


class Cache:
    """Redis cache wrapper with automatic serialization"""

    def __init__(self, url: Optional[str] = None):
        self.url = url
        self.redis_client = None

    def _get_client(self):
        """Lazy load Redis client"""
        if not self.url:
            return None
        if self.redis_client is None:
            try:
                self.redis_client = redis.from_url(
                    self.url,
                    decode_responses=True,
                    socket_connect_timeout=5,
                    socket_timeout=5,
                )
            except Exception as e:
                logger.warning(f"⚠️ Redis cache unavailable: {e}")
                return None
        return self.redis_client

    def get(self, key: str) -> Optional[Any]:
        """Get value from cache"""
        client = self._get_client()
        if not client:
            return None

        try:
            value = client.get(key)
            if value:
                logger.debug(f"✅ Cache HIT: {key}")
                return json.loads(value)
            logger.debug(f"❌ Cache MISS: {key}")
            return None
        except Exception as e:
            logger.error(f"❌ Cache get error for {key}: {e}")
            return None

    def set(self, key: str, value: Any, ttl: int = 3600) -> bool:
        """Set value in cache with TTL (default 1 hour)"""
        client = self._get_client()
        if not client:
            return False

        try:
            client.setex(key, ttl, json.dumps(value))
            logger.debug(f"✅ Cache SET: {key} (TTL: {ttl}s)")
            return True
        except Exception as e:
            logger.error(f"❌ Cache set error for {key}: {e}")
            return False

    def delete_pattern(self, pattern: str) -> int:
        """Delete all keys matching pattern (e.g., 'calendar_busy:123:*')"""
        client = self._get_client()
        if not client:
            return 0

        try:
            keys = client.keys(pattern)
            if keys:
                deleted = client.delete(*keys)
                logger.debug(f"✅ Cache DELETE pattern: {pattern} ({deleted} keys)")
                return deleted
            return 0
        except Exception as e:
            logger.error(f"❌ Cache delete pattern error for {pattern}: {e}")
            return 0


# Global cache instance
cache = Cache(REDIS_URL)


def build_calendar_busy_key(provider_id: int, start_iso: str, end_iso: str) -> str:
    return f"calendar_busy:{provider_id}:{start_iso}:{end_iso}"


def invalidate_calendar_busy_cache(provider_id: int) -> int:
    """Drop cached busy intervals after the provider's calendar changes"""
    return cache.delete_pattern(f"calendar_busy:{provider_id}:*")


def mark_webhook_processed(webhook_id: str, ttl: int = 86400) -> bool:
    """Record a delivered webhook id; returns False if it was already seen"""
    client = cache._get_client()
    if not client:
        return True
    try:
        return bool(client.set(f"webhook_seen:{webhook_id}", "1", nx=True, ex=ttl))
    except Exception as e:
        logger.error(f"❌ Webhook dedup check failed for {webhook_id}: {e}")
        return True


def forget_webhook(webhook_id: str) -> None:
    """Drop the delivered mark so a retry of a failed delivery is processed again"""
    client = cache._get_client()
    if not client:
        return
    try:
        client.delete(f"webhook_seen:{webhook_id}")
    except Exception as e:
        logger.error(f"❌ Could not clear webhook mark for {webhook_id}: {e}")
