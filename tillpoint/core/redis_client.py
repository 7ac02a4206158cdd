"""
Redis client configuration for caching stock snapshots and pool status.
"""
import logging
import pickle
from typing import Any, Optional

import redis

from tillpoint.core.config import Settings

logger = logging.getLogger(__name__)


def create_redis_client(settings: Settings) -> redis.Redis:
    """Create a Redis client from settings."""
    return redis.Redis.from_url(
        settings.redis_url,
        db=settings.redis_db,
        decode_responses=False,  # Keep as bytes for pickle compatibility
        socket_connect_timeout=5,
        socket_timeout=5,
        retry_on_timeout=True,
    )


class CacheManager:
    """
    Manages caching operations with Redis.

    The cache is advisory: a failed cache call is logged and reported as a
    miss, never raised into a sale or stock adjustment.
    """

    def __init__(self, client: redis.Redis, default_ttl: int = 3600):
        self.default_ttl = default_ttl
        self.client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "CacheManager":
        return cls(create_redis_client(settings), default_ttl=settings.cache_ttl)

    def check_connection(self) -> bool:
        """Check if Redis connection is working."""
        try:
            self.client.ping()
            return True
        except Exception as e:
            logger.error(f"Redis connection check failed: {e}")
            return False

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Set a value in cache with optional TTL."""
        try:
            serialized_value = pickle.dumps(value)
            ttl = ttl or self.default_ttl
            return bool(self.client.setex(key, ttl, serialized_value))
        except Exception as e:
            logger.error(f"Failed to set cache key {key}: {e}")
            return False

    def get(self, key: str) -> Optional[Any]:
        """Get a value from cache."""
        try:
            value = self.client.get(key)
            if value is not None:
                return pickle.loads(value)
            return None
        except Exception as e:
            logger.error(f"Failed to get cache key {key}: {e}")
            return None

    def delete(self, key: str) -> bool:
        """Delete a key from cache."""
        try:
            return bool(self.client.delete(key))
        except Exception as e:
            logger.error(f"Failed to delete cache key {key}: {e}")
            return False
