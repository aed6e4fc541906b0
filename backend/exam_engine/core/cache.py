import redis
import json
import logging
from typing import Any, Optional
from exam_engine.core.config import settings

logger = logging.getLogger(__name__)


class CacheManager:
    """Redis-backed cache and best-effort pub/sub.

    Every call degrades to a miss (or ``False``) when Redis is disabled or
    unreachable; callers must treat the cache as optional.
    """

    def __init__(self):
        self.redis_url = getattr(settings, 'redis_url', 'redis://localhost:6379/0')
        self.default_ttl = getattr(settings, 'cache_default_ttl', 300)
        self.enabled = getattr(settings, 'cache_enabled', True)

        self._sync_client = None

    @property
    def sync_client(self) -> redis.Redis:
        """Get synchronous Redis client"""
        if self._sync_client is None:
            self._sync_client = redis.from_url(
                self.redis_url,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True
            )
        return self._sync_client

    def _serialize_value(self, value: Any) -> str:
        try:
            return json.dumps(value, default=str)
        except (TypeError, ValueError) as e:
            logger.warning(f"Cache serialization error: {e}")
            return json.dumps(str(value))

    def _deserialize_value(self, value: str) -> Any:
        if value is None:
            return None
        try:
            return json.loads(value)
        except (json.JSONDecodeError, TypeError) as e:
            logger.warning(f"Cache deserialization error: {e}, value: {value}")
            return value

    def get(self, key: str) -> Optional[Any]:
        if not self.enabled:
            return None
        try:
            value = self.sync_client.get(key)
            return self._deserialize_value(value) if value else None
        except Exception as e:
            logger.warning(f"Cache get error for key '{key}': {e}")
            return None

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        if not self.enabled:
            return False
        try:
            ttl = ttl or self.default_ttl
            serialized = self._serialize_value(value)
            return bool(self.sync_client.setex(key, ttl, serialized))
        except Exception as e:
            logger.warning(f"Cache set error for key '{key}': {e}")
            return False

    def delete(self, key: str) -> bool:
        if not self.enabled:
            return False
        try:
            return bool(self.sync_client.delete(key))
        except Exception as e:
            logger.warning(f"Cache delete error for key '{key}': {e}")
            return False

    def publish(self, channel: str, payload: dict) -> bool:
        """Publish a JSON payload; subscribers may or may not receive it."""
        if not self.enabled:
            return False
        try:
            self.sync_client.publish(channel, self._serialize_value(payload))
            return True
        except Exception as e:
            logger.warning(f"Redis publish failed on '{channel}': {e}")
            return False

    def health_check(self) -> bool:
        if not self.enabled:
            return False
        try:
            return bool(self.sync_client.ping())
        except Exception:
            return False

    def close(self) -> None:
        if self._sync_client is not None:
            self._sync_client.close()
            self._sync_client = None


cache = CacheManager()
