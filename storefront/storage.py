"""
Durable per-session key/value storage on Redis, with connection pooling,
retry logic and error handling.

Each browser session gets its own namespace; the keys inside it are the fixed
keys the storefront persists (token, currentUser, isLoggedIn, guestCart).
"""
import time
import random
import logging
from typing import Optional, Any, Callable

import redis
from redis.exceptions import (
    ConnectionError,
    TimeoutError,
    RedisError,
    AuthenticationError
)

from storefront.config import Config
from storefront.exceptions import StorageError

logger = logging.getLogger(__name__)

TOKEN_KEY = "token"
CURRENT_USER_KEY = "currentUser"
IS_LOGGED_IN_KEY = "isLoggedIn"
GUEST_CART_KEY = "guestCart"
LEGACY_TOKEN_KEY = "authToken"


class RedisClient:
    """Redis client with connection pooling and retry logic"""

    def __init__(self, client: Optional[redis.Redis] = None):
        self.pool: Optional[redis.ConnectionPool] = None
        self.client: Optional[redis.Redis] = client
        if client is None:
            self._connect()

    def _connect(self):
        """Initialize Redis connection pool"""
        scheme = "rediss" if Config.REDIS_SSL else "redis"
        auth = f":{Config.REDIS_AUTH_TOKEN}@" if Config.REDIS_AUTH_TOKEN else ""
        redis_url = f"{scheme}://{auth}{Config.REDIS_HOST}:{Config.REDIS_PORT}/{Config.REDIS_DB}"

        try:
            self.pool = redis.ConnectionPool.from_url(
                redis_url,
                max_connections=Config.REDIS_MAX_CONNECTIONS,
                socket_connect_timeout=Config.REDIS_SOCKET_CONNECT_TIMEOUT,
                socket_timeout=Config.REDIS_SOCKET_TIMEOUT,
                retry_on_timeout=Config.REDIS_RETRY_ON_TIMEOUT,
                decode_responses=True,
            )
            self.client = redis.Redis(connection_pool=self.pool)
        except (ConnectionError, AuthenticationError) as e:
            raise StorageError(f"Failed to connect to Redis: {e}")

    def _retry_with_backoff(
        self,
        func: Callable,
        max_retries: int = 3,
        initial_backoff: float = 0.1,
        max_backoff: float = 2.0
    ) -> Any:
        """
        Execute function with exponential backoff retry.

        Args:
            func: Function to execute
            max_retries: Maximum number of retry attempts
            initial_backoff: Initial backoff delay in seconds
            max_backoff: Maximum backoff delay in seconds

        Returns:
            Result of function execution

        Raises:
            StorageError: If all retries fail
        """
        backoff = initial_backoff

        for attempt in range(max_retries):
            try:
                return func()
            except (ConnectionError, TimeoutError) as e:
                if attempt == max_retries - 1:
                    raise StorageError(f"Redis operation failed after {max_retries} retries: {e}")

                # Exponential backoff with jitter
                jitter = random.uniform(0, backoff * 0.1)
                time.sleep(backoff + jitter)
                backoff = min(backoff * 2, max_backoff)
                logger.warning(f"Retrying Redis operation (attempt {attempt + 2}/{max_retries}): {e}")

            except RedisError as e:
                # Non-retryable errors
                raise StorageError(f"Redis error: {e}")

    def get(self, key: str) -> Optional[str]:
        """Get value from Redis"""
        return self._retry_with_backoff(lambda: self.client.get(key))

    def set(self, key: str, value: Any, ex: Optional[int] = None) -> bool:
        """Set value in Redis with optional TTL"""
        return self._retry_with_backoff(lambda: self.client.set(key, value, ex=ex))

    def delete(self, *keys: str) -> int:
        """Delete one or more keys"""
        return self._retry_with_backoff(lambda: self.client.delete(*keys))

    def ping(self) -> bool:
        """Test Redis connection"""
        try:
            return bool(self.client.ping())
        except RedisError:
            return False

    def close(self):
        """Close connection pool"""
        if self.pool:
            self.pool.disconnect()


class SessionStorage:
    """String key/value storage scoped to one browser session"""

    def __init__(self, redis_client: RedisClient, session_id: str, ttl: Optional[int] = None):
        self.redis = redis_client
        self.session_id = session_id
        self.ttl = ttl if ttl is not None else Config.SESSION_TTL_SECONDS

    def _key(self, key: str) -> str:
        return f"storefront:session:{self.session_id}:{key}"

    def get_item(self, key: str) -> Optional[str]:
        return self.redis.get(self._key(key))

    def set_item(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        self.redis.set(self._key(key), value, ex=ttl or self.ttl)

    def remove_item(self, *keys: str) -> None:
        if keys:
            self.redis.delete(*(self._key(key) for key in keys))


# Global Redis client instance
_redis_client: Optional[RedisClient] = None


def get_redis_client() -> RedisClient:
    """Get or create Redis client instance (singleton)"""
    global _redis_client
    if _redis_client is None:
        _redis_client = RedisClient()
    return _redis_client
