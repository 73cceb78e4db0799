"""
Redis utility module for centralized Redis configuration and connection logic.

Redis is optional: without REDIS_URL the engine keeps player locks and
question sessions in process.
"""

import logging
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from trivia.config import Config

logger = logging.getLogger(__name__)


class RedisUtils:
    """Centralized Redis configuration and connection utilities."""

    @staticmethod
    def get_secure_redis_url(redis_url: Optional[str] = None) -> Optional[str]:
        """Get the configured Redis URL if it passes security validation."""
        url = redis_url if redis_url is not None else Config.REDIS_URL
        if not url:
            return None
        if RedisUtils._validate_redis_security(url):
            return url
        logger.error("REDIS_URL contains insecure configuration")
        return None

    @staticmethod
    def _validate_redis_security(redis_url: str) -> bool:
        """Validate that Redis URL meets security requirements."""
        if not redis_url.startswith(('redis://', 'rediss://', 'unix://')):
            logger.error(f"Unsupported Redis URL scheme: {redis_url.split(':', 1)[0]}")
            return False

        if not Config.DEBUG:
            # Production mode - enforce strict security
            if not redis_url.startswith('rediss://'):
                logger.error("Production Redis must use rediss:// (TLS) protocol")
                return False
            if '@' not in redis_url:
                logger.error("Production Redis must include authentication credentials")
                return False
        elif not redis_url.startswith(('redis://localhost', 'redis://127.0.0.1', 'rediss://')):
            logger.warning("Potentially insecure Redis URL in development")

        return True

    @staticmethod
    async def create_redis_client(redis_url: Optional[str] = None) -> Optional['redis.Redis']:
        """Create and ping a Redis client, or return None if Redis is not usable."""
        url = RedisUtils.get_secure_redis_url(redis_url)
        if not url:
            return None

        client = redis.from_url(url, decode_responses=True)
        try:
            # Test connection
            await client.ping()
        except (RedisError, OSError) as e:
            logger.error(f"Failed to connect to Redis: {e}")
            await client.aclose()
            return None

        logger.info("Successfully connected to Redis")
        return client
