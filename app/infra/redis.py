"""
Redis Connection Management

One shared async client for conversation sessions and their per-counterparty
locks. Connection failures are reported as ``None`` so callers can fall back
to process-local storage; the next call tries to reconnect.
"""

import logging
from typing import Optional

import redis.asyncio as redis
from redis.asyncio import Redis
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import ConnectionError, TimeoutError, RedisError

from app.config import settings

logger = logging.getLogger(__name__)

# Namespace for every key this service writes
APP_PREFIX = "clinic-booking:v1:"


def namespaced(*parts: str) -> str:
    """Build a key under APP_PREFIX: namespaced("conversation", clinic, phone)."""
    return APP_PREFIX + ":".join(parts)


class RedisClient:
    """
    Process-wide Redis client.

    - decode_responses so sessions come back as str
    - 3 retries with exponential backoff on timeouts
    - ``mark_disconnected`` forces a fresh ping on the next call
    """

    _client: Optional[Redis] = None
    _connected: bool = False

    @classmethod
    async def get_client(cls) -> Optional[Redis]:
        """
        Connected client, or None when Redis cannot be reached.
        """
        if cls._client is not None and cls._connected:
            return cls._client

        client = redis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=5.0,
            socket_timeout=5.0,
            retry_on_timeout=True,
            retry=Retry(ExponentialBackoff(), retries=3),
        )
        try:
            await client.ping()
        except (ConnectionError, TimeoutError, RedisError, OSError) as e:
            logger.error(f"Redis unreachable at startup or reconnect: {e}")
            cls._client = None
            cls._connected = False
            return None

        cls._client = client
        cls._connected = True
        logger.info("Redis connection established")
        return client

    @classmethod
    def mark_disconnected(cls) -> None:
        """Called after a command failed; the next get_client pings again."""
        cls._connected = False

    @classmethod
    def is_connected(cls) -> bool:
        return cls._connected

    @classmethod
    async def close(cls) -> None:
        """Close the shared client (application shutdown)."""
        if cls._client is None:
            return
        try:
            await cls._client.aclose()
        except RedisError as e:
            logger.error(f"Error closing Redis connection: {e}")
        finally:
            cls._client = None
            cls._connected = False


async def get_redis() -> Optional[Redis]:
    """Shared client, or None while Redis is down."""
    return await RedisClient.get_client()


async def check_redis_health() -> bool:
    """True if Redis answers PING."""
    client = await get_redis()
    if client is None:
        return False
    try:
        await client.ping()
    except RedisError as e:
        logger.error(f"Redis health check failed: {e}")
        RedisClient.mark_disconnected()
        return False
    return True
