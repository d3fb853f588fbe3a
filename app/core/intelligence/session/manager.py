"""Redis-based conversation session storage and per-session locking."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from redis.asyncio import Redis
from redis.exceptions import LockError, RedisError

from app.config import settings
from app.core.scheduling.errors import TransientDependencyError
from app.core.scheduling.store import read_retry
from app.infra.redis import RedisClient, get_redis, namespaced
from .models import SessionData

logger = logging.getLogger(__name__)

SESSION_NAMESPACE = "conversation"
LOCK_NAMESPACE = "conversation-lock"

# Default for the ``redis`` argument: look the client up for this call
RESOLVE = object()


class SessionBusyError(TransientDependencyError):
    """Another turn for the same counterparty holds the session lock."""


class SessionManager:
    """
    Conversation sessions keyed by (clinic, phone).

    Key pattern: clinic-booking:v1:conversation:{clinic_id}:{phone}

    Turns for the same counterparty are serialized with a Redis lock
    (asyncio.Lock per key in fallback mode). Gracefully handles Redis
    unavailability with in-memory fallback.

    ``lock`` yields the backend it locked on (the Redis client, or None in
    fallback mode). Passing it to ``get``/``save`` keeps a turn on that
    backend: a Redis failure mid-turn is retried and then raised, never
    answered from the in-memory fallback.
    """

    def __init__(self):
        """Initialize session manager."""
        self._ttl = settings.session_ttl_seconds
        self._lock_timeout = settings.session_lock_timeout_seconds
        self._lock_wait = settings.session_lock_wait_seconds
        self._in_memory_fallback: dict[str, SessionData] = {}
        self._local_locks: dict[str, asyncio.Lock] = {}
        self._local_lock_users: dict[str, int] = {}

    def _key(self, clinic_id: str, phone: str) -> str:
        """Generate Redis key."""
        return namespaced(SESSION_NAMESPACE, clinic_id, phone)

    def _lock_key(self, clinic_id: str, phone: str) -> str:
        return namespaced(LOCK_NAMESPACE, clinic_id, phone)

    async def _resolve(self, redis) -> Optional[Redis]:
        return await get_redis() if redis is RESOLVE else redis

    @asynccontextmanager
    async def lock(self, clinic_id: str, phone: str) -> AsyncIterator[Optional[Redis]]:
        """
        Hold the exclusive lock for one counterparty.

        Yields:
            The Redis client the lock lives on, or None in fallback mode

        Raises:
            SessionBusyError: lock not acquired within session_lock_wait_seconds
        """
        redis = await get_redis()

        if redis:
            lock = redis.lock(
                self._lock_key(clinic_id, phone),
                timeout=self._lock_timeout,
                blocking_timeout=self._lock_wait,
            )
            try:
                acquired = await lock.acquire()
            except RedisError as e:
                RedisClient.mark_disconnected()
                raise TransientDependencyError("Session lock unavailable") from e
            if not acquired:
                raise SessionBusyError(f"Session {clinic_id}:{phone} is busy")
            try:
                yield redis
            finally:
                try:
                    await lock.release()
                except LockError:
                    logger.warning(
                        f"Session lock for {clinic_id}:{phone} expired before release"
                    )
                except RedisError as e:
                    logger.warning(f"Session lock for {clinic_id}:{phone} not released: {e}")
        else:
            async with self._local_lock(clinic_id, phone):
                yield None

    @asynccontextmanager
    async def _local_lock(self, clinic_id: str, phone: str) -> AsyncIterator[None]:
        """Process-local lock, dropped once no turn holds or awaits it."""
        key = self._key(clinic_id, phone)
        local = self._local_locks.setdefault(key, asyncio.Lock())
        self._local_lock_users[key] = self._local_lock_users.get(key, 0) + 1
        try:
            try:
                await asyncio.wait_for(local.acquire(), timeout=self._lock_wait)
            except asyncio.TimeoutError:
                raise SessionBusyError(f"Session {clinic_id}:{phone} is busy")
            try:
                yield
            finally:
                local.release()
        finally:
            self._local_lock_users[key] -= 1
            if self._local_lock_users[key] == 0:
                del self._local_lock_users[key]
                del self._local_locks[key]

    @read_retry
    async def _read(self, redis: Redis, key: str) -> Optional[str]:
        """One GET, retried on the same client."""
        try:
            return await redis.get(key)
        except RedisError as e:
            RedisClient.mark_disconnected()
            raise TransientDependencyError("Session store unavailable") from e

    async def get(self, clinic_id: str, phone: str, redis=RESOLVE) -> Optional[SessionData]:
        """
        Get session for a counterparty.

        Args:
            redis: Backend from ``lock``; looked up when omitted

        Returns:
            SessionData or None if not found

        Raises:
            TransientDependencyError: Redis read failed after retries
        """
        redis = await self._resolve(redis)
        key = self._key(clinic_id, phone)

        if redis:
            data = await self._read(redis, key)
            if data:
                return SessionData.from_json(data)
            return None
        else:
            # Fallback to in-memory
            return self._in_memory_fallback.get(key)

    async def get_or_create(self, clinic_id: str, phone: str, redis=RESOLVE) -> SessionData:
        """Existing session, or a fresh idle one (not yet saved)."""
        session = await self.get(clinic_id, phone, redis=redis)
        if session is None:
            session = SessionData(clinic_id=clinic_id, phone=phone)
        return session

    async def save(self, session: SessionData, redis=RESOLVE) -> SessionData:
        """
        Replace the stored session.

        Raises:
            TransientDependencyError: Redis write failed
        """
        redis = await self._resolve(redis)
        key = self._key(session.clinic_id, session.phone)

        if redis:
            try:
                if self._ttl > 0:
                    await redis.set(key, session.to_json(), ex=self._ttl)
                else:
                    await redis.set(key, session.to_json())
            except RedisError as e:
                RedisClient.mark_disconnected()
                raise TransientDependencyError("Session store unavailable") from e
            logger.debug(
                f"Session saved: {key} state={session.state.value} v{session.version}"
            )
        else:
            # Fallback to in-memory
            self._in_memory_fallback[key] = session
            logger.debug(f"Redis unavailable, session {key} kept in memory")

        return session

    async def delete(self, clinic_id: str, phone: str, redis=RESOLVE) -> bool:
        """
        Delete a session.

        Returns:
            True if a session existed
        """
        redis = await self._resolve(redis)
        key = self._key(clinic_id, phone)

        if redis:
            try:
                deleted = await redis.delete(key)
            except RedisError as e:
                RedisClient.mark_disconnected()
                raise TransientDependencyError("Session store unavailable") from e

            if deleted:
                logger.debug(f"Session deleted: {key}")

            return bool(deleted)
        else:
            # Fallback to in-memory
            return self._in_memory_fallback.pop(key, None) is not None


# Singleton
_manager: Optional[SessionManager] = None


async def get_session_manager() -> SessionManager:
    """Get singleton SessionManager."""
    global _manager
    if _manager is None:
        _manager = SessionManager()
    return _manager
