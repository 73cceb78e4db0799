"""
Per-player mutual exclusion for read-modify-write sequences.

Every operation that changes a player's stats or balance runs inside
`hold(player_id)`. Different players never contend with each other.

PlayerLockManager serializes coroutines inside one process.
RedisPlayerLockManager extends the same contract across processes using
redis.asyncio locks with automatic expiry.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Dict, Optional

from redis.exceptions import LockError

from trivia.utils.exceptions import LockTimeoutError

logger = logging.getLogger(__name__)


class PlayerLockManager:
    """In-process lock per player id, dropped when nobody holds or waits on it."""

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout
        self._locks: Dict[int, asyncio.Lock] = {}
        self._users: Dict[int, int] = {}  # Holders + waiters per player

    @property
    def active_count(self) -> int:
        """Number of players with a live lock entry."""
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, player_id: int) -> AsyncGenerator[None, None]:
        lock = self._locks.get(player_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[player_id] = lock
        self._users[player_id] = self._users.get(player_id, 0) + 1

        try:
            if self.timeout is None:
                await lock.acquire()
            else:
                try:
                    await asyncio.wait_for(lock.acquire(), self.timeout)
                except asyncio.TimeoutError:
                    raise LockTimeoutError(player_id, self.timeout)
            try:
                yield
            finally:
                lock.release()
        finally:
            self._users[player_id] -= 1
            if self._users[player_id] == 0:
                del self._users[player_id]
                del self._locks[player_id]


class RedisPlayerLockManager:
    """Distributed lock per player id backed by Redis."""

    def __init__(self, redis_client, timeout: float, blocking_timeout: float, key_prefix: str = "player_lock"):
        """
        Args:
            redis_client: redis.asyncio client
            timeout: Seconds after which Redis expires a lock whose holder died
            blocking_timeout: Seconds to wait for the lock before giving up
            key_prefix: Redis key namespace
        """
        self.redis_client = redis_client
        self.timeout = timeout
        self.blocking_timeout = blocking_timeout
        self.key_prefix = key_prefix

    def _key(self, player_id: int) -> str:
        return f"{self.key_prefix}:{player_id}"

    @asynccontextmanager
    async def hold(self, player_id: int) -> AsyncGenerator[None, None]:
        lock = self.redis_client.lock(
            self._key(player_id),
            timeout=self.timeout,
            blocking_timeout=self.blocking_timeout
        )
        acquired = await lock.acquire()
        if not acquired:
            raise LockTimeoutError(player_id, self.blocking_timeout)

        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError:
                # Row locks still guarded the transaction; the lease was just too short
                logger.error(
                    f"Lock for player {player_id} expired before release. "
                    f"Consider raising PLAYER_LOCK_TIMEOUT (currently {self.timeout}s)."
                )
