"""
Question-session stores.

The question layer asks a store which question ids a session has already
seen so fallback questions are not repeated. Both stores are bounded: each
session remembers only its last `history_window` ids, and the in-process
store evicts the least recently used session beyond `capacity`. The Redis
store bounds sessions with key expiry instead.
"""

import asyncio
from collections import OrderedDict, deque
from typing import Deque, Iterable, List
import logging

logger = logging.getLogger(__name__)


class QuestionSessionStore:
    """In-process store with LRU session eviction and a sliding id window."""

    def __init__(self, capacity: int, history_window: int):
        if capacity <= 0 or history_window <= 0:
            raise ValueError("capacity and history_window must be positive")
        self.capacity = capacity
        self.history_window = history_window
        self._sessions: 'OrderedDict[str, Deque[str]]' = OrderedDict()
        self._lock = asyncio.Lock()  # Async lock for concurrent access

    def __len__(self) -> int:
        return len(self._sessions)

    async def mark_used(self, session_id: str, question_ids: Iterable[str]) -> None:
        """Remember question ids as seen, dropping the oldest beyond the window."""
        async with self._lock:
            history = self._sessions.get(session_id)
            if history is None:
                history = deque(maxlen=self.history_window)
                self._sessions[session_id] = history
            self._sessions.move_to_end(session_id)

            for question_id in question_ids:
                if question_id in history:
                    history.remove(question_id)
                history.append(question_id)

            while len(self._sessions) > self.capacity:
                evicted, _ = self._sessions.popitem(last=False)
                logger.debug(f"Evicted question session {evicted}")

    async def get_used(self, session_id: str) -> List[str]:
        """Seen question ids, oldest first."""
        async with self._lock:
            history = self._sessions.get(session_id)
            if history is None:
                return []
            self._sessions.move_to_end(session_id)
            return list(history)

    async def filter_unused(self, session_id: str, question_ids: Iterable[str]) -> List[str]:
        """Keep only the ids this session has not seen, preserving order."""
        used = set(await self.get_used(session_id))
        return [question_id for question_id in question_ids if question_id not in used]

    async def clear(self, session_id: str) -> None:
        async with self._lock:
            self._sessions.pop(session_id, None)


class RedisQuestionSessionStore:
    """Same contract as QuestionSessionStore, shared across processes through Redis lists."""

    def __init__(self, redis_client, history_window: int, ttl: int, key_prefix: str = "question_session"):
        """
        Args:
            redis_client: redis.asyncio client created with decode_responses=True
            history_window: Ids kept per session
            ttl: Seconds of inactivity after which a session is forgotten
            key_prefix: Redis key namespace
        """
        if history_window <= 0 or ttl <= 0:
            raise ValueError("history_window and ttl must be positive")
        self.redis_client = redis_client
        self.history_window = history_window
        self.ttl = ttl
        self.key_prefix = key_prefix

    def _key(self, session_id: str) -> str:
        return f"{self.key_prefix}:{session_id}"

    async def mark_used(self, session_id: str, question_ids: Iterable[str]) -> None:
        # Last occurrence wins within a batch
        newest_first = list(dict.fromkeys(reversed(list(question_ids))))
        if not newest_first:
            return
        key = self._key(session_id)
        # Newest at the head; a re-seen id moves there and LTRIM keeps the window
        async with self.redis_client.pipeline(transaction=True) as pipe:
            for question_id in newest_first:
                pipe.lrem(key, 0, question_id)
            pipe.lpush(key, *reversed(newest_first))
            pipe.ltrim(key, 0, self.history_window - 1)
            pipe.expire(key, self.ttl)
            await pipe.execute()

    async def get_used(self, session_id: str) -> List[str]:
        """Seen question ids, oldest first."""
        newest_first = await self.redis_client.lrange(self._key(session_id), 0, -1)
        return list(reversed(newest_first))

    async def filter_unused(self, session_id: str, question_ids: Iterable[str]) -> List[str]:
        used = set(await self.get_used(session_id))
        return [question_id for question_id in question_ids if question_id not in used]

    async def clear(self, session_id: str) -> None:
        await self.redis_client.delete(self._key(session_id))
