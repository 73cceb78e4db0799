"""
Base service class for the trivia progression engine.

Services share one unit-of-work shape: a session that commits when the
block succeeds and rolls back when it raises. Driver-level connection
failures surface as StorageUnavailableError, the only error that
execute_with_retry retries.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Awaitable, Callable, TypeVar
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from trivia.utils.exceptions import StorageUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar('T')

RETRY_BASE_DELAY = 0.1  # Seconds, doubled per attempt

class BaseService:
    """Base class for all services with async database session management."""

    def __init__(self, session_factory, read_session_factory=None):
        """
        Args:
            session_factory: Async session factory for write units of work
            read_session_factory: Factory for queries, defaults to session_factory
        """
        self.session_factory = session_factory
        self.read_session_factory = read_session_factory or session_factory

    def _storage_error(self, error: Exception) -> StorageUnavailableError:
        details = getattr(error, 'orig', None) or error
        return StorageUnavailableError(type(self).__name__, str(details))

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Unit of work: commit on success, roll back on any error."""
        async with self._unit_of_work(self.session_factory) as session:
            yield session

    @asynccontextmanager
    async def get_read_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Session for queries that never write."""
        async with self._unit_of_work(self.read_session_factory) as session:
            yield session

    @asynccontextmanager
    async def _unit_of_work(self, factory) -> AsyncGenerator[AsyncSession, None]:
        async with factory() as session:
            try:
                yield session
                await session.commit()
            except (OperationalError, InterfaceError) as e:
                await session.rollback()
                raise self._storage_error(e) from e
            except Exception:
                await session.rollback()
                raise

    async def execute_with_retry(self, func: Callable[[], Awaitable[T]], max_retries: int = 3) -> T:
        """
        Await func(), retrying with exponential backoff while storage is unavailable.

        Only use this for operations that are safe to repeat: reads, or
        writes carrying an idempotency key.
        """
        attempt = 0
        while True:
            try:
                return await func()
            except StorageUnavailableError as e:
                attempt += 1
                if attempt >= max_retries:
                    raise
                delay = RETRY_BASE_DELAY * (2 ** (attempt - 1))
                logger.warning(
                    f"{type(self).__name__}: storage unavailable, retry {attempt}/{max_retries - 1} in {delay:.1f}s: {e}"
                )
                await asyncio.sleep(delay)
