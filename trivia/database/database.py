from typing import Optional, Iterable, Tuple
from datetime import datetime
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload
from sqlalchemy import select, event, func
from contextlib import asynccontextmanager

from trivia.config import Config
from trivia.database.models import (
    Base, Player, Game, GameParticipant, GameMode, GameStatus, utcnow
)
from trivia.utils.logger import setup_logger

class Database:
    def __init__(self, database_url: Optional[str] = None):
        self.logger = setup_logger(__name__)
        self.database_url = Config.get_async_database_url(database_url)
        self.engine = None
        self.async_session = None
        self.read_session = None

    @property
    def session_factory(self) -> async_sessionmaker:
        """Session factory for write units of work"""
        return self.async_session

    @property
    def read_session_factory(self) -> async_sessionmaker:
        """Session factory for queries; on SQLite these never take the write lock"""
        return self.read_session

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith('sqlite')

    async def initialize(self):
        """Initialize the database connection and create tables"""
        self.logger.info("Initializing database...")

        engine_kwargs = {'echo': Config.DEBUG}
        if self.is_sqlite:
            # Let writers wait on the database lock instead of failing immediately
            engine_kwargs['connect_args'] = {'timeout': 30}

        self.engine = create_async_engine(self.database_url, **engine_kwargs)

        write_engine = self.engine
        if self.is_sqlite:
            self._install_sqlite_transaction_listeners()
            write_engine = self.engine.execution_options(sqlite_begin='IMMEDIATE')

        self.async_session = async_sessionmaker(
            write_engine,
            class_=AsyncSession,
            expire_on_commit=False
        )
        self.read_session = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

        # Create all tables
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        self.logger.info("Database initialized successfully")

    def _install_sqlite_transaction_listeners(self):
        """
        Take over BEGIN from the sqlite3 driver.

        The driver's implicit transaction handling breaks SAVEPOINT (used for
        reward bonuses) and defers the write lock until the first UPDATE.
        Write sessions run on an engine carrying the sqlite_begin='IMMEDIATE'
        execution option, so a write transaction holds the write lock from its
        first statement, which is what SELECT ... FOR UPDATE gives us on
        PostgreSQL. Read sessions begin DEFERRED and, with WAL, read a
        snapshot alongside an active writer.
        """
        @event.listens_for(self.engine.sync_engine, "connect")
        def _on_connect(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.close()

        @event.listens_for(self.engine.sync_engine, "begin")
        def _on_begin(conn):
            mode = conn.get_execution_options().get('sqlite_begin')
            conn.exec_driver_sql(f"BEGIN {mode}" if mode else "BEGIN")

    @asynccontextmanager
    async def get_session(self):
        """Get a read-only database session (no commit)"""
        async with self.read_session() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    @asynccontextmanager
    async def transaction(self):
        """
        Create a transaction boundary for atomic operations.

        All operations within the context are committed together on success,
        or rolled back together on failure. Exceptions must be allowed to
        propagate out of the context for rollback to occur.

        Usage:
            async with db.transaction() as session:
                session.add(game)
                ...
        """
        async with self.async_session() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    async def close(self):
        """Close the database connection"""
        if self.engine:
            await self.engine.dispose()
            self.logger.info("Database connection closed")

    # Player lookups
    async def get_player_by_id(self, player_id: int) -> Optional[Player]:
        """Get a player by ID"""
        async with self.get_session() as session:
            return await session.get(Player, player_id)

    async def get_player_by_username(self, username: str) -> Optional[Player]:
        """Get a player by username (case insensitive)"""
        async with self.get_session() as session:
            result = await session.execute(
                select(Player).where(func.lower(Player.username) == func.lower(username))
            )
            return result.scalar_one_or_none()

    async def get_player_count(self) -> int:
        async with self.get_session() as session:
            return await session.scalar(select(func.count(Player.id))) or 0

    # Game records (written by the game-session layer)
    async def create_completed_game(
        self,
        mode: GameMode,
        participants: Iterable[Tuple[int, int, bool]],
        category: str = "general",
        difficulty: str = "medium",
        language: str = "en",
        total_questions: int = 10,
        duration: Optional[int] = None,
        completed_at: Optional[datetime] = None
    ) -> Game:
        """
        Record a finished game with its participants.

        Args:
            mode: Game mode
            participants: (player_id, score, is_winner) tuples
            completed_at: Completion time, defaults to now (UTC)
        """
        async with self.transaction() as session:
            game = Game(
                mode=mode,
                category=category,
                difficulty=difficulty,
                language=language,
                status=GameStatus.COMPLETED,
                total_questions=total_questions,
                duration=duration,
                completed_at=completed_at or utcnow()
            )
            for player_id, score, is_winner in participants:
                game.participants.append(
                    GameParticipant(player_id=player_id, score=score, is_winner=is_winner)
                )
            session.add(game)
            await session.flush()
            self.logger.debug(f"Recorded completed {mode.value} game {game.id} with {len(game.participants)} participants")
            return game

    async def get_game_by_id(self, game_id: int) -> Optional[Game]:
        """Get a game with its participants"""
        async with self.get_session() as session:
            result = await session.execute(
                select(Game)
                .options(selectinload(Game.participants))
                .where(Game.id == game_id)
            )
            return result.scalar_one_or_none()
