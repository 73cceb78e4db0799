"""
Leaderboard service

Provides ranked views over PlayerStats with caching and offset pagination.
Reads never take player locks. The engine clears the cache after writes, and
a page whose query started before the clear is returned but not cached.
"""

from typing import Optional, List, Tuple
import asyncio
import time
import logging

from sqlalchemy import select, func
from sqlalchemy.orm import aliased

from trivia.config import Config
from trivia.constants import CacheConstants, PaginationConstants
from trivia.data_models.game import GameSummary
from trivia.data_models.leaderboard import LeaderboardPage, LeaderboardEntry
from trivia.data_models.stats import win_rate
from trivia.database.models import (
    Game, GameMode, GameParticipant, GameStatus, MODE_COUNTER_COLUMNS, Player, PlayerStats
)
from trivia.services.base import BaseService

logger = logging.getLogger(__name__)


class LeaderboardService(BaseService):
    """Service for leaderboard queries and ranking with caching."""

    def __init__(self, session_factory, cache_ttl: Optional[float] = None):
        super().__init__(session_factory)
        # TTL cache for leaderboard pages
        self._cache = {}
        self._cache_timestamps = {}
        self._cache_ttl = Config.LEADERBOARD_CACHE_TTL if cache_ttl is None else cache_ttl
        self._cache_max_size = CacheConstants.LEADERBOARD_CACHE_MAX_SIZE
        self._cache_lock = asyncio.Lock()  # Guards cache operations across tasks
        self._generation = 0  # Bumped by clear_cache; pages read before a bump are not stored

    async def _get_cached(self, key: str) -> Optional[LeaderboardPage]:
        """Return the cached page if it is still valid."""
        async with self._cache_lock:
            timestamp = self._cache_timestamps.get(key)
            if timestamp is None or time.time() - timestamp >= self._cache_ttl:
                return None
            return self._cache[key]

    async def _cleanup_cache(self):
        """Remove expired entries and enforce size limits."""
        async with self._cache_lock:
            current_time = time.time()
            # Remove expired entries
            expired_keys = [
                key for key, timestamp in self._cache_timestamps.items()
                if current_time - timestamp >= self._cache_ttl
            ]
            for key in expired_keys:
                self._cache.pop(key, None)
                self._cache_timestamps.pop(key, None)

            # Enforce size limit by removing oldest entries
            if len(self._cache) >= self._cache_max_size:
                sorted_keys = sorted(
                    self._cache_timestamps.items(),
                    key=lambda x: x[1]
                )
                keys_to_remove = [key for key, _ in sorted_keys[:len(self._cache) - self._cache_max_size + 1]]
                for key in keys_to_remove:
                    self._cache.pop(key, None)
                    self._cache_timestamps.pop(key, None)

    async def clear_cache(self):
        """Drop every cached page. Called after writes that change rankings."""
        async with self._cache_lock:
            self._generation += 1
            self._cache.clear()
            self._cache_timestamps.clear()

    @staticmethod
    def _normalize_paging(limit: int, offset: int) -> Tuple[int, int]:
        if not isinstance(limit, int) or limit < 1:
            limit = Config.LEADERBOARD_DEFAULT_LIMIT
        limit = min(limit, Config.LEADERBOARD_MAX_LIMIT)
        if not isinstance(offset, int) or offset < 0:
            offset = 0
        return limit, offset

    async def get_leaderboard(
        self,
        mode: Optional[str] = None,
        language: Optional[str] = None,
        limit: int = Config.LEADERBOARD_DEFAULT_LIMIT,
        offset: int = 0
    ) -> LeaderboardPage:
        """
        Get a ranked leaderboard page.

        Args:
            mode: 'single', '1v1' or '2v2' to rank by that mode's wins. Any
                other value ranks by total score.
            language: Only include players with this language preference
            limit: Page size, clamped to 1..LEADERBOARD_MAX_LIMIT
            offset: Number of ranked players to skip

        Returns:
            LeaderboardPage ordered by the ranking key descending, ties broken
            by player id ascending
        """
        limit, offset = self._normalize_paging(limit, offset)
        game_mode = GameMode.parse(mode) if mode is not None else None
        if mode is not None and game_mode is None:
            logger.warning(f"Unrecognized leaderboard mode {mode!r}, using global ordering")

        cache_key = f"leaderboard:{game_mode.value if game_mode else None}:{language}:{limit}:{offset}"
        cached = await self._get_cached(cache_key)
        if cached is not None:
            return cached

        await self._cleanup_cache()
        generation = self._generation

        if game_mode is not None:
            games_column, wins_column = MODE_COUNTER_COLUMNS[game_mode]
            mode_games = getattr(PlayerStats, games_column)
            mode_wins = getattr(PlayerStats, wins_column)
            sort_column = mode_wins
        else:
            mode_games = mode_wins = None
            sort_column = PlayerStats.total_score

        columns = [
            Player.id.label('player_id'),
            Player.username,
            Player.display_name,
            Player.coins,
            PlayerStats.rank.label('tier'),
            PlayerStats.total_score,
            PlayerStats.total_wins,
            PlayerStats.total_games,
            PlayerStats.max_streak,
            PlayerStats.average_score,
            PlayerStats.perfect_games,
            PlayerStats.last_played,
            func.rank().over(order_by=sort_column.desc()).label('rank'),
        ]
        if game_mode is not None:
            columns.extend([mode_wins.label('mode_wins'), mode_games.label('mode_games')])

        query = select(*columns).join(PlayerStats, PlayerStats.player_id == Player.id)
        if language:
            query = query.where(Player.language == language)
        ranking_cte = query.cte('ranked_players')

        async with self.get_session() as session:
            total_count = await session.scalar(select(func.count()).select_from(ranking_cte)) or 0

            # Fetch one extra row to learn whether another page exists
            result = await session.execute(
                select(ranking_cte)
                .order_by(ranking_cte.c.rank, ranking_cte.c.player_id)
                .limit(limit + 1)
                .offset(offset)
            )
            rows = result.all()

        entries = []
        for row in rows[:limit]:
            if game_mode is not None:
                entry_win_rate = win_rate(row.mode_wins, row.mode_games)
            else:
                entry_win_rate = win_rate(row.total_wins, row.total_games)
            entries.append(LeaderboardEntry(
                rank=row.rank,
                player_id=row.player_id,
                username=row.username,
                display_name=row.display_name or row.username,
                tier=row.tier,
                coins=row.coins,
                total_score=row.total_score,
                total_wins=row.total_wins,
                total_games=row.total_games,
                max_streak=row.max_streak,
                average_score=row.average_score,
                perfect_games=row.perfect_games,
                mode_wins=row.mode_wins if game_mode is not None else None,
                mode_games=row.mode_games if game_mode is not None else None,
                win_rate=entry_win_rate,
                last_played=row.last_played
            ))

        leaderboard_page = LeaderboardPage(
            entries=entries,
            has_more=len(rows) > limit,
            total_players=total_count,
            limit=limit,
            offset=offset,
            mode=game_mode.value if game_mode else None,
            language=language
        )

        async with self._cache_lock:
            if self._cache_ttl > 0 and self._generation == generation:
                self._cache[cache_key] = leaderboard_page
                self._cache_timestamps[cache_key] = time.time()

        return leaderboard_page

    async def get_rank_position(self, player_id: int) -> int:
        """
        1-based position by total score: players with a strictly greater
        total score, plus one. 0 if the player has no stats yet.
        """
        async with self.get_session() as session:
            total_score = await session.scalar(
                select(PlayerStats.total_score).where(PlayerStats.player_id == player_id)
            )
            if total_score is None:
                return 0

            higher = await session.scalar(
                select(func.count(PlayerStats.id)).where(PlayerStats.total_score > total_score)
            )
            return (higher or 0) + 1

    async def get_recent_games(
        self,
        player_id: int,
        limit: int = PaginationConstants.DEFAULT_RECENT_GAMES
    ) -> List[GameSummary]:
        """Completed games the player took part in, newest first."""
        others = aliased(GameParticipant)
        participant_count = (
            select(func.count(others.id))
            .where(others.game_id == Game.id)
            .scalar_subquery()
        )

        async with self.get_session() as session:
            result = await session.execute(
                select(Game, GameParticipant.score, GameParticipant.is_winner, participant_count.label('participant_count'))
                .join(GameParticipant, GameParticipant.game_id == Game.id)
                .where(
                    GameParticipant.player_id == player_id,
                    Game.status == GameStatus.COMPLETED
                )
                .order_by(Game.completed_at.desc(), Game.id.desc())
                .limit(limit)
            )

            return [
                GameSummary(
                    game_id=game.id,
                    mode=game.mode.value,
                    category=game.category,
                    difficulty=game.difficulty,
                    language=game.language,
                    score=score,
                    is_winner=is_winner,
                    participant_count=count,
                    total_questions=game.total_questions,
                    duration=game.duration,
                    completed_at=game.completed_at
                )
                for game, score, is_winner, count in result.all()
            ]
