"""
Profile service

Aggregates a player's identity, wallet, stats, tier progress, rank position
and recent games into one PlayerProfile.
"""

from typing import Dict, Optional
import logging
import time

from sqlalchemy import select

from trivia.constants import PaginationConstants
from trivia.data_models.profile import ModeStats, PlayerProfile
from trivia.data_models.stats import PlayerStatsData, win_rate
from trivia.database.models import MODE_COUNTER_COLUMNS, Player, PlayerStats
from trivia.services.base import BaseService
from trivia.utils.exceptions import PlayerNotFoundError
from trivia.utils.ranking import RankClassifier

logger = logging.getLogger(__name__)


class ProfileService(BaseService):
    """Service for aggregating player profile data with caching."""

    def __init__(self, session_factory, leaderboard_service, cache_ttl: float = 30):
        super().__init__(session_factory)
        self.leaderboard_service = leaderboard_service
        # TTL cache with size limits to prevent memory leaks
        self._cache: Dict[int, PlayerProfile] = {}
        self._cache_timestamps: Dict[int, float] = {}
        self._cache_ttl = cache_ttl
        self._cache_max_size = 1000
        self._generation = 0

    async def get_profile(self, player_id: int) -> PlayerProfile:
        """Fetch complete profile data for a player."""
        if self._is_cache_valid(player_id):
            return self._cache[player_id]

        self._cleanup_cache()
        generation = self._generation

        async with self.get_session() as session:
            player = await session.get(Player, player_id)
            if player is None:
                raise PlayerNotFoundError(player_id)
            stats = await session.scalar(
                select(PlayerStats).where(PlayerStats.player_id == player_id)
            )

            stats_data = PlayerStatsData.from_model(stats) if stats else None
            if stats_data:
                points_to_next = RankClassifier.points_to_next_tier(
                    stats_data.total_score, stats_data.total_wins, stats_data.max_streak
                )
            else:
                points_to_next = RankClassifier.points_to_next_tier(0, 0, 0)

            mode_stats = {}
            for mode, (games_column, wins_column) in MODE_COUNTER_COLUMNS.items():
                games = getattr(stats, games_column) if stats else 0
                wins = getattr(stats, wins_column) if stats else 0
                mode_stats[mode.value] = ModeStats(
                    mode=mode.value,
                    games=games,
                    wins=wins,
                    win_rate=win_rate(wins, games)
                )

            username = player.username
            display_name = player.display_name or player.username
            language = player.language
            premium = player.premium
            coins = player.coins
            tier = player.rank

        rank_position = await self.leaderboard_service.get_rank_position(player_id)
        recent_games = await self.leaderboard_service.get_recent_games(
            player_id, limit=PaginationConstants.PROFILE_RECENT_GAMES
        )

        profile = PlayerProfile(
            player_id=player_id,
            username=username,
            display_name=display_name,
            language=language,
            premium=premium,
            coins=coins,
            tier=tier,
            stats=stats_data,
            rank_position=rank_position,
            points_to_next_tier=points_to_next,
            mode_stats=mode_stats,
            recent_games=recent_games
        )

        # Skip caching when a write landed while this profile was being read
        if self._cache_ttl > 0 and self._generation == generation:
            self._cache[player_id] = profile
            self._cache_timestamps[player_id] = time.time()
        return profile

    def _is_cache_valid(self, player_id: int) -> bool:
        timestamp = self._cache_timestamps.get(player_id)
        return timestamp is not None and time.time() - timestamp < self._cache_ttl

    def _cleanup_cache(self):
        """Remove expired entries and enforce size limits."""
        current_time = time.time()
        expired = [
            key for key, timestamp in self._cache_timestamps.items()
            if current_time - timestamp >= self._cache_ttl
        ]
        for key in expired:
            self._cache.pop(key, None)
            self._cache_timestamps.pop(key, None)

        if len(self._cache) >= self._cache_max_size:
            oldest = sorted(self._cache_timestamps.items(), key=lambda x: x[1])
            for key, _ in oldest[:len(self._cache) - self._cache_max_size + 1]:
                self._cache.pop(key, None)
                self._cache_timestamps.pop(key, None)

    def invalidate_cache(self, player_id: Optional[int] = None):
        """Drop one player's cached profile, or all of them."""
        self._generation += 1
        if player_id is None:
            self._cache.clear()
            self._cache_timestamps.clear()
            return
        self._cache.pop(player_id, None)
        self._cache_timestamps.pop(player_id, None)
        logger.debug(f"Invalidated profile cache for player {player_id}")
