"""
Score update coordination.

Turns one finished game's outcome into updated PlayerStats, a new rank tier
and coin rewards. The whole update for a player runs under that player's lock
in a single database transaction:

- stats, tier and the win reward commit together or not at all
- perfect-game and streak bonuses each run in a SAVEPOINT, so a failed bonus
  is logged and reported without undoing the recorded game
"""

import logging
from typing import List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from trivia.config import Config
from trivia.constants import ConfigKeys
from trivia.data_models.game import GameResult
from trivia.data_models.stats import PlayerStatsData, RewardGrant, ScoreUpdateOutcome
from trivia.database.models import (
    GameMode, MODE_COUNTER_COLUMNS, Player, PlayerStats, RewardType,
    ScoreSubmission, utcnow
)
from trivia.services.base import BaseService
from trivia.services.reward_ledger import lock_player_row
from trivia.utils.exceptions import PlayerNotFoundError, ProgressionError
from trivia.utils.ranking import RankClassifier

logger = logging.getLogger(__name__)


def rounded_average(total_score: int, total_games: int) -> int:
    """Average score rounded half up."""
    if total_games <= 0:
        return 0
    return (2 * total_score + total_games) // (2 * total_games)


def _mode_label(mode) -> str:
    return mode.value if isinstance(mode, GameMode) else str(mode)


class ScoringService(BaseService):
    """Records game results into aggregate statistics and issues game rewards."""

    def __init__(self, session_factory, lock_manager, ledger, config_service=None, read_session_factory=None):
        """
        Args:
            session_factory: Async session factory from Database class
            lock_manager: Per-player lock shared with the ledger
            ledger: RewardLedgerService used for game rewards
            config_service: Optional ConfigurationService for reward overrides
            read_session_factory: Optional factory for statistics queries
        """
        super().__init__(session_factory, read_session_factory)
        self.lock_manager = lock_manager
        self.ledger = ledger
        self.config_service = config_service

    def _config_int(self, key: str, default: int) -> int:
        if self.config_service is None:
            return default
        return self.config_service.get_int(key, default)

    async def record_game_result(self, result: GameResult) -> ScoreUpdateOutcome:
        """
        Record one finished game for one player.

        Args:
            result: Validated game outcome

        Returns:
            ScoreUpdateOutcome with the refreshed stats and issued rewards.
            If result.game_id was already recorded for this player nothing
            changes and the outcome has duplicate=True.

        Raises:
            PlayerNotFoundError: If the player does not exist
            StorageUnavailableError: If the database failed; nothing was committed
        """
        async with self.lock_manager.hold(result.player_id):
            async with self.get_session() as session:
                return await self._record_in_session(session, result)

    async def _record_in_session(self, session: AsyncSession, result: GameResult) -> ScoreUpdateOutcome:
        player = await lock_player_row(session, result.player_id)

        stats = await session.scalar(
            select(PlayerStats).where(PlayerStats.player_id == result.player_id).with_for_update()
        )

        if result.game_id is not None and stats is not None:
            already_recorded = await session.scalar(
                select(ScoreSubmission.id).where(
                    ScoreSubmission.player_id == result.player_id,
                    ScoreSubmission.game_id == result.game_id
                )
            )
            if already_recorded is not None:
                logger.info(
                    f"Game {result.game_id} already recorded for player {result.player_id}, skipping"
                )
                return ScoreUpdateOutcome(stats=PlayerStatsData.from_model(stats), duplicate=True)

        if stats is None:
            stats = self._new_stats(result.player_id)
            session.add(stats)

        self._apply_result(stats, result)

        tier = RankClassifier.classify(stats.total_score, stats.total_wins, stats.max_streak)
        if tier.value != stats.rank:
            logger.info(f"Player {result.player_id} rank changed {stats.rank} -> {tier.value}")
        stats.rank = tier.value
        player.rank = tier.value

        session.add(ScoreSubmission(
            player_id=result.player_id,
            game_id=result.game_id,
            score=result.score,
            is_win=result.is_win,
            mode=_mode_label(result.mode),
            is_perfect_game=result.is_perfect_game
        ))
        await session.flush()

        rewards: List[RewardGrant] = []
        failed_rewards: List[str] = []

        # The win reward is part of the unit of work; a failure here rolls everything back
        win_reward = self._config_int(ConfigKeys.WIN_REWARD, Config.WIN_REWARD)
        if result.is_win and win_reward > 0:
            await self.ledger.award_in_session(
                session, result.player_id, win_reward, RewardType.GAME_WIN,
                description=f"Win reward for {_mode_label(result.mode)} game", game_id=result.game_id
            )
            rewards.append(RewardGrant(RewardType.GAME_WIN.value, win_reward))

        for reward_type, amount, description in self._bonuses(stats, result):
            grant = await self._award_bonus(session, result, reward_type, amount, description)
            if grant is not None:
                rewards.append(grant)
            else:
                failed_rewards.append(reward_type.value)

        await session.refresh(stats)
        outcome = ScoreUpdateOutcome(
            stats=PlayerStatsData.from_model(stats),
            rewards=rewards,
            failed_rewards=failed_rewards
        )
        logger.debug(
            f"Recorded game for player {result.player_id}: score={result.score} win={result.is_win} "
            f"mode={result.mode} coins_awarded={outcome.coins_awarded}"
        )
        return outcome

    @staticmethod
    def _new_stats(player_id: int) -> PlayerStats:
        return PlayerStats(
            player_id=player_id,
            total_games=0,
            total_wins=0,
            total_losses=0,
            total_score=0,
            highest_score=0,
            current_streak=0,
            max_streak=0,
            average_score=0,
            perfect_games=0,
            singleplayer_games=0,
            singleplayer_wins=0,
            one_vs_one_games=0,
            one_vs_one_wins=0,
            two_vs_two_games=0,
            two_vs_two_wins=0,
            rank=RankClassifier.classify(0, 0, 0).value
        )

    @staticmethod
    def _apply_result(stats: PlayerStats, result: GameResult) -> None:
        """Fold one game into the aggregates in place."""
        stats.total_games += 1
        stats.total_score += result.score
        stats.average_score = rounded_average(stats.total_score, stats.total_games)

        if result.is_win:
            stats.total_wins += 1
            stats.current_streak += 1
        else:
            stats.total_losses += 1
            stats.current_streak = 0

        stats.max_streak = max(stats.max_streak, stats.current_streak)
        stats.highest_score = max(stats.highest_score, result.score)
        if result.is_perfect_game:
            stats.perfect_games += 1

        mode = GameMode.parse(result.mode)
        if mode is None:
            logger.warning(
                f"Unrecognized game mode {result.mode!r} for player {result.player_id}; "
                f"only aggregate counters updated"
            )
        else:
            games_column, wins_column = MODE_COUNTER_COLUMNS[mode]
            setattr(stats, games_column, getattr(stats, games_column) + 1)
            if result.is_win:
                setattr(stats, wins_column, getattr(stats, wins_column) + 1)

        stats.last_played = utcnow()

    def _bonuses(self, stats: PlayerStats, result: GameResult) -> List[Tuple[RewardType, int, str]]:
        bonuses = []

        perfect_bonus = self._config_int(ConfigKeys.PERFECT_GAME_BONUS, Config.PERFECT_GAME_BONUS)
        if result.is_perfect_game and perfect_bonus > 0:
            bonuses.append((RewardType.PERFECT_GAME_BONUS, perfect_bonus, "Perfect game bonus"))

        interval = self._config_int(ConfigKeys.STREAK_BONUS_INTERVAL, Config.STREAK_BONUS_INTERVAL)
        streak = stats.current_streak
        if interval > 0 and streak > 0 and streak % interval == 0:
            bonuses.append((RewardType.STREAK_BONUS, streak, f"{streak}-win streak bonus"))

        return bonuses

    async def _award_bonus(
        self,
        session: AsyncSession,
        result: GameResult,
        reward_type: RewardType,
        amount: int,
        description: str
    ) -> Optional[RewardGrant]:
        """Issue one bonus inside a SAVEPOINT; None if it could not be issued."""
        try:
            async with session.begin_nested():
                await self.ledger.award_in_session(
                    session, result.player_id, amount, reward_type,
                    description=description, game_id=result.game_id
                )
        except (SQLAlchemyError, ProgressionError):
            logger.error(
                f"Failed to issue {reward_type.value} of {amount} coins to player {result.player_id} "
                f"for game {result.game_id}; game result still recorded",
                exc_info=True
            )
            return None
        return RewardGrant(reward_type.value, amount)

    async def get_player_stats(self, player_id: int) -> Optional[PlayerStatsData]:
        """
        Current stats for a player.

        Returns:
            None if the player exists but has not finished a game yet

        Raises:
            PlayerNotFoundError: If the player does not exist
        """
        async with self.get_read_session() as session:
            exists = await session.scalar(select(Player.id).where(Player.id == player_id))
            if exists is None:
                raise PlayerNotFoundError(player_id)

            stats = await session.scalar(
                select(PlayerStats).where(PlayerStats.player_id == player_id)
            )
            return PlayerStatsData.from_model(stats) if stats else None
