"""
Composition root for the trivia progression engine.

ProgressionEngine wires the database, configuration, locks and services
together and exposes the programmatic contract used by the HTTP layer,
the payment collaborator and the game-session layer.
"""

from typing import List, Optional, Union

from trivia.config import Config
from trivia.constants import PaginationConstants
from trivia.data_models.game import GameResult, GameSummary
from trivia.data_models.leaderboard import LeaderboardPage
from trivia.data_models.profile import BalanceIntegrity, PlayerProfile, RewardStatus
from trivia.data_models.stats import PlayerStatsData, ScoreUpdateOutcome
from trivia.database.database import Database
from trivia.database.models import GameMode, Player, RewardTransaction, RewardType
from trivia.operations.player_operations import PlayerOperations
from trivia.services.configuration import ConfigurationService
from trivia.services.leaderboard import LeaderboardService
from trivia.services.player_locks import PlayerLockManager, RedisPlayerLockManager
from trivia.services.profile import ProfileService
from trivia.services.question_sessions import QuestionSessionStore, RedisQuestionSessionStore
from trivia.services.reward_ledger import RewardLedgerService
from trivia.services.rewards import RewardService
from trivia.services.scoring import ScoringService
from trivia.utils.logger import setup_logger
from trivia.utils.redis_utils import RedisUtils


class ProgressionEngine:
    """
    Player progression engine.

    Usage:
        engine = ProgressionEngine()
        await engine.initialize()
        outcome = await engine.record_game_result(player_id, 120, True, "single", game_id=42)
        page = await engine.get_leaderboard(mode="1v1", limit=20)
        await engine.close()
    """

    def __init__(self, database_url: Optional[str] = None, redis_url: Optional[str] = None):
        self.logger = setup_logger(__name__)
        self.db = Database(database_url)
        self.redis_url = redis_url
        self.redis_client = None

        self.config_service: Optional[ConfigurationService] = None
        self.lock_manager = None
        self.question_sessions = None
        self.ledger: Optional[RewardLedgerService] = None
        self.scoring: Optional[ScoringService] = None
        self.leaderboard: Optional[LeaderboardService] = None
        self.rewards: Optional[RewardService] = None
        self.profiles: Optional[ProfileService] = None
        self.players: Optional[PlayerOperations] = None

    async def initialize(self):
        """Create tables, load runtime configuration and build the services"""
        self.logger.info("Initializing progression engine...")
        Config.validate()

        await self.db.initialize()
        session_factory = self.db.session_factory
        read_factory = self.db.read_session_factory

        self.config_service = ConfigurationService(session_factory, read_factory)
        await self.config_service.load_all()

        self.redis_client = await RedisUtils.create_redis_client(self.redis_url)
        if self.redis_client is not None:
            self.lock_manager = RedisPlayerLockManager(
                self.redis_client,
                timeout=Config.PLAYER_LOCK_TIMEOUT,
                blocking_timeout=Config.PLAYER_LOCK_BLOCKING_TIMEOUT
            )
            self.question_sessions = RedisQuestionSessionStore(
                self.redis_client,
                history_window=Config.QUESTION_HISTORY_WINDOW,
                ttl=Config.QUESTION_SESSION_TTL
            )
            self.logger.info("Using Redis for player locks and question sessions")
        else:
            if self.redis_url or Config.REDIS_URL:
                self.logger.warning("Redis unavailable, falling back to in-process player locks")
            self.lock_manager = PlayerLockManager(timeout=Config.PLAYER_LOCK_BLOCKING_TIMEOUT)
            self.question_sessions = QuestionSessionStore(
                capacity=Config.QUESTION_SESSION_CAPACITY,
                history_window=Config.QUESTION_HISTORY_WINDOW
            )

        self.ledger = RewardLedgerService(session_factory, self.lock_manager, read_factory)
        self.scoring = ScoringService(
            session_factory, self.lock_manager, self.ledger, self.config_service, read_factory
        )
        self.rewards = RewardService(
            session_factory, self.lock_manager, self.ledger, self.config_service, read_factory
        )
        if self.redis_client is not None:
            # Caches are per process and never see writes made by other processes
            self.leaderboard = LeaderboardService(read_factory, cache_ttl=0)
            self.profiles = ProfileService(read_factory, self.leaderboard, cache_ttl=0)
        else:
            self.leaderboard = LeaderboardService(read_factory)
            self.profiles = ProfileService(read_factory, self.leaderboard)
        self.players = PlayerOperations(self.db, self.ledger)

        self.logger.info("Progression engine initialized")

    async def close(self):
        if self.redis_client is not None:
            await self.redis_client.aclose()
            self.redis_client = None
        await self.db.close()
        self.logger.info("Progression engine closed")

    async def _after_write(self):
        """Make the write visible to cached reads."""
        await self.leaderboard.clear_cache()
        self.profiles.invalidate_cache()

    async def _read(self, func):
        return await self.leaderboard.execute_with_retry(func, max_retries=Config.DB_MAX_RETRIES)

    # Players

    async def create_player(self, username: str, display_name: Optional[str] = None, language: str = "en") -> Player:
        player = await self.players.create_player(username, display_name, language)
        await self._after_write()
        return player

    # Scoring

    async def record_game_result(
        self,
        player_id: int,
        score: int,
        is_win: bool,
        mode: Union[str, GameMode],
        game_id: Optional[int] = None,
        is_perfect_game: bool = False
    ) -> ScoreUpdateOutcome:
        """
        Record a finished game for a player.

        Retried on transient storage errors only when game_id is given, since
        only then is a repeated submission recognized and skipped.
        """
        if isinstance(mode, GameMode):
            mode = mode.value
        result = GameResult(
            player_id=player_id,
            score=score,
            is_win=is_win,
            mode=mode,
            game_id=game_id,
            is_perfect_game=is_perfect_game
        )

        async def _record():
            return await self.scoring.record_game_result(result)

        try:
            if game_id is not None:
                return await self.scoring.execute_with_retry(_record, max_retries=Config.DB_MAX_RETRIES)
            return await _record()
        finally:
            await self._after_write()

    async def get_player_stats(self, player_id: int) -> Optional[PlayerStatsData]:
        return await self._read(lambda: self.scoring.get_player_stats(player_id))

    # Ledger

    async def award_coins(
        self,
        player_id: int,
        amount: int,
        reward_type: Union[str, RewardType],
        description: Optional[str] = None,
        game_id: Optional[int] = None,
        reference: Optional[str] = None
    ) -> RewardTransaction:
        """Credit coins; with a reference the credit is idempotent and retried."""
        reward_type = RewardType(reward_type)

        async def _award():
            return await self.ledger.award(
                player_id, amount, reward_type,
                description=description, game_id=game_id, reference=reference
            )

        try:
            if reference is not None:
                return await self.ledger.execute_with_retry(_award, max_retries=Config.DB_MAX_RETRIES)
            return await _award()
        finally:
            await self._after_write()

    async def deduct_coins(self, player_id: int, amount: int, description: Optional[str] = None) -> bool:
        try:
            return await self.ledger.deduct(player_id, amount, description)
        finally:
            await self._after_write()

    async def get_balance(self, player_id: int) -> int:
        return await self._read(lambda: self.ledger.get_balance(player_id))

    async def get_transaction_history(
        self,
        player_id: int,
        limit: int = PaginationConstants.DEFAULT_HISTORY_LIMIT
    ) -> List[RewardTransaction]:
        return await self._read(lambda: self.ledger.get_history(player_id, limit))

    async def verify_balance_integrity(self, player_id: int) -> BalanceIntegrity:
        return await self._read(lambda: self.ledger.verify_balance_integrity(player_id))

    # Leaderboards

    async def get_leaderboard(
        self,
        mode: Optional[str] = None,
        language: Optional[str] = None,
        limit: int = Config.LEADERBOARD_DEFAULT_LIMIT,
        offset: int = 0
    ) -> LeaderboardPage:
        return await self._read(lambda: self.leaderboard.get_leaderboard(mode, language, limit, offset))

    async def get_rank_position(self, player_id: int) -> int:
        return await self._read(lambda: self.leaderboard.get_rank_position(player_id))

    async def get_recent_games(
        self,
        player_id: int,
        limit: int = PaginationConstants.DEFAULT_RECENT_GAMES
    ) -> List[GameSummary]:
        return await self._read(lambda: self.leaderboard.get_recent_games(player_id, limit))

    async def get_player_profile(self, player_id: int) -> PlayerProfile:
        return await self._read(lambda: self.profiles.get_profile(player_id))

    # Reward call-sites

    async def claim_ad_reward(self, player_id: int) -> RewardTransaction:
        try:
            return await self.rewards.claim_ad_reward(player_id)
        finally:
            await self._after_write()

    async def claim_daily_bonus(self, player_id: int) -> RewardTransaction:
        try:
            return await self.rewards.claim_daily_bonus(player_id)
        finally:
            await self._after_write()

    async def get_reward_status(self, player_id: int) -> RewardStatus:
        return await self._read(lambda: self.rewards.get_reward_status(player_id))

    async def get_referral_code(self, player_id: int) -> str:
        try:
            return await self.rewards.get_referral_code(player_id)
        finally:
            await self._after_write()

    async def apply_referral(self, player_id: int, code: str) -> RewardTransaction:
        try:
            return await self.rewards.apply_referral(player_id, code)
        finally:
            await self._after_write()

    async def credit_coin_purchase(self, player_id: int, pack: str, reference: Optional[str] = None) -> RewardTransaction:
        """Credit a paid coin pack; retried when the payment reference makes it idempotent."""
        async def _credit():
            return await self.rewards.credit_coin_purchase(player_id, pack, reference)

        try:
            if reference is not None:
                return await self.rewards.execute_with_retry(_credit, max_retries=Config.DB_MAX_RETRIES)
            return await _credit()
        finally:
            await self._after_write()

    async def activate_premium(self, player_id: int, reference: Optional[str] = None) -> RewardTransaction:
        try:
            return await self.rewards.activate_premium(player_id, reference)
        finally:
            await self._after_write()
