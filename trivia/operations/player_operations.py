"""
Player Operations Module

Business logic for the Player lifecycle: registration with an opening
balance written through the coin ledger, lookups, and preference updates.

Key functionality:
- create_player(): validated registration, one transaction for the player
  row and its signup_bonus ledger entry
- get_or_create_player(): idempotent registration by username
- update_language(): locale preference used by language-filtered leaderboards
"""

from typing import Optional
from contextlib import asynccontextmanager
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from trivia.config import Config
from trivia.database.models import Player, RewardType
from trivia.utils.exceptions import PlayerNotFoundError, ProgressionError
from trivia.utils.logger import setup_logger

logger = setup_logger(__name__)

MAX_USERNAME_LENGTH = 100
MAX_LANGUAGE_LENGTH = 10


class PlayerOperationError(ProgressionError):
    """Base exception for player operation errors"""
    pass


class PlayerValidationError(PlayerOperationError):
    """Raised when player data validation fails"""
    pass


class PlayerOperations:
    """Business logic operations for Player management."""

    def __init__(self, database, ledger):
        """
        Args:
            database: Database instance
            ledger: RewardLedgerService that records the opening balance
        """
        self.db = database
        self.ledger = ledger
        self.logger = logger

    @asynccontextmanager
    async def _get_session_context(self, session: Optional[AsyncSession] = None):
        """
        Provides a session context. Uses the provided session if available,
        otherwise opens a transaction that commits on exit.
        """
        if session:
            # If a session is provided, we do not manage its lifecycle
            yield session
        else:
            async with self.db.transaction() as new_session:
                yield new_session

    async def create_player(
        self,
        username: str,
        display_name: Optional[str] = None,
        language: str = "en",
        session: Optional[AsyncSession] = None
    ) -> Player:
        """
        Register a new player.

        The opening balance (Config.STARTING_COINS) is credited through the
        ledger as a signup_bonus entry in the same transaction, so the sum of
        the player's ledger always equals their balance.

        Raises:
            PlayerValidationError: If the data is invalid or the username is taken
        """
        username, display_name, language = self._validate_player_data(username, display_name, language)

        try:
            async with self._get_session_context(session) as s:
                taken = await s.scalar(
                    select(Player.id).where(func.lower(Player.username) == username.lower())
                )
                if taken is not None:
                    raise PlayerValidationError(
                        f"Username '{username}' is already registered",
                        "That username is already taken."
                    )

                player = Player(
                    username=username,
                    display_name=display_name,
                    language=language,
                    coins=0
                )
                s.add(player)
                await s.flush()  # Get the ID without committing

                # Nobody else can reference this id yet, so no player lock is needed
                if Config.STARTING_COINS > 0:
                    await self.ledger.award_in_session(
                        s, player.id, Config.STARTING_COINS, RewardType.SIGNUP_BONUS,
                        description="Starting balance"
                    )
                await s.refresh(player)
        except IntegrityError as e:
            # Lost a race with a concurrent registration of the same username
            raise PlayerValidationError(
                f"Username '{username}' is already registered",
                "That username is already taken."
            ) from e

        self.logger.info(f"Created new Player {player.id} ({username}) with {player.coins} coins")
        return player

    async def get_or_create_player(
        self,
        username: str,
        display_name: Optional[str] = None,
        language: str = "en"
    ) -> Player:
        """Get the player with this username, registering them if needed (idempotent)."""
        existing = await self.db.get_player_by_username(username)
        if existing:
            self.logger.debug(f"Found existing Player {existing.id} for username {username}")
            return existing
        try:
            return await self.create_player(username, display_name, language)
        except PlayerValidationError:
            existing = await self.db.get_player_by_username(username)
            if existing is None:
                raise
            return existing

    async def get_player(self, player_id: int) -> Player:
        player = await self.db.get_player_by_id(player_id)
        if player is None:
            raise PlayerNotFoundError(player_id)
        return player

    async def update_language(self, player_id: int, language: str) -> Player:
        """Change a player's language preference."""
        language = self._validate_language(language)
        async with self.db.transaction() as s:
            player = await s.get(Player, player_id)
            if player is None:
                raise PlayerNotFoundError(player_id)
            player.language = language
        self.logger.debug(f"Player {player_id} language set to {language}")
        return player

    def _validate_player_data(self, username: str, display_name: Optional[str], language: str):
        """Validate and normalize registration data"""
        if not username or not username.strip():
            raise PlayerValidationError("Username is empty", "Username is required.")
        username = username.strip()
        if len(username) > MAX_USERNAME_LENGTH:
            raise PlayerValidationError(
                f"Username longer than {MAX_USERNAME_LENGTH} characters",
                "Username is too long."
            )

        display_name = (display_name or username).strip()
        # Ensure display name is reasonable length (database constraint)
        if len(display_name) > MAX_USERNAME_LENGTH:
            display_name = display_name[:MAX_USERNAME_LENGTH - 3] + "..."

        return username, display_name, self._validate_language(language)

    @staticmethod
    def _validate_language(language: str) -> str:
        if not language or not language.strip() or len(language.strip()) > MAX_LANGUAGE_LENGTH:
            raise PlayerValidationError(f"Invalid language code {language!r}", "Invalid language.")
        return language.strip().lower()
