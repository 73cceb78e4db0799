"""
Coin ledger service.

Player.coins is a cache of the reward_transactions ledger: every change to it
is made under SELECT ... FOR UPDATE on the player row, inside the player's
lock, in the same transaction as the ledger entry recording it.
"""

import logging
from typing import List, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from trivia.constants import PaginationConstants
from trivia.data_models.profile import BalanceIntegrity
from trivia.database.models import Player, RewardTransaction, RewardType
from trivia.services.base import BaseService
from trivia.utils.exceptions import InvalidAmountError, PlayerNotFoundError, ProgressionError

logger = logging.getLogger(__name__)


def _validate_amount(amount) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmountError(amount)


async def lock_player_row(session: AsyncSession, player_id: int) -> Player:
    """Load a player row FOR UPDATE, raising PlayerNotFoundError if missing."""
    # NOTE: On SQLite with_for_update() renders nothing; the write lock is
    # already held because transactions begin IMMEDIATE.
    result = await session.execute(
        select(Player).where(Player.id == player_id).with_for_update()
    )
    player = result.scalar_one_or_none()
    if player is None:
        raise PlayerNotFoundError(player_id)
    return player


class RewardLedgerService(BaseService):
    """Append-only coin ledger and the single writer of Player.coins."""

    def __init__(self, session_factory, lock_manager, read_session_factory=None):
        """
        Args:
            session_factory: Async session factory from Database class
            read_session_factory: Optional factory for balance and history queries
            lock_manager: PlayerLockManager or RedisPlayerLockManager
        """
        super().__init__(session_factory, read_session_factory)
        self.lock_manager = lock_manager

    async def award(
        self,
        player_id: int,
        amount: int,
        reward_type: RewardType,
        description: Optional[str] = None,
        game_id: Optional[int] = None,
        reference: Optional[str] = None
    ) -> RewardTransaction:
        """
        Credit coins to a player.

        Args:
            player_id: Player to credit
            amount: Positive number of coins
            reward_type: Why the coins were issued (anything but DEDUCTION)
            description: Free text stored on the ledger entry
            game_id: Game that caused the reward, if any
            reference: External idempotency key. A second award with the same
                reference returns the original entry without crediting again.

        Returns:
            The ledger entry recording the credit
        """
        _validate_amount(amount)
        async with self.lock_manager.hold(player_id):
            async with self.get_session() as session:
                return await self.award_in_session(
                    session, player_id, amount, reward_type,
                    description=description, game_id=game_id, reference=reference
                )

    async def award_in_session(
        self,
        session: AsyncSession,
        player_id: int,
        amount: int,
        reward_type: RewardType,
        description: Optional[str] = None,
        game_id: Optional[int] = None,
        reference: Optional[str] = None
    ) -> RewardTransaction:
        """
        Credit coins within the caller's transaction (session-aware).

        The caller must already hold the player's lock. Nothing is committed
        here; the entry is flushed so its id and balance_after are available.
        """
        _validate_amount(amount)
        if reward_type == RewardType.DEDUCTION:
            raise ValueError("Use deduct() to remove coins")

        if reference is not None:
            existing = await session.scalar(
                select(RewardTransaction).where(RewardTransaction.reference == reference)
            )
            if existing is not None:
                if existing.player_id != player_id:
                    raise ProgressionError(
                        f"Reference '{reference}' already credited to player {existing.player_id}",
                        "This transaction was already processed."
                    )
                logger.info(f"Reference '{reference}' already credited to player {player_id}, skipping")
                return existing

        player = await lock_player_row(session, player_id)
        new_balance = player.coins + amount
        player.coins = new_balance

        entry = RewardTransaction(
            player_id=player_id,
            type=reward_type,
            amount=amount,
            balance_after=new_balance,
            game_id=game_id,
            reference=reference,
            description=description or f"{amount} coins awarded"
        )
        session.add(entry)
        await session.flush()  # Use flush to get ID, let caller handle commit
        await session.refresh(entry)

        logger.debug(
            f"Awarded {amount} coins ({reward_type.value}) to player {player_id}, balance now {new_balance}"
        )
        return entry

    async def deduct(self, player_id: int, amount: int, description: Optional[str] = None) -> bool:
        """
        Remove coins from a player if they can afford it.

        Returns:
            True if the coins were removed, False for insufficient funds (no
            change and no ledger entry in that case)
        """
        _validate_amount(amount)
        async with self.lock_manager.hold(player_id):
            async with self.get_session() as session:
                return await self.deduct_in_session(session, player_id, amount, description)

    async def deduct_in_session(
        self,
        session: AsyncSession,
        player_id: int,
        amount: int,
        description: Optional[str] = None
    ) -> bool:
        """Session-aware deduct; the caller must hold the player's lock."""
        _validate_amount(amount)
        player = await lock_player_row(session, player_id)

        if player.coins < amount:
            logger.info(f"Player {player_id} has {player.coins} coins, cannot deduct {amount}")
            return False

        new_balance = player.coins - amount
        player.coins = new_balance
        session.add(RewardTransaction(
            player_id=player_id,
            type=RewardType.DEDUCTION,
            amount=-amount,
            balance_after=new_balance,
            description=description or f"{amount} coins deducted"
        ))
        await session.flush()

        logger.debug(f"Deducted {amount} coins from player {player_id}, balance now {new_balance}")
        return True

    async def get_balance(self, player_id: int) -> int:
        async with self.get_read_session() as session:
            balance = await session.scalar(
                select(Player.coins).where(Player.id == player_id)
            )
            if balance is None:
                raise PlayerNotFoundError(player_id)
            return balance

    async def get_history(
        self,
        player_id: int,
        limit: int = PaginationConstants.DEFAULT_HISTORY_LIMIT
    ) -> List[RewardTransaction]:
        """Most recent ledger entries for a player, newest first."""
        async with self.get_read_session() as session:
            result = await session.execute(
                select(RewardTransaction)
                .where(RewardTransaction.player_id == player_id)
                .order_by(RewardTransaction.id.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def verify_balance_integrity(self, player_id: int) -> BalanceIntegrity:
        """Compare the cached balance with the sum of the ledger"""
        async with self.get_read_session() as session:
            cached_balance = await session.scalar(
                select(Player.coins).where(Player.id == player_id)
            )
            if cached_balance is None:
                raise PlayerNotFoundError(player_id)

            row = (await session.execute(
                select(
                    func.coalesce(func.sum(RewardTransaction.amount), 0),
                    func.count(RewardTransaction.id)
                ).where(RewardTransaction.player_id == player_id)
            )).one()

            integrity = BalanceIntegrity(
                player_id=player_id,
                cached_balance=cached_balance,
                ledger_balance=row[0],
                transaction_count=row[1]
            )
            if not integrity.is_consistent:
                logger.error(
                    f"Balance mismatch for player {player_id}: cached {cached_balance}, ledger {row[0]}"
                )
            return integrity
