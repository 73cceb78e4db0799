"""
Reward call-sites that feed the coin ledger.

Ad rewards, the daily bonus, referrals, coin-pack purchases and premium
activation. Each runs under the affected player's lock and writes through
RewardLedgerService in the same transaction as any player-row change it makes.
"""

import logging
import secrets
import string
from contextlib import AsyncExitStack
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select

from trivia.config import Config
from trivia.constants import ConfigKeys, ReferralConstants
from trivia.data_models.profile import RewardStatus
from trivia.database.models import Player, RewardTransaction, RewardType, utcnow
from trivia.services.base import BaseService
from trivia.services.reward_ledger import lock_player_row
from trivia.utils.exceptions import (
    DailyBonusAlreadyClaimedError, InvalidReferralCodeError, PlayerNotFoundError,
    ProgressionError, ReferralAlreadyUsedError, SelfReferralError, UnknownCoinPackError
)

logger = logging.getLogger(__name__)

_REFERRAL_ALPHABET = string.ascii_uppercase + string.digits


def generate_referral_code(username: str) -> str:
    """First letters of the username followed by a random suffix, uppercased."""
    prefix = username[:ReferralConstants.PREFIX_LENGTH].upper()
    suffix = ''.join(
        secrets.choice(_REFERRAL_ALPHABET) for _ in range(ReferralConstants.RANDOM_SUFFIX_LENGTH)
    )
    return f"{prefix}{suffix}"


class RewardService(BaseService):
    """Issues non-game rewards through the ledger."""

    def __init__(self, session_factory, lock_manager, ledger, config_service=None, read_session_factory=None):
        super().__init__(session_factory, read_session_factory)
        self.lock_manager = lock_manager
        self.ledger = ledger
        self.config_service = config_service

    def _config_int(self, key: str, default: int) -> int:
        if self.config_service is None:
            return default
        return self.config_service.get_int(key, default)

    def _multiplier(self, player: Player) -> int:
        if not player.premium:
            return 1
        return self._config_int(ConfigKeys.PREMIUM_MULTIPLIER, Config.PREMIUM_REWARD_MULTIPLIER)

    async def claim_ad_reward(self, player_id: int) -> RewardTransaction:
        """Credit the ad reward, multiplied for premium players."""
        async with self.lock_manager.hold(player_id):
            async with self.get_session() as session:
                player = await lock_player_row(session, player_id)
                amount = self._config_int(ConfigKeys.AD_REWARD, Config.AD_REWARD) * self._multiplier(player)
                entry = await self.ledger.award_in_session(
                    session, player_id, amount, RewardType.AD_REWARD,
                    description="Watched advertisement"
                )
        logger.info(f"Player {player_id} earned {amount} coins for watching an ad")
        return entry

    async def claim_daily_bonus(self, player_id: int, now: Optional[datetime] = None) -> RewardTransaction:
        """
        Credit the daily bonus once per UTC calendar day.

        Raises:
            DailyBonusAlreadyClaimedError: If it was already claimed today
        """
        now = now or utcnow()
        async with self.lock_manager.hold(player_id):
            async with self.get_session() as session:
                player = await lock_player_row(session, player_id)
                if player.last_daily_bonus is not None and player.last_daily_bonus.date() == now.date():
                    raise DailyBonusAlreadyClaimedError(player_id)

                amount = self._config_int(ConfigKeys.DAILY_BONUS, Config.DAILY_BONUS) * self._multiplier(player)
                entry = await self.ledger.award_in_session(
                    session, player_id, amount, RewardType.DAILY_BONUS,
                    description="Daily bonus reward"
                )
                player.last_daily_bonus = now
        logger.info(f"Player {player_id} claimed daily bonus of {amount} coins")
        return entry

    async def get_reward_status(self, player_id: int, now: Optional[datetime] = None) -> RewardStatus:
        now = now or utcnow()
        async with self.get_read_session() as session:
            player = await session.get(Player, player_id)
            if player is None:
                raise PlayerNotFoundError(player_id)

            claimed_today = (
                player.last_daily_bonus is not None
                and player.last_daily_bonus.date() == now.date()
            )
            next_bonus = None
            if claimed_today:
                next_bonus = datetime.combine(now.date() + timedelta(days=1), datetime.min.time())

            return RewardStatus(
                player_id=player_id,
                is_premium=player.premium,
                can_claim_daily_bonus=not claimed_today,
                reward_multiplier=self._multiplier(player),
                next_daily_bonus=next_bonus
            )

    async def get_referral_code(self, player_id: int) -> str:
        """Return the player's referral code, generating one on first use."""
        async with self.lock_manager.hold(player_id):
            async with self.get_session() as session:
                player = await lock_player_row(session, player_id)
                if player.referral_code:
                    return player.referral_code

                for _ in range(ReferralConstants.MAX_GENERATION_ATTEMPTS):
                    code = generate_referral_code(player.username)
                    taken = await session.scalar(
                        select(Player.id).where(Player.referral_code == code)
                    )
                    if taken is None:
                        player.referral_code = code
                        logger.info(f"Generated referral code {code} for player {player_id}")
                        return code

                raise ProgressionError(
                    f"Could not generate a unique referral code for player {player_id}",
                    "Could not create a referral code. Please try again."
                )

    async def apply_referral(self, player_id: int, code: str) -> RewardTransaction:
        """
        Link a player to the owner of a referral code and pay both the bonus.

        Returns:
            The ledger entry for the referred player's bonus

        Raises:
            InvalidReferralCodeError, SelfReferralError, ReferralAlreadyUsedError
        """
        normalized = (code or '').strip().upper()
        async with self.get_read_session() as session:
            referrer_id = await session.scalar(
                select(Player.id).where(Player.referral_code == normalized)
            )
        if referrer_id is None:
            raise InvalidReferralCodeError(normalized)
        if referrer_id == player_id:
            raise SelfReferralError(player_id)

        bonus = self._config_int(ConfigKeys.REFERRAL_BONUS, Config.REFERRAL_BONUS)

        # Always lock the lower id first so two crossing referrals cannot deadlock
        async with AsyncExitStack() as stack:
            for locked_id in sorted((player_id, referrer_id)):
                await stack.enter_async_context(self.lock_manager.hold(locked_id))

            async with self.get_session() as session:
                player = await lock_player_row(session, player_id)
                if player.referred_by is not None:
                    raise ReferralAlreadyUsedError(player_id)
                referrer = await lock_player_row(session, referrer_id)

                player.referred_by = referrer.id
                referrer.total_referrals += 1

                entry = await self.ledger.award_in_session(
                    session, player_id, bonus, RewardType.REFERRAL_BONUS,
                    description=f"Referral bonus from {referrer.username}"
                )
                await self.ledger.award_in_session(
                    session, referrer_id, bonus, RewardType.REFERRAL_BONUS,
                    description=f"Referral reward for inviting {player.username}"
                )

        logger.info(f"Player {player_id} used referral code of player {referrer_id}")
        return entry

    async def credit_coin_purchase(self, player_id: int, pack: str, reference: Optional[str] = None) -> RewardTransaction:
        """
        Credit a coin pack after the payment collaborator confirmed payment.

        Args:
            pack: Key of Config.COIN_PACKS
            reference: Payment id; a repeated delivery is credited only once
        """
        pack_info = Config.COIN_PACKS.get(pack)
        if pack_info is None:
            raise UnknownCoinPackError(pack)

        async with self.lock_manager.hold(player_id):
            async with self.get_session() as session:
                entry = await self.ledger.award_in_session(
                    session, player_id, pack_info['coins'], RewardType.COIN_PURCHASE,
                    description=f"Purchased {pack} pack", reference=reference
                )
        logger.info(f"Credited {pack} pack ({pack_info['coins']} coins) to player {player_id}")
        return entry

    async def activate_premium(self, player_id: int, reference: Optional[str] = None) -> RewardTransaction:
        """Mark the player premium and credit the premium bonus once per payment."""
        bonus = self._config_int(ConfigKeys.PREMIUM_BONUS, Config.PREMIUM_BONUS)
        async with self.lock_manager.hold(player_id):
            async with self.get_session() as session:
                player = await lock_player_row(session, player_id)
                player.premium = True
                entry = await self.ledger.award_in_session(
                    session, player_id, bonus, RewardType.PREMIUM_BONUS,
                    description="Premium subscription bonus coins", reference=reference
                )
        logger.info(f"Premium activated for player {player_id}")
        return entry
