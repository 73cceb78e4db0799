"""
Reward call-site tests: ads, daily bonus, referrals, coin packs and premium.
"""

from datetime import datetime, timedelta

import pytest

from trivia.database.models import RewardType
from trivia.utils.exceptions import (
    DailyBonusAlreadyClaimedError, InvalidReferralCodeError, PlayerNotFoundError,
    ReferralAlreadyUsedError, SelfReferralError, UnknownCoinPackError
)


class TestAdReward:

    async def test_standard_player(self, rewards, ledger, make_player):
        player = await make_player()

        entry = await rewards.claim_ad_reward(player.id)

        assert entry.amount == 5
        assert entry.type == RewardType.AD_REWARD
        assert await ledger.get_balance(player.id) == 1005

    async def test_premium_player_doubles(self, rewards, make_player):
        player = await make_player()
        await rewards.activate_premium(player.id)

        entry = await rewards.claim_ad_reward(player.id)

        assert entry.amount == 10

    async def test_unknown_player(self, rewards):
        with pytest.raises(PlayerNotFoundError):
            await rewards.claim_ad_reward(5555)


class TestDailyBonus:

    async def test_once_per_day(self, rewards, ledger, make_player):
        player = await make_player()
        morning = datetime(2026, 5, 4, 8, 0)

        entry = await rewards.claim_daily_bonus(player.id, now=morning)
        assert entry.amount == 25
        assert entry.type == RewardType.DAILY_BONUS

        with pytest.raises(DailyBonusAlreadyClaimedError):
            await rewards.claim_daily_bonus(player.id, now=morning + timedelta(hours=10))

        assert await ledger.get_balance(player.id) == 1025

    async def test_next_day_allowed(self, rewards, make_player):
        player = await make_player()
        await rewards.claim_daily_bonus(player.id, now=datetime(2026, 5, 4, 23, 59))

        entry = await rewards.claim_daily_bonus(player.id, now=datetime(2026, 5, 5, 0, 1))

        assert entry.amount == 25

    async def test_premium_doubles(self, rewards, make_player):
        player = await make_player()
        await rewards.activate_premium(player.id)

        entry = await rewards.claim_daily_bonus(player.id, now=datetime(2026, 5, 4, 9, 0))

        assert entry.amount == 50

    async def test_status(self, rewards, make_player):
        player = await make_player()
        now = datetime(2026, 5, 4, 15, 30)

        before = await rewards.get_reward_status(player.id, now=now)
        await rewards.claim_daily_bonus(player.id, now=now)
        after = await rewards.get_reward_status(player.id, now=now)

        assert before.can_claim_daily_bonus is True
        assert before.next_daily_bonus is None
        assert before.reward_multiplier == 1
        assert after.can_claim_daily_bonus is False
        assert after.next_daily_bonus == datetime(2026, 5, 5, 0, 0)

    async def test_amount_from_runtime_config(self, rewards, config_service, make_player):
        await config_service.set("rewards.daily_bonus", 40, actor="test")
        player = await make_player()

        entry = await rewards.claim_daily_bonus(player.id, now=datetime(2026, 5, 4))

        assert entry.amount == 40


class TestReferrals:

    async def test_code_format_and_stability(self, rewards, make_player):
        player = await make_player("quizmaster")

        code = await rewards.get_referral_code(player.id)

        assert code.startswith("QUI")
        assert len(code) == 9
        assert code == code.upper()
        assert await rewards.get_referral_code(player.id) == code

    async def test_apply_pays_both(self, rewards, ledger, database, make_player):
        referrer = await make_player("alice")
        newcomer = await make_player("bob")
        code = await rewards.get_referral_code(referrer.id)

        entry = await rewards.apply_referral(newcomer.id, code.lower())

        assert entry.player_id == newcomer.id
        assert entry.type == RewardType.REFERRAL_BONUS
        assert await ledger.get_balance(newcomer.id) == 1050
        assert await ledger.get_balance(referrer.id) == 1050
        refreshed_newcomer = await database.get_player_by_id(newcomer.id)
        refreshed_referrer = await database.get_player_by_id(referrer.id)
        assert refreshed_newcomer.referred_by == referrer.id
        assert refreshed_referrer.total_referrals == 1

    async def test_only_once(self, rewards, make_player):
        referrer = await make_player()
        other = await make_player()
        newcomer = await make_player()
        await rewards.apply_referral(newcomer.id, await rewards.get_referral_code(referrer.id))

        with pytest.raises(ReferralAlreadyUsedError):
            await rewards.apply_referral(newcomer.id, await rewards.get_referral_code(other.id))

    async def test_self_referral(self, rewards, ledger, make_player):
        player = await make_player()
        code = await rewards.get_referral_code(player.id)

        with pytest.raises(SelfReferralError):
            await rewards.apply_referral(player.id, code)

        assert await ledger.get_balance(player.id) == 1000

    async def test_invalid_code(self, rewards, make_player):
        player = await make_player()
        with pytest.raises(InvalidReferralCodeError) as exc_info:
            await rewards.apply_referral(player.id, "NOPE00000")
        assert exc_info.value.user_message == "Invalid referral code."


class TestPurchasesAndPremium:

    async def test_coin_pack(self, rewards, ledger, make_player):
        player = await make_player()

        entry = await rewards.credit_coin_purchase(player.id, "medium", reference="pi_medium_1")

        assert entry.amount == 250
        assert entry.type == RewardType.COIN_PURCHASE
        assert entry.description == "Purchased medium pack"
        assert await ledger.get_balance(player.id) == 1250

    async def test_redelivered_payment_credited_once(self, rewards, ledger, make_player):
        player = await make_player()

        await rewards.credit_coin_purchase(player.id, "large", reference="pi_large_1")
        await rewards.credit_coin_purchase(player.id, "large", reference="pi_large_1")

        assert await ledger.get_balance(player.id) == 1500

    async def test_unknown_pack(self, rewards, make_player):
        player = await make_player()
        with pytest.raises(UnknownCoinPackError):
            await rewards.credit_coin_purchase(player.id, "gigantic")

    async def test_premium_credits_bonus_once(self, rewards, ledger, database, make_player):
        player = await make_player()

        entry = await rewards.activate_premium(player.id, reference="sub_1")

        assert entry.amount == 1000
        assert entry.type == RewardType.PREMIUM_BONUS
        assert (await database.get_player_by_id(player.id)).premium is True
        integrity = await ledger.verify_balance_integrity(player.id)
        assert integrity.cached_balance == 2000
        assert integrity.is_consistent
        assert integrity.transaction_count == 2
