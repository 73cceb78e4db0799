"""
Score update tests: aggregate maths, rewards, deduplication by game id,
failure atomicity and per-player serialization.
"""

import asyncio
import random

import pytest
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from trivia.data_models.game import GameResult
from trivia.data_models.stats import RewardGrant
from trivia.database.models import RewardType, ScoreSubmission
from trivia.services.scoring import rounded_average
from trivia.utils.exceptions import PlayerNotFoundError, ScoreValidationError


def result(player_id, score=100, is_win=True, mode="single", **kwargs):
    return GameResult(player_id=player_id, score=score, is_win=is_win, mode=mode, **kwargs)


async def play_wins(scoring, player_id, count, score=10):
    outcome = None
    for _ in range(count):
        outcome = await scoring.record_game_result(result(player_id, score=score))
    return outcome


class TestFirstGame:

    async def test_new_player_single_win(self, scoring, ledger, make_player):
        player = await make_player()

        outcome = await scoring.record_game_result(result(player.id, score=100, is_win=True, mode="single"))

        stats = outcome.stats
        assert stats.total_games == 1
        assert stats.total_wins == 1
        assert stats.total_losses == 0
        assert stats.total_score == 100
        assert stats.average_score == 100
        assert stats.highest_score == 100
        assert stats.current_streak == 1
        assert stats.max_streak == 1
        assert stats.singleplayer_games == 1
        assert stats.singleplayer_wins == 1
        assert stats.rank == "Bronze"
        assert stats.last_played is not None
        assert outcome.rewards == [RewardGrant("game_win", 10)]
        assert outcome.coins_awarded == 10
        assert outcome.failed_rewards == []
        assert not outcome.duplicate
        assert await ledger.get_balance(player.id) == 1010

    async def test_stats_created_lazily(self, scoring, make_player):
        player = await make_player()
        assert await scoring.get_player_stats(player.id) is None

        await scoring.record_game_result(result(player.id, is_win=False))

        stats = await scoring.get_player_stats(player.id)
        assert stats.total_games == 1
        assert stats.total_losses == 1
        assert stats.current_streak == 0

    async def test_loss_awards_nothing(self, scoring, ledger, make_player):
        player = await make_player()
        outcome = await scoring.record_game_result(result(player.id, is_win=False))
        assert outcome.rewards == []
        assert await ledger.get_balance(player.id) == 1000


class TestStreaks:

    async def test_fifth_win_pays_streak_bonus(self, scoring, ledger, make_player):
        player = await make_player()
        await play_wins(scoring, player.id, 4)
        balance_before = await ledger.get_balance(player.id)

        outcome = await scoring.record_game_result(result(player.id, score=10))

        assert outcome.stats.current_streak == 5
        assert RewardGrant("streak_bonus", 5) in outcome.rewards
        assert outcome.coins_awarded == 15
        assert await ledger.get_balance(player.id) == balance_before + 15

    async def test_tenth_win_pays_ten(self, scoring, make_player):
        player = await make_player()
        await play_wins(scoring, player.id, 9)

        outcome = await scoring.record_game_result(result(player.id, score=10))

        assert RewardGrant("streak_bonus", 10) in outcome.rewards

    async def test_non_milestone_win_has_no_streak_bonus(self, scoring, make_player):
        player = await make_player()
        outcome = await play_wins(scoring, player.id, 3)
        assert all(grant.reward_type != "streak_bonus" for grant in outcome.rewards)

    async def test_loss_resets_streak_keeps_max(self, scoring, make_player):
        player = await make_player()
        await play_wins(scoring, player.id, 3)

        outcome = await scoring.record_game_result(result(player.id, is_win=False))
        assert outcome.stats.current_streak == 0
        assert outcome.stats.max_streak == 3

        outcome = await scoring.record_game_result(result(player.id))
        assert outcome.stats.current_streak == 1
        assert outcome.stats.max_streak == 3

    async def test_streak_interval_from_runtime_config(self, scoring, config_service, make_player):
        await config_service.set("rewards.streak_interval", 2, actor="test")
        player = await make_player()

        outcome = await play_wins(scoring, player.id, 2)

        assert RewardGrant("streak_bonus", 2) in outcome.rewards


class TestPerfectGames:

    async def test_perfect_win(self, scoring, ledger, make_player):
        player = await make_player()

        outcome = await scoring.record_game_result(result(player.id, is_perfect_game=True))

        assert outcome.stats.perfect_games == 1
        assert RewardGrant("perfect_game_bonus", 5) in outcome.rewards
        assert await ledger.get_balance(player.id) == 1015

    async def test_perfect_loss_still_pays_bonus(self, scoring, ledger, make_player):
        player = await make_player()

        outcome = await scoring.record_game_result(result(player.id, is_win=False, is_perfect_game=True))

        assert outcome.rewards == [RewardGrant("perfect_game_bonus", 5)]
        assert await ledger.get_balance(player.id) == 1005

    async def test_perfect_bonus_ledger_type(self, scoring, ledger, make_player):
        player = await make_player()
        await scoring.record_game_result(result(player.id, is_win=False, is_perfect_game=True, game_id=7))

        latest = (await ledger.get_history(player.id, limit=1))[0]
        assert latest.type == RewardType.PERFECT_GAME_BONUS
        assert latest.game_id == 7


class TestModes:

    @pytest.mark.parametrize("mode, games_field, wins_field", [
        ("single", "singleplayer_games", "singleplayer_wins"),
        ("1v1", "one_vs_one_games", "one_vs_one_wins"),
        ("2v2", "two_vs_two_games", "two_vs_two_wins"),
    ])
    async def test_mode_counters(self, scoring, make_player, mode, games_field, wins_field):
        player = await make_player()
        await scoring.record_game_result(result(player.id, mode=mode, is_win=True))
        outcome = await scoring.record_game_result(result(player.id, mode=mode, is_win=False))

        assert getattr(outcome.stats, games_field) == 2
        assert getattr(outcome.stats, wins_field) == 1

    async def test_unrecognized_mode_updates_only_aggregates(self, scoring, database, make_player):
        player = await make_player()

        outcome = await scoring.record_game_result(result(player.id, mode="battle-royale", score=40))

        stats = outcome.stats
        assert stats.total_games == 1
        assert stats.total_wins == 1
        assert stats.total_score == 40
        assert stats.singleplayer_games == 0
        assert stats.one_vs_one_games == 0
        assert stats.two_vs_two_games == 0
        assert outcome.rewards == [RewardGrant("game_win", 10)]

        async with database.get_session() as session:
            submission = await session.scalar(
                select(ScoreSubmission).where(ScoreSubmission.player_id == player.id)
            )
        assert submission.mode == "battle-royale"


class TestInvariants:

    async def test_random_sequence_keeps_invariants(self, scoring, ledger, make_player):
        player = await make_player()
        rng = random.Random(7)
        previous_max = 0

        for _ in range(40):
            outcome = await scoring.record_game_result(result(
                player.id,
                score=rng.randint(0, 250),
                is_win=rng.random() < 0.6,
                mode=rng.choice(["single", "1v1", "2v2", "unknown"]),
                is_perfect_game=rng.random() < 0.1
            ))
            stats = outcome.stats
            assert stats.total_games == stats.total_wins + stats.total_losses
            assert stats.current_streak <= stats.max_streak
            assert stats.max_streak >= previous_max
            assert stats.average_score == rounded_average(stats.total_score, stats.total_games)
            assert stats.singleplayer_games >= stats.singleplayer_wins
            assert stats.one_vs_one_games >= stats.one_vs_one_wins
            assert stats.two_vs_two_games >= stats.two_vs_two_wins
            previous_max = stats.max_streak

        assert (await ledger.verify_balance_integrity(player.id)).is_consistent

    def test_average_rounds_half_up(self):
        assert rounded_average(5, 2) == 3
        assert rounded_average(7, 2) == 4
        assert rounded_average(10, 3) == 3
        assert rounded_average(0, 0) == 0


class TestRankUpdates:

    async def test_tier_written_to_stats_and_player(self, scoring, database, make_player):
        player = await make_player()

        outcome = await scoring.record_game_result(result(player.id, score=600))

        # 600 + 10*1 + 5*1 = 615
        assert outcome.stats.rank == "Silver"
        refreshed = await database.get_player_by_id(player.id)
        assert refreshed.rank == "Silver"


class TestDeduplication:

    async def test_repeated_game_id_counted_once(self, scoring, ledger, make_player):
        player = await make_player()
        first = await scoring.record_game_result(result(player.id, score=80, game_id=501))

        second = await scoring.record_game_result(result(player.id, score=80, game_id=501))

        assert second.duplicate is True
        assert second.rewards == []
        assert second.stats.total_games == 1
        assert second.stats.total_score == first.stats.total_score
        assert await ledger.get_balance(player.id) == 1010

    async def test_same_game_id_for_different_players(self, scoring, make_player):
        alice = await make_player()
        bob = await make_player()

        first = await scoring.record_game_result(result(alice.id, game_id=900))
        second = await scoring.record_game_result(result(bob.id, game_id=900, is_win=False))

        assert not first.duplicate
        assert not second.duplicate

    async def test_results_without_game_id_always_counted(self, scoring, make_player):
        player = await make_player()
        await scoring.record_game_result(result(player.id))
        outcome = await scoring.record_game_result(result(player.id))
        assert outcome.stats.total_games == 2


class TestValidation:

    async def test_unknown_player(self, scoring):
        with pytest.raises(PlayerNotFoundError):
            await scoring.record_game_result(result(31337))

    async def test_unknown_player_stats(self, scoring):
        with pytest.raises(PlayerNotFoundError):
            await scoring.get_player_stats(31337)

    @pytest.mark.parametrize("score", [-1, 2.5, "10", None, True])
    def test_invalid_score(self, score):
        with pytest.raises(ScoreValidationError):
            GameResult(player_id=1, score=score, is_win=True, mode="single")


class TestFailureSemantics:

    @staticmethod
    def fail_on(ledger, monkeypatch, failing_type):
        original = ledger.award_in_session

        async def flaky(session, player_id, amount, reward_type, **kwargs):
            if reward_type == failing_type:
                raise SQLAlchemyError(f"simulated failure issuing {reward_type.value}")
            return await original(session, player_id, amount, reward_type, **kwargs)

        monkeypatch.setattr(ledger, "award_in_session", flaky)

    async def test_failed_streak_bonus_keeps_game(self, scoring, ledger, make_player, monkeypatch):
        player = await make_player()
        await play_wins(scoring, player.id, 4)
        self.fail_on(ledger, monkeypatch, RewardType.STREAK_BONUS)

        outcome = await scoring.record_game_result(result(player.id, score=10))

        assert outcome.stats.current_streak == 5
        assert outcome.failed_rewards == ["streak_bonus"]
        assert outcome.rewards == [RewardGrant("game_win", 10)]
        stats = await scoring.get_player_stats(player.id)
        assert stats.total_games == 5
        assert await ledger.get_balance(player.id) == 1050
        assert (await ledger.verify_balance_integrity(player.id)).is_consistent

    async def test_failed_perfect_bonus_keeps_other_rewards(self, scoring, ledger, make_player, monkeypatch):
        player = await make_player()
        await play_wins(scoring, player.id, 4)
        self.fail_on(ledger, monkeypatch, RewardType.PERFECT_GAME_BONUS)

        outcome = await scoring.record_game_result(result(player.id, score=10, is_perfect_game=True))

        assert outcome.failed_rewards == ["perfect_game_bonus"]
        assert RewardGrant("streak_bonus", 5) in outcome.rewards
        assert outcome.stats.perfect_games == 1

    async def test_failed_win_reward_rolls_back_everything(self, scoring, ledger, make_player, monkeypatch):
        player = await make_player()
        self.fail_on(ledger, monkeypatch, RewardType.GAME_WIN)

        with pytest.raises(SQLAlchemyError):
            await scoring.record_game_result(result(player.id, game_id=11))

        assert await scoring.get_player_stats(player.id) is None
        assert await ledger.get_balance(player.id) == 1000

        # The retry is not treated as a duplicate since nothing was committed
        monkeypatch.undo()
        outcome = await scoring.record_game_result(result(player.id, game_id=11))
        assert not outcome.duplicate
        assert outcome.stats.total_games == 1


class TestConcurrency:

    async def test_concurrent_results_for_one_player(self, scoring, ledger, make_player):
        player = await make_player()

        await asyncio.gather(*[
            scoring.record_game_result(result(player.id, score=10)) for _ in range(20)
        ])

        stats = await scoring.get_player_stats(player.id)
        assert stats.total_games == 20
        assert stats.total_score == 200
        assert stats.current_streak == 20
        # 20 wins plus streak bonuses at 5, 10, 15 and 20
        assert await ledger.get_balance(player.id) == 1000 + 200 + 50
        assert (await ledger.verify_balance_integrity(player.id)).is_consistent

    async def test_results_race_with_deducts(self, scoring, ledger, make_player):
        player = await make_player()

        await asyncio.gather(
            *[scoring.record_game_result(result(player.id, score=5)) for _ in range(5)],
            *[ledger.deduct(player.id, 100) for _ in range(5)]
        )

        integrity = await ledger.verify_balance_integrity(player.id)
        assert integrity.is_consistent
        assert integrity.cached_balance == 1000 + 50 + 5 - 500

    async def test_different_players_in_parallel(self, scoring, make_player):
        players = [await make_player() for _ in range(4)]

        outcomes = await asyncio.gather(*[
            scoring.record_game_result(result(p.id, score=10 * (i + 1))) for i, p in enumerate(players)
        ])

        assert [o.stats.total_score for o in outcomes] == [10, 20, 30, 40]
