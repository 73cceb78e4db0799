"""
Player registration and game record tests.
"""

import pytest

from trivia.database.models import GameMode, GameStatus, RewardType
from trivia.operations.player_operations import PlayerValidationError
from trivia.utils.exceptions import PlayerNotFoundError


class TestCreatePlayer:

    async def test_opening_balance_is_a_ledger_entry(self, player_ops, ledger):
        player = await player_ops.create_player("newbie")

        history = await ledger.get_history(player.id)

        assert player.coins == 1000
        assert player.display_name == "newbie"
        assert player.rank == "Bronze"
        assert len(history) == 1
        assert history[0].type == RewardType.SIGNUP_BONUS
        assert history[0].amount == 1000
        assert history[0].balance_after == 1000
        assert (await ledger.verify_balance_integrity(player.id)).is_consistent

    async def test_duplicate_username_case_insensitive(self, player_ops):
        await player_ops.create_player("Quizzer")

        with pytest.raises(PlayerValidationError) as exc_info:
            await player_ops.create_player("quizzer")
        assert exc_info.value.user_message == "That username is already taken."

    @pytest.mark.parametrize("username", ["", "   ", "x" * 101])
    async def test_invalid_username(self, player_ops, username):
        with pytest.raises(PlayerValidationError):
            await player_ops.create_player(username)

    async def test_invalid_language(self, player_ops):
        with pytest.raises(PlayerValidationError):
            await player_ops.create_player("polyglot", language="not-a-language-code")

    async def test_long_display_name_truncated(self, player_ops):
        player = await player_ops.create_player("shortname", display_name="d" * 150)
        assert len(player.display_name) == 100
        assert player.display_name.endswith("...")


class TestPlayerLookup:

    async def test_get_or_create_is_idempotent(self, player_ops, ledger):
        first = await player_ops.get_or_create_player("repeat")
        second = await player_ops.get_or_create_player("REPEAT")

        assert first.id == second.id
        assert len(await ledger.get_history(first.id)) == 1

    async def test_get_player(self, player_ops):
        player = await player_ops.create_player("lookup")

        assert (await player_ops.get_player(player.id)).username == "lookup"
        with pytest.raises(PlayerNotFoundError):
            await player_ops.get_player(99999)

    async def test_update_language(self, player_ops, database):
        player = await player_ops.create_player("traveller")

        await player_ops.update_language(player.id, " FR ")

        assert (await database.get_player_by_id(player.id)).language == "fr"
        with pytest.raises(PlayerNotFoundError):
            await player_ops.update_language(99999, "fr")


class TestGameRecords:

    async def test_create_and_fetch_completed_game(self, database, make_player):
        a = await make_player()
        b = await make_player()

        game = await database.create_completed_game(
            GameMode.ONE_VS_ONE, [(a.id, 70, True), (b.id, 30, False)],
            category="geography", difficulty="hard", duration=95
        )
        fetched = await database.get_game_by_id(game.id)

        assert fetched.status == GameStatus.COMPLETED
        assert fetched.completed_at is not None
        assert fetched.category == "geography"
        assert sorted((p.player_id, p.score, p.is_winner) for p in fetched.participants) == [
            (a.id, 70, True), (b.id, 30, False)
        ]

    async def test_missing_game(self, database):
        assert await database.get_game_by_id(12345) is None

    async def test_player_count(self, database, make_player):
        await make_player()
        await make_player()
        assert await database.get_player_count() == 2
