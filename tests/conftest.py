"""
Shared fixtures: every test gets a fresh SQLite database file under tmp_path.
"""

import os
import tempfile

# Keep test runs independent of a developer's .env
os.environ["REDIS_URL"] = ""
os.environ["STARTING_COINS"] = "1000"
os.environ.setdefault("LOG_DIR", os.path.join(tempfile.gettempdir(), "trivia-test-logs"))

import pytest

from trivia.database.database import Database
from trivia.operations.player_operations import PlayerOperations
from trivia.services.configuration import ConfigurationService
from trivia.services.leaderboard import LeaderboardService
from trivia.services.player_locks import PlayerLockManager
from trivia.services.reward_ledger import RewardLedgerService
from trivia.services.rewards import RewardService
from trivia.services.scoring import ScoringService


@pytest.fixture
async def database(tmp_path):
    db = Database(f"sqlite:///{tmp_path / 'test_trivia.db'}")
    await db.initialize()
    yield db
    await db.close()


@pytest.fixture
def lock_manager():
    return PlayerLockManager()


@pytest.fixture
def ledger(database, lock_manager):
    return RewardLedgerService(database.session_factory, lock_manager, database.read_session_factory)


@pytest.fixture
async def config_service(database):
    service = ConfigurationService(database.session_factory, database.read_session_factory)
    await service.load_all()
    return service


@pytest.fixture
def scoring(database, lock_manager, ledger, config_service):
    return ScoringService(
        database.session_factory, lock_manager, ledger, config_service, database.read_session_factory
    )


@pytest.fixture
def leaderboard(database):
    # TTL 0 disables caching so every read sees the latest writes
    return LeaderboardService(database.read_session_factory, cache_ttl=0)


@pytest.fixture
def rewards(database, lock_manager, ledger, config_service):
    return RewardService(
        database.session_factory, lock_manager, ledger, config_service, database.read_session_factory
    )


@pytest.fixture
def player_ops(database, ledger):
    return PlayerOperations(database, ledger)


@pytest.fixture
def make_player(player_ops):
    """Factory creating players with unique usernames and the default opening balance."""
    counter = {"n": 0}

    async def _make(username=None, language="en"):
        counter["n"] += 1
        return await player_ops.create_player(username or f"player{counter['n']}", language=language)

    return _make
