"""
Services package for the trivia progression engine.

Each service is a stateless type over an explicit session factory; services
that mutate a player's balance or stats also take the shared player lock
manager.
"""

from .base import BaseService
from .configuration import ConfigurationService
from .leaderboard import LeaderboardService
from .player_locks import PlayerLockManager, RedisPlayerLockManager
from .profile import ProfileService
from .question_sessions import QuestionSessionStore, RedisQuestionSessionStore
from .reward_ledger import RewardLedgerService
from .rewards import RewardService
from .scoring import ScoringService

__all__ = [
    'BaseService',
    'ConfigurationService',
    'LeaderboardService',
    'PlayerLockManager',
    'RedisPlayerLockManager',
    'ProfileService',
    'QuestionSessionStore',
    'RedisQuestionSessionStore',
    'RewardLedgerService',
    'RewardService',
    'ScoringService',
]
