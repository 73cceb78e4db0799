"""
Profile data models

Provides immutable data transfer objects for profile and wallet reads.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

from trivia.data_models.game import GameSummary
from trivia.data_models.stats import PlayerStatsData


@dataclass(frozen=True)
class ModeStats:
    """Games and wins in one mode."""
    mode: str
    games: int
    wins: int
    win_rate: float


@dataclass(frozen=True)
class PlayerProfile:
    """Complete profile data for a player."""
    # Basic info
    player_id: int
    username: str
    display_name: str
    language: str
    premium: bool
    coins: int
    tier: str

    # Progression
    stats: Optional[PlayerStatsData]  # None until the first game is recorded
    rank_position: int                # 0 until the first game is recorded
    points_to_next_tier: int
    mode_stats: Dict[str, ModeStats]
    recent_games: List[GameSummary]


@dataclass(frozen=True)
class BalanceIntegrity:
    """Comparison of the cached balance against the ledger."""
    player_id: int
    cached_balance: int
    ledger_balance: int
    transaction_count: int

    @property
    def is_consistent(self) -> bool:
        return self.cached_balance == self.ledger_balance


@dataclass(frozen=True)
class RewardStatus:
    """What a player can currently claim."""
    player_id: int
    is_premium: bool
    can_claim_daily_bonus: bool
    reward_multiplier: int
    next_daily_bonus: Optional[datetime]
