"""
Player statistics data models.

Immutable snapshots of PlayerStats rows so callers never hold ORM objects
across session boundaries.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from trivia.database.models import PlayerStats


def win_rate(wins: int, games: int) -> float:
    """Win percentage rounded to one decimal, 0.0 when no games were played."""
    if not games:
        return 0.0
    return round(wins / games * 100, 1)


@dataclass(frozen=True)
class PlayerStatsData:
    """Snapshot of a player's aggregate statistics."""
    player_id: int
    total_games: int
    total_wins: int
    total_losses: int
    total_score: int
    highest_score: int
    current_streak: int
    max_streak: int
    average_score: int
    perfect_games: int
    singleplayer_games: int
    singleplayer_wins: int
    one_vs_one_games: int
    one_vs_one_wins: int
    two_vs_two_games: int
    two_vs_two_wins: int
    rank: str
    last_played: Optional[datetime]

    @property
    def win_rate(self) -> float:
        return win_rate(self.total_wins, self.total_games)

    @classmethod
    def from_model(cls, stats: 'PlayerStats') -> 'PlayerStatsData':
        return cls(
            player_id=stats.player_id,
            total_games=stats.total_games,
            total_wins=stats.total_wins,
            total_losses=stats.total_losses,
            total_score=stats.total_score,
            highest_score=stats.highest_score,
            current_streak=stats.current_streak,
            max_streak=stats.max_streak,
            average_score=stats.average_score,
            perfect_games=stats.perfect_games,
            singleplayer_games=stats.singleplayer_games,
            singleplayer_wins=stats.singleplayer_wins,
            one_vs_one_games=stats.one_vs_one_games,
            one_vs_one_wins=stats.one_vs_one_wins,
            two_vs_two_games=stats.two_vs_two_games,
            two_vs_two_wins=stats.two_vs_two_wins,
            rank=stats.rank,
            last_played=stats.last_played,
        )


@dataclass(frozen=True)
class RewardGrant:
    """A reward issued as a side effect of a recorded game."""
    reward_type: str
    amount: int


@dataclass(frozen=True)
class ScoreUpdateOutcome:
    """Result of ScoringService.record_game_result()."""
    stats: PlayerStatsData
    rewards: List[RewardGrant] = field(default_factory=list)
    failed_rewards: List[str] = field(default_factory=list)  # Bonus types that could not be issued
    duplicate: bool = False  # True when game_id had already been recorded

    @property
    def coins_awarded(self) -> int:
        return sum(grant.amount for grant in self.rewards)
