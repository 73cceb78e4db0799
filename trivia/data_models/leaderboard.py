"""
Leaderboard data models

Provides immutable data transfer objects for leaderboard reads.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional


@dataclass(frozen=True)
class LeaderboardEntry:
    """Single leaderboard row."""
    rank: int
    player_id: int
    username: str
    display_name: str
    tier: str
    coins: int
    total_score: int
    total_wins: int
    total_games: int
    max_streak: int
    average_score: int
    perfect_games: int
    mode_wins: Optional[int]   # Only set for mode-scoped leaderboards
    mode_games: Optional[int]
    win_rate: float            # Mode win rate for mode-scoped leaderboards
    last_played: Optional[datetime]


@dataclass(frozen=True)
class LeaderboardPage:
    """Offset-paginated leaderboard data."""
    entries: List[LeaderboardEntry]
    has_more: bool
    total_players: int
    limit: int
    offset: int
    mode: Optional[str] = None
    language: Optional[str] = None
