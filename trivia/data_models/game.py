"""
Game data models.

GameResult is the input to ScoringService: built by the caller, consumed
once, never persisted as-is. GameSummary is the read model returned by
LeaderboardService.get_recent_games().
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from trivia.utils.exceptions import ScoreValidationError


@dataclass(frozen=True)
class GameResult:
    """Outcome of one finished game for one player."""
    player_id: int
    score: int
    is_win: bool
    mode: str
    game_id: Optional[int] = None
    is_perfect_game: bool = False

    def __post_init__(self):
        if isinstance(self.score, bool) or not isinstance(self.score, int):
            raise ScoreValidationError(self.score, "Score must be a whole number.")
        if self.score < 0:
            raise ScoreValidationError(self.score, "Score cannot be negative.")


@dataclass(frozen=True)
class GameSummary:
    """A completed game as seen by one participant."""
    game_id: int
    mode: str
    category: str
    difficulty: str
    language: str
    score: int
    is_winner: bool
    participant_count: int
    total_questions: int
    duration: Optional[int]
    completed_at: Optional[datetime]
