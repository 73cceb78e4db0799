"""
Rank tier classification shared by ScoringService, LeaderboardService and
ProfileService.

Tiers are derived, never stored independently: PlayerStats.rank and
Player.rank are always the output of RankClassifier.classify() on the
current totals.
"""

from enum import Enum
from typing import List, Tuple
from trivia.constants import RankConstants


class RankTier(str, Enum):
    """Ordered rank tiers, lowest first."""
    BRONZE = "Bronze"
    SILVER = "Silver"
    GOLD = "Gold"
    PLATINUM = "Platinum"
    DIAMOND = "Diamond"
    LEGENDARY = "Legendary"


class RankClassifier:
    """Pure mapping from accumulated performance to a RankTier."""

    # Highest first, first match wins
    THRESHOLDS: List[Tuple[int, RankTier]] = [
        (RankConstants.LEGENDARY_THRESHOLD, RankTier.LEGENDARY),
        (RankConstants.DIAMOND_THRESHOLD, RankTier.DIAMOND),
        (RankConstants.PLATINUM_THRESHOLD, RankTier.PLATINUM),
        (RankConstants.GOLD_THRESHOLD, RankTier.GOLD),
        (RankConstants.SILVER_THRESHOLD, RankTier.SILVER),
    ]

    @staticmethod
    def composite_score(total_score: int, total_wins: int, max_streak: int) -> int:
        """S = total_score + 10 * total_wins + 5 * max_streak"""
        return (
            total_score
            + RankConstants.WIN_WEIGHT * total_wins
            + RankConstants.STREAK_WEIGHT * max_streak
        )

    @classmethod
    def classify(cls, total_score: int, total_wins: int, max_streak: int) -> RankTier:
        """
        Classify a player into a tier.

        Args:
            total_score: Sum of all game scores
            total_wins: Number of games won
            max_streak: Longest win streak ever reached

        Returns:
            The highest tier whose threshold the composite score reaches
        """
        score = cls.composite_score(total_score, total_wins, max_streak)
        for threshold, tier in cls.THRESHOLDS:
            if score >= threshold:
                return tier
        return RankTier.BRONZE

    @classmethod
    def points_to_next_tier(cls, total_score: int, total_wins: int, max_streak: int) -> int:
        """Composite points still needed for the next tier, 0 at Legendary."""
        score = cls.composite_score(total_score, total_wins, max_streak)
        for threshold, _ in reversed(cls.THRESHOLDS):
            if score < threshold:
                return threshold - score
        return 0


def classify_rank(total_score: int, total_wins: int, max_streak: int) -> RankTier:
    """Module-level shortcut for RankClassifier.classify()"""
    return RankClassifier.classify(total_score, total_wins, max_streak)
