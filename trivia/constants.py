"""
Engine-wide constants for the trivia progression engine.

Fixed values that are not meant to be tuned per deployment live here;
tunable values live in trivia.config.Config and can be overridden at
runtime through ConfigurationService.
"""

class RankConstants:
    """Composite score weights and tier thresholds."""

    # composite = total_score + WIN_WEIGHT * total_wins + STREAK_WEIGHT * max_streak
    WIN_WEIGHT = 10
    STREAK_WEIGHT = 5

    # Evaluated from highest to lowest, first match wins
    LEGENDARY_THRESHOLD = 10000
    DIAMOND_THRESHOLD = 5000
    PLATINUM_THRESHOLD = 2500
    GOLD_THRESHOLD = 1000
    SILVER_THRESHOLD = 500

class ConfigKeys:
    """Runtime configuration keys read through ConfigurationService."""

    WIN_REWARD = 'rewards.game_win'
    PERFECT_GAME_BONUS = 'rewards.perfect_game'
    STREAK_BONUS_INTERVAL = 'rewards.streak_interval'
    AD_REWARD = 'rewards.ad'
    DAILY_BONUS = 'rewards.daily_bonus'
    PREMIUM_MULTIPLIER = 'rewards.premium_multiplier'
    REFERRAL_BONUS = 'rewards.referral'
    PREMIUM_BONUS = 'rewards.premium_bonus'

class PaginationConstants:
    """Constants for paginated reads."""

    DEFAULT_RECENT_GAMES = 10
    PROFILE_RECENT_GAMES = 5
    DEFAULT_HISTORY_LIMIT = 20

class CacheConstants:
    """Constants for caching behavior."""

    # Maximum number of cached leaderboard pages
    LEADERBOARD_CACHE_MAX_SIZE = 500

class ReferralConstants:
    """Referral code format."""

    PREFIX_LENGTH = 3
    RANDOM_SUFFIX_LENGTH = 6
    MAX_GENERATION_ATTEMPTS = 5
