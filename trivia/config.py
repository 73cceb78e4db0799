import os
from dotenv import load_dotenv

load_dotenv()

class Config:
    """Progression engine configuration settings"""

    # Database settings
    DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///trivia.db')
    DB_MAX_RETRIES = int(os.getenv('DB_MAX_RETRIES', 3))

    # Runtime settings
    DEBUG = os.getenv('DEBUG', 'False').lower() == 'true'
    LOG_DIR = os.getenv('LOG_DIR', 'logs')

    # Redis settings (optional, enables cross-process player locks and question sessions)
    REDIS_URL = os.getenv('REDIS_URL', '')

    # Economy settings
    STARTING_COINS = int(os.getenv('STARTING_COINS', 1000))
    WIN_REWARD = 10
    PERFECT_GAME_BONUS = 5
    STREAK_BONUS_INTERVAL = 5  # Every Nth consecutive win pays N coins
    AD_REWARD = 5
    DAILY_BONUS = 25
    PREMIUM_REWARD_MULTIPLIER = 2
    REFERRAL_BONUS = 50
    PREMIUM_BONUS = 1000

    # Coin packs sold through the payment gateway (price in cents)
    COIN_PACKS = {
        'small': {'coins': 100, 'price': 100, 'name': 'Small Pack'},
        'medium': {'coins': 250, 'price': 199, 'name': 'Medium Pack'},
        'large': {'coins': 500, 'price': 399, 'name': 'Large Pack'},
        'premium': {'coins': 1000, 'price': 999, 'name': 'Premium Pack'},
    }

    # Leaderboard settings
    LEADERBOARD_DEFAULT_LIMIT = 10
    LEADERBOARD_MAX_LIMIT = int(os.getenv('LEADERBOARD_MAX_LIMIT', 100))
    LEADERBOARD_CACHE_TTL = int(os.getenv('LEADERBOARD_CACHE_TTL', 60))

    # Player lock settings (seconds)
    PLAYER_LOCK_TIMEOUT = float(os.getenv('PLAYER_LOCK_TIMEOUT', 30))
    PLAYER_LOCK_BLOCKING_TIMEOUT = float(os.getenv('PLAYER_LOCK_BLOCKING_TIMEOUT', 10))

    # Question session store settings
    QUESTION_SESSION_CAPACITY = int(os.getenv('QUESTION_SESSION_CAPACITY', 1000))
    QUESTION_HISTORY_WINDOW = int(os.getenv('QUESTION_HISTORY_WINDOW', 50))
    QUESTION_SESSION_TTL = int(os.getenv('QUESTION_SESSION_TTL', 3600))

    @classmethod
    def get_async_database_url(cls, database_url: str = None) -> str:
        """Get the database URL with an async driver for SQLite"""
        url = database_url or cls.DATABASE_URL
        if url.startswith('sqlite:///'):
            url = url.replace('sqlite:///', 'sqlite+aiosqlite:///')
        return url

    @classmethod
    def validate(cls):
        """Validate that configuration values are consistent"""
        if not cls.DATABASE_URL:
            raise ValueError("DATABASE_URL is required")
        if cls.STARTING_COINS < 0:
            raise ValueError("STARTING_COINS cannot be negative")
        if cls.STREAK_BONUS_INTERVAL <= 0:
            raise ValueError("STREAK_BONUS_INTERVAL must be positive")
        if cls.LEADERBOARD_MAX_LIMIT < cls.LEADERBOARD_DEFAULT_LIMIT:
            raise ValueError("LEADERBOARD_MAX_LIMIT must be at least LEADERBOARD_DEFAULT_LIMIT")
        if cls.QUESTION_SESSION_CAPACITY <= 0 or cls.QUESTION_HISTORY_WINDOW <= 0:
            raise ValueError("Question session capacity and history window must be positive")
