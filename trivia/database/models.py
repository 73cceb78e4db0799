from sqlalchemy import (
    Column, Integer, String, DateTime, Boolean, Text,
    ForeignKey, Enum as SQLEnum, UniqueConstraint, CheckConstraint
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how DateTime columns are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class GameMode(Enum):
    SINGLE = "single"
    ONE_VS_ONE = "1v1"
    TWO_VS_TWO = "2v2"

    @classmethod
    def parse(cls, value) -> Optional['GameMode']:
        """Return the matching mode, or None for unrecognized values"""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return None

class RewardType(Enum):
    GAME_WIN = "game_win"
    STREAK_BONUS = "streak_bonus"
    PERFECT_GAME_BONUS = "perfect_game_bonus"
    AD_REWARD = "ad_reward"
    DAILY_BONUS = "daily_bonus"
    REFERRAL_BONUS = "referral_bonus"
    COIN_PURCHASE = "coin_purchase"
    PREMIUM_BONUS = "premium_bonus"
    DEDUCTION = "deduction"
    SIGNUP_BONUS = "signup_bonus"     # Opening balance written through the ledger

class GameStatus(Enum):
    WAITING = "waiting"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"

# Per-mode counter columns on PlayerStats as (games, wins)
MODE_COUNTER_COLUMNS = {
    GameMode.SINGLE: ('singleplayer_games', 'singleplayer_wins'),
    GameMode.ONE_VS_ONE: ('one_vs_one_games', 'one_vs_one_wins'),
    GameMode.TWO_VS_TWO: ('two_vs_two_games', 'two_vs_two_wins'),
}

class Player(Base):
    __tablename__ = 'players'

    id = Column(Integer, primary_key=True)
    username = Column(String(100), unique=True, nullable=False, index=True)
    display_name = Column(String(100))

    # Economy
    coins = Column(Integer, default=0, nullable=False)  # Current balance (cache of RewardTransaction ledger)
    premium = Column(Boolean, default=False, nullable=False)
    last_daily_bonus = Column(DateTime, nullable=True)

    # Progression
    rank = Column(String(20), default="Bronze", nullable=False)  # Denormalized from PlayerStats.rank
    language = Column(String(10), default="en", nullable=False, index=True)

    # Referrals
    referral_code = Column(String(20), unique=True, nullable=True)
    referred_by = Column(Integer, ForeignKey('players.id'), nullable=True)
    total_referrals = Column(Integer, default=0, nullable=False)

    # Metadata
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())
    is_active = Column(Boolean, default=True)

    # Relationships
    stats = relationship("PlayerStats", back_populates="player", uselist=False)
    transactions = relationship("RewardTransaction", back_populates="player", order_by="RewardTransaction.id")

    def __repr__(self):
        return f"<Player(id={self.id}, username='{self.username}', coins={self.coins}, rank='{self.rank}')>"

class PlayerStats(Base):
    """
    Aggregated lifetime statistics for one player.

    Mutated only by ScoringService while holding the player's lock. Counters
    only ever grow, except current_streak which resets on a non-win.
    """
    __tablename__ = 'player_stats'

    id = Column(Integer, primary_key=True)
    player_id = Column(Integer, ForeignKey('players.id'), nullable=False, unique=True, index=True)

    # Aggregate counters
    total_games = Column(Integer, default=0, nullable=False)
    total_wins = Column(Integer, default=0, nullable=False)
    total_losses = Column(Integer, default=0, nullable=False)
    total_score = Column(Integer, default=0, nullable=False, index=True)
    highest_score = Column(Integer, default=0, nullable=False)
    current_streak = Column(Integer, default=0, nullable=False)
    max_streak = Column(Integer, default=0, nullable=False)
    average_score = Column(Integer, default=0, nullable=False)   # round(total_score / total_games)
    perfect_games = Column(Integer, default=0, nullable=False)

    # Mode-specific counters
    singleplayer_games = Column(Integer, default=0, nullable=False)
    singleplayer_wins = Column(Integer, default=0, nullable=False)
    one_vs_one_games = Column(Integer, default=0, nullable=False)
    one_vs_one_wins = Column(Integer, default=0, nullable=False)
    two_vs_two_games = Column(Integer, default=0, nullable=False)
    two_vs_two_wins = Column(Integer, default=0, nullable=False)

    rank = Column(String(20), default="Bronze", nullable=False)
    last_played = Column(DateTime, nullable=True)

    # Metadata
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    player = relationship("Player", back_populates="stats")

    __table_args__ = (
        CheckConstraint('total_games = total_wins + total_losses', name='games_equal_wins_plus_losses'),
        CheckConstraint('current_streak <= max_streak', name='streak_within_max'),
        CheckConstraint('singleplayer_games >= singleplayer_wins', name='singleplayer_wins_within_games'),
        CheckConstraint('one_vs_one_games >= one_vs_one_wins', name='one_vs_one_wins_within_games'),
        CheckConstraint('two_vs_two_games >= two_vs_two_wins', name='two_vs_two_wins_within_games'),
    )

    @property
    def win_rate(self) -> float:
        if not self.total_games:
            return 0.0
        return (self.total_wins / self.total_games) * 100

    def __repr__(self):
        return (
            f"<PlayerStats(player_id={self.player_id}, games={self.total_games}, "
            f"score={self.total_score}, rank='{self.rank}')>"
        )

class ScoreSubmission(Base):
    """
    One row per game result counted into PlayerStats.

    The (player_id, game_id) pair is the deduplication key for retried
    submissions; results without a game_id are never deduplicated.
    """
    __tablename__ = 'score_submissions'

    id = Column(Integer, primary_key=True)
    player_id = Column(Integer, ForeignKey('players.id'), nullable=False, index=True)
    game_id = Column(Integer, nullable=True)

    score = Column(Integer, nullable=False)
    is_win = Column(Boolean, nullable=False)
    mode = Column(String(20), nullable=False)   # Raw value, may be unrecognized
    is_perfect_game = Column(Boolean, default=False, nullable=False)
    recorded_at = Column(DateTime, default=func.now())

    __table_args__ = (
        UniqueConstraint('player_id', 'game_id', name='uq_score_submission_player_game'),
    )

    def __repr__(self):
        return f"<ScoreSubmission(player_id={self.player_id}, game_id={self.game_id}, score={self.score})>"

class RewardTransaction(Base):
    """
    Append-only coin ledger.

    The sum of amounts for a player always equals Player.coins. Entries are
    written in the same transaction as the balance change and never updated.
    """
    __tablename__ = 'reward_transactions'

    id = Column(Integer, primary_key=True)
    player_id = Column(Integer, ForeignKey('players.id'), nullable=False, index=True)

    type = Column(SQLEnum(RewardType), nullable=False)
    amount = Column(Integer, nullable=False)          # Negative for deductions
    balance_after = Column(Integer, nullable=False)   # Computed under the player row lock

    game_id = Column(Integer, nullable=True)
    reference = Column(String(255), nullable=True, unique=True)  # External idempotency key
    description = Column(Text)

    created_at = Column(DateTime, default=func.now())

    player = relationship("Player", back_populates="transactions")

    __table_args__ = (
        CheckConstraint('amount != 0', name='non_zero_amount'),
        CheckConstraint('balance_after >= 0', name='non_negative_balance_after'),
    )

    def __repr__(self):
        return f"<RewardTransaction(player_id={self.player_id}, type={self.type.value}, amount={self.amount}, balance_after={self.balance_after})>"

class Game(Base):
    """A finished (or running) trivia game, written by the game-session layer."""
    __tablename__ = 'games'

    id = Column(Integer, primary_key=True)
    mode = Column(SQLEnum(GameMode), nullable=False)
    category = Column(String(100), nullable=False)
    difficulty = Column(String(20), nullable=False)
    language = Column(String(10), default="en", nullable=False)
    status = Column(SQLEnum(GameStatus), default=GameStatus.COMPLETED, nullable=False)
    total_questions = Column(Integer, default=10, nullable=False)
    duration = Column(Integer, nullable=True)  # Seconds

    created_at = Column(DateTime, default=func.now())
    completed_at = Column(DateTime, nullable=True)

    participants = relationship("GameParticipant", back_populates="game", cascade="all, delete-orphan")

    def get_winners(self):
        return [p for p in self.participants if p.is_winner]

    def __repr__(self):
        return f"<Game(id={self.id}, mode={self.mode.value}, status={self.status.value})>"

class GameParticipant(Base):
    __tablename__ = 'game_participants'

    id = Column(Integer, primary_key=True)
    game_id = Column(Integer, ForeignKey('games.id'), nullable=False, index=True)
    player_id = Column(Integer, ForeignKey('players.id'), nullable=False, index=True)

    score = Column(Integer, default=0, nullable=False)
    is_winner = Column(Boolean, default=False, nullable=False)

    game = relationship("Game", back_populates="participants")
    player = relationship("Player")

    __table_args__ = (
        UniqueConstraint('game_id', 'player_id', name='uq_game_participant'),
    )

    def __repr__(self):
        return f"<GameParticipant(game_id={self.game_id}, player_id={self.player_id}, score={self.score})>"

class Configuration(Base):
    """Runtime configuration overrides stored as JSON values."""
    __tablename__ = 'configurations'

    key = Column(String(255), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Configuration(key='{self.key}')>"

class AuditLog(Base):
    __tablename__ = 'audit_logs'

    id = Column(Integer, primary_key=True)
    actor = Column(String(100), nullable=False)   # Admin or system identifier
    action = Column(String(100), nullable=False)
    details = Column(Text)
    created_at = Column(DateTime, default=func.now())

    def __repr__(self):
        return f"<AuditLog(actor='{self.actor}', action='{self.action}')>"

