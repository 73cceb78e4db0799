"""
Custom exceptions for the progression engine with user-friendly error messages.

Every exception carries a technical message (str(exc)) for logs and a
user_message the HTTP layer can show as-is.
"""

class ProgressionError(Exception):
    """Base exception for progression-engine errors."""
    def __init__(self, message: str, user_message: str = None):
        super().__init__(message)
        self.user_message = user_message or message

class PlayerNotFoundError(ProgressionError):
    """Raised when an operation targets a player that does not exist."""
    def __init__(self, player_id: int):
        self.player_id = player_id
        super().__init__(
            f"Player {player_id} not found",
            "Player not found."
        )

class StorageUnavailableError(ProgressionError):
    """Raised when the database cannot be reached. Safe to retry."""
    def __init__(self, operation: str, details: str = None):
        self.operation = operation
        super().__init__(
            f"Storage unavailable during {operation}: {details}",
            "Service temporarily unavailable. Please try again."
        )

class InvalidAmountError(ProgressionError, ValueError):
    """Raised when a coin amount is not a positive integer."""
    def __init__(self, amount):
        self.amount = amount
        super().__init__(
            f"Invalid coin amount: {amount!r}",
            "Coin amount must be a positive whole number."
        )

class ScoreValidationError(ProgressionError, ValueError):
    """Raised when a game score fails validation."""
    def __init__(self, score, reason: str):
        self.score = score
        super().__init__(
            f"Invalid score {score!r}: {reason}",
            reason
        )

class LockTimeoutError(ProgressionError):
    """Raised when a player's lock could not be acquired in time."""
    def __init__(self, player_id: int, timeout: float):
        super().__init__(
            f"Timed out after {timeout}s waiting for lock on player {player_id}",
            "Your previous action is still being processed. Please try again."
        )

class DailyBonusAlreadyClaimedError(ProgressionError):
    """Raised when the daily bonus was already claimed today."""
    def __init__(self, player_id: int):
        super().__init__(
            f"Player {player_id} already claimed today's daily bonus",
            "Daily bonus already claimed today. Come back tomorrow!"
        )

class UnknownCoinPackError(ProgressionError, ValueError):
    """Raised when a purchase references a coin pack that does not exist."""
    def __init__(self, pack: str):
        super().__init__(
            f"Unknown coin pack '{pack}'",
            "Invalid pack type."
        )

class ReferralError(ProgressionError):
    """Base exception for referral failures."""
    pass

class InvalidReferralCodeError(ReferralError):
    def __init__(self, code: str):
        super().__init__(f"Referral code '{code}' does not exist", "Invalid referral code.")

class ReferralAlreadyUsedError(ReferralError):
    def __init__(self, player_id: int):
        super().__init__(
            f"Player {player_id} already used a referral code",
            "You have already used a referral code."
        )

class SelfReferralError(ReferralError):
    def __init__(self, player_id: int):
        super().__init__(
            f"Player {player_id} tried to use their own referral code",
            "You cannot use your own referral code."
        )
