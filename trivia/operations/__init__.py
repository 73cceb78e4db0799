"""
Operations Layer

Business logic that composes database methods and services into multi-step
workflows with validation.

- PlayerOperations: Player registration and preferences
"""

from .player_operations import PlayerOperations, PlayerOperationError, PlayerValidationError

__all__ = ['PlayerOperations', 'PlayerOperationError', 'PlayerValidationError']
