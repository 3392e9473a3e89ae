"""Error taxonomy and user-friendly translation."""

from .exceptions import (
    AlreadyExistsError,
    CapacityExceededError,
    CommandFailedError,
    ConflictError,
    DevtreeError,
    GitOperationFailedError,
    InvalidInputError,
    NotFoundError,
    SpawnFailedError,
)
from .translator import ErrorTranslator, UserFriendlyError, translate_message

__all__ = [
    "AlreadyExistsError",
    "CapacityExceededError",
    "CommandFailedError",
    "ConflictError",
    "DevtreeError",
    "GitOperationFailedError",
    "InvalidInputError",
    "NotFoundError",
    "SpawnFailedError",
    "ErrorTranslator",
    "UserFriendlyError",
    "translate_message",
]
