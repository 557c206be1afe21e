"""
Hamme — Domain exception taxonomy.

Services raise these; ``app.main`` maps each family onto an HTTP status:

    ValidationError      -> 400
    AuthenticationError  -> 401
    NotFoundError        -> 404
    StorageError         -> 500 (generic message, detail logged server-side)
"""

from __future__ import annotations


class HammeError(Exception):
    """Base class for every error raised by the service layer."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(HammeError):
    """Caller-fixable input problem."""


class InvalidChoiceError(ValidationError):
    def __init__(self, choice: object) -> None:
        super().__init__(
            f"Invalid choice {choice!r}. Must be date, friends, or reject"
        )
        self.choice = choice


class SelfInteractionError(ValidationError):
    def __init__(self) -> None:
        super().__init__("Cannot interact with your own profile")


class AuthenticationError(HammeError):
    """Missing, invalid or expired credentials."""


class NotFoundError(HammeError):
    """A referenced entity does not exist."""


class UserNotFoundError(NotFoundError):
    def __init__(self, user_id: object) -> None:
        super().__init__(f"User {user_id} not found")
        self.user_id = user_id


class TargetNotFoundError(NotFoundError):
    def __init__(self, user_id: object) -> None:
        super().__init__("Target user not found")
        self.user_id = user_id


class StorageError(HammeError):
    """A persistence operation failed.  Never retried by the service layer."""

    def __init__(self, operation: str) -> None:
        super().__init__(f"Storage failure during {operation}")
        self.operation = operation
