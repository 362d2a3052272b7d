"""
Error kinds raised by the store and repository layers.

Every error carries a short user-facing ``message``; the request surface
returns it as ``{"success": false, "message": ...}``.
"""

from __future__ import annotations

from typing import Iterable


class TeamboardError(Exception):
    message = "Request failed"

    def __init__(self, message: str | None = None):
        if message:
            self.message = message
        super().__init__(self.message)


class DuplicateUser(TeamboardError):
    message = "User already exists. Please sign in instead."


class UserNotFound(TeamboardError):
    message = "User not found. Please sign up first."


class InvalidCredentials(TeamboardError):
    message = "Invalid password"


class TeamNotFound(TeamboardError):
    message = "Team not found"


class TaskNotFound(TeamboardError):
    message = "Task not found"


class InvalidEnum(TeamboardError):
    def __init__(self, field: str, value: object, allowed: Iterable[str]):
        self.field = field
        self.value = value
        self.allowed = tuple(allowed)
        super().__init__(
            f"Invalid {field} {value!r}; expected one of: {', '.join(self.allowed)}"
        )


class InvalidValue(TeamboardError):
    message = "Invalid value"


class StoreUnavailable(TeamboardError):
    """The durable store could not be reached at startup."""

    message = "Database unavailable"


class StoreOperationFailed(TeamboardError):
    """A durable store call failed after the store was selected."""

    message = "Storage operation failed"
