"""Error taxonomy for break and reservation operations.

Engine operations raise these before mutating anything; the service
layer turns them into failed responses.
"""

from __future__ import annotations


class BreakError(Exception):
    """Base class. The message is safe to show to the user."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(BreakError):
    """Bad input: duration, time format, missing arguments."""


class RuleViolation(BreakError):
    """A business rule rejected the request (cooldown, rights, capacity...)."""

    def __init__(self, message: str, suggestions: list[str] | None = None) -> None:
        super().__init__(message)
        self.suggestions = suggestions or []


class NotFoundError(BreakError):
    """Nothing to act on: no active break, no pending reservation."""


class PersistenceError(Exception):
    """Raised by snapshot stores when a save or load fails."""
