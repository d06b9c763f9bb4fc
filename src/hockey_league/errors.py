"""Error taxonomy shared by the standings engine, stats queue and providers."""

from __future__ import annotations


class LeagueError(Exception):
    """Base class for every error raised by this package."""


class NotFoundError(LeagueError):
    """A season, game or provider match does not exist."""


class ValidationError(LeagueError):
    """Input could not be accepted (unknown provider, malformed ids, bad stat values)."""


class ProviderError(LeagueError):
    """The external stats provider was unreachable or answered with an error."""


class PersistenceError(LeagueError):
    """A write to the store was rejected."""


class RetryExhaustedError(LeagueError):
    def __init__(self, item_id: str, attempts: int, last_error: str) -> None:
        self.item_id = item_id
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Queue item {item_id} failed after {attempts} attempts: {last_error}")
