from __future__ import annotations


class MatchSessionError(ValueError):
    """Base class for every rejected match-session operation.

    Subclasses `ValueError` so API routes can keep mapping domain failures to 4xx responses.
    """


class ValidationError(MatchSessionError):
    """Malformed input: incomplete action, invalid batch partition, bad setup."""


class IllegalTransition(MatchSessionError):
    """The operation is not allowed in the current session state."""


class ConcurrencyConflict(MatchSessionError):
    """A duplicate action id arrived from the sync channel, or the match is busy."""


class PersistenceFailure(MatchSessionError):
    """A sync write failed. Logged, never rolls back local state."""
