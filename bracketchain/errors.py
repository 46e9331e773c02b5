"""
bracketchain/errors.py - Failure taxonomy shared by the registry, bracket
state machine, escrow engine and HTTP layer.

Callers branch on ``kind`` (or the subclass) to tell "fix your input" apart
from "retrying won't help". Every error is raised before any state is
changed, or the surrounding escrow transaction is rolled back.
"""


class BracketchainError(Exception):
    """Base class for every domain error."""

    kind = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(BracketchainError, ValueError):
    """Missing/invalid fields, closed registration window, full tournament."""

    kind = "validation"


class AuthorizationError(BracketchainError):
    """Caller is not allowed to perform the operation."""

    kind = "authorization"


class StateConflictError(BracketchainError):
    """Operation conflicts with current state (double claim, re-cancel, ...)."""

    kind = "state_conflict"


class TokenTransferError(BracketchainError):
    """Insufficient balance or allowance for a token movement."""

    kind = "token_transfer"


class NotFoundError(BracketchainError, KeyError):
    """Raised when an id or key does not resolve to a record."""

    kind = "not_found"

    def __str__(self) -> str:
        return self.message


class TournamentNotFoundError(NotFoundError):
    """Unknown tournament id (or escrow record id)."""


class MatchNotFoundError(NotFoundError):
    """Unknown match key within a bracket."""


class PersistenceError(BracketchainError):
    """Storage layer failure. Not retried by core logic."""

    kind = "persistence"
