"""
Bracketchain - Elimination tournaments with escrowed rewards

Registry, bracket generation, match results and an escrow engine that
locks prizes and entry fees until winners claim them.
"""

__version__ = "0.1.0"

from .errors import (
    BracketchainError,
    ValidationError,
    AuthorizationError,
    StateConflictError,
    TokenTransferError,
    NotFoundError,
    TournamentNotFoundError,
    MatchNotFoundError,
    PersistenceError,
)

from .models import (
    Tournament,
    Participant,
    Bracket,
    Round,
    Match,
    EntryFee,
    TournamentType,
    TournamentStatus,
    MatchStatus,
)

from .bracket import generate_bracket, bracket_order, next_power_of_two
from .matches import report_result, resolve_match, final_standings, champion
from .ledger import TokenLedger, split_entry_fees
from .escrow import EscrowEngine

__all__ = [
    # Version
    "__version__",
    # Errors
    "BracketchainError",
    "ValidationError",
    "AuthorizationError",
    "StateConflictError",
    "TokenTransferError",
    "NotFoundError",
    "TournamentNotFoundError",
    "MatchNotFoundError",
    "PersistenceError",
    # Records
    "Tournament",
    "Participant",
    "Bracket",
    "Round",
    "Match",
    "EntryFee",
    "TournamentType",
    "TournamentStatus",
    "MatchStatus",
    # Brackets and results
    "generate_bracket",
    "bracket_order",
    "next_power_of_two",
    "report_result",
    "resolve_match",
    "final_standings",
    "champion",
    # Money
    "TokenLedger",
    "split_entry_fees",
    "EscrowEngine",
]
