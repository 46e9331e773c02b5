"""
portal - HTTP tournament platform for Bracketchain

Serves tournament creation, registration, brackets and settlement over
HTTP. Money never moves here directly; every payout goes through the
escrow engine.
"""

from .server import app
from .db import TournamentDB
from .service import TournamentService

__all__ = ["app", "TournamentDB", "TournamentService"]
