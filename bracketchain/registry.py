"""
bracketchain/registry.py - Tournament lifecycle rules.

Pure functions over a Tournament record: creation, registration, bracket
build, result reporting and the terminal transitions. Nothing here touches
storage or the escrow; portal/service.py composes those.
"""

import logging
from datetime import datetime
from typing import Any

from . import matches
from .bracket import generate_bracket
from .errors import StateConflictError, ValidationError
from .models import (
    Bracket,
    MatchStatus,
    MatchType,
    Participant,
    ParticipantStatus,
    Tournament,
    TournamentStatus,
    utc_now,
)

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("name", "gameId", "startDate", "registrationEndDate")


def new_tournament(
    data: dict[str, Any],
    creator: str | None = None,
    now: datetime | None = None,
) -> Tournament:
    """Validate a create request and build a fresh Tournament.

    ``data`` uses the create endpoint's field names (``gameId``,
    ``startDate``, ``registrationEndDate`` ...).
    """
    if not isinstance(data, dict) or any(not data.get(f) for f in REQUIRED_FIELDS):
        raise ValidationError("Missing required fields")

    doc = dict(data)
    for server_owned in ("id", "participants", "status", "brackets", "escrowId",
                         "feesDistributed", "cancelled", "createdAt", "updatedAt"):
        doc.pop(server_owned, None)
    if creator is not None:
        doc["creator"] = creator
    if not doc.get("creator"):
        raise ValidationError("creator is required")

    tournament = Tournament.from_dict(doc)
    now = now or utc_now()
    if tournament.registration_end <= now:
        raise ValidationError("Registration end time must be in the future")
    logger.info(f"New tournament {tournament.id} '{tournament.name}' by {tournament.creator}")
    return tournament


def _require_open(tournament: Tournament) -> None:
    if tournament.cancelled:
        raise StateConflictError("Tournament has been cancelled")


def register(
    tournament: Tournament,
    address: str,
    name: str = "",
    now: datetime | None = None,
) -> Participant:
    """Add a participant, enforcing window, capacity and uniqueness."""
    _require_open(tournament)
    participant = Participant(address=address, name=name)
    if tournament.status is not TournamentStatus.REGISTRATION:
        raise StateConflictError("Registration is closed")
    if (now or utc_now()) >= tournament.registration_end:
        raise ValidationError("Registration period ended")
    if tournament.is_registered(participant.address):
        raise StateConflictError("Already registered")
    if tournament.max_participants and tournament.current_participants >= tournament.max_participants:
        raise ValidationError("Tournament is full")

    tournament.participants.append(participant)
    tournament.touch()
    logger.info(f"{participant.address} registered for {tournament.id}")
    return participant


def build_bracket(tournament: Tournament, now: datetime | None = None) -> Bracket:
    """Generate the bracket once registration has closed; tournament goes active."""
    _require_open(tournament)
    if tournament.bracket is not None:
        raise StateConflictError("Bracket already generated")
    if (now or utc_now()) < tournament.registration_end:
        raise StateConflictError("Registration is still open")

    bracket = generate_bracket(tournament.participants, tournament.tournament_type)
    if not tournament.max_participants:
        tournament.max_participants = tournament.current_participants
    tournament.bracket = bracket
    tournament.set_status(TournamentStatus.ACTIVE)
    sync_status(tournament)
    return bracket


def _require_bracket(tournament: Tournament) -> Bracket:
    _require_open(tournament)
    if tournament.bracket is None:
        raise StateConflictError("Bracket has not been generated")
    return tournament.bracket


def report_match(tournament: Tournament, key: str, reporter: str, winner: str):
    bracket = _require_bracket(tournament)
    match = matches.report_result(bracket, key, reporter, winner)
    sync_status(tournament)
    return match


def resolve_match(tournament: Tournament, key: str, winner: str, payouts_made: bool = False):
    bracket = _require_bracket(tournament)
    match = matches.resolve_match(bracket, key, winner, payouts_made=payouts_made)
    sync_status(tournament)
    return match


def sync_status(tournament: Tournament) -> None:
    """Bring participant statuses and tournament status in line with the bracket."""
    bracket = tournament.bracket
    if bracket is None:
        return

    knocked_out = set()
    for match in bracket.matches():
        if match.status is not MatchStatus.COMPLETED or match.loser_to is not None:
            continue
        if match.match_type is MatchType.GRAND_FINAL and match.winner != match.player1:
            continue  # winners champion still has the reset
        knocked_out.add(match.loser.address)

    champ = matches.champion(bracket)
    for p in tournament.participants:
        if champ is not None and p.address == champ.address:
            p.status = ParticipantStatus.WINNER
        elif p.address in knocked_out:
            p.status = ParticipantStatus.ELIMINATED
        else:
            p.status = ParticipantStatus.REGISTERED

    if champ is not None and tournament.status is not TournamentStatus.COMPLETED:
        tournament.set_status(TournamentStatus.COMPLETED)
        logger.info(f"Tournament {tournament.id} completed, champion {champ.address}")
    tournament.touch()


def winners_for_positions(tournament: Tournament) -> list[str]:
    """Addresses for reward positions 0..k-1 from the final standings."""
    bracket = _require_bracket(tournament)
    standings = matches.final_standings(bracket)
    return [p.address for p in standings[: len(tournament.reward_amounts)]]


def mark_cancelled(tournament: Tournament) -> None:
    if tournament.cancelled:
        raise StateConflictError("Tournament not active")
    if tournament.fees_distributed:
        raise StateConflictError("Entry fees already distributed")
    tournament.cancelled = True
    tournament.touch()


def mark_fees_distributed(tournament: Tournament) -> None:
    if tournament.fees_distributed:
        raise StateConflictError("Entry fees already distributed")
    tournament.fees_distributed = True
    tournament.touch()
