"""
bracketchain/matches.py - Match/result state machine.

Lifecycle per match:

    pending ──both reports agree──▶ completed
       │                              ▲
       └──reports disagree──▶ disputed ──resolve_match──┘

Byes skip straight to ``bye`` (occupant promoted, nobody reports). Shells
with no possible occupant become ``void``. Every resolution pushes the
winner (and, in double elimination, the loser) into the destination slot
and then re-settles the bracket so cascaded byes resolve immediately.
"""

import logging

from .errors import AuthorizationError, StateConflictError, ValidationError
from .models import (
    Bracket,
    BracketSide,
    Match,
    MatchStatus,
    MatchType,
    Participant,
    SlotRef,
    TournamentType,
)

logger = logging.getLogger(__name__)

GRAND_FINAL = "GF-0"
GRAND_FINAL_RESET = "GF-1"


# ============================================================================
# Settling (no human input)
# ============================================================================


def settle_bracket(bracket: Bracket) -> None:
    """Resolve every match that needs no report: byes and empty shells."""
    changed = True
    while changed:
        changed = False
        for match in bracket.matches():
            if _auto_resolve(bracket, match):
                changed = True


def _slot_dead(bracket: Bracket, match: Match, slot: int) -> bool:
    """True when a slot is empty and nothing can ever fill it."""
    if match.get_slot(slot) is not None:
        return False
    feeder = match.feeders[slot]
    if feeder is None:
        return True
    return bracket.match(feeder).status.resolved


def _auto_resolve(bracket: Bracket, match: Match) -> bool:
    if match.status is not MatchStatus.PENDING:
        return False

    dead = [_slot_dead(bracket, match, 0), _slot_dead(bracket, match, 1)]
    if all(dead):
        match.status = MatchStatus.VOID
        logger.debug(f"Match {match.key} is void")
        return True

    if dead[0] or dead[1]:
        occupant = match.player2 if dead[0] else match.player1
        if occupant is None:
            return False
        match.winner = occupant
        match.loser = None
        match.status = MatchStatus.BYE
        logger.debug(f"Match {match.key}: bye for {occupant.address}")
        _deliver(bracket, match)
        return True

    return False


def _deliver(bracket: Bracket, match: Match) -> None:
    """Copy the result of a resolved match into its destination slots."""
    if match.winner_to is not None and match.winner is not None:
        bracket.match(match.winner_to.match).set_slot(match.winner_to.slot, match.winner)
    if match.loser_to is not None and match.loser is not None:
        bracket.match(match.loser_to.match).set_slot(match.loser_to.slot, match.loser)

    if match.match_type is MatchType.GRAND_FINAL and match.status is MatchStatus.COMPLETED:
        reset = bracket.match(GRAND_FINAL_RESET)
        if match.winner == match.player1:
            # Winners-bracket champion took it: no reset needed.
            reset.status = MatchStatus.VOID
        else:
            reset.player1 = match.player1
            reset.player2 = match.player2


def _complete(bracket: Bracket, match: Match, winner: Participant) -> None:
    loser = match.player2 if winner == match.player1 else match.player1
    match.winner = winner
    match.loser = loser
    match.status = MatchStatus.COMPLETED
    logger.info(f"Match {match.key} completed: {winner.address} beat {loser.address}")
    _deliver(bracket, match)
    settle_bracket(bracket)


# ============================================================================
# Reporting
# ============================================================================


def _require_playable(match: Match) -> None:
    if match.status in (MatchStatus.BYE, MatchStatus.VOID):
        raise StateConflictError(f"Match {match.key} is a {match.status.value}; no result needed")
    if match.player1 is None or match.player2 is None:
        raise StateConflictError(f"Match {match.key} is still waiting for opponents")


def report_result(bracket: Bracket, key: str, reporter: str, winner: str) -> Match:
    """Record one occupant's claim of who won.

    Both occupants must report. Agreeing reports complete the match;
    conflicting reports move it to ``disputed`` until a privileged
    resolution. An occupant may change their report until the opponent
    has reported.
    """
    match = bracket.match(key)
    _require_playable(match)
    if match.status is MatchStatus.COMPLETED:
        raise StateConflictError(f"Match {key} is already completed")

    reporter_p = match.occupant(reporter)
    if reporter_p is None:
        raise AuthorizationError("Only match participants can report a result")
    winner_p = match.occupant(winner)
    if winner_p is None:
        raise ValidationError("Winner must be one of the match participants")
    if match.status is MatchStatus.DISPUTED:
        raise StateConflictError(f"Match {key} is disputed and awaits resolution")

    match.reports[reporter_p.address] = winner_p.address
    logger.info(f"Match {key}: {reporter_p.address} reports {winner_p.address} as winner")

    if len(match.reports) < 2:
        return match

    claimed = set(match.reports.values())
    if len(claimed) == 1:
        _complete(bracket, match, winner_p)
    else:
        match.status = MatchStatus.DISPUTED
        logger.warning(f"Match {key} disputed: {match.reports}")
    return match


def resolve_match(
    bracket: Bracket,
    key: str,
    winner: str,
    payouts_made: bool = False,
) -> Match:
    """Privileged result: settles a dispute or overrides reports.

    Re-declaring the current winner of a completed match is a no-op.
    Declaring a different winner rewrites the dependent slots, which is
    only allowed while no dependent match has been played and no reward
    has been paid out.
    """
    match = bracket.match(key)
    _require_playable(match)
    winner_p = match.occupant(winner)
    if winner_p is None:
        raise ValidationError("Winner must be one of the match participants")

    if match.status is MatchStatus.COMPLETED:
        if match.winner == winner_p:
            return match
        if payouts_made:
            raise StateConflictError("Rewards have already been paid out; result is final")
        _reassign(bracket, match, winner_p)
        return match

    if match.status is MatchStatus.DISPUTED:
        logger.info(f"Dispute on {key} resolved in favour of {winner_p.address}")
    _complete(bracket, match, winner_p)
    return match


def _plan_replacement(
    bracket: Bracket,
    ref: SlotRef | None,
    old: Participant | None,
    new: Participant | None,
    plan: list,
) -> None:
    if ref is None or old is None:
        return
    dest = bracket.match(ref.match)
    if dest.get_slot(ref.slot) != old:
        raise StateConflictError(f"Match {dest.key} no longer holds {old.address}")
    if dest.status is MatchStatus.BYE:
        plan.append((dest, ref.slot, new, True))
        _plan_replacement(bracket, dest.winner_to, old, new, plan)
        return
    if dest.status is MatchStatus.PENDING and not dest.reports:
        plan.append((dest, ref.slot, new, False))
        return
    raise StateConflictError(f"Match {dest.key} already depends on this result")


def _reassign(bracket: Bracket, match: Match, new_winner: Participant) -> None:
    old_winner, old_loser = match.winner, match.loser
    plan: list = []
    _plan_replacement(bracket, match.winner_to, old_winner, old_loser, plan)
    _plan_replacement(bracket, match.loser_to, old_loser, old_winner, plan)

    reset = None
    if match.match_type is MatchType.GRAND_FINAL:
        reset = bracket.match(GRAND_FINAL_RESET)
        if reset.status is MatchStatus.VOID:
            raise StateConflictError("Grand final is decided; changing it would reopen the bracket")
        if reset.status is not MatchStatus.PENDING or reset.reports:
            raise StateConflictError("Grand final reset has already been played")

    # All checks passed: mutate.
    for dest, slot, player, is_bye in plan:
        dest.set_slot(slot, player)
        if is_bye:
            dest.winner = player
    match.winner = new_winner
    match.loser = old_winner
    if reset is not None:
        reset.player1 = None
        reset.player2 = None
        reset.status = MatchStatus.VOID
    logger.warning(f"Match {match.key} result changed: {new_winner.address} now the winner")
    settle_bracket(bracket)


# ============================================================================
# Queries
# ============================================================================


def _has_finals(bracket: Bracket) -> bool:
    return bool(bracket.side_rounds(BracketSide.FINALS))


def champion(bracket: Bracket) -> Participant | None:
    """The tournament winner, or None while the bracket is still running."""
    if bracket.tournament_type is TournamentType.DOUBLE and _has_finals(bracket):
        grand_final = bracket.match(GRAND_FINAL)
        reset = bracket.match(GRAND_FINAL_RESET)
        if reset.status is MatchStatus.COMPLETED:
            return reset.winner
        if grand_final.status is MatchStatus.COMPLETED and reset.status is MatchStatus.VOID:
            return grand_final.winner
        return None

    final = bracket.side_rounds(BracketSide.WINNERS)[-1].matches[0]
    if final.status in (MatchStatus.COMPLETED, MatchStatus.BYE):
        return final.winner
    return None


def is_complete(bracket: Bracket) -> bool:
    return champion(bracket) is not None


def final_standings(bracket: Bracket) -> list[Participant]:
    """Placement order: champion, runner-up, then by elimination depth.

    Participants knocked out in the same round are ordered by match
    position. Byes produce no loser, so fewer placements may exist than
    participants only when N = 1.
    """
    winner = champion(bracket)
    if winner is None:
        raise StateConflictError("Bracket is not complete")

    standings = [winner]
    if bracket.tournament_type is TournamentType.DOUBLE and _has_finals(bracket):
        reset = bracket.match(GRAND_FINAL_RESET)
        deciding = reset if reset.status is MatchStatus.COMPLETED else bracket.match(GRAND_FINAL)
        standings.append(deciding.loser)
        elimination_rounds = list(reversed(bracket.side_rounds(BracketSide.LOSERS)))
    else:
        winners_rounds = bracket.side_rounds(BracketSide.WINNERS)
        final = winners_rounds[-1].matches[0]
        if final.loser is not None:
            standings.append(final.loser)
        elimination_rounds = list(reversed(winners_rounds[:-1]))

    for rnd in elimination_rounds:
        for match in rnd.matches:
            if match.status is MatchStatus.COMPLETED and match.loser not in standings:
                standings.append(match.loser)
    return standings


def playable_matches(bracket: Bracket) -> list[Match]:
    """Matches with both opponents known that still need a result."""
    return [m for m in bracket.matches() if m.is_ready]
