"""
bracketchain/bracket.py - Deterministic bracket generation.

The k-th registrant is seed k. Seeds are laid out in standard order (seed s
meets seed P+1-s, recursively), so the P-N byes land on seeds 1..P-N and two
byes never share a first-round match.

Match keys:
    W<round>-<pos>   winners bracket (the only bracket in single elimination)
    L<round>-<pos>   losers bracket
    GF-0, GF-1       grand final and its reset
"""

import logging
import math
from typing import Iterable

from .errors import ValidationError
from .matches import GRAND_FINAL, GRAND_FINAL_RESET, settle_bracket
from .models import (
    Bracket,
    BracketSide,
    Match,
    MatchStatus,
    MatchType,
    Participant,
    Round,
    SlotRef,
    TournamentType,
)

logger = logging.getLogger(__name__)


def next_power_of_two(n: int) -> int:
    if n <= 1:
        return 1
    return 1 << (n - 1).bit_length()


def count_byes(n: int) -> int:
    if n <= 0:
        return 0
    return next_power_of_two(n) - n


def bracket_order(size: int) -> list[int]:
    """Seed numbers in slot order for a bracket of ``size`` (a power of two).

    >>> bracket_order(8)
    [1, 8, 4, 5, 2, 7, 3, 6]
    """
    if size < 1 or size & (size - 1):
        raise ValueError(f"Bracket size must be a power of two, got {size}")
    if size == 1:
        return [1]
    result = []
    for seed in bracket_order(size // 2):
        result.extend([seed, size + 1 - seed])
    return result


def _key(prefix: str, rnd: int, pos: int) -> str:
    return f"{prefix}{rnd}-{pos}"


def round_name(side: BracketSide, rnd: int, total_rounds: int) -> str:
    """Human label for a round ("Final", "Semifinals", "Losers Round 3", ...)."""
    if side is BracketSide.FINALS:
        return "Grand Final" if rnd == 1 else "Grand Final Reset"
    if side is BracketSide.LOSERS:
        return "Losers Final" if rnd == total_rounds else f"Losers Round {rnd}"
    remaining = total_rounds - rnd
    if remaining == 0:
        return "Final"
    if remaining == 1:
        return "Semifinals"
    if remaining == 2:
        return "Quarterfinals"
    return f"Round {rnd}"


# ============================================================================
# Structure
# ============================================================================


def _winners_rounds(size: int, single: bool) -> list[Round]:
    total = int(math.log2(size))
    rounds = []
    for rnd in range(1, total + 1):
        matches = []
        for pos in range(size >> rnd):
            match = Match(
                key=_key("W", rnd, pos),
                side=BracketSide.WINNERS,
                round=rnd,
                position=pos,
                match_type=MatchType.FINAL if (single and rnd == total) else MatchType.REGULAR,
            )
            if rnd > 1:
                match.feeders = [_key("W", rnd - 1, 2 * pos), _key("W", rnd - 1, 2 * pos + 1)]
            if rnd < total:
                match.winner_to = SlotRef(_key("W", rnd + 1, pos // 2), pos % 2)
            matches.append(match)
        rounds.append(Round(BracketSide.WINNERS, rnd, matches))
    return rounds


def _losers_rounds(size: int, winners: list[Round]) -> list[Round]:
    """Losers bracket of 2*(W-1) rounds, wired to the winners bracket.

    Round 1 pairs first-round losers using the seeding order over match
    positions. Even rounds take the drop-downs from winners round k/2+1,
    odd rounds pair adjacent survivors.
    """
    total = 2 * (len(winners) - 1)
    rounds: list[Round] = []
    for k in range(1, total + 1):
        count = size >> ((k + 1) // 2 + 1)
        matches = []
        for j in range(count):
            match = Match(
                key=_key("L", k, j),
                side=BracketSide.LOSERS,
                round=k,
                position=j,
                match_type=MatchType.LOSERS_FINAL if k == total else MatchType.REGULAR,
            )
            matches.append(match)
        rounds.append(Round(BracketSide.LOSERS, k, matches))

    first = winners[0].matches
    order = bracket_order(size // 2)
    for j, match in enumerate(rounds[0].matches):
        a, b = order[2 * j] - 1, order[2 * j + 1] - 1
        first[a].loser_to = SlotRef(match.key, 0)
        first[b].loser_to = SlotRef(match.key, 1)
        match.feeders = [first[a].key, first[b].key]

    for k in range(2, total + 1):
        prev = rounds[k - 2].matches
        for j, match in enumerate(rounds[k - 1].matches):
            if k % 2 == 0:
                dropping = winners[k // 2].matches[j]
                prev[j].winner_to = SlotRef(match.key, 0)
                dropping.loser_to = SlotRef(match.key, 1)
                match.feeders = [prev[j].key, dropping.key]
            else:
                prev[2 * j].winner_to = SlotRef(match.key, 0)
                prev[2 * j + 1].winner_to = SlotRef(match.key, 1)
                match.feeders = [prev[2 * j].key, prev[2 * j + 1].key]
    return rounds


def _finals(winners: list[Round], losers: list[Round]) -> list[Round]:
    wb_final = winners[-1].matches[0]
    grand_final = Match(
        key=GRAND_FINAL,
        side=BracketSide.FINALS,
        round=1,
        position=0,
        match_type=MatchType.GRAND_FINAL,
    )
    reset = Match(
        key=GRAND_FINAL_RESET,
        side=BracketSide.FINALS,
        round=2,
        position=0,
        match_type=MatchType.GRAND_FINAL_RESET,
        feeders=[GRAND_FINAL, GRAND_FINAL],
    )

    wb_final.winner_to = SlotRef(GRAND_FINAL, 0)
    if losers:
        lb_final = losers[-1].matches[0]
        lb_final.winner_to = SlotRef(GRAND_FINAL, 1)
        grand_final.feeders = [wb_final.key, lb_final.key]
    else:
        # Two players: the final loser goes straight to the grand final.
        wb_final.loser_to = SlotRef(GRAND_FINAL, 1)
        grand_final.feeders = [wb_final.key, wb_final.key]

    return [
        Round(BracketSide.FINALS, 1, [grand_final]),
        Round(BracketSide.FINALS, 2, [reset]),
    ]


# ============================================================================
# Generation
# ============================================================================


def generate_bracket(
    participants: Iterable[Participant],
    tournament_type: TournamentType | str = TournamentType.SINGLE,
) -> Bracket:
    """Build and seed a bracket, resolving byes and empty shells up front.

    Deterministic for a given registration order. Raises ValidationError
    for an empty field or duplicate addresses.
    """
    tournament_type = TournamentType(tournament_type)
    seeds = list(participants)
    n = len(seeds)
    if n == 0:
        raise ValidationError("Cannot start a tournament with no participants")
    if len({p.address for p in seeds}) != n:
        raise ValidationError("Duplicate participants in bracket")

    if n == 1:
        only = Match(
            key=_key("W", 1, 0),
            side=BracketSide.WINNERS,
            round=1,
            position=0,
            player1=seeds[0],
            match_type=MatchType.FINAL,
        )
        bracket = Bracket(tournament_type, size=1, rounds=[Round(BracketSide.WINNERS, 1, [only])])
        settle_bracket(bracket)
        logger.info(f"Single entrant {seeds[0].address}: bracket decided by bye")
        return bracket

    size = next_power_of_two(n)
    single = tournament_type is TournamentType.SINGLE
    winners = _winners_rounds(size, single)
    rounds = list(winners)
    if not single:
        losers = _losers_rounds(size, winners) if size > 2 else []
        rounds.extend(losers)
        rounds.extend(_finals(winners, losers))

    order = bracket_order(size)
    for pos, match in enumerate(winners[0].matches):
        top, bottom = order[2 * pos], order[2 * pos + 1]
        match.player1 = seeds[top - 1] if top <= n else None
        match.player2 = seeds[bottom - 1] if bottom <= n else None

    bracket = Bracket(tournament_type, size=size, rounds=rounds)
    settle_bracket(bracket)

    byes = sum(1 for m in bracket.matches() if m.status is MatchStatus.BYE)
    logger.info(
        f"Generated {tournament_type.value} bracket: {n} players, size {size}, "
        f"{len(winners)} winners rounds, {byes} byes"
    )
    return bracket


def format_bracket(bracket: Bracket) -> str:
    """Plain-text rendering used by the CLI preview."""
    lines = []
    totals = {
        side: len(bracket.side_rounds(side))
        for side in (BracketSide.WINNERS, BracketSide.LOSERS, BracketSide.FINALS)
    }
    for rnd in bracket.rounds:
        lines.append(f"== {round_name(rnd.side, rnd.round, totals[rnd.side])} ==")
        for m in rnd.matches:
            p1 = m.player1.name if m.player1 else "-"
            p2 = m.player2.name if m.player2 else "-"
            suffix = ""
            if m.status is MatchStatus.BYE:
                suffix = f"  (bye: {m.winner.name} advances)"
            elif m.status is MatchStatus.VOID:
                suffix = "  (void)"
            elif m.winner is not None:
                suffix = f"  -> {m.winner.name}"
            lines.append(f"  {m.key:<6} {p1:>16} vs {p2:<16}{suffix}")
    return "\n".join(lines)
