"""Tests for bracketchain.matches — reporting, disputes, overrides, standings."""

import pytest

from bracketchain.bracket import generate_bracket
from bracketchain.errors import (
    AuthorizationError,
    MatchNotFoundError,
    StateConflictError,
    ValidationError,
)
from bracketchain.matches import (
    champion,
    final_standings,
    is_complete,
    playable_matches,
    report_result,
    resolve_match,
)
from bracketchain.models import MatchStatus, TournamentType

from conftest import addr, make_players


def play(bracket, key, winner):
    """Both occupants report the same winner."""
    match = bracket.match(key)
    for p in match.players:
        report_result(bracket, key, p.address, winner.address)
    return match


@pytest.fixture
def four():
    players = make_players(4)
    return players, generate_bracket(players)


# ======================================================================
# Reporting
# ======================================================================


class TestReportResult:
    def test_agreeing_reports_complete_match(self, four):
        players, bracket = four
        p1, p4 = players[0], players[3]
        report_result(bracket, "W1-0", p1.address, p1.address)
        assert bracket.match("W1-0").status is MatchStatus.PENDING
        match = report_result(bracket, "W1-0", p4.address, p1.address)
        assert match.status is MatchStatus.COMPLETED
        assert match.winner == p1
        assert match.loser == p4
        assert bracket.match("W2-0").player1 == p1

    def test_reports_are_case_insensitive(self, four):
        players, bracket = four
        report_result(bracket, "W1-0", players[0].address.upper().replace("0X", "0x"), players[0].address)
        assert players[0].address in bracket.match("W1-0").reports

    def test_reporter_can_change_report_before_opponent(self, four):
        players, bracket = four
        p1, p4 = players[0], players[3]
        report_result(bracket, "W1-0", p1.address, p4.address)
        report_result(bracket, "W1-0", p1.address, p1.address)
        match = report_result(bracket, "W1-0", p4.address, p1.address)
        assert match.status is MatchStatus.COMPLETED

    def test_conflicting_reports_dispute(self, four):
        players, bracket = four
        p1, p4 = players[0], players[3]
        report_result(bracket, "W1-0", p1.address, p1.address)
        match = report_result(bracket, "W1-0", p4.address, p4.address)
        assert match.status is MatchStatus.DISPUTED
        assert match.winner is None
        with pytest.raises(StateConflictError):
            report_result(bracket, "W1-0", p4.address, p1.address)

    def test_non_participant_cannot_report(self, four):
        players, bracket = four
        with pytest.raises(AuthorizationError):
            report_result(bracket, "W1-0", players[1].address, players[0].address)

    def test_winner_must_be_occupant(self, four):
        players, bracket = four
        with pytest.raises(ValidationError):
            report_result(bracket, "W1-0", players[0].address, players[1].address)

    def test_match_waiting_for_opponents(self, four):
        players, bracket = four
        with pytest.raises(StateConflictError):
            report_result(bracket, "W2-0", players[0].address, players[0].address)

    def test_bye_needs_no_result(self):
        players = make_players(3)
        bracket = generate_bracket(players)
        with pytest.raises(StateConflictError):
            report_result(bracket, "W1-0", players[0].address, players[0].address)

    def test_completed_match_rejects_reports(self, four):
        players, bracket = four
        play(bracket, "W1-0", players[0])
        with pytest.raises(StateConflictError):
            report_result(bracket, "W1-0", players[0].address, players[0].address)

    def test_unknown_match(self, four):
        players, bracket = four
        with pytest.raises(MatchNotFoundError):
            report_result(bracket, "W9-9", players[0].address, players[0].address)


# ======================================================================
# Privileged resolution
# ======================================================================


class TestResolveMatch:
    def test_resolves_dispute(self, four):
        players, bracket = four
        p1, p4 = players[0], players[3]
        report_result(bracket, "W1-0", p1.address, p1.address)
        report_result(bracket, "W1-0", p4.address, p4.address)
        match = resolve_match(bracket, "W1-0", p4.address)
        assert match.status is MatchStatus.COMPLETED
        assert bracket.match("W2-0").player1 == p4

    def test_resolves_without_reports(self, four):
        players, bracket = four
        resolve_match(bracket, "W1-1", players[2].address)
        assert bracket.match("W2-0").player2 == players[2]

    def test_same_winner_is_noop(self, four):
        players, bracket = four
        play(bracket, "W1-0", players[0])
        before = bracket.to_dict()
        resolve_match(bracket, "W1-0", players[0].address)
        assert bracket.to_dict() == before

    def test_override_before_dependent_played(self, four):
        players, bracket = four
        p1, p4 = players[0], players[3]
        play(bracket, "W1-0", p1)
        match = resolve_match(bracket, "W1-0", p4.address)
        assert match.winner == p4
        assert match.loser == p1
        assert bracket.match("W2-0").player1 == p4

    def test_override_rejected_once_dependent_played(self, four):
        players, bracket = four
        p1, p2 = players[0], players[1]
        play(bracket, "W1-0", p1)
        play(bracket, "W1-1", p2)
        play(bracket, "W2-0", p1)
        with pytest.raises(StateConflictError):
            resolve_match(bracket, "W1-0", players[3].address)
        assert bracket.match("W1-0").winner == p1
        assert bracket.match("W2-0").player1 == p1

    def test_override_rejected_when_dependent_has_reports(self, four):
        players, bracket = four
        p1, p2 = players[0], players[1]
        play(bracket, "W1-0", p1)
        play(bracket, "W1-1", p2)
        report_result(bracket, "W2-0", p1.address, p1.address)
        with pytest.raises(StateConflictError):
            resolve_match(bracket, "W1-0", players[3].address)

    def test_override_rejected_after_payout(self, four):
        players, bracket = four
        play(bracket, "W1-0", players[0])
        with pytest.raises(StateConflictError):
            resolve_match(bracket, "W1-0", players[3].address, payouts_made=True)

    def test_override_rewrites_bye_cascade(self):
        # Double elimination, 3 players: the W1-1 loser gets a losers-bracket bye.
        players = make_players(3)
        bracket = generate_bracket(players, TournamentType.DOUBLE)
        play(bracket, "W1-1", players[1])
        assert bracket.match("L2-0").player1 == players[2]
        resolve_match(bracket, "W1-1", players[2].address)
        assert bracket.match("L1-0").winner == players[1]
        assert bracket.match("L2-0").player1 == players[1]
        assert bracket.match("W2-0").player2 == players[2]


# ======================================================================
# Completion and standings
# ======================================================================


class TestSingleEliminationStandings:
    def test_four_player_run(self, four):
        players, bracket = four
        p1, p2, p3, p4 = players
        play(bracket, "W1-0", p1)
        play(bracket, "W1-1", p3)
        assert not is_complete(bracket)
        play(bracket, "W2-0", p3)
        assert is_complete(bracket)
        assert champion(bracket) == p3
        assert final_standings(bracket) == [p3, p1, p4, p2]
        assert playable_matches(bracket) == []

    def test_five_player_run_places_everyone(self):
        players = make_players(5)
        p1, p2, p3, p4, p5 = players
        bracket = generate_bracket(players)
        play(bracket, "W1-1", p4)
        play(bracket, "W2-0", p1)
        play(bracket, "W2-1", p2)
        play(bracket, "W3-0", p1)
        assert final_standings(bracket) == [p1, p2, p4, p3, p5]

    def test_standings_require_completion(self, four):
        _, bracket = four
        with pytest.raises(StateConflictError):
            final_standings(bracket)


class TestDoubleElimination:
    @pytest.fixture
    def played_to_grand_final(self):
        players = make_players(4)
        p1, p2, p3, p4 = players
        bracket = generate_bracket(players, TournamentType.DOUBLE)
        play(bracket, "W1-0", p1)
        play(bracket, "W1-1", p2)
        play(bracket, "L1-0", p3)
        play(bracket, "W2-0", p1)
        play(bracket, "L2-0", p2)
        gf = bracket.match("GF-0")
        assert (gf.player1, gf.player2) == (p1, p2)
        return players, bracket

    def test_winners_champion_takes_grand_final(self, played_to_grand_final):
        (p1, p2, p3, p4), bracket = played_to_grand_final
        play(bracket, "GF-0", p1)
        assert bracket.match("GF-1").status is MatchStatus.VOID
        assert champion(bracket) == p1
        assert final_standings(bracket) == [p1, p2, p3, p4]

    def test_losers_champion_forces_reset(self, played_to_grand_final):
        (p1, p2, p3, p4), bracket = played_to_grand_final
        play(bracket, "GF-0", p2)
        assert not is_complete(bracket)
        reset = bracket.match("GF-1")
        assert (reset.player1, reset.player2) == (p1, p2)
        play(bracket, "GF-1", p2)
        assert champion(bracket) == p2
        assert final_standings(bracket) == [p2, p1, p3, p4]

    def test_decided_grand_final_cannot_be_reopened(self, played_to_grand_final):
        (p1, p2, _, _), bracket = played_to_grand_final
        play(bracket, "GF-0", p1)
        with pytest.raises(StateConflictError):
            resolve_match(bracket, "GF-0", p2.address)

    def test_two_player_double(self):
        p1, p2 = make_players(2)
        bracket = generate_bracket([p1, p2], TournamentType.DOUBLE)
        play(bracket, "W1-0", p2)
        gf = bracket.match("GF-0")
        assert (gf.player1, gf.player2) == (p2, p1)
        play(bracket, "GF-0", p2)
        assert final_standings(bracket) == [p2, p1]

    def test_every_participant_loses_at_most_twice(self):
        players = make_players(8)
        bracket = generate_bracket(players, TournamentType.DOUBLE)
        # Lower address always wins.
        while not is_complete(bracket):
            for match in playable_matches(bracket):
                winner = min(match.players, key=lambda p: p.address)
                play(bracket, match.key, winner)
        losses = {}
        for m in bracket.matches():
            if m.status is MatchStatus.COMPLETED:
                losses[m.loser.address] = losses.get(m.loser.address, 0) + 1
        assert max(losses.values()) <= 2
        assert champion(bracket).address == addr(1)
        assert len(final_standings(bracket)) == 8
