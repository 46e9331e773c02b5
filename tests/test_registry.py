"""Tests for bracketchain.registry — tournament lifecycle rules."""

from datetime import datetime, timedelta, timezone

import pytest

from bracketchain import registry
from bracketchain.errors import StateConflictError, ValidationError
from bracketchain.models import (
    ParticipantStatus,
    Tournament,
    TournamentStatus,
    TournamentType,
)

from conftest import addr

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)
CREATOR = addr(0xC0)


def request(**overrides):
    data = {
        "name": "Friday Night Brawl",
        "gameId": "axie-infinity",
        "registrationEndDate": (NOW + timedelta(hours=2)).isoformat(),
        "startDate": (NOW + timedelta(hours=3)).isoformat(),
        "rewardAmounts": ["600", "300", "100"],
    }
    data.update(overrides)
    return data


def closed(t: Tournament) -> datetime:
    return t.registration_end + timedelta(seconds=1)


@pytest.fixture
def tournament():
    return registry.new_tournament(request(), creator=CREATOR, now=NOW)


def fill(t, n):
    for i in range(1, n + 1):
        registry.register(t, addr(i), f"P{i}", now=NOW)


def play(t, key, winner):
    match = t.bracket.match(key)
    for p in match.players:
        registry.report_match(t, key, p.address, winner)


class TestNewTournament:
    def test_defaults(self, tournament):
        assert tournament.status is TournamentStatus.REGISTRATION
        assert tournament.tournament_type is TournamentType.SINGLE
        assert tournament.game == "axie-infinity"
        assert tournament.creator == CREATOR
        assert tournament.reward_amounts == [600, 300, 100]
        assert tournament.participants == []

    @pytest.mark.parametrize("missing", registry.REQUIRED_FIELDS)
    def test_required_fields(self, missing):
        data = request()
        del data[missing]
        with pytest.raises(ValidationError, match="Missing required fields"):
            registry.new_tournament(data, creator=CREATOR, now=NOW)

    def test_server_owned_fields_ignored(self):
        data = request(status="completed", participants=[{"address": addr(9)}], cancelled=True)
        t = registry.new_tournament(data, creator=CREATOR, now=NOW)
        assert t.status is TournamentStatus.REGISTRATION
        assert t.participants == []
        assert not t.cancelled

    def test_creator_required(self):
        with pytest.raises(ValidationError, match="creator is required"):
            registry.new_tournament(request(), now=NOW)

    def test_registration_end_in_past(self):
        data = request(registrationEndDate=(NOW - timedelta(minutes=1)).isoformat())
        with pytest.raises(ValidationError, match="Registration end time must be in the future"):
            registry.new_tournament(data, creator=CREATOR, now=NOW)

    def test_start_before_registration_end(self):
        data = request(startDate=NOW.isoformat(), registrationEndDate=(NOW + timedelta(hours=1)).isoformat())
        with pytest.raises(ValidationError):
            registry.new_tournament(data, creator=CREATOR, now=NOW)

    def test_bad_tournament_type(self):
        with pytest.raises(ValidationError):
            registry.new_tournament(request(tournamentType="swiss"), creator=CREATOR, now=NOW)

    def test_unix_timestamps_accepted(self):
        data = request(
            registrationEndDate=int((NOW + timedelta(hours=2)).timestamp()),
            startDate=int((NOW + timedelta(hours=3)).timestamp()),
        )
        t = registry.new_tournament(data, creator=CREATOR, now=NOW)
        assert t.registration_end == NOW + timedelta(hours=2)


class TestRegister:
    def test_register(self, tournament):
        p = registry.register(tournament, addr(1).upper().replace("0X", "0x"), "Alice", now=NOW)
        assert p.address == addr(1)
        assert tournament.current_participants == 1
        assert tournament.is_registered(addr(1))

    def test_duplicate(self, tournament):
        registry.register(tournament, addr(1), now=NOW)
        with pytest.raises(StateConflictError, match="Already registered"):
            registry.register(tournament, addr(1), now=NOW)

    def test_full(self):
        t = registry.new_tournament(request(maxParticipants=2), creator=CREATOR, now=NOW)
        fill(t, 2)
        with pytest.raises(ValidationError, match="Tournament is full"):
            registry.register(t, addr(3), now=NOW)

    def test_window_closed(self, tournament):
        with pytest.raises(ValidationError, match="Registration period ended"):
            registry.register(tournament, addr(1), now=closed(tournament))

    def test_cancelled(self, tournament):
        registry.mark_cancelled(tournament)
        with pytest.raises(StateConflictError, match="cancelled"):
            registry.register(tournament, addr(1), now=NOW)

    def test_after_bracket(self, tournament):
        fill(tournament, 2)
        registry.build_bracket(tournament, now=closed(tournament))
        with pytest.raises(StateConflictError, match="Registration is closed"):
            registry.register(tournament, addr(5), now=NOW)


class TestBuildBracket:
    def test_activates(self, tournament):
        fill(tournament, 4)
        bracket = registry.build_bracket(tournament, now=closed(tournament))
        assert tournament.status is TournamentStatus.ACTIVE
        assert tournament.bracket is bracket
        assert tournament.max_participants == 4

    def test_registration_still_open(self, tournament):
        fill(tournament, 4)
        with pytest.raises(StateConflictError, match="Registration is still open"):
            registry.build_bracket(tournament, now=NOW)

    def test_only_once(self, tournament):
        fill(tournament, 4)
        registry.build_bracket(tournament, now=closed(tournament))
        with pytest.raises(StateConflictError, match="Bracket already generated"):
            registry.build_bracket(tournament, now=closed(tournament))

    def test_no_participants(self, tournament):
        with pytest.raises(ValidationError):
            registry.build_bracket(tournament, now=closed(tournament))

    def test_single_participant_wins_immediately(self, tournament):
        fill(tournament, 1)
        registry.build_bracket(tournament, now=closed(tournament))
        assert tournament.status is TournamentStatus.COMPLETED
        assert tournament.participants[0].status is ParticipantStatus.WINNER

    def test_report_before_bracket(self, tournament):
        fill(tournament, 2)
        with pytest.raises(StateConflictError, match="Bracket has not been generated"):
            registry.report_match(tournament, "W1-0", addr(1), addr(1))


class TestStatusSync:
    def test_single_elimination_lifecycle(self, tournament):
        fill(tournament, 4)
        registry.build_bracket(tournament, now=closed(tournament))
        play(tournament, "W1-0", addr(1))
        assert tournament.participant(addr(4)).status is ParticipantStatus.ELIMINATED
        assert tournament.participant(addr(1)).status is ParticipantStatus.REGISTERED
        play(tournament, "W1-1", addr(2))
        play(tournament, "W2-0", addr(2))

        assert tournament.status is TournamentStatus.COMPLETED
        assert tournament.participant(addr(2)).status is ParticipantStatus.WINNER
        assert tournament.participant(addr(1)).status is ParticipantStatus.ELIMINATED
        assert registry.winners_for_positions(tournament) == [addr(2), addr(1), addr(4)]

    def test_double_elimination_first_loss_keeps_player_in(self):
        t = registry.new_tournament(
            request(tournamentType="double-elimination"), creator=CREATOR, now=NOW
        )
        fill(t, 4)
        registry.build_bracket(t, now=closed(t))
        play(t, "W1-0", addr(1))
        assert t.participant(addr(4)).status is ParticipantStatus.REGISTERED

    def test_grand_final_reset_pending(self):
        t = registry.new_tournament(
            request(tournamentType="double-elimination"), creator=CREATOR, now=NOW
        )
        fill(t, 2)
        registry.build_bracket(t, now=closed(t))
        play(t, "W1-0", addr(1))
        play(t, "GF-0", addr(2))
        # Losers-bracket champion took GF-0; both still alive for the reset.
        assert t.status is TournamentStatus.ACTIVE
        assert t.participant(addr(1)).status is ParticipantStatus.REGISTERED
        play(t, "GF-1", addr(2))
        assert t.status is TournamentStatus.COMPLETED
        assert t.participant(addr(2)).status is ParticipantStatus.WINNER
        assert t.participant(addr(1)).status is ParticipantStatus.ELIMINATED

    def test_resolve_updates_status(self, tournament):
        fill(tournament, 2)
        registry.build_bracket(tournament, now=closed(tournament))
        registry.report_match(tournament, "W1-0", addr(1), addr(1))
        registry.report_match(tournament, "W1-0", addr(2), addr(2))
        registry.resolve_match(tournament, "W1-0", addr(2))
        assert tournament.status is TournamentStatus.COMPLETED
        assert tournament.participant(addr(2)).status is ParticipantStatus.WINNER

    def test_winners_require_completion(self, tournament):
        fill(tournament, 4)
        registry.build_bracket(tournament, now=closed(tournament))
        with pytest.raises(StateConflictError):
            registry.winners_for_positions(tournament)


class TestTerminalTransitions:
    def test_cancel_once(self, tournament):
        registry.mark_cancelled(tournament)
        assert tournament.cancelled
        with pytest.raises(StateConflictError):
            registry.mark_cancelled(tournament)

    def test_cancel_after_fee_distribution(self, tournament):
        registry.mark_fees_distributed(tournament)
        with pytest.raises(StateConflictError, match="Entry fees already distributed"):
            registry.mark_cancelled(tournament)

    def test_fees_distributed_once(self, tournament):
        registry.mark_fees_distributed(tournament)
        with pytest.raises(StateConflictError):
            registry.mark_fees_distributed(tournament)
