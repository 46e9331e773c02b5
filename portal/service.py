"""
portal/service.py - Tournament operations across registry, escrow and store.

Each operation loads the tournament document, applies registry rules,
performs the escrow side effect (which is atomic on its own), and saves the
document. Load, mutate and save for one tournament run under that
tournament's lock, so concurrent requests never overwrite each other.

Escrow runs before the save so a failed payment never leaves a persisted
record claiming it succeeded. Where the store fails after the escrow has
moved funds, creation cancels the escrow record to refund the creator, and
a retried registration finds the paid entry in the escrow and only saves.
"""

import logging
import threading
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable

from bracketchain import registry
from bracketchain.errors import (
    AuthorizationError,
    PersistenceError,
    StateConflictError,
    TournamentNotFoundError,
    ValidationError,
)
from bracketchain.escrow import EscrowEngine
from bracketchain.models import RewardType, Tournament, TournamentStatus, normalize_address
from bracketchain.wallet import build_match_report, verify_match_report

from .db import TournamentDB

logger = logging.getLogger(__name__)


class TournamentService:
    """Orchestrates one tournament platform instance.

    Args:
        db: Document store.
        escrow: Escrow engine holding rewards and entry fees.
        clock: Unix-seconds clock shared with the escrow. Injectable for tests.
        require_signed_reports: Reject match reports without a valid
            EIP-712 signature from the reporter.
        chain_id / verifying_contract: EIP-712 domain for match reports.
    """

    def __init__(
        self,
        db: TournamentDB,
        escrow: EscrowEngine,
        clock: Callable[[], float] | None = None,
        require_signed_reports: bool = False,
        chain_id: int = 2021,
        verifying_contract: str | None = None,
    ):
        self.db = db
        self.escrow = escrow
        self.clock = clock or time.time
        self.require_signed_reports = require_signed_reports
        self.chain_id = chain_id
        self.verifying_contract = verifying_contract
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def now(self) -> datetime:
        return datetime.fromtimestamp(self.clock(), timezone.utc)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def get_tournament(self, tournament_id: str) -> Tournament:
        tournament = self.db.get_tournament(tournament_id)
        if tournament is None:
            raise TournamentNotFoundError("Tournament not found")
        return tournament

    def list_tournaments(self, status: str | None = None) -> list[Tournament]:
        if status is not None:
            try:
                status = TournamentStatus(status).value
            except ValueError:
                raise ValidationError(f"Unknown status {status!r}")
        return self.db.list_tournaments(status)

    def _is_privileged(self, tournament: Tournament, caller: str) -> bool:
        caller = normalize_address(caller)
        return (
            caller == tournament.creator
            or caller == self.escrow.owner
            or caller in self.escrow.admins
        )

    def _require_privileged(self, tournament: Tournament, caller: str) -> None:
        if not self._is_privileged(tournament, caller):
            raise AuthorizationError("Not tournament creator")

    @contextmanager
    def _locked(self, tournament_id: str):
        """Serialize load-mutate-save sequences on one tournament."""
        with self._locks_guard:
            lock = self._locks.setdefault(str(tournament_id), threading.Lock())
        with lock:
            yield

    def _require_escrow(self, tournament: Tournament) -> int:
        if tournament.escrow_id is None:
            raise StateConflictError("Tournament has no escrow")
        return tournament.escrow_id

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def create_tournament(self, data: dict[str, Any], creator: str | None = None) -> Tournament:
        """Validate, lock rewards in escrow, then persist.

        Tournaments with token rewards or an entry fee get an escrow record.
        If the store rejects the document afterwards, the escrow record is
        cancelled so the creator gets the locked rewards back.
        """
        tournament = registry.new_tournament(data, creator=creator, now=self.now())

        needs_escrow = tournament.has_entry_fee or (
            tournament.reward_type is RewardType.TOKEN and tournament.reward_amounts
        )
        if needs_escrow:
            args = (
                tournament.creator,
                tournament.name,
                tournament.description,
                tournament.game,
                tournament.tournament_type.code,
                tournament.max_participants,
                int(tournament.registration_end.timestamp()),
                int(tournament.start.timestamp()),
                tournament.reward_token,
                tournament.reward_amounts,
            )
            if tournament.entry_fee is not None:
                tournament.escrow_id = self.escrow.create_tournament_with_entry_fee(
                    *args, tournament.entry_fee.token, tournament.entry_fee.amount
                )
            else:
                tournament.escrow_id = self.escrow.create_tournament(*args)

        try:
            self.db.insert_tournament(tournament)
        except PersistenceError:
            if tournament.escrow_id is not None:
                logger.error(
                    f"Store failed for {tournament.id}; cancelling escrow {tournament.escrow_id}"
                )
                self.escrow.cancel_tournament(tournament.escrow_id, tournament.creator)
            raise
        return tournament

    def register(self, tournament_id: str, address: str, name: str = "") -> Tournament:
        """Add a participant, collecting the entry fee through the escrow.

        If the escrow already holds this participant (a previous attempt
        paid, then failed to save), the fee is not pulled again and only
        the document is saved.
        """
        with self._locked(tournament_id):
            tournament = self.get_tournament(tournament_id)
            participant = registry.register(tournament, address, name, now=self.now())
            escrow_id = tournament.escrow_id
            if escrow_id is not None:
                if self.escrow.is_participant_registered(escrow_id, participant.address):
                    logger.warning(
                        f"{participant.address} already in escrow {escrow_id}; saving registration only"
                    )
                else:
                    self.escrow.register(escrow_id, participant.address)
            self.db.save_tournament(tournament)
            return tournament

    def generate_bracket(self, tournament_id: str, caller: str) -> Tournament:
        with self._locked(tournament_id):
            tournament = self.get_tournament(tournament_id)
            self._require_privileged(tournament, caller)
            registry.build_bracket(tournament, now=self.now())
            self.db.save_tournament(tournament)
            return tournament

    def report_result(
        self,
        tournament_id: str,
        match_key: str,
        reporter: str,
        winner: str,
        signature: str | None = None,
    ) -> Tournament:
        with self._locked(tournament_id):
            tournament = self.get_tournament(tournament_id)
            if signature is not None or self.require_signed_reports:
                if not signature:
                    raise AuthorizationError("Signed match report required")
                report = build_match_report(tournament.id, match_key, reporter, winner)
                if not verify_match_report(report, signature, self.chain_id, self.verifying_contract):
                    raise AuthorizationError("Signature does not match reporter")
            registry.report_match(tournament, match_key, reporter, winner)
            self.db.save_tournament(tournament)
            return tournament

    def resolve_match(self, tournament_id: str, match_key: str, caller: str, winner: str) -> Tournament:
        with self._locked(tournament_id):
            tournament = self.get_tournament(tournament_id)
            self._require_privileged(tournament, caller)
            payouts_made = tournament.escrow_id is not None and self.escrow.any_claimed(tournament.escrow_id)
            registry.resolve_match(tournament, match_key, winner, payouts_made=payouts_made)
            self.db.save_tournament(tournament)
            return tournament

    def settle(self, tournament_id: str, caller: str) -> list[dict[str, Any]]:
        """Declare escrow winners from the final standings.

        Positions already holding the right winner are skipped, so settling
        twice is harmless.
        """
        with self._locked(tournament_id):
            tournament = self.get_tournament(tournament_id)
            self._require_privileged(tournament, caller)
            escrow_id = self._require_escrow(tournament)
            if tournament.status is not TournamentStatus.COMPLETED:
                raise StateConflictError("Tournament is not completed")

            winners = registry.winners_for_positions(tournament)
            positions, addresses = [], []
            for position, address in enumerate(winners):
                current = self.escrow.get_position_info(escrow_id, position)
                if current["winner"] != address:
                    positions.append(position)
                    addresses.append(address)
            if positions:
                self.escrow.declare_winners(escrow_id, caller, positions, addresses)
                logger.info(f"Settled {tournament.id}: declared positions {positions}")
        return self.positions(tournament_id)

    def claim(self, tournament_id: str, caller: str, position: int) -> int:
        tournament = self.get_tournament(tournament_id)
        return self.escrow.claim_reward(self._require_escrow(tournament), caller, position)

    def cancel(self, tournament_id: str, caller: str) -> Tournament:
        with self._locked(tournament_id):
            tournament = self.get_tournament(tournament_id)
            self._require_privileged(tournament, caller)
            if tournament.status is TournamentStatus.COMPLETED and tournament.escrow_id is None:
                raise StateConflictError("Tournament already completed")
            registry.mark_cancelled(tournament)
            if tournament.escrow_id is not None:
                self.escrow.cancel_tournament(tournament.escrow_id, caller)
            self.db.save_tournament(tournament)
        logger.info(f"Tournament {tournament.id} cancelled by {normalize_address(caller)}")
        return tournament

    def distribute_fees(self, tournament_id: str, caller: str) -> tuple[int, int]:
        with self._locked(tournament_id):
            tournament = self.get_tournament(tournament_id)
            self._require_privileged(tournament, caller)
            if not tournament.has_entry_fee:
                raise ValidationError("Tournament does not have entry fee")
            registry.mark_fees_distributed(tournament)
            shares = self.escrow.distribute_entry_fees(self._require_escrow(tournament), caller)
            self.db.save_tournament(tournament)
            return shares

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def positions(self, tournament_id: str) -> list[dict[str, Any]]:
        tournament = self.get_tournament(tournament_id)
        if tournament.escrow_id is None:
            return []
        amounts = self.escrow.get_position_reward_amounts(tournament.escrow_id)
        return [
            {"position": i, **self.escrow.get_position_info(tournament.escrow_id, i)}
            for i in range(len(amounts))
        ]

    def events(self, tournament_id: str | None = None) -> list[dict[str, Any]]:
        if tournament_id is None:
            return [e.to_dict() for e in self.escrow.events()]
        tournament = self.get_tournament(tournament_id)
        if tournament.escrow_id is None:
            return []
        return [e.to_dict() for e in self.escrow.events(tournament.escrow_id)]
