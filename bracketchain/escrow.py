"""
bracketchain/escrow.py - Escrow/settlement engine for tournament rewards.

Holds locked position rewards and collected entry fees for each tournament
and pays them out. Mirrors the TournamentEscrow contract surface (see
bracketchain/contract.py for the on-chain client) so the platform can run
against either.

Every mutating operation runs under one re-entrant lock, inside an atomic
section that snapshots escrow state plus the token ledger and restores both
if anything raises. Within an operation, state changes (claimed flags,
zeroed accruals) happen before any token movement, so a token that calls
back into the engine mid-transfer sees the updated state.
"""

import copy
import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Iterable

from .errors import (
    AuthorizationError,
    StateConflictError,
    TournamentNotFoundError,
    ValidationError,
)
from .ledger import TokenLedger, split_entry_fees
from .models import ZERO_ADDRESS, TournamentType, normalize_address, parse_amount

logger = logging.getLogger(__name__)

MIN_REGISTRATION_PERIOD = 3600  # seconds between creation and registration close
MAX_WINNER_POSITIONS = 10
DEFAULT_ESCROW_ADDRESS = "0x000000000000000000000000000000000000e5c0"


# ============================================================================
# Records
# ============================================================================


@dataclass
class Position:
    amount: int
    winner: str | None = None
    claimed: bool = False


@dataclass
class EscrowTournament:
    id: int
    creator: str
    name: str
    description: str
    game_id: str
    tournament_type: TournamentType
    max_participants: int
    created_at: int
    start_time: int
    registration_end_time: int
    reward_token: str
    positions: list[Position]
    entry_fee_token: str = ZERO_ADDRESS
    entry_fee_amount: int = 0
    participants: list[str] = field(default_factory=list)
    collected_fees: int = 0
    fees_distributed: bool = False
    is_active: bool = True

    @property
    def has_entry_fee(self) -> bool:
        return self.entry_fee_amount > 0

    @property
    def total_reward_amount(self) -> int:
        return sum(p.amount for p in self.positions)


@dataclass
class EscrowEvent:
    seq: int
    name: str
    tournament_id: int | None
    data: dict[str, Any]
    timestamp: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _check_position(t: EscrowTournament, position: int) -> None:
    if not isinstance(position, int) or isinstance(position, bool) or not 0 <= position < len(t.positions):
        raise ValidationError("Invalid position")


# ============================================================================
# Engine
# ============================================================================


class EscrowEngine:
    """Authoritative in-process escrow.

    Args:
        owner: Platform owner. May declare/cancel any tournament and is the
            only account that can withdraw platform fees.
        ledger: Token ledger funds move through. A fresh one by default.
        address: The escrow's own account in the ledger.
        admins: Extra accounts with the owner's tournament privileges
            (never fee withdrawal).
        now: Clock returning unix seconds. Injectable for tests.
    """

    def __init__(
        self,
        owner: str,
        ledger: TokenLedger | None = None,
        address: str = DEFAULT_ESCROW_ADDRESS,
        admins: Iterable[str] = (),
        now: Callable[[], float] | None = None,
        min_registration_period: int = MIN_REGISTRATION_PERIOD,
        max_winner_positions: int = MAX_WINNER_POSITIONS,
    ):
        self.owner = normalize_address(owner)
        self.address = normalize_address(address)
        self.admins = {normalize_address(a) for a in admins}
        self.ledger = ledger if ledger is not None else TokenLedger()
        self.min_registration_period = min_registration_period
        self.max_winner_positions = max_winner_positions
        self._now = now or time.time
        self._lock = threading.RLock()
        self._tournaments: dict[int, EscrowTournament] = {}
        self._platform_fees: dict[str, int] = {}
        self._events: list[EscrowEvent] = []
        self._next_id = 1

    # -- plumbing ------------------------------------------------------------

    def now(self) -> int:
        return int(self._now())

    @contextmanager
    def _transaction(self):
        """All-or-nothing section. Restores escrow and ledger state on error.

        Records are restored in place: a section that fails inside a token
        hook (a re-entered call) leaves the enclosing call's references to
        its tournament and position objects live.
        """
        with self._lock:
            saved = (
                copy.deepcopy(self._tournaments),
                dict(self._platform_fees),
                len(self._events),
                self._next_id,
                self.ledger.snapshot(),
            )
            try:
                yield
            except Exception:
                self._restore_tournaments(saved[0])
                self._platform_fees.clear()
                self._platform_fees.update(saved[1])
                del self._events[saved[2]:]
                self._next_id = saved[3]
                self.ledger.restore(saved[4])
                raise

    def _restore_tournaments(self, saved: dict[int, EscrowTournament]) -> None:
        for tournament_id in [tid for tid in self._tournaments if tid not in saved]:
            del self._tournaments[tournament_id]
        for tournament_id, old in saved.items():
            current = self._tournaments.get(tournament_id)
            if current is None:
                self._tournaments[tournament_id] = old
                continue
            # Position count is fixed at creation
            for slot, old_slot in zip(current.positions, old.positions):
                vars(slot).update(vars(old_slot))
            current.participants[:] = old.participants
            vars(current).update(
                {k: v for k, v in vars(old).items() if k not in ("positions", "participants")}
            )

    def _emit(self, event: str, tournament_id: int | None, /, **data) -> None:
        record = EscrowEvent(
            seq=len(self._events) + 1,
            name=event,
            tournament_id=tournament_id,
            data=data,
            timestamp=self.now(),
        )
        self._events.append(record)
        logger.info(f"{event} tournament={tournament_id} {data}")

    def _get(self, tournament_id: int) -> EscrowTournament:
        try:
            return self._tournaments[int(tournament_id)]
        except (KeyError, TypeError, ValueError):
            raise TournamentNotFoundError("Tournament does not exist")

    def _get_active(self, tournament_id: int) -> EscrowTournament:
        t = self._get(tournament_id)
        if not t.is_active:
            raise StateConflictError("Tournament not active")
        return t

    def _is_privileged(self, t: EscrowTournament, caller: str) -> bool:
        return caller == t.creator or caller == self.owner or caller in self.admins

    def _require_privileged(self, t: EscrowTournament, caller: str) -> None:
        if not self._is_privileged(t, caller):
            raise AuthorizationError("Not tournament creator")

    def _pull(self, token: str, account: str, amount: int) -> None:
        """Collect funds into escrow. Native token is paid directly, ERC-20s
        through a prior approval."""
        if amount == 0:
            return
        if token == ZERO_ADDRESS:
            self.ledger.transfer(token, account, self.address, amount)
        else:
            self.ledger.transfer_from(token, self.address, account, self.address, amount)

    def _pay(self, token: str, recipient: str, amount: int) -> None:
        if amount:
            self.ledger.transfer(token, self.address, recipient, amount)

    # -- creation ------------------------------------------------------------

    def create_tournament(
        self,
        creator: str,
        name: str,
        description: str,
        game_id: str,
        tournament_type: int,
        max_participants: int,
        registration_end_time: int,
        start_time: int,
        reward_token: str,
        position_rewards: list[int],
    ) -> int:
        """Lock ``sum(position_rewards)`` of ``reward_token`` and return the escrow id."""
        return self._create(
            creator, name, description, game_id, tournament_type, max_participants,
            registration_end_time, start_time, reward_token, position_rewards,
        )

    def create_tournament_with_entry_fee(
        self,
        creator: str,
        name: str,
        description: str,
        game_id: str,
        tournament_type: int,
        max_participants: int,
        registration_end_time: int,
        start_time: int,
        reward_token: str,
        position_rewards: list[int],
        entry_fee_token: str,
        entry_fee_amount: int,
    ) -> int:
        if parse_amount(entry_fee_amount, "entryFeeAmount") == 0:
            raise ValidationError("Entry fee must be greater than 0")
        return self._create(
            creator, name, description, game_id, tournament_type, max_participants,
            registration_end_time, start_time, reward_token, position_rewards,
            entry_fee_token=entry_fee_token, entry_fee_amount=entry_fee_amount,
        )

    def _create(
        self,
        creator,
        name,
        description,
        game_id,
        tournament_type,
        max_participants,
        registration_end_time,
        start_time,
        reward_token,
        position_rewards,
        entry_fee_token=ZERO_ADDRESS,
        entry_fee_amount=0,
    ) -> int:
        creator = normalize_address(creator)
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("Name cannot be empty")
        t_type = TournamentType.from_code(tournament_type)
        if not position_rewards:
            raise ValidationError("No positions provided")
        if len(position_rewards) > self.max_winner_positions:
            raise ValidationError("Exceeds max winner positions")
        amounts = [parse_amount(a, f"positionRewardAmounts[{i}]") for i, a in enumerate(position_rewards)]
        max_participants = parse_amount(max_participants, "maxParticipants")
        registration_end_time = int(registration_end_time)
        start_time = int(start_time)

        with self._transaction():
            now = self.now()
            if registration_end_time < now + self.min_registration_period:
                raise ValidationError("Registration end time must be in the future")
            if start_time <= registration_end_time:
                raise ValidationError("Start time must be after registration end time")

            tournament_id = self._next_id
            self._next_id += 1
            record = EscrowTournament(
                id=tournament_id,
                creator=creator,
                name=name.strip(),
                description=description or "",
                game_id=game_id or "",
                tournament_type=t_type,
                max_participants=max_participants,
                created_at=now,
                start_time=start_time,
                registration_end_time=registration_end_time,
                reward_token=normalize_address(reward_token or ZERO_ADDRESS),
                positions=[Position(amount=a) for a in amounts],
                entry_fee_token=normalize_address(entry_fee_token or ZERO_ADDRESS),
                entry_fee_amount=parse_amount(entry_fee_amount, "entryFeeAmount"),
            )
            self._tournaments[tournament_id] = record
            self._pull(record.reward_token, creator, record.total_reward_amount)
            self._emit(
                "TournamentCreated", tournament_id, creator=creator, name=record.name,
                totalReward=record.total_reward_amount,
            )
            return tournament_id

    # -- registration --------------------------------------------------------

    def _check_registration(self, t: EscrowTournament, participant: str) -> None:
        if self.now() >= t.registration_end_time:
            raise ValidationError("Registration period ended")
        if participant in t.participants:
            raise StateConflictError("Already registered")
        if t.max_participants and len(t.participants) >= t.max_participants:
            raise ValidationError("Tournament is full")

    def register_for_tournament(self, tournament_id: int, participant: str) -> None:
        participant = normalize_address(participant)
        with self._transaction():
            t = self._get_active(tournament_id)
            self._check_registration(t, participant)
            if t.has_entry_fee:
                raise ValidationError("Tournament requires entry fee")
            t.participants.append(participant)
            self._emit("ParticipantRegistered", t.id, participant=participant)

    def register_with_entry_fee(self, tournament_id: int, participant: str) -> None:
        participant = normalize_address(participant)
        with self._transaction():
            t = self._get_active(tournament_id)
            self._check_registration(t, participant)
            if not t.has_entry_fee:
                raise ValidationError("Tournament does not have entry fee")
            t.participants.append(participant)
            t.collected_fees += t.entry_fee_amount
            self._pull(t.entry_fee_token, participant, t.entry_fee_amount)
            self._emit(
                "ParticipantRegistered", t.id, participant=participant, fee=t.entry_fee_amount
            )

    def register(self, tournament_id: int, participant: str) -> None:
        """Register through whichever path the tournament's fee mode requires."""
        t = self._get(tournament_id)
        if t.has_entry_fee:
            self.register_with_entry_fee(tournament_id, participant)
        else:
            self.register_for_tournament(tournament_id, participant)

    # -- winners -------------------------------------------------------------

    def _declare(self, t: EscrowTournament, position: int, winner: str) -> None:
        _check_position(t, position)
        if not winner or normalize_address(winner) == ZERO_ADDRESS:
            raise ValidationError("Winner cannot be zero address")
        winner = normalize_address(winner)
        slot = t.positions[position]
        if slot.claimed:
            raise StateConflictError("Position already claimed")
        if slot.winner == winner:
            return
        slot.winner = winner
        self._emit("WinnerDeclared", t.id, position=position, winner=winner)

    def _check_declarable(self, t: EscrowTournament, caller: str) -> None:
        self._require_privileged(t, caller)
        if not t.is_active:
            raise StateConflictError("Tournament not active")
        if self.now() < t.start_time:
            raise StateConflictError("Tournament has not started yet")

    def declare_winner(self, tournament_id: int, caller: str, position: int, winner: str) -> None:
        caller = normalize_address(caller)
        with self._transaction():
            t = self._get(tournament_id)
            self._check_declarable(t, caller)
            self._declare(t, position, winner)

    def declare_winners(
        self, tournament_id: int, caller: str, positions: list[int], winners: list[str]
    ) -> None:
        """Batch declaration. Either every position is declared or none is."""
        caller = normalize_address(caller)
        if len(positions) != len(winners):
            raise ValidationError("Positions and winners length mismatch")
        with self._transaction():
            t = self._get(tournament_id)
            self._check_declarable(t, caller)
            for position, winner in zip(positions, winners):
                self._declare(t, position, winner)

    def claim_reward(self, tournament_id: int, caller: str, position: int) -> int:
        """Pay a declared winner their position amount. Returns the amount."""
        caller = normalize_address(caller)
        with self._transaction():
            t = self._get_active(tournament_id)
            _check_position(t, position)
            slot = t.positions[position]
            if slot.claimed:
                raise StateConflictError("Position already claimed")
            if slot.winner != caller:
                raise AuthorizationError("Not the winner")
            slot.claimed = True
            self._pay(t.reward_token, caller, slot.amount)
            self._emit(
                "RewardClaimed", t.id, position=position, winner=caller, amount=slot.amount
            )
            return slot.amount

    # -- cancellation and fees ------------------------------------------------

    def cancel_tournament(self, tournament_id: int, caller: str) -> None:
        """Deactivate and refund: unclaimed rewards to the creator, entry fees
        to each registrant."""
        caller = normalize_address(caller)
        with self._transaction():
            t = self._get(tournament_id)
            self._require_privileged(t, caller)
            if not t.is_active:
                raise StateConflictError("Tournament not active")
            if t.fees_distributed:
                raise StateConflictError("Entry fees already distributed")

            t.is_active = False
            refund = sum(p.amount for p in t.positions if not p.claimed)
            fee_refunds = list(t.participants) if t.has_entry_fee else []
            t.collected_fees = 0

            self._pay(t.reward_token, t.creator, refund)
            for participant in fee_refunds:
                self._pay(t.entry_fee_token, participant, t.entry_fee_amount)
            self._emit(
                "TournamentCancelled",
                t.id,
                refunded=refund,
                feeRefunds=len(fee_refunds),
            )

    def distribute_entry_fees(self, tournament_id: int, caller: str) -> tuple[int, int]:
        """Send 97.5% of collected fees to the creator and accrue the rest
        to the platform. Returns (creator share, platform share)."""
        caller = normalize_address(caller)
        with self._transaction():
            t = self._get_active(tournament_id)
            self._require_privileged(t, caller)
            if not t.has_entry_fee:
                raise ValidationError("Tournament does not have entry fee")
            if self.now() < t.registration_end_time:
                raise StateConflictError("Registration still open")
            if t.fees_distributed:
                raise StateConflictError("Entry fees already distributed")

            t.fees_distributed = True
            creator_share, platform_share = split_entry_fees(t.collected_fees)
            t.collected_fees = 0
            token = t.entry_fee_token
            self._platform_fees[token] = self._platform_fees.get(token, 0) + platform_share
            self._pay(token, t.creator, creator_share)
            self._emit(
                "EntryFeesDistributed",
                t.id,
                creator=t.creator,
                amount=creator_share,
                platformFee=platform_share,
            )
            return creator_share, platform_share

    def withdraw_platform_fees(self, caller: str, token: str = ZERO_ADDRESS) -> int:
        caller = normalize_address(caller)
        token = normalize_address(token or ZERO_ADDRESS)
        with self._transaction():
            if caller != self.owner:
                raise AuthorizationError("Only owner can withdraw platform fees")
            amount = self._platform_fees.get(token, 0)
            if amount == 0:
                raise StateConflictError("No platform fees to withdraw")
            self._platform_fees[token] = 0
            self._pay(token, self.owner, amount)
            self._emit("PlatformFeesWithdrawn", None, token=token, amount=amount)
            return amount

    # -- reads ---------------------------------------------------------------

    def get_tournament_info(self, tournament_id: int) -> dict[str, Any]:
        with self._lock:
            t = self._get(tournament_id)
            return {
                "creator": t.creator,
                "name": t.name,
                "description": t.description,
                "gameId": t.game_id,
                "tournamentType": t.tournament_type.code,
                "maxParticipants": t.max_participants,
                "createdAt": t.created_at,
                "startTime": t.start_time,
                "registrationEndTime": t.registration_end_time,
                "isActive": t.is_active,
                "rewardTokenAddress": t.reward_token,
                "totalRewardAmount": t.total_reward_amount,
                "positionCount": len(t.positions),
                "hasEntryFee": t.has_entry_fee,
                "entryFeeTokenAddress": t.entry_fee_token,
                "entryFeeAmount": t.entry_fee_amount,
                "participantCount": len(t.participants),
                "collectedFees": t.collected_fees,
                "feesDistributed": t.fees_distributed,
            }

    def get_position_info(self, tournament_id: int, position: int) -> dict[str, Any]:
        with self._lock:
            t = self._get(tournament_id)
            _check_position(t, position)
            slot = t.positions[position]
            return {"rewardAmount": slot.amount, "winner": slot.winner, "claimed": slot.claimed}

    def get_position_reward_amounts(self, tournament_id: int) -> list[int]:
        with self._lock:
            return [p.amount for p in self._get(tournament_id).positions]

    def is_participant_registered(self, tournament_id: int, participant: str) -> bool:
        with self._lock:
            return normalize_address(participant) in self._get(tournament_id).participants

    def get_winner_position(self, tournament_id: int, winner: str) -> int:
        """1-based place of ``winner`` (1 = first place)."""
        winner = normalize_address(winner)
        with self._lock:
            for i, slot in enumerate(self._get(tournament_id).positions):
                if slot.winner == winner:
                    return i + 1
        raise ValidationError("Address is not a winner")

    def has_claimed_reward(self, tournament_id: int, winner: str) -> bool:
        position = self.get_winner_position(tournament_id, winner)
        with self._lock:
            return self._get(tournament_id).positions[position - 1].claimed

    def platform_fees(self, token: str = ZERO_ADDRESS) -> int:
        with self._lock:
            return self._platform_fees.get(normalize_address(token or ZERO_ADDRESS), 0)

    def any_claimed(self, tournament_id: int) -> bool:
        with self._lock:
            return any(p.claimed for p in self._get(tournament_id).positions)

    def events(self, tournament_id: int | None = None) -> list[EscrowEvent]:
        with self._lock:
            if tournament_id is None:
                return list(self._events)
            return [e for e in self._events if e.tournament_id == tournament_id]
