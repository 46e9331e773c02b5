"""
bracketchain/models.py - Typed tournament records.

Tournament documents are validated on construction so malformed records are
rejected at the boundary instead of travelling through the system. The
``to_dict``/``from_dict`` pairs define the persisted document layout
(camelCase keys, token amounts as decimal strings).
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from .errors import MatchNotFoundError, StateConflictError, ValidationError

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def normalize_address(address: Any) -> str:
    """Canonical form for account identifiers (trimmed, lower-case)."""
    if not isinstance(address, str) or not address.strip():
        raise ValidationError("Account address is required")
    return address.strip().lower()


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_datetime(value: Any, field_name: str) -> datetime:
    """Accept datetimes, ISO-8601 strings or unix timestamps; always UTC-aware."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        parsed = datetime.fromtimestamp(value, timezone.utc)
    elif isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip())
        except ValueError:
            raise ValidationError(f"{field_name} is not a valid date: {value!r}")
    else:
        raise ValidationError(f"{field_name} is required")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def parse_amount(value: Any, field_name: str) -> int:
    """Token amounts are non-negative integers in base units."""
    if isinstance(value, bool):
        raise ValidationError(f"{field_name} must be an integer amount")
    try:
        amount = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field_name} must be an integer amount")
    if isinstance(value, float) and value != amount:
        raise ValidationError(f"{field_name} must be an integer amount")
    if amount < 0:
        raise ValidationError(f"{field_name} cannot be negative")
    return amount


def _coerce_enum(enum_cls, value: Any, field_name: str):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(e.value for e in enum_cls)
        raise ValidationError(f"{field_name} must be one of: {allowed}")


# ============================================================================
# Enums
# ============================================================================


class TournamentType(str, Enum):
    SINGLE = "single-elimination"
    DOUBLE = "double-elimination"

    @property
    def code(self) -> int:
        """uint8 used by the escrow contract."""
        return 0 if self is TournamentType.SINGLE else 1

    @classmethod
    def from_code(cls, code: int) -> "TournamentType":
        if code == 0:
            return cls.SINGLE
        if code == 1:
            return cls.DOUBLE
        raise ValidationError("Invalid tournament type")


class TournamentStatus(str, Enum):
    REGISTRATION = "registration"
    ACTIVE = "active"
    COMPLETED = "completed"


_STATUS_ORDER = {
    TournamentStatus.REGISTRATION: 0,
    TournamentStatus.ACTIVE: 1,
    TournamentStatus.COMPLETED: 2,
}


class RewardType(str, Enum):
    TOKEN = "token"
    NFT = "nft"


class ParticipantStatus(str, Enum):
    REGISTERED = "registered"
    ELIMINATED = "eliminated"
    WINNER = "winner"


class MatchStatus(str, Enum):
    PENDING = "pending"
    DISPUTED = "disputed"
    BYE = "bye"
    COMPLETED = "completed"
    VOID = "void"

    @property
    def resolved(self) -> bool:
        return self in (MatchStatus.BYE, MatchStatus.COMPLETED, MatchStatus.VOID)


class MatchType(str, Enum):
    REGULAR = "regular"
    FINAL = "final"
    LOSERS_FINAL = "losers-final"
    GRAND_FINAL = "grand-final"
    GRAND_FINAL_RESET = "grand-final-reset"


class BracketSide(str, Enum):
    WINNERS = "winners"
    LOSERS = "losers"
    FINALS = "finals"


# ============================================================================
# Participants
# ============================================================================


@dataclass(eq=False)
class Participant:
    """A registered account. Identity is the (normalized) address."""

    address: str
    name: str = ""
    status: ParticipantStatus = ParticipantStatus.REGISTERED

    def __post_init__(self):
        self.address = normalize_address(self.address)
        self.name = (self.name or "").strip() or self.address[:10]
        self.status = _coerce_enum(ParticipantStatus, self.status, "participant status")

    def __eq__(self, other) -> bool:
        if not isinstance(other, Participant):
            return NotImplemented
        return self.address == other.address

    def __hash__(self) -> int:
        return hash(self.address)

    def to_dict(self) -> dict[str, Any]:
        return {"address": self.address, "name": self.name, "status": self.status.value}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Participant":
        if not isinstance(data, dict):
            raise ValidationError("participant must be an object")
        return cls(
            address=data.get("address"),
            name=data.get("name", ""),
            status=data.get("status", ParticipantStatus.REGISTERED.value),
        )


def _slot_to_dict(player: Participant | None) -> dict[str, str] | None:
    if player is None:
        return None
    return {"address": player.address, "name": player.name}


def _slot_from_dict(data: dict | None) -> Participant | None:
    if data is None:
        return None
    return Participant(address=data.get("address"), name=data.get("name", ""))


# ============================================================================
# Bracket
# ============================================================================


@dataclass(frozen=True)
class SlotRef:
    """Destination slot (0 or 1) of a match."""

    match: str
    slot: int

    def to_dict(self) -> dict[str, Any]:
        return {"match": self.match, "slot": self.slot}

    @classmethod
    def from_dict(cls, data: dict | None) -> "SlotRef | None":
        if data is None:
            return None
        return cls(match=data["match"], slot=int(data["slot"]))


@dataclass
class Match:
    key: str
    side: BracketSide
    round: int
    position: int
    player1: Participant | None = None
    player2: Participant | None = None
    winner: Participant | None = None
    loser: Participant | None = None
    status: MatchStatus = MatchStatus.PENDING
    match_type: MatchType = MatchType.REGULAR
    reports: dict[str, str] = field(default_factory=dict)  # reporter -> claimed winner
    feeders: list[str | None] = field(default_factory=lambda: [None, None])
    winner_to: SlotRef | None = None
    loser_to: SlotRef | None = None

    @property
    def players(self) -> list[Participant | None]:
        return [self.player1, self.player2]

    def get_slot(self, slot: int) -> Participant | None:
        return self.player1 if slot == 0 else self.player2

    def set_slot(self, slot: int, player: Participant | None) -> None:
        if slot == 0:
            self.player1 = player
        else:
            self.player2 = player

    def occupant(self, address: str) -> Participant | None:
        """The slot occupant with this address, if any."""
        address = normalize_address(address)
        for player in self.players:
            if player is not None and player.address == address:
                return player
        return None

    @property
    def is_ready(self) -> bool:
        """Both slots filled and waiting for a result."""
        return (
            self.status in (MatchStatus.PENDING, MatchStatus.DISPUTED)
            and self.player1 is not None
            and self.player2 is not None
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "side": self.side.value,
            "round": self.round,
            "position": self.position,
            "player1": _slot_to_dict(self.player1),
            "player2": _slot_to_dict(self.player2),
            "winner": _slot_to_dict(self.winner),
            "loser": _slot_to_dict(self.loser),
            "status": self.status.value,
            "matchType": self.match_type.value,
            "reports": dict(self.reports),
            "feeders": list(self.feeders),
            "winnerTo": self.winner_to.to_dict() if self.winner_to else None,
            "loserTo": self.loser_to.to_dict() if self.loser_to else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Match":
        return cls(
            key=data["key"],
            side=BracketSide(data["side"]),
            round=int(data["round"]),
            position=int(data["position"]),
            player1=_slot_from_dict(data.get("player1")),
            player2=_slot_from_dict(data.get("player2")),
            winner=_slot_from_dict(data.get("winner")),
            loser=_slot_from_dict(data.get("loser")),
            status=MatchStatus(data.get("status", "pending")),
            match_type=MatchType(data.get("matchType", "regular")),
            reports=dict(data.get("reports") or {}),
            feeders=list(data.get("feeders") or [None, None]),
            winner_to=SlotRef.from_dict(data.get("winnerTo")),
            loser_to=SlotRef.from_dict(data.get("loserTo")),
        )


@dataclass
class Round:
    side: BracketSide
    round: int
    matches: list[Match] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "bracketType": self.side.value,
            "round": self.round,
            "matches": [m.to_dict() for m in self.matches],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Round":
        return cls(
            side=BracketSide(data["bracketType"]),
            round=int(data["round"]),
            matches=[Match.from_dict(m) for m in data.get("matches", [])],
        )


@dataclass
class Bracket:
    """Rounds in play order: winners rounds, then losers rounds, then finals."""

    tournament_type: TournamentType
    size: int
    rounds: list[Round] = field(default_factory=list)
    _index: dict[str, Match] = field(default_factory=dict, init=False, repr=False, compare=False)

    def match(self, key: str) -> Match:
        if len(self._index) != sum(len(r.matches) for r in self.rounds):
            self._index = {m.key: m for m in self.matches()}
        try:
            return self._index[key]
        except KeyError:
            raise MatchNotFoundError(f"Match {key} does not exist")

    def matches(self) -> list[Match]:
        return [m for r in self.rounds for m in r.matches]

    def side_rounds(self, side: BracketSide) -> list[Round]:
        return [r for r in self.rounds if r.side is side]

    def to_dict(self) -> dict[str, Any]:
        return {
            "tournamentType": self.tournament_type.value,
            "size": self.size,
            "rounds": [r.to_dict() for r in self.rounds],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Bracket":
        return cls(
            tournament_type=TournamentType(data["tournamentType"]),
            size=int(data["size"]),
            rounds=[Round.from_dict(r) for r in data.get("rounds", [])],
        )


# ============================================================================
# Tournament
# ============================================================================


@dataclass
class EntryFee:
    token: str
    amount: int

    def __post_init__(self):
        self.token = normalize_address(self.token)
        self.amount = parse_amount(self.amount, "entryFeeAmount")
        if self.amount == 0:
            raise ValidationError("Entry fee must be greater than zero")


@dataclass
class Tournament:
    name: str
    game: str
    creator: str
    registration_end: datetime
    start: datetime
    tournament_type: TournamentType = TournamentType.SINGLE
    description: str = ""
    max_participants: int = 0
    participants: list[Participant] = field(default_factory=list)
    status: TournamentStatus = TournamentStatus.REGISTRATION
    reward_type: RewardType = RewardType.TOKEN
    reward_token: str = ZERO_ADDRESS
    reward_amounts: list[int] = field(default_factory=list)
    entry_fee: EntryFee | None = None
    bracket: Bracket | None = None
    escrow_id: int | None = None
    fees_distributed: bool = False
    cancelled: bool = False
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def __post_init__(self):
        if not isinstance(self.name, str) or not self.name.strip():
            raise ValidationError("Name cannot be empty")
        if not isinstance(self.game, str) or not self.game.strip():
            raise ValidationError("gameId is required")
        self.name = self.name.strip()
        self.game = self.game.strip()
        self.creator = normalize_address(self.creator)
        self.registration_end = parse_datetime(self.registration_end, "registrationEndDate")
        self.start = parse_datetime(self.start, "startDate")
        if self.start <= self.registration_end:
            raise ValidationError("Start time must be after registration end time")

        self.tournament_type = _coerce_enum(TournamentType, self.tournament_type, "tournamentType")
        self.status = _coerce_enum(TournamentStatus, self.status, "status")
        self.reward_type = _coerce_enum(RewardType, self.reward_type, "rewardType")
        self.reward_token = normalize_address(self.reward_token or ZERO_ADDRESS)
        self.reward_amounts = [
            parse_amount(a, f"rewardAmounts[{i}]") for i, a in enumerate(self.reward_amounts)
        ]

        if isinstance(self.max_participants, bool):
            raise ValidationError("maxParticipants must be an integer")
        try:
            self.max_participants = int(self.max_participants or 0)
        except (TypeError, ValueError):
            raise ValidationError("maxParticipants must be an integer")
        if self.max_participants < 0:
            raise ValidationError("maxParticipants cannot be negative")

        seen = set()
        for p in self.participants:
            if p.address in seen:
                raise ValidationError(f"Duplicate participant {p.address}")
            seen.add(p.address)
        if self.max_participants and len(self.participants) > self.max_participants:
            raise ValidationError("Participant count exceeds maxParticipants")

        self.created_at = parse_datetime(self.created_at, "createdAt")
        self.updated_at = parse_datetime(self.updated_at, "updatedAt")

    # -- derived -----------------------------------------------------------

    @property
    def current_participants(self) -> int:
        return len(self.participants)

    @property
    def total_reward(self) -> int:
        return sum(self.reward_amounts)

    @property
    def has_entry_fee(self) -> bool:
        return self.entry_fee is not None

    def participant(self, address: str) -> Participant | None:
        address = normalize_address(address)
        for p in self.participants:
            if p.address == address:
                return p
        return None

    def is_registered(self, address: str) -> bool:
        return self.participant(address) is not None

    def set_status(self, status: TournamentStatus) -> None:
        """Advance status. Regression is a state conflict."""
        if _STATUS_ORDER[status] < _STATUS_ORDER[self.status]:
            raise StateConflictError(
                f"Tournament status cannot go from {self.status.value} to {status.value}"
            )
        self.status = status
        self.touch()

    def touch(self) -> None:
        self.updated_at = utc_now()

    # -- documents ---------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "game": self.game,
            "creator": self.creator,
            "tournamentType": self.tournament_type.value,
            "maxParticipants": self.max_participants,
            "currentParticipants": self.current_participants,
            "participants": [p.to_dict() for p in self.participants],
            "startDate": self.start.isoformat(),
            "registrationEndDate": self.registration_end.isoformat(),
            "status": self.status.value,
            "rewardType": self.reward_type.value,
            "rewardToken": self.reward_token,
            "rewardAmounts": [str(a) for a in self.reward_amounts],
            "rewardAmount": str(self.total_reward),
            "hasEntryFee": self.has_entry_fee,
            "entryFeeToken": self.entry_fee.token if self.entry_fee else None,
            "entryFeeAmount": str(self.entry_fee.amount) if self.entry_fee else "0",
            "brackets": self.bracket.to_dict() if self.bracket else None,
            "escrowId": self.escrow_id,
            "feesDistributed": self.fees_distributed,
            "cancelled": self.cancelled,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Tournament":
        """Build a Tournament from a stored or submitted document.

        Accepts ``gameId`` as an alias of ``game`` (the create endpoint's
        field name). Anything malformed raises ValidationError.
        """
        if not isinstance(data, dict):
            raise ValidationError("Tournament document must be an object")

        entry_fee = None
        if data.get("hasEntryFee") or data.get("entryFeeAmount") not in (None, "", "0", 0):
            entry_fee = EntryFee(
                token=data.get("entryFeeToken") or ZERO_ADDRESS,
                amount=data.get("entryFeeAmount"),
            )

        bracket = None
        if data.get("brackets"):
            try:
                bracket = Bracket.from_dict(data["brackets"])
            except (KeyError, TypeError, ValueError) as e:
                raise ValidationError(f"Malformed bracket: {e}")

        participants = data.get("participants") or []
        if not isinstance(participants, list):
            raise ValidationError("participants must be a list")

        reward_amounts = data.get("rewardAmounts") or []
        if not isinstance(reward_amounts, list):
            raise ValidationError("rewardAmounts must be a list")

        kwargs: dict[str, Any] = dict(
            name=data.get("name"),
            game=data.get("game") or data.get("gameId"),
            creator=data.get("creator"),
            registration_end=data.get("registrationEndDate"),
            start=data.get("startDate"),
            tournament_type=data.get("tournamentType", TournamentType.SINGLE.value),
            description=data.get("description") or "",
            max_participants=data.get("maxParticipants", 0),
            participants=[Participant.from_dict(p) for p in participants],
            status=data.get("status", TournamentStatus.REGISTRATION.value),
            reward_type=data.get("rewardType", RewardType.TOKEN.value),
            reward_token=data.get("rewardToken") or ZERO_ADDRESS,
            reward_amounts=reward_amounts,
            entry_fee=entry_fee,
            bracket=bracket,
            escrow_id=data.get("escrowId"),
            fees_distributed=bool(data.get("feesDistributed", False)),
            cancelled=bool(data.get("cancelled", False)),
        )
        if data.get("id"):
            kwargs["id"] = str(data["id"])
        if data.get("createdAt"):
            kwargs["created_at"] = data["createdAt"]
        if data.get("updatedAt"):
            kwargs["updated_at"] = data["updatedAt"]
        return cls(**kwargs)
