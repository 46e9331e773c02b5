"""
portal/server.py - FastAPI tournament platform API.

Endpoints:
    POST   /api/tournaments                          Create a tournament
    GET    /api/tournaments                          List tournaments
    GET    /api/tournaments/{id}                     Get one tournament
    POST   /api/tournaments/{id}                     Register a participant
    POST   /api/tournaments/{id}/bracket             Generate the bracket
    POST   /api/tournaments/{id}/matches/{key}/report   Participant result report
    POST   /api/tournaments/{id}/matches/{key}/resolve  Creator/admin resolution
    POST   /api/tournaments/{id}/settle              Declare escrow winners
    POST   /api/tournaments/{id}/claim               Claim a position reward
    POST   /api/tournaments/{id}/cancel              Cancel and refund
    POST   /api/tournaments/{id}/fees/distribute     Pay out entry fees
    GET    /api/tournaments/{id}/positions           Escrow positions
    GET    /api/escrow/events                        Escrow event log
    GET    /health                                   Server health check

Errors come back as {"error": message, "kind": kind}.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.middleware.cors import CORSMiddleware

from bracketchain.config import BracketchainConfig, apply_env, load_config
from bracketchain.errors import BracketchainError, ValidationError
from bracketchain.escrow import EscrowEngine
from bracketchain.models import ZERO_ADDRESS

from .db import TournamentDB
from .service import TournamentService

logger = logging.getLogger(__name__)

# Global service instance, set during lifespan
_service: TournamentService | None = None


def get_service() -> TournamentService:
    assert _service is not None, "Service not initialized"
    return _service


def build_service(config: BracketchainConfig) -> TournamentService:
    owner = config.escrow.owner
    if not owner:
        logger.warning("ESCROW_OWNER not configured; platform fees cannot be withdrawn")
        owner = ZERO_ADDRESS
    escrow = EscrowEngine(
        owner=owner,
        admins=config.escrow.admins,
        min_registration_period=config.escrow.min_registration_period,
        max_winner_positions=config.escrow.max_winner_positions,
    )
    return TournamentService(
        db=TournamentDB(config.server.db_path),
        escrow=escrow,
        require_signed_reports=config.server.require_signed_reports,
        chain_id=config.chain.chain_id,
        verifying_contract=config.chain.tournament_escrow,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _service
    config = getattr(app.state, "config", None) or apply_env(load_config())
    _service = build_service(config)
    if not _service.db.health_check():
        logger.error(f"Database at {config.server.db_path} is not reachable")
    logger.info(f"Tournament DB: {config.server.db_path}")
    logger.info(f"Escrow owner: {_service.escrow.owner} | admins: {len(_service.escrow.admins)}")
    logger.info(f"Signed reports required: {config.server.require_signed_reports}")

    yield
    _service.db.close()
    _service = None


# ======================================================================
# Error mapping
# ======================================================================

STATUS_BY_KIND = {
    "validation": 400,
    "authorization": 403,
    "not_found": 404,
    "state_conflict": 409,
    "token_transfer": 402,
    "persistence": 500,
}


async def _domain_error(request: Request, exc: BracketchainError) -> JSONResponse:
    status = STATUS_BY_KIND.get(exc.kind, 500)
    if status >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=status, content={"error": exc.message, "kind": exc.kind})


async def _request_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(p) for p in first.get("loc", ())[1:])
    message = f"{field}: {first.get('msg', 'invalid request')}" if field else "Invalid request"
    return JSONResponse(status_code=400, content={"error": message, "kind": "validation"})


def register_error_handlers(target: FastAPI) -> None:
    target.add_exception_handler(BracketchainError, _domain_error)
    target.add_exception_handler(RequestValidationError, _request_error)


app = FastAPI(title="Bracketchain", lifespan=lifespan)
register_error_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


# ======================================================================
# Request/Response Models
# ======================================================================


class CreateTournamentRequest(BaseModel):
    name: str | None = None
    description: str | None = None
    gameId: str | None = None
    creator: str | None = None
    tournamentType: str = "single-elimination"
    maxParticipants: int = 0
    startDate: str | int | None = None
    registrationEndDate: str | int | None = None
    rewardType: str = "token"
    rewardToken: str | None = None
    rewardAmounts: list[str | int] = []
    entryFeeToken: str | None = None
    entryFeeAmount: str | int | None = None


class CreateTournamentResponse(BaseModel):
    success: bool
    tournamentId: str
    message: str
    tournament: dict[str, Any]


class RegisterRequest(BaseModel):
    address: str | None = None
    name: str | None = None


class SuccessResponse(BaseModel):
    success: bool
    message: str


class ActorRequest(BaseModel):
    caller: str


class ReportRequest(BaseModel):
    reporter: str
    winner: str
    signature: str | None = None  # hex-encoded 65-byte EIP-712 signature


class ResolveRequest(BaseModel):
    caller: str
    winner: str


class ClaimRequest(BaseModel):
    caller: str
    position: int


class ClaimResponse(BaseModel):
    position: int
    amount: str


class FeesResponse(BaseModel):
    creatorShare: str
    platformShare: str


class HealthResponse(BaseModel):
    status: str
    database: bool
    tournaments: int


# ======================================================================
# Endpoints
# ======================================================================


@app.post("/api/tournaments", response_model=CreateTournamentResponse)
def create_tournament(req: CreateTournamentRequest) -> dict[str, Any]:
    """Create a tournament; locks token rewards in escrow first."""
    data = req.model_dump(exclude_none=True)
    tournament = get_service().create_tournament(data)
    logger.info(f"Created tournament {tournament.id} '{tournament.name}'")
    return {
        "success": True,
        "tournamentId": tournament.id,
        "message": "Tournament created successfully",
        "tournament": tournament.to_dict(),
    }


@app.get("/api/tournaments")
def list_tournaments(status: str | None = None) -> list[dict[str, Any]]:
    return [t.to_dict() for t in get_service().list_tournaments(status)]


@app.get("/api/tournaments/{tournament_id}")
def get_tournament(tournament_id: str) -> dict[str, Any]:
    return get_service().get_tournament(tournament_id).to_dict()


@app.post("/api/tournaments/{tournament_id}", response_model=SuccessResponse)
def register(tournament_id: str, req: RegisterRequest) -> dict[str, Any]:
    if not req.address:
        raise ValidationError("Participant address is required")
    get_service().register(tournament_id, req.address, req.name or "")
    return {"success": True, "message": "Successfully registered for tournament"}


@app.post("/api/tournaments/{tournament_id}/bracket")
def generate_bracket(tournament_id: str, req: ActorRequest) -> dict[str, Any]:
    return get_service().generate_bracket(tournament_id, req.caller).to_dict()


@app.post("/api/tournaments/{tournament_id}/matches/{match_key}/report")
def report_result(tournament_id: str, match_key: str, req: ReportRequest) -> dict[str, Any]:
    tournament = get_service().report_result(
        tournament_id, match_key, req.reporter, req.winner, req.signature
    )
    return tournament.bracket.match(match_key).to_dict()


@app.post("/api/tournaments/{tournament_id}/matches/{match_key}/resolve")
def resolve_match(tournament_id: str, match_key: str, req: ResolveRequest) -> dict[str, Any]:
    tournament = get_service().resolve_match(tournament_id, match_key, req.caller, req.winner)
    return tournament.bracket.match(match_key).to_dict()


@app.post("/api/tournaments/{tournament_id}/settle")
def settle(tournament_id: str, req: ActorRequest) -> list[dict[str, Any]]:
    return get_service().settle(tournament_id, req.caller)


@app.post("/api/tournaments/{tournament_id}/claim", response_model=ClaimResponse)
def claim(tournament_id: str, req: ClaimRequest) -> dict[str, Any]:
    amount = get_service().claim(tournament_id, req.caller, req.position)
    return {"position": req.position, "amount": str(amount)}


@app.post("/api/tournaments/{tournament_id}/cancel")
def cancel(tournament_id: str, req: ActorRequest) -> dict[str, Any]:
    return get_service().cancel(tournament_id, req.caller).to_dict()


@app.post("/api/tournaments/{tournament_id}/fees/distribute", response_model=FeesResponse)
def distribute_fees(tournament_id: str, req: ActorRequest) -> dict[str, Any]:
    creator_share, platform_share = get_service().distribute_fees(tournament_id, req.caller)
    return {"creatorShare": str(creator_share), "platformShare": str(platform_share)}


@app.get("/api/tournaments/{tournament_id}/positions")
def positions(tournament_id: str) -> list[dict[str, Any]]:
    return [
        {**p, "rewardAmount": str(p["rewardAmount"])}
        for p in get_service().positions(tournament_id)
    ]


@app.get("/api/escrow/events")
def escrow_events(tournament_id: str | None = None) -> list[dict[str, Any]]:
    return get_service().events(tournament_id)


@app.get("/health", response_model=HealthResponse)
def health() -> dict[str, Any]:
    service = get_service()
    healthy = service.db.health_check()
    return {
        "status": "ok" if healthy else "degraded",
        "database": healthy,
        "tournaments": service.db.count_tournaments() if healthy else 0,
    }
