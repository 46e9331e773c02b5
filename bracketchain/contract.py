"""
bracketchain/contract.py - TournamentEscrow contract interaction via web3.py.

Read-back of escrow state (tournament info, positions, registrations) for
reconciliation against the platform's own ledger, plus the privileged
writes the platform makes after a bracket finishes: declareWinners and
cancelTournament.
"""

import logging
from typing import Any

logger = logging.getLogger(__name__)


def _fn(name: str, inputs: list, outputs: list, mutability: str = "view") -> dict:
    return {
        "type": "function",
        "name": name,
        "inputs": [{"name": n, "type": t} for n, t in inputs],
        "outputs": [{"name": n, "type": t} for n, t in outputs],
        "stateMutability": mutability,
    }


# TournamentEscrow ABI - subset the platform calls.
TOURNAMENT_ESCROW_ABI = [
    _fn(
        "getTournamentInfo",
        [("tournamentId", "uint256")],
        [
            ("creator", "address"),
            ("name", "string"),
            ("description", "string"),
            ("gameId", "string"),
            ("tournamentType", "uint8"),
            ("maxParticipants", "uint256"),
            ("createdAt", "uint256"),
            ("startTime", "uint256"),
            ("registrationEndTime", "uint256"),
            ("isActive", "bool"),
            ("rewardTokenAddress", "address"),
            ("totalRewardAmount", "uint256"),
            ("positionCount", "uint256"),
            ("hasEntryFee", "bool"),
            ("entryFeeTokenAddress", "address"),
            ("entryFeeAmount", "uint256"),
            ("participantCount", "uint256"),
        ],
    ),
    _fn(
        "getPositionInfo",
        [("tournamentId", "uint256"), ("position", "uint256")],
        [("rewardAmount", "uint256"), ("winner", "address"), ("claimed", "bool")],
    ),
    _fn(
        "getPositionRewardAmounts",
        [("tournamentId", "uint256")],
        [("", "uint256[]")],
    ),
    _fn(
        "isParticipantRegistered",
        [("tournamentId", "uint256"), ("participant", "address")],
        [("", "bool")],
    ),
    _fn(
        "getWinnerPosition",
        [("tournamentId", "uint256"), ("winner", "address")],
        [("", "uint256")],
    ),
    _fn(
        "hasClaimedReward",
        [("tournamentId", "uint256"), ("winner", "address")],
        [("", "bool")],
    ),
    _fn("platformFees", [("token", "address")], [("", "uint256")]),
    _fn(
        "declareWinners",
        [("tournamentId", "uint256"), ("positions", "uint256[]"), ("winners", "address[]")],
        [],
        "nonpayable",
    ),
    _fn("cancelTournament", [("tournamentId", "uint256")], [], "nonpayable"),
]

_TOURNAMENT_INFO_FIELDS = [o["name"] for o in TOURNAMENT_ESCROW_ABI[0]["outputs"]]

DEFAULT_RPC_URL = "https://saigon-api.roninchain.com/rpc"


def _require_web3():
    """Import and return web3, raising a clear error if not installed."""
    try:
        from web3 import Web3
        return Web3
    except ImportError:
        raise ImportError(
            "web3 is required for contract operations. "
            "Install it with: pip install web3"
        )


def get_escrow_contract(contract_address: str, rpc_url: str = DEFAULT_RPC_URL):
    """Get a web3 Contract instance for TournamentEscrow.

    Returns:
        (web3_instance, contract) tuple.
    """
    Web3 = _require_web3()
    w3 = Web3(Web3.HTTPProvider(rpc_url))
    contract = w3.eth.contract(
        address=Web3.to_checksum_address(contract_address),
        abi=TOURNAMENT_ESCROW_ABI,
    )
    return w3, contract


# ============================================================================
# Reads
# ============================================================================


def get_tournament_info(contract, tournament_id: int) -> dict[str, Any]:
    raw = contract.functions.getTournamentInfo(tournament_id).call()
    return dict(zip(_TOURNAMENT_INFO_FIELDS, raw))


def get_position_info(contract, tournament_id: int, position: int) -> dict[str, Any]:
    amount, winner, claimed = contract.functions.getPositionInfo(tournament_id, position).call()
    if winner and int(winner, 16) == 0:
        winner = None
    return {"position": position, "rewardAmount": amount, "winner": winner, "claimed": claimed}


def get_positions(contract, tournament_id: int) -> list[dict[str, Any]]:
    """Every position of a tournament, in order."""
    amounts = contract.functions.getPositionRewardAmounts(tournament_id).call()
    return [get_position_info(contract, tournament_id, i) for i in range(len(amounts))]


def is_participant_registered(contract, tournament_id: int, participant: str) -> bool:
    Web3 = _require_web3()
    return contract.functions.isParticipantRegistered(
        tournament_id, Web3.to_checksum_address(participant)
    ).call()


# ============================================================================
# Writes
# ============================================================================


def _send(w3, call, account, label: str) -> str:
    """Build, sign, send and wait for a contract call. Returns the tx hash hex."""
    tx = call.build_transaction(
        {
            "from": account.address,
            "nonce": w3.eth.get_transaction_count(account.address),
            "chainId": w3.eth.chain_id,
        }
    )

    signed_tx = w3.eth.account.sign_transaction(tx, account.key)
    tx_hash = w3.eth.send_raw_transaction(signed_tx.raw_transaction)
    logger.info(f"{label} tx sent: {tx_hash.hex()}")

    receipt = w3.eth.wait_for_transaction_receipt(tx_hash, timeout=30)
    if receipt["status"] != 1:
        raise RuntimeError(f"{label} reverted: {tx_hash.hex()}")

    logger.info(f"{label} confirmed in block {receipt['blockNumber']}")
    return tx_hash.hex()


def declare_winners(
    w3,
    contract,
    account,
    tournament_id: int,
    positions: list[int],
    winners: list[str],
) -> str:
    """Declare winners for several positions in one transaction."""
    if len(positions) != len(winners):
        raise ValueError("positions and winners must be the same length")
    Web3 = _require_web3()
    call = contract.functions.declareWinners(
        tournament_id, list(positions), [Web3.to_checksum_address(w) for w in winners]
    )
    return _send(w3, call, account, "declareWinners")


def cancel_tournament(w3, contract, account, tournament_id: int) -> str:
    return _send(w3, contract.functions.cancelTournament(tournament_id), account, "cancelTournament")
