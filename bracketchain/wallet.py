"""
bracketchain/wallet.py - Operator wallets and EIP-712 signed match reports.

Participants sign a MatchReport (tournament, match key, reporter, claimed
winner) with their wallet; the API recovers the signer and checks it is the
reporter before accepting the result. Uses eth-account (no RPC connection
needed for signing).
"""

import logging
from typing import Any

from .models import ZERO_ADDRESS, normalize_address

logger = logging.getLogger(__name__)


# EIP-712 type definitions for a match report
MATCH_REPORT_TYPES = {
    "EIP712Domain": [
        {"name": "name", "type": "string"},
        {"name": "version", "type": "string"},
        {"name": "chainId", "type": "uint256"},
        {"name": "verifyingContract", "type": "address"},
    ],
    "MatchReport": [
        {"name": "tournamentId", "type": "string"},
        {"name": "matchKey", "type": "string"},
        {"name": "reporter", "type": "address"},
        {"name": "winner", "type": "address"},
    ],
}

DOMAIN_NAME = "Bracketchain"
DOMAIN_VERSION = "1"


def _require_eth_account():
    """Import and return eth_account, raising a clear error if not installed."""
    try:
        import eth_account
        return eth_account
    except ImportError:
        raise ImportError(
            "eth-account is required for wallet operations. "
            "Install it with: pip install eth-account"
        )


def generate_wallet() -> tuple[str, str]:
    """Generate a new wallet.

    Returns:
        (address, private_key_hex). The private key includes the 0x prefix.
    """
    eth_account = _require_eth_account()
    account = eth_account.Account.create()
    key_hex = account.key.hex()
    if not key_hex.startswith("0x"):
        key_hex = "0x" + key_hex
    return (account.address, key_hex)


def load_wallet(config):
    """LocalAccount from a BracketchainConfig's wallet section, or None."""
    eth_account = _require_eth_account()

    if config.wallet is None or config.wallet.private_key is None:
        return None

    key = config.wallet.private_key
    if not key.startswith("0x"):
        key = "0x" + key

    return eth_account.Account.from_key(key)


def build_match_report(tournament_id: str, match_key: str, reporter: str, winner: str) -> dict[str, Any]:
    """MatchReport message dict with checksummed addresses."""
    from eth_utils import to_checksum_address

    return {
        "tournamentId": str(tournament_id),
        "matchKey": str(match_key),
        "reporter": to_checksum_address(normalize_address(reporter)),
        "winner": to_checksum_address(normalize_address(winner)),
    }


def _signable(report: dict[str, Any], chain_id: int, contract_address: str | None):
    from eth_account.messages import encode_typed_data
    from eth_utils import to_checksum_address

    domain_data = {
        "name": DOMAIN_NAME,
        "version": DOMAIN_VERSION,
        "chainId": chain_id,
        "verifyingContract": to_checksum_address(contract_address or ZERO_ADDRESS),
    }
    # eth-account adds EIP712Domain itself.
    message_types = {"MatchReport": MATCH_REPORT_TYPES["MatchReport"]}
    return encode_typed_data(
        domain_data=domain_data,
        message_types=message_types,
        message_data=report,
    )


def sign_match_report(
    account,
    report: dict[str, Any],
    chain_id: int,
    contract_address: str | None = None,
) -> bytes:
    """Sign a MatchReport. Returns the 65-byte signature (r + s + v)."""
    _require_eth_account()
    signed = account.sign_message(_signable(report, chain_id, contract_address))
    return bytes(signed.signature)


def recover_report_signer(
    report: dict[str, Any],
    signature: bytes | str,
    chain_id: int,
    contract_address: str | None = None,
) -> str:
    """Checksummed address that produced ``signature`` over ``report``."""
    eth_account = _require_eth_account()
    if isinstance(signature, str):
        signature = bytes.fromhex(signature.removeprefix("0x"))
    return eth_account.Account.recover_message(
        _signable(report, chain_id, contract_address), signature=signature
    )


def verify_match_report(
    report: dict[str, Any],
    signature: bytes | str,
    chain_id: int,
    contract_address: str | None = None,
) -> bool:
    """True if the report was signed by its own ``reporter``.

    Malformed signatures count as invalid rather than raising.
    """
    try:
        signer = recover_report_signer(report, signature, chain_id, contract_address)
    except Exception as e:  # eth-keys raises its own BadSignature types
        logger.warning(f"Unreadable match report signature: {e}")
        return False
    return signer.lower() == report["reporter"].lower()
