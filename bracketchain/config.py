"""
bracketchain/config.py - Local configuration management

Reads operator config from a platform-appropriate config directory:
  - macOS/Linux: ~/.bracketchain/config.toml
  - Windows: %APPDATA%\\bracketchain\\config.toml

Environment variables override the file for server deployments (see
``apply_env``).

Example:
    [server]
    db_path = "~/.bracketchain/tournaments.db"
    host = "0.0.0.0"
    port = 8000
    require_signed_reports = true

    [escrow]
    owner = "0xPlatformOwner..."
    admins = ["0xModerator..."]

    [chain]
    rpc_url = "https://saigon-api.roninchain.com/rpc"
    chain_id = 2021
    tournament_escrow = "0x..."

    [wallet]
    address = "0x..."
    private_key = "0x..."
"""

import logging
import os
import sys
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

from .escrow import MAX_WINNER_POSITIONS, MIN_REGISTRATION_PERIOD

logger = logging.getLogger(__name__)

# ============================================================================
# Constants
# ============================================================================


def _get_config_dir() -> Path:
    """Get platform-appropriate config directory."""
    if sys.platform == "win32":
        appdata = os.environ.get("APPDATA")
        if appdata:
            return Path(appdata) / "bracketchain"
    return Path.home() / ".bracketchain"


CONFIG_DIR = _get_config_dir()
CONFIG_PATH = CONFIG_DIR / "config.toml"
DEFAULT_DB_PATH = str(CONFIG_DIR / "tournaments.db")

RONIN_MAINNET_CHAIN_ID = 2020
RONIN_MAINNET_RPC = "https://api.roninchain.com/rpc"
RONIN_TESTNET_CHAIN_ID = 2021
RONIN_TESTNET_RPC = "https://saigon-api.roninchain.com/rpc"

_TRUTHY = {"1", "true", "yes", "on"}


# ============================================================================
# Data Types
# ============================================================================


@dataclass
class ServerConfig:
    """HTTP API settings."""

    db_path: str = DEFAULT_DB_PATH
    host: str = "0.0.0.0"
    port: int = 8000
    require_signed_reports: bool = False


@dataclass
class EscrowConfig:
    """Platform owner and escrow limits."""

    owner: str | None = None
    admins: list[str] = field(default_factory=list)
    min_registration_period: int = MIN_REGISTRATION_PERIOD
    max_winner_positions: int = MAX_WINNER_POSITIONS


@dataclass
class ChainConfig:
    """Blockchain network configuration. Defaults to Ronin testnet (Saigon)."""

    chain_id: int = RONIN_TESTNET_CHAIN_ID
    rpc_url: str = RONIN_TESTNET_RPC
    tournament_escrow: str | None = None  # Deployed TournamentEscrow address


@dataclass
class WalletConfig:
    """Signing key for privileged contract writes and match reports."""

    address: str | None = None
    private_key: str | None = None


@dataclass
class BracketchainConfig:
    """Top-level configuration."""

    server: ServerConfig = field(default_factory=ServerConfig)
    escrow: EscrowConfig = field(default_factory=EscrowConfig)
    chain: ChainConfig = field(default_factory=ChainConfig)
    wallet: WalletConfig | None = None


# ============================================================================
# Parsing
# ============================================================================


def _expand(path: str | None) -> str | None:
    """Expand ~ in a path string."""
    if path is None:
        return None
    if path == ":memory:":
        return path
    return str(Path(path).expanduser())


def _section(raw: dict, name: str) -> dict:
    data = raw.get(name, {})
    return data if isinstance(data, dict) else {}


def load_config(path: Path | None = None) -> BracketchainConfig:
    """
    Read config from TOML file.

    Args:
        path: Override config file path (default: ~/.bracketchain/config.toml)

    Returns:
        BracketchainConfig. Missing file or bad TOML returns defaults.
    """
    config_path = path or CONFIG_PATH

    if not config_path.exists():
        return BracketchainConfig()

    try:
        with open(config_path, "rb") as f:
            raw = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        logger.warning(f"Failed to parse {config_path}: {e}")
        return BracketchainConfig()

    server_data = _section(raw, "server")
    _server = ServerConfig()
    server = ServerConfig(
        db_path=_expand(server_data.get("db_path")) or _server.db_path,
        host=server_data.get("host", _server.host),
        port=int(server_data.get("port", _server.port)),
        require_signed_reports=bool(server_data.get("require_signed_reports", False)),
    )

    escrow_data = _section(raw, "escrow")
    escrow = EscrowConfig(
        owner=escrow_data.get("owner"),
        admins=list(escrow_data.get("admins", [])),
        min_registration_period=int(
            escrow_data.get("min_registration_period", MIN_REGISTRATION_PERIOD)
        ),
        max_winner_positions=int(escrow_data.get("max_winner_positions", MAX_WINNER_POSITIONS)),
    )

    chain_data = _section(raw, "chain")
    _chain = ChainConfig()
    chain = ChainConfig(
        chain_id=int(chain_data.get("chain_id", _chain.chain_id)),
        rpc_url=chain_data.get("rpc_url", _chain.rpc_url),
        tournament_escrow=chain_data.get("tournament_escrow"),
    )

    wallet = None
    if "wallet" in raw and isinstance(raw["wallet"], dict):
        wallet_data = raw["wallet"]
        wallet = WalletConfig(
            address=wallet_data.get("address"),
            private_key=wallet_data.get("private_key"),
        )

    return BracketchainConfig(server=server, escrow=escrow, chain=chain, wallet=wallet)


def apply_env(config: BracketchainConfig, environ: dict[str, str] | None = None) -> BracketchainConfig:
    """Overlay environment variables onto a loaded config (in place)."""
    env = os.environ if environ is None else environ

    if env.get("BRACKETCHAIN_DB"):
        config.server.db_path = _expand(env["BRACKETCHAIN_DB"])
    if "REQUIRE_SIGNED_REPORTS" in env:
        config.server.require_signed_reports = env["REQUIRE_SIGNED_REPORTS"].strip().lower() in _TRUTHY
    if env.get("ESCROW_OWNER"):
        config.escrow.owner = env["ESCROW_OWNER"]
    if env.get("ESCROW_ADMINS"):
        config.escrow.admins = [a.strip() for a in env["ESCROW_ADMINS"].split(",") if a.strip()]
    if env.get("RONIN_RPC_URL"):
        config.chain.rpc_url = env["RONIN_RPC_URL"]
    if env.get("TOURNAMENT_ESCROW"):
        config.chain.tournament_escrow = env["TOURNAMENT_ESCROW"]
    if env.get("ESCROW_PRIVATE_KEY"):
        if config.wallet is None:
            config.wallet = WalletConfig()
        config.wallet.private_key = env["ESCROW_PRIVATE_KEY"]
    return config
