#!/usr/bin/env python3
"""
bracketchain/cli.py - Command line interface for Bracketchain

Usage:
    bracketchain serve [--port 8000] [--db tournaments.db]
    bracketchain bracket <N | names-file> [--double]
    bracketchain wallet
    bracketchain positions <tournament-id> [--contract 0x...] [--rpc URL]
    bracketchain settle-onchain <tournament-id> --winner 0x... [--winner 0x...]
    bracketchain cancel-onchain <tournament-id>
"""

import argparse
import logging
import sys
from pathlib import Path

# Set up logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


def cmd_serve(args):
    """Start the tournament API server."""
    import uvicorn

    from bracketchain.config import apply_env, load_config
    from portal.server import app

    config = apply_env(load_config(Path(args.config) if args.config else None))
    if args.db:
        config.server.db_path = args.db
    port = args.port or config.server.port

    # Lifespan picks the config up from app state
    app.state.config = config
    logger.info(f"Starting Bracketchain API on {config.server.host}:{port} (db: {config.server.db_path})")
    uvicorn.run(app, host=config.server.host, port=port, log_level="info")
    return 0


def _load_entrants(source: str) -> list:
    from bracketchain.models import Participant

    if source.isdigit():
        return [
            Participant(address=f"0x{i:040x}", name=f"Player {i}")
            for i in range(1, int(source) + 1)
        ]
    path = Path(source)
    if not path.exists():
        raise FileNotFoundError(f"No such names file: {source}")
    names = [line.strip() for line in path.read_text().splitlines() if line.strip()]
    return [Participant(address=f"0x{i:040x}", name=name) for i, name in enumerate(names, 1)]


def cmd_bracket(args):
    """Preview the bracket for N entrants or a file of names (one per line)."""
    from bracketchain.bracket import format_bracket, generate_bracket
    from bracketchain.errors import ValidationError
    from bracketchain.models import TournamentType

    try:
        entrants = _load_entrants(args.entrants)
        t_type = TournamentType.DOUBLE if args.double else TournamentType.SINGLE
        bracket = generate_bracket(entrants, t_type)
    except (FileNotFoundError, ValidationError) as e:
        logger.error(str(e))
        return 1

    print(format_bracket(bracket))
    return 0


def cmd_wallet(args):
    """Generate a new wallet for signing match reports or escrow writes."""
    from bracketchain.wallet import generate_wallet

    address, key = generate_wallet()
    print(f"Address:     {address}")
    print(f"Private key: {key}")
    print()
    print("Add to ~/.bracketchain/config.toml:")
    print("  [wallet]")
    print(f'  address = "{address}"')
    print(f'  private_key = "{key}"')
    return 0


def _escrow_target(args):
    """(config, contract address, rpc url) from flags, env and config file."""
    from bracketchain.config import apply_env, load_config

    config = apply_env(load_config(Path(args.config) if args.config else None))
    address = args.contract or config.chain.tournament_escrow
    if not address:
        logger.error("No escrow contract configured (use --contract or TOURNAMENT_ESCROW)")
        return config, None, None
    return config, address, args.rpc or config.chain.rpc_url


def _load_signer(config):
    from bracketchain.wallet import load_wallet

    account = load_wallet(config)
    if account is None:
        logger.error("No signing key configured (run 'bracketchain wallet', or set ESCROW_PRIVATE_KEY)")
    return account


def cmd_positions(args):
    """Read reward positions for a tournament from the deployed escrow contract."""
    from bracketchain.contract import get_escrow_contract, get_positions, get_tournament_info

    _, address, rpc_url = _escrow_target(args)
    if not address:
        return 1

    try:
        from rich.console import Console
        from rich.table import Table
        from rich.text import Text
    except ImportError:
        print("Missing dependency: rich. Install: pip install rich")
        return 1

    _, contract = get_escrow_contract(address, rpc_url)
    info = get_tournament_info(contract, args.tournament_id)
    positions = get_positions(contract, args.tournament_id)

    console = Console()
    active = "[green]active[/green]" if info["isActive"] else "[red]inactive[/red]"
    console.print(f"[bold]{info['name']}[/bold] ({info['gameId']}) {active}")
    console.print(
        f"  participants: {info['participantCount']}  total reward: {info['totalRewardAmount']}"
    )

    table = Table(title=f"Escrow #{args.tournament_id} positions", header_style="bold cyan")
    table.add_column("#", justify="right")
    table.add_column("Reward", justify="right", min_width=14)
    table.add_column("Winner", min_width=14)
    table.add_column("Status")
    for pos in positions:
        status = Text("claimed", style="green") if pos["claimed"] else Text("unclaimed", style="dim")
        table.add_row(
            str(pos["position"] + 1), str(pos["rewardAmount"]), pos["winner"] or "-", status
        )
    console.print(table)
    return 0


def cmd_settle_onchain(args):
    """Declare winners on the deployed escrow, first place first.

    Positions already holding the given winner are skipped. Every winner
    must be registered in the on-chain tournament.
    """
    from bracketchain import contract as escrow_contract

    config, address, rpc_url = _escrow_target(args)
    if not address:
        return 1
    try:
        account = _load_signer(config)
    except ImportError as e:
        print(f"Missing dependency: {e}")
        return 1
    if account is None:
        return 1

    w3, contract = escrow_contract.get_escrow_contract(address, rpc_url)
    tid = args.tournament_id
    positions, winners = [], []
    for position, winner in enumerate(args.winners):
        if not escrow_contract.is_participant_registered(contract, tid, winner):
            logger.error(f"{winner} is not registered in escrow tournament {tid}")
            return 1
        current = escrow_contract.get_position_info(contract, tid, position)
        if current["winner"] and current["winner"].lower() == winner.lower():
            continue
        positions.append(position)
        winners.append(winner)

    if not positions:
        print(f"Escrow #{tid}: winners already declared")
        return 0

    tx_hash = escrow_contract.declare_winners(w3, contract, account, tid, positions, winners)
    print(f"Escrow #{tid}: declared positions {[p + 1 for p in positions]} (tx {tx_hash})")
    return 0


def cmd_cancel_onchain(args):
    """Cancel a tournament on the deployed escrow, refunding rewards and fees."""
    from bracketchain import contract as escrow_contract

    config, address, rpc_url = _escrow_target(args)
    if not address:
        return 1
    try:
        account = _load_signer(config)
    except ImportError as e:
        print(f"Missing dependency: {e}")
        return 1
    if account is None:
        return 1

    w3, contract = escrow_contract.get_escrow_contract(address, rpc_url)
    tx_hash = escrow_contract.cancel_tournament(w3, contract, account, args.tournament_id)
    print(f"Escrow #{args.tournament_id}: cancelled (tx {tx_hash})")
    return 0


def _add_escrow_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("tournament_id", type=int, help="Escrow tournament id")
    parser.add_argument("--contract", default=None, help="TournamentEscrow address")
    parser.add_argument("--rpc", default=None, help="JSON-RPC endpoint")
    parser.add_argument("--config", default=None, help="Config file (default: ~/.bracketchain/config.toml)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bracketchain",
        description="Tournament brackets with escrowed rewards",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # serve command
    serve_parser = subparsers.add_parser("serve", help="Start the tournament API server")
    serve_parser.add_argument("--port", "-p", type=int, default=None, help="Server port (default: 8000)")
    serve_parser.add_argument("--db", default=None, help="SQLite database path")
    serve_parser.add_argument("--config", default=None, help="Config file (default: ~/.bracketchain/config.toml)")
    serve_parser.set_defaults(func=cmd_serve)

    # bracket command
    bracket_parser = subparsers.add_parser("bracket", help="Preview a bracket")
    bracket_parser.add_argument("entrants", help="Number of entrants, or a file with one name per line")
    bracket_parser.add_argument("--double", action="store_true", help="Double elimination")
    bracket_parser.set_defaults(func=cmd_bracket)

    # wallet command
    wallet_parser = subparsers.add_parser("wallet", help="Generate a new wallet")
    wallet_parser.set_defaults(func=cmd_wallet)

    # positions command
    pos_parser = subparsers.add_parser("positions", help="Show escrow positions from the contract")
    _add_escrow_args(pos_parser)
    pos_parser.set_defaults(func=cmd_positions)

    # settle-onchain command
    settle_parser = subparsers.add_parser("settle-onchain", help="Declare winners on the escrow contract")
    _add_escrow_args(settle_parser)
    settle_parser.add_argument("--winner", dest="winners", action="append", required=True,
                               help="Winner address, repeat in finishing order (first place first)")
    settle_parser.set_defaults(func=cmd_settle_onchain)

    # cancel-onchain command
    cancel_parser = subparsers.add_parser("cancel-onchain", help="Cancel a tournament on the escrow contract")
    _add_escrow_args(cancel_parser)
    cancel_parser.set_defaults(func=cmd_cancel_onchain)

    return parser


def main():
    args = build_parser().parse_args()
    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
