"""Tests for bracketchain.config — config file and environment overrides."""

import textwrap
from pathlib import Path

import pytest

from bracketchain.config import (
    RONIN_TESTNET_CHAIN_ID,
    RONIN_TESTNET_RPC,
    BracketchainConfig,
    WalletConfig,
    apply_env,
    load_config,
)
from bracketchain.escrow import MAX_WINNER_POSITIONS, MIN_REGISTRATION_PERIOD


@pytest.fixture
def config_dir(tmp_path):
    """Temporary directory for config files."""
    return tmp_path


def _write_config(config_dir: Path, content: str) -> Path:
    """Write a config.toml and return the path."""
    config_path = config_dir / "config.toml"
    config_path.write_text(textwrap.dedent(content))
    return config_path


class TestLoadConfig:
    def test_missing_file_returns_defaults(self, config_dir):
        cfg = load_config(config_dir / "nonexistent.toml")
        assert isinstance(cfg, BracketchainConfig)
        assert cfg.server.port == 8000
        assert cfg.server.require_signed_reports is False
        assert cfg.escrow.owner is None
        assert cfg.escrow.min_registration_period == MIN_REGISTRATION_PERIOD
        assert cfg.escrow.max_winner_positions == MAX_WINNER_POSITIONS
        assert cfg.chain.chain_id == RONIN_TESTNET_CHAIN_ID
        assert cfg.chain.rpc_url == RONIN_TESTNET_RPC
        assert cfg.wallet is None

    def test_full_config(self, config_dir):
        path = _write_config(config_dir, """\
            [server]
            db_path = "/var/lib/bracketchain/tournaments.db"
            host = "127.0.0.1"
            port = 9000
            require_signed_reports = true

            [escrow]
            owner = "0xOwner"
            admins = ["0xMod1", "0xMod2"]
            min_registration_period = 600
            max_winner_positions = 5

            [chain]
            chain_id = 2020
            rpc_url = "https://api.roninchain.com/rpc"
            tournament_escrow = "0xEscrow"

            [wallet]
            address = "0xOperator"
            private_key = "0xdeadbeef"
        """)
        cfg = load_config(path)
        assert cfg.server.db_path == "/var/lib/bracketchain/tournaments.db"
        assert cfg.server.host == "127.0.0.1"
        assert cfg.server.port == 9000
        assert cfg.server.require_signed_reports is True
        assert cfg.escrow.owner == "0xOwner"
        assert cfg.escrow.admins == ["0xMod1", "0xMod2"]
        assert cfg.escrow.min_registration_period == 600
        assert cfg.escrow.max_winner_positions == 5
        assert cfg.chain.chain_id == 2020
        assert cfg.chain.tournament_escrow == "0xEscrow"
        assert cfg.wallet == WalletConfig(address="0xOperator", private_key="0xdeadbeef")

    def test_tilde_expansion(self, config_dir):
        path = _write_config(config_dir, """\
            [server]
            db_path = "~/data/tournaments.db"
        """)
        cfg = load_config(path)
        assert cfg.server.db_path.startswith(str(Path.home()))
        assert "~" not in cfg.server.db_path

    def test_memory_db_kept(self, config_dir):
        path = _write_config(config_dir, """\
            [server]
            db_path = ":memory:"
        """)
        assert load_config(path).server.db_path == ":memory:"

    def test_bad_toml_returns_defaults(self, config_dir):
        path = _write_config(config_dir, "this is [not valid toml")
        cfg = load_config(path)
        assert cfg.server.port == 8000

    def test_unknown_sections_ignored(self, config_dir):
        path = _write_config(config_dir, """\
            [logging]
            level = "debug"
        """)
        cfg = load_config(path)
        assert cfg.escrow.owner is None


class TestApplyEnv:
    def test_no_env_changes_nothing(self):
        cfg = apply_env(BracketchainConfig(), {})
        assert cfg == BracketchainConfig()

    def test_overrides(self):
        cfg = apply_env(
            BracketchainConfig(),
            {
                "BRACKETCHAIN_DB": ":memory:",
                "REQUIRE_SIGNED_REPORTS": "yes",
                "ESCROW_OWNER": "0xOwner",
                "ESCROW_ADMINS": "0xA, 0xB,,",
                "RONIN_RPC_URL": "http://localhost:8545",
                "TOURNAMENT_ESCROW": "0xEscrow",
                "ESCROW_PRIVATE_KEY": "0xkey",
            },
        )
        assert cfg.server.db_path == ":memory:"
        assert cfg.server.require_signed_reports is True
        assert cfg.escrow.owner == "0xOwner"
        assert cfg.escrow.admins == ["0xA", "0xB"]
        assert cfg.chain.rpc_url == "http://localhost:8545"
        assert cfg.chain.tournament_escrow == "0xEscrow"
        assert cfg.wallet.private_key == "0xkey"

    def test_signed_reports_can_be_disabled(self):
        cfg = BracketchainConfig()
        cfg.server.require_signed_reports = True
        apply_env(cfg, {"REQUIRE_SIGNED_REPORTS": "0"})
        assert cfg.server.require_signed_reports is False

    def test_private_key_keeps_wallet_address(self):
        cfg = BracketchainConfig(wallet=WalletConfig(address="0xOperator"))
        apply_env(cfg, {"ESCROW_PRIVATE_KEY": "0xkey"})
        assert cfg.wallet.address == "0xOperator"
        assert cfg.wallet.private_key == "0xkey"
