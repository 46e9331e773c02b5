"""Tests for bracketchain.contract — escrow contract reads and writes (mocked web3)."""

from unittest.mock import MagicMock

import pytest

from bracketchain.contract import (
    TOURNAMENT_ESCROW_ABI,
    cancel_tournament,
    declare_winners,
    get_position_info,
    get_positions,
    get_tournament_info,
)
from bracketchain.models import ZERO_ADDRESS

WINNER = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"


def _abi(name):
    return next(e for e in TOURNAMENT_ESCROW_ABI if e["name"] == name)


@pytest.fixture
def contract():
    c = MagicMock()
    c.functions.getPositionRewardAmounts.return_value.call.return_value = [700, 300]

    def position_info(tournament_id, position):
        call = MagicMock()
        call.call.return_value = [(700, WINNER, True), (300, ZERO_ADDRESS, False)][position]
        return call

    c.functions.getPositionInfo.side_effect = position_info
    return c


@pytest.fixture
def w3():
    w3 = MagicMock()
    w3.eth.get_transaction_count.return_value = 7
    w3.eth.chain_id = 2021
    tx_hash = MagicMock()
    tx_hash.hex.return_value = "0xfeed"
    w3.eth.send_raw_transaction.return_value = tx_hash
    w3.eth.wait_for_transaction_receipt.return_value = {"status": 1, "blockNumber": 42}
    return w3


@pytest.fixture
def account():
    acct = MagicMock()
    acct.address = WINNER
    acct.key = b"\x01" * 32
    return acct


class TestAbi:
    def test_tournament_info_outputs(self):
        outputs = _abi("getTournamentInfo")["outputs"]
        assert len(outputs) == 17
        assert outputs[0]["name"] == "creator"
        assert outputs[-1]["name"] == "participantCount"

    def test_writes_are_nonpayable(self):
        assert _abi("declareWinners")["stateMutability"] == "nonpayable"
        assert _abi("cancelTournament")["stateMutability"] == "nonpayable"


class TestReads:
    def test_tournament_info_keyed_by_field(self, contract):
        raw = [
            WINNER, "Cup", "desc", "axie", 1, 8, 100, 300, 200, True,
            ZERO_ADDRESS, 1000, 2, False, ZERO_ADDRESS, 0, 5,
        ]
        contract.functions.getTournamentInfo.return_value.call.return_value = raw
        info = get_tournament_info(contract, 3)
        contract.functions.getTournamentInfo.assert_called_once_with(3)
        assert info["name"] == "Cup"
        assert info["tournamentType"] == 1
        assert info["isActive"] is True
        assert info["participantCount"] == 5

    def test_unset_winner_is_none(self, contract):
        info = get_position_info(contract, 1, 1)
        assert info == {"position": 1, "rewardAmount": 300, "winner": None, "claimed": False}

    def test_positions(self, contract):
        positions = get_positions(contract, 1)
        assert [p["rewardAmount"] for p in positions] == [700, 300]
        assert positions[0]["winner"] == WINNER
        assert positions[0]["claimed"] is True


class TestWrites:
    def test_declare_winners_length_mismatch(self, w3, contract, account):
        with pytest.raises(ValueError):
            declare_winners(w3, contract, account, 1, [0, 1], [WINNER])

    def test_declare_winners_sends_checksummed(self, w3, contract, account):
        pytest.importorskip("web3")
        tx = declare_winners(w3, contract, account, 1, [0], [WINNER.lower()])
        assert tx == "0xfeed"
        contract.functions.declareWinners.assert_called_once_with(1, [0], [WINNER])
        build_args = contract.functions.declareWinners.return_value.build_transaction.call_args[0][0]
        assert build_args == {"from": WINNER, "nonce": 7, "chainId": 2021}

    def test_cancel_reverted(self, w3, contract, account):
        w3.eth.wait_for_transaction_receipt.return_value = {"status": 0, "blockNumber": 42}
        with pytest.raises(RuntimeError, match="cancelTournament reverted"):
            cancel_tournament(w3, contract, account, 1)
