"""
bracketchain/ledger.py - Token balances and entry-fee split arithmetic.

TokenLedger is an in-memory ERC-20 style book keeper keyed by token address
(the zero address stands for the chain's native token). The escrow engine
moves funds exclusively through it, and snapshots/restores it to give each
escrow operation all-or-nothing semantics.
"""

import copy
import logging
from collections import defaultdict
from typing import Callable

from .errors import TokenTransferError
from .models import normalize_address, parse_amount

logger = logging.getLogger(__name__)

CREATOR_SHARE_PER_MILLE = 975
PLATFORM_SHARE_PER_MILLE = 25


def split_entry_fees(amount: int) -> tuple[int, int]:
    """Split collected fees into (creator share, platform share).

    The creator gets floor(97.5%), the platform gets the remainder, so the
    two always add up to ``amount`` exactly.
    """
    amount = parse_amount(amount, "amount")
    creator = amount * CREATOR_SHARE_PER_MILLE // 1000
    return creator, amount - creator


TransferHook = Callable[[str, str, str, int], None]


class TokenLedger:
    """Balances and allowances per (token, account)."""

    def __init__(self):
        self._balances: dict[str, dict[str, int]] = defaultdict(lambda: defaultdict(int))
        self._allowances: dict[str, dict[tuple[str, str], int]] = defaultdict(
            lambda: defaultdict(int)
        )
        self._hooks: dict[str, TransferHook] = {}

    # -- reads -------------------------------------------------------------

    def balance_of(self, token: str, account: str) -> int:
        return self._balances[normalize_address(token)].get(normalize_address(account), 0)

    def allowance(self, token: str, owner: str, spender: str) -> int:
        key = (normalize_address(owner), normalize_address(spender))
        return self._allowances[normalize_address(token)].get(key, 0)

    # -- writes ------------------------------------------------------------

    def mint(self, token: str, account: str, amount: int) -> None:
        amount = parse_amount(amount, "amount")
        self._balances[normalize_address(token)][normalize_address(account)] += amount

    def approve(self, token: str, owner: str, spender: str, amount: int) -> None:
        amount = parse_amount(amount, "amount")
        key = (normalize_address(owner), normalize_address(spender))
        self._allowances[normalize_address(token)][key] = amount

    def set_transfer_hook(self, token: str, hook: TransferHook | None) -> None:
        """Call ``hook(token, sender, recipient, amount)`` after each transfer
        of ``token``. Exceptions raised by the hook abort the transfer's
        enclosing escrow operation."""
        token = normalize_address(token)
        if hook is None:
            self._hooks.pop(token, None)
        else:
            self._hooks[token] = hook

    def transfer(self, token: str, sender: str, recipient: str, amount: int) -> None:
        token = normalize_address(token)
        sender = normalize_address(sender)
        recipient = normalize_address(recipient)
        amount = parse_amount(amount, "amount")

        balances = self._balances[token]
        if balances.get(sender, 0) < amount:
            raise TokenTransferError(
                f"Insufficient balance: {sender} has {balances.get(sender, 0)}, needs {amount}"
            )
        balances[sender] -= amount
        balances[recipient] += amount
        logger.debug(f"transfer {amount} of {token} {sender} -> {recipient}")

        hook = self._hooks.get(token)
        if hook is not None:
            hook(token, sender, recipient, amount)

    def transfer_from(
        self, token: str, spender: str, owner: str, recipient: str, amount: int
    ) -> None:
        """Move ``amount`` from ``owner`` to ``recipient`` using ``spender``'s allowance."""
        token = normalize_address(token)
        key = (normalize_address(owner), normalize_address(spender))
        amount = parse_amount(amount, "amount")
        allowed = self._allowances[token].get(key, 0)
        if allowed < amount:
            raise TokenTransferError(f"Insufficient allowance: {allowed} approved, needs {amount}")
        self._allowances[token][key] = allowed - amount
        self.transfer(token, owner, recipient, amount)

    # -- transactions --------------------------------------------------------

    def snapshot(self) -> dict:
        return {
            "balances": {t: dict(b) for t, b in self._balances.items()},
            "allowances": {t: dict(a) for t, a in self._allowances.items()},
        }

    def restore(self, state: dict) -> None:
        state = copy.deepcopy(state)
        self._balances = defaultdict(lambda: defaultdict(int))
        for token, balances in state["balances"].items():
            self._balances[token].update(balances)
        self._allowances = defaultdict(lambda: defaultdict(int))
        for token, allowances in state["allowances"].items():
            self._allowances[token].update(allowances)
