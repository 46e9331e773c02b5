"""Shared fixtures and helpers for the bracketchain test-suite."""

import pytest

from bracketchain.models import Participant


def addr(n: int) -> str:
    """Deterministic lower-case account address."""
    return f"0x{n:040x}"


def make_players(n: int) -> list[Participant]:
    return [Participant(address=addr(i), name=f"P{i}") for i in range(1, n + 1)]


class FakeClock:
    """Unix-seconds clock that only moves when told to."""

    def __init__(self, t: int = 1_767_225_600):  # 2026-01-01T00:00:00Z
        self.t = t

    def __call__(self) -> int:
        return self.t

    def advance(self, seconds: int) -> None:
        self.t += seconds


@pytest.fixture
def clock():
    return FakeClock()
