"""
CollabHub Test Configuration
============================

Pytest fixtures shared by the unit tests.
"""

import pytest


class FakeClock:
    """Manually advanced time source (seconds)."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_clock():
    """Controllable monotonic-style clock."""
    return FakeClock()
