# tests/conftest.py
"""Shared pytest fixtures for the smokey gateway tests.

The manager takes its clock and random source as arguments, so tests
drive debounce windows and random colors deterministically.
"""

import queue
import random

import pytest

from codec import Msg, Topics
from constants import OUTBOUND_QUEUE_DEPTH
from device_state import ManagerState
from manager import Manager


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, now: float = 100.0):
        # Dampen deadlines start at 0.0, so the clock must start above it
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def drain(outbound: queue.Queue) -> list[Msg]:
    """Everything the manager has published so far."""
    msgs = []
    while True:
        try:
            msgs.append(outbound.get_nowait())
        except queue.Empty:
            return msgs


# ----------------------------------------------------------------
# Fixtures
# ----------------------------------------------------------------
@pytest.fixture
def topics() -> Topics:
    return Topics("smokey/")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def outbound() -> queue.Queue:
    return queue.Queue(maxsize=OUTBOUND_QUEUE_DEPTH)


@pytest.fixture
def published(outbound):
    """Callable returning (and consuming) everything published so far."""
    return lambda: drain(outbound)


@pytest.fixture
def manager(topics, outbound, clock) -> Manager:
    return Manager(topics, outbound, clock=clock, rng=random.Random(42))


@pytest.fixture
def state() -> ManagerState:
    return ManagerState()
