import asyncio
import logging
from typing import List
from unittest.mock import AsyncMock, MagicMock

import pytest

from flipperfan.catalog import SignalCatalog
from flipperfan.exceptions import FanConnectionError
from flipperfan.types import IRSignal


def make_signal(name: str, length: int = 10, frequency: int = 38000, duty_cycle: float = 33.0) -> IRSignal:
    return IRSignal(
        name=name,
        frequency=frequency,
        duty_cycle=duty_cycle,
        samples=tuple(500 + i for i in range(length)),
    )


class FakeLink:
    """Stands in for SerialLink and records every command written to it."""

    def __init__(self):
        self.port = "/dev/fake"
        self.is_open = True
        self.attempted: List[str] = []
        self.written: List[str] = []
        self.fail_writes = set()  # 1-based indexes into self.attempted
        self.backpressure = False
        self.fail_drain = False
        self.drain_calls = 0

    def write(self, command: str) -> bool:
        self.attempted.append(command)
        if len(self.attempted) in self.fail_writes:
            raise FanConnectionError("write failed")
        self.written.append(command)
        return self.backpressure

    async def drain(self) -> None:
        self.drain_calls += 1
        await asyncio.sleep(0)
        if self.fail_drain:
            raise FanConnectionError("drain failed")


class FakeEngine:
    """Stands in for TransmissionEngine and records the names of sent signals."""

    def __init__(self):
        self.sent: List[str] = []

    async def send(self, signal: IRSignal) -> None:
        self.sent.append(signal.name)


@pytest.fixture
def logger():
    """Fixture for a logger."""
    return logging.getLogger(__name__)


@pytest.fixture
def catalog():
    """Fixture for a catalog holding the four fan signals."""
    return SignalCatalog([
        make_signal("Fan_off", 12),
        make_signal("Fan_low", 20),
        make_signal("Fan_med", 30),
        make_signal("Fan_high", 40),
    ])


@pytest.fixture
def fake_link():
    return FakeLink()


@pytest.fixture
def fake_engine():
    return FakeEngine()


@pytest.fixture
def serial_factory():
    """Mocks serial_asyncio.open_serial_connection, handing out a fresh reader/writer pair per call."""
    pairs = []

    async def open_connection(**kwargs):
        reader = asyncio.StreamReader()
        writer = MagicMock()
        writer.is_closing.return_value = False
        writer.transport.get_write_buffer_size.return_value = 0
        writer.drain = AsyncMock()
        pairs.append((reader, writer))
        return reader, writer

    factory = AsyncMock(side_effect=open_connection)
    factory.pairs = pairs
    return factory


@pytest.fixture
def signal_factory():
    """Fixture returning make_signal for tests that need custom signals."""
    return make_signal
