"""pytest configuration for Mechabus tests."""

from __future__ import annotations

import bcrypt
import pytest

from mechabus.auth import Authenticator
from mechabus.providers import LocalActuator, OutputLine, ProviderRegistry, SimulatedSwitch

TEST_SECRET = "mechabus-test-secret-0123456789abcdef"


# Configure asyncio mode for pytest-asyncio
def pytest_configure(config):
    config.addinivalue_line(
        "markers", "asyncio: mark test as async"
    )


def fast_hash(secret: str) -> str:
    """bcrypt hash with the minimum cost so tests stay quick."""
    return bcrypt.hashpw(secret.encode(), bcrypt.gensalt(rounds=4)).decode()


class FakeLine(OutputLine):
    """In-memory output line recording every write."""

    def __init__(self, level: int = 0, fail: bool = False) -> None:
        self.level = level
        self.fail = fail
        self.writes: list[int] = []

    def read(self) -> int:
        if self.fail:
            raise OSError("line stuck")
        return self.level

    def write(self, level: int) -> None:
        if self.fail:
            raise OSError("line stuck")
        self.level = level
        self.writes.append(level)


class FakeSocket:
    """Minimal stand-in for a FastAPI WebSocket that records sends."""

    def __init__(self, fail: bool = False) -> None:
        self.sent: list[dict] = []
        self.fail = fail

    async def send_json(self, message: dict) -> None:
        if self.fail:
            raise RuntimeError("socket gone")
        self.sent.append(message)

    def of_type(self, msg_type: str) -> list[dict]:
        return [m for m in self.sent if m["type"] == msg_type]


@pytest.fixture()
def pump_line():
    return FakeLine()


@pytest.fixture()
def registry(pump_line):
    return ProviderRegistry([
        SimulatedSwitch("porch", "10.0.0.31", latency=0, initial=0),
        SimulatedSwitch("garage", "10.0.0.32", latency=0, initial=1),
        LocalActuator("pump", pump_line),
    ])


@pytest.fixture(scope="session")
def password_hash():
    return fast_hash("hunter2")


@pytest.fixture(scope="session")
def peer_hash():
    return fast_hash("peer-secret")


@pytest.fixture()
def authenticator(password_hash, peer_hash):
    return Authenticator(TEST_SECRET, [password_hash], [peer_hash])
