import pytest

from odali.core.coordinator import Coordinator
from odali.core.credentials import ScryptVerifier


@pytest.fixture
def verifier():
    # cheap scrypt parameters keep the suite fast
    return ScryptVerifier(n=2**4)


@pytest.fixture
def clock():
    """Mutable fake clock in milliseconds; tests move it with clock['now']."""
    return {"now": 1_700_000_000_000}


@pytest.fixture
def coordinator(verifier, clock):
    return Coordinator(verifier=verifier, clock=lambda: clock["now"])


class FakeSession:
    """Stand-in session handle that records every frame it is sent."""

    def __init__(self, name: str = "session"):
        self.name = name
        self.frames = []

    async def send(self, frame):
        self.frames.append(frame)

    def events(self):
        return [f["event"] for f in self.frames]


@pytest.fixture
def session_factory():
    return FakeSession
