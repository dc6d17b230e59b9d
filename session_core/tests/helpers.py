"""Test doubles shared by the session_core and console_web tests."""
import asyncio

import jwt

from session_core.events import EventBus

START = 1_700_000_000.0
JWT_SECRET = "session-core-test-secret-0123456789abcdef"


class FakeClock:
    def __init__(self, now: float = START):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class EventRecorder:
    def __init__(self, bus: EventBus):
        self.events = []
        bus.subscribe(self.events.append)

    def names(self) -> list[str]:
        return [e.name for e in self.events]


class ScriptedRefreshClient:
    """
    Returns (or raises) the scripted results in order; the last one repeats.
    With a gate, each call waits for the gate before answering.
    """

    def __init__(self, *results, gate: asyncio.Event | None = None):
        self.results = list(results)
        self.gate = gate
        self.calls = 0

    async def refresh(self):
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, Exception):
            raise result
        return result


def make_jwt(**claims) -> str:
    payload = {"sub": "42", "email": "jane@example.com"}
    payload.update(claims)
    return jwt.encode(payload, JWT_SECRET, algorithm="HS256")
