"""
Shared fixtures for the relay tests.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient


class FakeWebSocket:
    """Stands in for a FastAPI WebSocket on the relay side."""

    def __init__(self, fail=False, gate=None):
        self.accept = AsyncMock()
        self.close = AsyncMock()
        self.sent = []
        self.fail = fail
        self.gate = gate

    async def _send(self, item):
        if self.fail:
            raise RuntimeError("socket closed")
        if self.gate is not None:
            await self.gate.wait()
        self.sent.append(item)

    async def send_bytes(self, data):
        await self._send(data)

    async def send_json(self, data):
        await self._send(data)


@pytest.fixture
def fake_websocket():
    """Factory for relay-side fake sockets."""
    return FakeWebSocket


@pytest.fixture
def drain():
    """Let pending tasks on the running loop make progress."""

    async def _drain(rounds=10):
        for _ in range(rounds):
            await asyncio.sleep(0)

    return _drain


@pytest.fixture
def client():
    """TestClient with app startup/shutdown; all sockets share one event loop."""
    from chatrelay.main import app

    with TestClient(app) as test_client:
        yield test_client
