"""
Pytest configuration and shared fixtures for client tests.
"""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from websockets.protocol import State

from cloud9trader.client import Client


@pytest.fixture
def mock_websocket():
    """Create a mock open WebSocket connection."""
    websocket = AsyncMock()
    websocket.send = AsyncMock()
    websocket.close = AsyncMock()
    websocket.state = State.OPEN
    return websocket


@pytest.fixture
def client():
    """Public client that never schedules a real reconnect."""
    client = Client(key="test_api_key")
    client.reconnect = MagicMock()
    return client


def open_connection(client, websocket):
    """Drive client through a successful socket open using websocket as transport."""
    client._connection_task = MagicMock()
    client._socket = websocket
    client._on_open()


def sent_frames(websocket):
    """Decoded frames passed to websocket.send, in order."""
    return [json.loads(call.args[0]) for call in websocket.send.call_args_list]
