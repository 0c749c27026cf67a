"""
Pydantic models and enums describing client state.

Topic payloads (balances, orders, executions, ...) are forwarded untouched
and deliberately have no models here.
"""

from datetime import datetime
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class ConnectionState(str, Enum):
    """Socket connection state."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class Status(str, Enum):
    """Values emitted with the "status" event."""
    CONNECTED = "Connected"
    ERROR = "Error"
    DISCONNECTED = "Disconnected"
    WAITING_FOR_RECONNECT = "Waiting for reconnect"


Interval = Literal[
    "Tick", "S5", "S10", "M2", "M5", "M10", "M15", "M30",
    "H1", "H2", "H4", "H8", "H12", "D1",
]


class ConnectionStatus(BaseModel):
    """Snapshot of the client's connection."""
    connected: bool = Field(..., description="Whether the socket is open")
    state: ConnectionState = Field(..., description="Current connection state")
    reconnect_attempts: int = Field(default=0, description="Reconnect attempts since last successful connect")
    last_connected: Optional[datetime] = Field(None, description="Last successful connection time")
    error_message: Optional[str] = Field(None, description="Last error message if any")
    topics: List[str] = Field(default_factory=list, description="Topics with active listeners")
