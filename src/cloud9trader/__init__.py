"""Cloud9Trader socket client - subscriptions, correlated requests and auto-reconnect.

Public exports:
    Client: Socket client (alias Cloud9TraderClient)
    EventEmitter, ListenerHandle, TIMEOUT: Event dispatcher primitives
    Subscription: Token returned by Client.subscribe
    ReferenceDataAPI: HTTP helper for instruments and historical prices
    ClientConfig, configure_logging: Environment configuration

Error hierarchy:
    Cloud9Error (base)
    Cloud9ClientError
    Cloud9AuthError
    Cloud9HTTPError
"""

from .auth import Cloud9Auth
from .client import Client, reconnect_delay
from .config import ClientConfig, configure_logging
from .emitter import TIMEOUT, EventEmitter, ListenerHandle
from .errors import (
    Cloud9AuthError,
    Cloud9ClientError,
    Cloud9Error,
    Cloud9HTTPError,
)
from .models import ConnectionState, ConnectionStatus, Interval, Status
from .reference_data import ReferenceDataAPI
from .subscriptions import AUTO_SUBSCRIBED_TOPICS, Subscription

__version__ = "0.1.0"

Cloud9TraderClient = Client

__all__ = [
    "Client",
    "Cloud9TraderClient",
    "Cloud9Auth",
    "ClientConfig",
    "configure_logging",
    "EventEmitter",
    "ListenerHandle",
    "TIMEOUT",
    "Subscription",
    "AUTO_SUBSCRIBED_TOPICS",
    "ReferenceDataAPI",
    "ConnectionState",
    "ConnectionStatus",
    "Interval",
    "Status",
    "reconnect_delay",
    "Cloud9Error",
    "Cloud9ClientError",
    "Cloud9AuthError",
    "Cloud9HTTPError",
]
