"""
Configuration management for the Cloud9Trader client.

Loads environment variables (and a local .env file when present) into a
typed configuration object.
"""

import logging
import os
from typing import Optional

from dotenv import load_dotenv

DEFAULT_SOCKET_URL = "wss://sockets.cloud9trader.com"
DEFAULT_INSTRUMENTS_URL = "https://www.cloud9trader.com/api/v1/instruments"
DEFAULT_HISTORICAL_PRICE_URL = "https://price.cloud9trader.com/historical"


class ClientConfig:
    """Configuration for the Cloud9Trader socket client."""

    def __init__(self):
        load_dotenv()

        # Credentials; secret is optional (public connections use the key only)
        self.API_KEY: Optional[str] = os.getenv("C9T_API_KEY")
        self.API_SECRET: Optional[str] = os.getenv("C9T_API_SECRET") or None

        # Endpoints
        self.SOCKET_URL: str = os.getenv("C9T_SOCKET_URL", DEFAULT_SOCKET_URL)
        self.INSTRUMENTS_URL: str = os.getenv("C9T_INSTRUMENTS_URL", DEFAULT_INSTRUMENTS_URL)
        self.HISTORICAL_PRICE_URL: str = os.getenv("C9T_HISTORICAL_PRICE_URL", DEFAULT_HISTORICAL_PRICE_URL)

        # Timeouts (seconds)
        self.REQUEST_TIMEOUT: float = float(os.getenv("C9T_REQUEST_TIMEOUT", "3.0"))
        self.SUBMIT_TIMEOUT: float = float(os.getenv("C9T_SUBMIT_TIMEOUT", "5.0"))
        self.PING_INTERVAL: float = float(os.getenv("C9T_PING_INTERVAL", "20.0"))
        self.PING_TIMEOUT: float = float(os.getenv("C9T_PING_TIMEOUT", "20.0"))

        # Logging
        self.LOG_LEVEL: str = os.getenv("C9T_LOG_LEVEL", "INFO")
        self.LOG_FORMAT: str = os.getenv("C9T_LOG_FORMAT", "%(asctime)s - %(name)s - %(levelname)s - %(message)s")

        self._validate_config()

    def _validate_config(self) -> None:
        """Validate configuration values."""
        for name in ("REQUEST_TIMEOUT", "SUBMIT_TIMEOUT", "PING_INTERVAL", "PING_TIMEOUT"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")

        if not isinstance(logging.getLevelName(self.LOG_LEVEL.upper()), int):
            raise ValueError(f"Unknown log level: {self.LOG_LEVEL}")

        if not self.SOCKET_URL.startswith(("ws://", "wss://")):
            raise ValueError(f"C9T_SOCKET_URL must be a ws:// or wss:// URL, got {self.SOCKET_URL}")

    def __repr__(self) -> str:
        return (
            f"ClientConfig(socket_url={self.SOCKET_URL}, "
            f"private={self.API_SECRET is not None}, "
            f"request_timeout={self.REQUEST_TIMEOUT}, "
            f"submit_timeout={self.SUBMIT_TIMEOUT})"
        )


def configure_logging(config: Optional[ClientConfig] = None) -> None:
    """Apply the configured log level and format to the root logger."""
    config = config or ClientConfig()
    logging.basicConfig(
        level=config.LOG_LEVEL.upper(),
        format=config.LOG_FORMAT,
    )
