"""
HMAC signature authentication for private Cloud9Trader socket connections.
"""

import base64
import binascii
import json
import logging
import os
import time
from typing import Any, Dict, Optional

from cryptography.hazmat.primitives import hashes, hmac

from .errors import Cloud9AuthError

logger = logging.getLogger(__name__)

HEADER_PREFIX = "x-c9t"


class HMACSigner:
    """HMAC-SHA256 signature generator using a base64-encoded shared secret."""

    def __init__(self, secret: str):
        """
        Initialize HMAC signer.

        Args:
            secret: Base64-encoded shared secret
        """
        try:
            self._key = base64.b64decode(secret, validate=True)
        except (binascii.Error, ValueError) as e:
            raise Cloud9AuthError(f"Secret is not valid base64: {e}")
        if not self._key:
            raise Cloud9AuthError("Secret must not be empty")

    def sign(self, *parts: str) -> str:
        """
        Sign the concatenation of parts.

        Returns:
            Hex-encoded signature string
        """
        mac = hmac.HMAC(self._key, hashes.SHA256())
        for part in parts:
            mac.update(part.encode("utf-8"))
        return mac.finalize().hex()


class Cloud9Auth:
    """Builds signed handshake headers from an API key and secret."""

    def __init__(self, key: str, secret: str):
        self.key = key
        self.signer = HMACSigner(secret)
        logger.info(f"Initialized Cloud9Trader auth with API key: {key}")

    @classmethod
    def from_env(cls) -> "Cloud9Auth":
        """
        Create Cloud9Auth instance from environment variables.

        Required environment variables:
        - C9T_API_KEY: The API key
        - C9T_API_SECRET: Base64-encoded API secret
        """
        key = os.getenv("C9T_API_KEY")
        secret = os.getenv("C9T_API_SECRET")

        if not key:
            raise Cloud9AuthError("C9T_API_KEY environment variable is required")
        if not secret:
            raise Cloud9AuthError("C9T_API_SECRET environment variable is required")

        return cls(key, secret)

    def create_auth_headers(self, path: str, data: Optional[Any] = None) -> Dict[str, str]:
        """
        Create authentication headers for a request.

        The signature is generated from: path + JSON body (if any) + nonce,
        where the nonce is the current time in epoch milliseconds.

        Args:
            path: Request path (e.g. '/')
            data: Optional JSON-serializable request body
        """
        nonce = str(int(time.time() * 1000))

        parts = [path]
        if data:
            parts.append(json.dumps(data, separators=(",", ":")))
        parts.append(nonce)

        headers = {
            f"{HEADER_PREFIX}-key": self.key,
            f"{HEADER_PREFIX}-nonce": nonce,
            f"{HEADER_PREFIX}-signature": self.signer.sign(*parts),
        }

        logger.debug(f"Created auth headers for {path}")
        return headers
