"""Error hierarchy for the Cloud9Trader client.

All client errors inherit from Cloud9Error. Only construction, signing and
the no-callback HTTP helpers raise; socket failures are reported through the
"error" and "status" events instead.
"""


class Cloud9Error(Exception):
    """Base exception for all Cloud9Trader client errors."""
    pass


class Cloud9ClientError(Cloud9Error):
    """Invalid client construction or usage."""
    pass


class Cloud9AuthError(Cloud9Error):
    """Credential or signing error."""
    pass


class Cloud9HTTPError(Cloud9Error):
    """Reference data HTTP request failed."""

    def __init__(self, message: str, status_code: int = 0, response_body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body
