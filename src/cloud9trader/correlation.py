"""Request id generation for correlating replies with their callers."""

import itertools
import secrets
import string

PREFIX_ALPHABET = string.digits + string.ascii_uppercase + string.ascii_lowercase
PREFIX_LENGTH = 5


def random_key(length: int = PREFIX_LENGTH) -> str:
    """Random alphanumeric string of the given length."""
    return "".join(secrets.choice(PREFIX_ALPHABET) for _ in range(length))


class RequestIdFactory:
    """
    Builds request ids of the form ``<prefix>/<n>``.

    The prefix is drawn once per instance and the counter never resets, so
    ids stay unique for the life of the client across reconnects.
    """

    def __init__(self, prefix_length: int = PREFIX_LENGTH):
        self.prefix = random_key(prefix_length) + "/"
        self._counter = itertools.count()

    def next_id(self) -> str:
        return f"{self.prefix}{next(self._counter)}"
