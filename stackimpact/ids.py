"""
Correlation id generation.

An id is the SHA-1 of (unix seconds, random int in [0, 1e9), call counter) rendered
as 40 lowercase hex characters. The counter keeps ids distinct within one second.
"""
import hashlib
import random
import threading
import time


def sha1_string(s: str) -> str:
    """Lowercase hex SHA-1 digest of the UTF-8 encoding of s."""
    return hashlib.sha1(s.encode("utf-8")).hexdigest()


class IdGenerator:
    """Produces a fresh correlation id on each call."""

    def __init__(self) -> None:
        self._next_id = 0
        self._lock = threading.Lock()

    @property
    def next_id(self) -> int:
        """Number of ids issued so far."""
        return self._next_id

    def __call__(self) -> str:
        with self._lock:
            self._next_id += 1
            counter = self._next_id
        raw = f"{int(time.time())}{random.randrange(1_000_000_000)}{counter}"
        return sha1_string(raw)
