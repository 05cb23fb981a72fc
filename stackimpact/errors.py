"""Normalization of error payloads passed to Agent.record_error."""
from typing import Any


class RecordedError(Exception):
    """Error built from a non-exception value; str() is the value's default rendering."""

    def __init__(self, value: Any) -> None:
        super().__init__(str(value))
        self.value = value


def normalize_error(payload: Any) -> BaseException:
    """Exceptions pass through unchanged; anything else is wrapped in RecordedError."""
    if isinstance(payload, BaseException):
        return payload
    return RecordedError(payload)
