"""Exception hierarchy for turnbridge.

Transient failures of external tools (tmux, osascript, the AI CLI) are not
exceptions here: they are logged where they happen and treated as "no
result". These types cover the failures callers must act on.
"""

from __future__ import annotations


class TurnbridgeError(Exception):
    """Base exception for turnbridge."""


class ConfigurationError(TurnbridgeError):
    """Settings are unusable; raised once at startup with every problem found."""

    def __init__(self, problems: list[str]):
        self.problems = list(problems)
        super().__init__("invalid configuration: " + "; ".join(self.problems))


class EventStoreError(TurnbridgeError):
    """The durable event store could not complete an operation."""


class ConcurrencyError(EventStoreError):
    """An append's expected stream version did not match the stored one."""

    def __init__(self, stream_id: str, expected: int, actual: int):
        self.stream_id = stream_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"stream {stream_id!r} is at version {actual}, expected {expected}"
        )
