"""Protocol interfaces for turnbridge components.

Every capability the coordination core depends on is injected behind one
of these protocols. Production implementations shell out to tmux,
osascript, say and the AI CLI; tests pass in-memory fakes.
"""

from __future__ import annotations

from typing import Any, Callable, Protocol, runtime_checkable

from .models import AgentAddress, EventEnvelope


@runtime_checkable
class SessionDirectory(Protocol):
    """Enumerates live agent sessions and reaches into them."""

    def discover(self) -> list[AgentAddress]:
        """Return the live sessions in enumeration order."""
        ...

    def is_alive(self, address: AgentAddress) -> bool:
        """Check that ``address`` still runs the agent program."""
        ...

    def relay(self, address: AgentAddress, text: str) -> None:
        """Type ``text`` into the session and submit it. Best-effort."""
        ...


@runtime_checkable
class Classifier(Protocol):
    """Detects untagged routing intent ("ask X to ...") in a message."""

    def classify(self, body: str, labels: list[str]) -> tuple[str, str] | None:
        """Return (chosen label, body without the routing phrase), or None for no opinion."""
        ...


@runtime_checkable
class Speaker(Protocol):
    def speak(self, message: str) -> None:
        """Say ``message`` aloud. Best-effort."""
        ...


@runtime_checkable
class Summarizer(Protocol):
    def summarize(self, last_user_prompt: str) -> str | None:
        """Return a few-word summary of the finished work, or None."""
        ...


@runtime_checkable
class TextSender(Protocol):
    """Outbound text messages to the operator."""

    def send(self, text: str, recipient: str | None = None, dedupe: bool = False) -> None:
        """Send ``text``; the configured recipient is used when none is given.

        With ``dedupe`` an identical message sent recently is dropped.
        """
        ...

    def is_duplicate_of_last(self, text: str) -> bool:
        """True when ``text`` equals the most recent outgoing message."""
        ...


@runtime_checkable
class Presence(Protocol):
    """Signals about where the operator is."""

    def is_screen_locked(self) -> bool:
        ...

    def is_session_focused(self, target_id: str) -> bool:
        """True when the operator's terminal is showing the session owning ``target_id``."""
        ...


@runtime_checkable
class EventStoreProtocol(Protocol):
    """Durable append-only fact log with checkpointed consumers."""

    def append(
        self,
        stream_id: str,
        expected_version: int,
        facts: list[tuple[str, dict[str, Any]]],
        actor_id: str = ...,
    ) -> list[EventEnvelope]:
        """Atomically append facts. Raises ConcurrencyError on version mismatch."""
        ...

    def read_after(self, position: int, limit: int = 100) -> list[EventEnvelope]:
        """Return committed facts with position greater than ``position``."""
        ...

    def load_checkpoint(self, consumer: str) -> int:
        ...

    def save_checkpoint(self, consumer: str, position: int) -> None:
        ...

    def add_append_listener(self, listener: Callable[[], None]) -> None:
        """Register a callback invoked (from the appending thread) after each commit."""
        ...

    def checkpoint(self) -> None:
        """Flush the write-ahead log. Requires no concurrent writers."""
        ...

    def close(self) -> None:
        ...
