"""Shared test fixtures for turnbridge tests."""

from __future__ import annotations

import sqlite3
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from turnbridge.models import AgentAddress, TmuxPaneAddress  # noqa: E402
from turnbridge.routing_memory import RoutingMemory  # noqa: E402


def pane(pane_id: str, label: str) -> AgentAddress:
    return TmuxPaneAddress(pane_id, label)


@dataclass
class FakeDirectory:
    """In-memory session directory."""

    sessions: list[AgentAddress] = field(default_factory=list)
    dead: set[str] = field(default_factory=set)
    relayed: list[tuple[str, str]] = field(default_factory=list)
    discover_calls: int = 0

    def discover(self) -> list[AgentAddress]:
        self.discover_calls += 1
        return list(self.sessions)

    def is_alive(self, address: AgentAddress) -> bool:
        return address.target_id not in self.dead and any(s.same_target(address) for s in self.sessions)

    def relay(self, address: AgentAddress, text: str) -> None:
        self.relayed.append((address.target_id, text))


class FakeClassifier:
    def __init__(self, answer: tuple[str, str] | None = None, error: Exception | None = None) -> None:
        self.answer = answer
        self.error = error
        self.calls: list[tuple[str, list[str]]] = []

    def classify(self, body: str, labels: list[str]) -> tuple[str, str] | None:
        self.calls.append((body, list(labels)))
        if self.error is not None:
            raise self.error
        return self.answer


class FakeEgress:
    """Records outbound operator messages."""

    def __init__(self, last_outgoing: str | None = None, fail: bool = False, fail_on: set[int] | None = None) -> None:
        self.messages: list[str] = []
        self.deduped: list[bool] = []
        self.last_outgoing = last_outgoing
        self.fail = fail
        self.fail_on = set(fail_on or ())
        self.attempts = 0

    def send(self, text: str, recipient: str | None = None, dedupe: bool = False) -> None:
        attempt = self.attempts
        self.attempts += 1
        if self.fail or attempt in self.fail_on:
            raise RuntimeError("osascript unavailable")
        self.messages.append(text)
        self.deduped.append(dedupe)

    def is_duplicate_of_last(self, text: str) -> bool:
        return self.last_outgoing is not None and self.last_outgoing.strip() == text.strip()


class FakeSpeaker:
    def __init__(self) -> None:
        self.spoken: list[str] = []

    def speak(self, message: str) -> None:
        self.spoken.append(message)


@dataclass
class FakePresence:
    locked: bool = False
    focused: set[str] = field(default_factory=set)

    def is_screen_locked(self) -> bool:
        return self.locked

    def is_session_focused(self, target_id: str) -> bool:
        return target_id in self.focused


class FakeSummarizer:
    def __init__(self, summary: str | None = "Fixed the login bug") -> None:
        self.summary = summary
        self.prompts: list[str] = []

    def summarize(self, last_user_prompt: str) -> str | None:
        self.prompts.append(last_user_prompt)
        return self.summary


class FakeEventStore:
    """Store double that records appends and can be told to fail."""

    def __init__(self) -> None:
        self.appended: list[tuple[str, dict[str, Any]]] = []
        self.fail_on: set[int] = set()
        self.listeners: list[Any] = []

    def append(self, stream_id: str, expected_version: int, facts: list[tuple[str, dict[str, Any]]], actor_id: str = "system:turnbridge") -> list[Any]:
        from turnbridge.errors import EventStoreError

        if len(self.appended) in self.fail_on:
            self.fail_on.discard(len(self.appended))
            raise EventStoreError("disk full")
        self.appended.extend(facts)
        for listener in self.listeners:
            listener()
        return []

    def add_append_listener(self, listener: Any) -> None:
        self.listeners.append(listener)

    def texts(self) -> list[str]:
        return [payload["text"] for _, payload in self.appended]


@pytest.fixture
def memory() -> RoutingMemory:
    return RoutingMemory()


def make_chat_db(path: Path) -> Path:
    """Create a minimal Messages database with the columns the tailer reads."""
    with sqlite3.connect(path) as conn:
        conn.execute(
            """
            CREATE TABLE message (
                ROWID INTEGER PRIMARY KEY AUTOINCREMENT,
                text TEXT,
                handle_id INTEGER,
                is_from_me INTEGER DEFAULT 0
            )
            """
        )
    return path


def add_message(path: Path, text: str | None, handle_id: int = 1, is_from_me: bool = False) -> int:
    with sqlite3.connect(path) as conn:
        cursor = conn.execute(
            "INSERT INTO message(text, handle_id, is_from_me) VALUES (?, ?, ?)",
            (text, handle_id, 1 if is_from_me else 0),
        )
        return int(cursor.lastrowid)


@pytest.fixture
def chat_db(tmp_path: Path) -> Path:
    return make_chat_db(tmp_path / "chat.db")
