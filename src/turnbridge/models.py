from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any


class FactType(str, Enum):
    """Discriminators for facts appended to the event store."""

    TURN_COMPLETED = "TurnCompleted"
    REPLY_RECEIVED = "ReplyReceived"


class ResolutionStrategy(str, Enum):
    """Which step of the resolution chain picked the destination."""

    EXACT_TAG = "exact_tag"
    TAG_SUBSTRING = "tag_substring"
    SEMANTIC = "semantic"
    LAST_ROUTED = "last_routed"
    LAST_NOTIFICATION_SOURCE = "last_notification_source"
    DEFAULT_NAME = "default_name"


class NotifyChannel(str, Enum):
    AT_DESK = "at_desk"
    AWAY = "away"
    SKIPPED = "skipped"


class RouteOutcome(str, Enum):
    """Result of routing one inbound reply."""

    DELIVERED = "delivered"
    NO_SESSIONS = "no_sessions"
    NO_MATCH = "no_match"
    TARGET_GONE = "target_gone"


@dataclass(frozen=True, slots=True)
class AgentAddress:
    """How to reach one live agent session.

    Identity is (transport, target_id); the label is display-only and may
    change while the session lives.
    """

    transport: str
    target_id: str
    label: str

    def same_target(self, other: AgentAddress | None) -> bool:
        if other is None:
            return False
        return self.transport == other.transport and self.target_id == other.target_id


class TmuxPaneAddress(AgentAddress):
    """A tmux pane, addressed by its server-unique pane id (e.g. ``%12``)."""

    __slots__ = ()

    def __init__(self, pane_id: str, label: str) -> None:
        super().__init__("tmux", pane_id, label)

    @property
    def pane_id(self) -> str:
        return self.target_id


@dataclass(frozen=True, slots=True)
class TurnCompleted:
    session_id: str
    session_label: str
    last_user_prompt: str = ""
    assistant_message: str = ""
    main_context: str = ""

    def to_payload(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> TurnCompleted:
        return cls(
            session_id=str(payload["session_id"]),
            session_label=str(payload["session_label"]),
            last_user_prompt=str(payload.get("last_user_prompt", "")),
            assistant_message=str(payload.get("assistant_message", "")),
            main_context=str(payload.get("main_context", "")),
        )

    def source_address(self) -> AgentAddress:
        return TmuxPaneAddress(self.session_id, self.session_label)


@dataclass(frozen=True, slots=True)
class ReplyReceived:
    text: str

    def to_payload(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> ReplyReceived:
        return cls(text=str(payload["text"]))


@dataclass(frozen=True, slots=True)
class EventEnvelope:
    """A committed fact as read back from the store."""

    position: int
    stream_id: str
    version: int
    type: str
    payload: dict[str, Any]
    actor_id: str
    created_at: str


@dataclass(slots=True)
class InboundRow:
    """One qualifying row of the Messages database."""

    rowid: int
    text: str
    is_from_me: bool
    covered_rowids: list[int] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class Resolution:
    address: AgentAddress
    body: str
    strategy: ResolutionStrategy


@dataclass(frozen=True, slots=True)
class NotifyResult:
    channel: NotifyChannel
    source: AgentAddress | None = None
