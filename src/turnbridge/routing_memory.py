from __future__ import annotations

import logging
import threading
from typing import Any

from .models import AgentAddress

logger = logging.getLogger("turnbridge.routing_memory")


class RoutingMemory:
    """Where the last reply went, and which session last paged the operator.

    The two slots are independent: each has its own lock so the reply path
    and the notification path never wait on each other. Values are frozen
    addresses, so a read is already a snapshot and no lock is held while
    callers talk to tmux. Either slot may point at a session that has since
    died; readers check liveness themselves.
    """

    def __init__(self) -> None:
        self._routed_lock = threading.Lock()
        self._source_lock = threading.Lock()
        self._last_routed: AgentAddress | None = None
        self._last_notification_source: AgentAddress | None = None

    def set_last_routed(self, address: AgentAddress) -> None:
        with self._routed_lock:
            self._last_routed = address
        logger.debug("last_routed_agent=%s (%s)", address.label, address.target_id)

    def set_last_notification_source(self, address: AgentAddress) -> None:
        with self._source_lock:
            self._last_notification_source = address
        logger.debug("last_notification_source_agent=%s (%s)", address.label, address.target_id)

    def last_routed(self) -> AgentAddress | None:
        with self._routed_lock:
            return self._last_routed

    def last_notification_source(self) -> AgentAddress | None:
        with self._source_lock:
            return self._last_notification_source

    def refresh(self, address: AgentAddress) -> None:
        """Update the label of any slot already pointing at ``address``'s target.

        Empty slots stay empty.
        """
        with self._routed_lock:
            if address.same_target(self._last_routed):
                self._last_routed = address
        with self._source_lock:
            if address.same_target(self._last_notification_source):
                self._last_notification_source = address

    def snapshot(self) -> dict[str, Any]:
        routed = self.last_routed()
        source = self.last_notification_source()
        return {
            "last_routed_agent": _describe(routed),
            "last_notification_source_agent": _describe(source),
        }

    def clear(self) -> None:
        with self._routed_lock:
            self._last_routed = None
        with self._source_lock:
            self._last_notification_source = None


def _describe(address: AgentAddress | None) -> dict[str, str] | None:
    if address is None:
        return None
    return {
        "transport": address.transport,
        "target_id": address.target_id,
        "label": address.label,
    }
