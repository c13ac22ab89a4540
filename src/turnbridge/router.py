from __future__ import annotations

import logging

from .models import AgentAddress, RouteOutcome
from .protocols import SessionDirectory, TextSender
from .resolution import ResolutionEngine, parse_tag
from .routing_memory import RoutingMemory

logger = logging.getLogger("turnbridge.router")

NO_SESSIONS_NOTICE = "No active agent sessions found."


def _labels(sessions: list[AgentAddress]) -> str:
    return ", ".join(session.label for session in sessions)


class ReplyRouter:
    """Delivers one operator reply into the session it is meant for.

    discover, resolve, re-check liveness, relay, remember, confirm. Every
    failure path ends with a notice to the operator instead of an exception.
    """

    def __init__(
        self,
        directory: SessionDirectory,
        engine: ResolutionEngine,
        memory: RoutingMemory,
        egress: TextSender,
        relay_prefix: str = "📱",
    ):
        self.directory = directory
        self.engine = engine
        self.memory = memory
        self.egress = egress
        self.relay_prefix = relay_prefix

    def _notify(self, message: str) -> None:
        try:
            self.egress.send(message)
        except Exception as exc:
            logger.warning("Failed to send operator notice %r: %s", message, exc)

    def route_reply(self, text: str) -> RouteOutcome:
        tag, body = parse_tag(text)
        sessions = self.directory.discover()
        logger.info("Routing reply (%s chars, tag=%r) across %s session(s)", len(text), tag, len(sessions))

        if not sessions:
            self._notify(NO_SESSIONS_NOTICE)
            return RouteOutcome.NO_SESSIONS

        resolution = self.engine.resolve(tag, body, sessions)
        if resolution is None:
            available = _labels(sessions)
            if tag is not None:
                self._notify(f"No session matching '{tag}'. Available: {available}")
            else:
                self._notify(f"No active session found. Available: {available}")
            return RouteOutcome.NO_MATCH

        target = resolution.address
        if not self.directory.is_alive(target):
            others = _labels([s for s in sessions if not s.same_target(target)])
            self._notify(f"Session {target.label} is no longer active. Available: {others}")
            return RouteOutcome.TARGET_GONE

        relayed = f"{self.relay_prefix} {resolution.body}" if self.relay_prefix else resolution.body
        logger.info("Routing reply to %s (%s) via %s", target.label, target.target_id, resolution.strategy.value)
        self.directory.relay(target, relayed)
        self.memory.set_last_routed(target)
        self._notify(f"✓ Delivered to [{target.label}]")
        return RouteOutcome.DELIVERED
