"""Pick exactly one live session for an operator reply.

The chain runs in strict priority order and the first step that names a
live session wins:

1. exact tag match, then tag substring match (a tag never falls through);
2. semantic classification of untagged text, when several sessions exist;
3. the session the previous reply went to;
4. the session whose away notification the operator last received;
5. the first session whose label contains the default agent name.
"""

from __future__ import annotations

import logging

from .models import AgentAddress, Resolution, ResolutionStrategy
from .protocols import Classifier
from .routing_memory import RoutingMemory

logger = logging.getLogger("turnbridge.resolution")


def parse_tag(text: str) -> tuple[str | None, str]:
    """Split a leading ``[tag]`` off ``text``.

    ``"[main] hello"`` gives ``("main", "hello")``. Without a leading
    bracket, or with an unclosed one, the text comes back untouched.
    """
    if text.startswith("["):
        end = text.find("]", 1)
        if end != -1:
            return text[1:end], text[end + 1 :].strip()
    return None, text


def match_label(answer: str, sessions: list[AgentAddress]) -> AgentAddress | None:
    """Exact label first, then case-insensitive containment in either direction."""
    for session in sessions:
        if session.label == answer:
            return session
    lowered = answer.lower()
    for session in sessions:
        label = session.label.lower()
        if label in lowered or lowered in label:
            return session
    return None


def _find_target(sessions: list[AgentAddress], remembered: AgentAddress) -> AgentAddress | None:
    for session in sessions:
        if session.same_target(remembered):
            return session
    return None


class ResolutionEngine:
    def __init__(
        self,
        memory: RoutingMemory,
        classifier: Classifier | None = None,
        default_name: str = "my-agent",
    ):
        self.memory = memory
        self.classifier = classifier
        self.default_name = default_name

    def resolve(self, tag: str | None, body: str, sessions: list[AgentAddress]) -> Resolution | None:
        logger.info("Resolving reply: tag=%r available=%s", tag, [s.label for s in sessions])

        if tag is not None:
            return self._resolve_tag(tag, body, sessions)

        semantic = self._resolve_semantic(body, sessions)
        if semantic is not None:
            return semantic

        last = self.memory.last_routed()
        if last is None:
            logger.info("No last routed agent")
        else:
            found = _find_target(sessions, last)
            if found is not None:
                logger.info("Resolved %s via last routed agent", found.label)
                return Resolution(found, body, ResolutionStrategy.LAST_ROUTED)
            logger.info("Last routed agent %s no longer alive", last.label)

        source = self.memory.last_notification_source()
        if source is None:
            logger.info("No last notification source agent")
        else:
            found = _find_target(sessions, source)
            if found is not None:
                logger.info("Resolved %s via last notification source", found.label)
                return Resolution(found, body, ResolutionStrategy.LAST_NOTIFICATION_SOURCE)
            logger.info("Last notification source %s no longer alive", source.label)

        if self.default_name:
            needle = self.default_name.lower()
            for session in sessions:
                if needle in session.label.lower():
                    logger.info("Resolved %s via default name %r", session.label, self.default_name)
                    return Resolution(session, body, ResolutionStrategy.DEFAULT_NAME)

        logger.info("Resolution failed: no matching agent")
        return None

    def _resolve_tag(self, tag: str, body: str, sessions: list[AgentAddress]) -> Resolution | None:
        for session in sessions:
            if session.label == tag:
                logger.info("Resolved %s via exact tag", session.label)
                return Resolution(session, body, ResolutionStrategy.EXACT_TAG)
        needle = tag.lower()
        for session in sessions:
            if needle in session.label.lower():
                logger.info("Resolved %s via tag substring", session.label)
                return Resolution(session, body, ResolutionStrategy.TAG_SUBSTRING)
        logger.info("No session matched tag %r", tag)
        return None

    def _resolve_semantic(self, body: str, sessions: list[AgentAddress]) -> Resolution | None:
        if self.classifier is None or len(sessions) <= 1:
            return None
        try:
            verdict = self.classifier.classify(body, [s.label for s in sessions])
        except Exception as exc:
            logger.warning("Semantic classifier failed: %s", exc)
            return None
        if verdict is None:
            logger.info("Semantic classifier had no opinion")
            return None
        answer, cleaned = verdict
        found = match_label(answer, sessions)
        if found is None:
            logger.info("Semantic answer %r matched no session", answer)
            return None
        logger.info("Resolved %s via semantic match", found.label)
        return Resolution(found, cleaned, ResolutionStrategy.SEMANTIC)
