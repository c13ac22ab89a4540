from __future__ import annotations

import asyncio
import logging

from .models import EventEnvelope, FactType, NotifyChannel, ReplyReceived, TurnCompleted
from .notifier import Notifier
from .router import ReplyRouter
from .routing_memory import RoutingMemory

logger = logging.getLogger("turnbridge.projector")


class FactProjector:
    """Turns committed facts into side effects: notifications and reply routing.

    Side effects are best-effort. A fact that fails is logged and skipped so
    one bad fact never holds up the ones behind it.
    """

    def __init__(self, notifier: Notifier, router: ReplyRouter, memory: RoutingMemory):
        self.notifier = notifier
        self.router = router
        self.memory = memory

    async def handle(self, batch: list[EventEnvelope]) -> None:
        for envelope in batch:
            await self.handle_one(envelope)

    async def handle_one(self, envelope: EventEnvelope) -> None:
        try:
            if envelope.type == FactType.TURN_COMPLETED.value:
                turn = TurnCompleted.from_payload(envelope.payload)
            elif envelope.type == FactType.REPLY_RECEIVED.value:
                reply = ReplyReceived.from_payload(envelope.payload)
            else:
                logger.warning("Skipping unknown fact type %r at position=%s", envelope.type, envelope.position)
                return
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Skipping undecodable %s at position=%s: %s", envelope.type, envelope.position, exc)
            return

        if envelope.type == FactType.TURN_COMPLETED.value:
            await self._on_turn_completed(envelope.position, turn)
        else:
            await self._on_reply_received(envelope.position, reply)

    async def _on_turn_completed(self, position: int, turn: TurnCompleted) -> None:
        logger.info("TurnCompleted position=%s session=%s", position, turn.session_label)
        try:
            result = await asyncio.to_thread(self.notifier.notify, turn)
        except Exception:
            logger.exception("Notify failed for position=%s", position)
            return
        logger.info("Notified via %s for %s", result.channel.value, turn.session_label)
        if result.channel == NotifyChannel.AWAY and result.source is not None:
            self.memory.set_last_notification_source(result.source)

    async def _on_reply_received(self, position: int, reply: ReplyReceived) -> None:
        logger.info("ReplyReceived position=%s (%s chars)", position, len(reply.text))
        try:
            outcome = await asyncio.to_thread(self.router.route_reply, reply.text)
        except Exception:
            logger.exception("Routing failed for position=%s", position)
            return
        logger.info("Reply at position=%s routed: %s", position, outcome.value)
