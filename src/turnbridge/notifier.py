from __future__ import annotations

import logging

from .models import NotifyChannel, NotifyResult, TurnCompleted
from .protocols import Presence, Speaker, Summarizer, TextSender
from .speech import SUMMARY_FALLBACK

logger = logging.getLogger("turnbridge.notifier")

AWAY_BODY_CHARS = 280


def split_body(body: str) -> tuple[str, str | None]:
    """Separate a trailing question from the sentences before it.

    ``"Build succeeded. Should I deploy?"`` gives
    ``("Build succeeded.", "Should I deploy?")``. A message that is only a
    question, or has none, comes back whole.
    """
    q_pos = body.rfind("?")
    if q_pos != -1:
        sentence_start = body.rfind(".", 0, q_pos) + 1
        question = body[sentence_start : q_pos + 1].strip()
        main = body[:sentence_start].strip()
        if main and question:
            return main, question
    return body.strip(), None


class Notifier:
    """Tells the operator a turn finished: spoken at the desk, iMessage when away."""

    def __init__(
        self,
        egress: TextSender,
        speaker: Speaker,
        presence: Presence,
        summarizer: Summarizer | None = None,
        recipient: str = "",
        skip_if_session_active: bool = True,
    ):
        self.egress = egress
        self.speaker = speaker
        self.presence = presence
        self.summarizer = summarizer
        self.recipient = recipient
        self.skip_if_session_active = skip_if_session_active

    def notify(self, turn: TurnCompleted) -> NotifyResult:
        if self.skip_if_session_active and self.presence.is_session_focused(turn.session_id):
            logger.info("Notification skipped: session of %s is in focus", turn.session_label)
            return NotifyResult(NotifyChannel.SKIPPED)

        if self.presence.is_screen_locked():
            return self.notify_away(turn)
        self.notify_at_desk(turn)
        return NotifyResult(NotifyChannel.AT_DESK)

    def notify_away(self, turn: TurnCompleted) -> NotifyResult:
        if not self.recipient:
            logger.warning("iMessage recipient not configured")
            return NotifyResult(NotifyChannel.AWAY)

        body = turn.assistant_message[:AWAY_BODY_CHARS].replace("\n", " ")
        main_body, question = split_body(body)
        message = f"[{turn.session_label}] {main_body} ({turn.main_context})"

        if self.egress.is_duplicate_of_last(message):
            logger.info("iMessage skipped (duplicate of last outgoing message)")
            return NotifyResult(NotifyChannel.AWAY)

        try:
            self.egress.send(message, dedupe=True)
        except Exception as exc:
            logger.warning("iMessage notification failed for %s: %s", turn.session_label, exc)
            return NotifyResult(NotifyChannel.AWAY)
        logger.info("iMessage notification sent for %s", turn.session_label)
        result = NotifyResult(NotifyChannel.AWAY, turn.source_address())

        if question is not None:
            try:
                self.egress.send(question)
            except Exception as exc:
                logger.warning("iMessage question failed for %s: %s", turn.session_label, exc)
            else:
                logger.info("iMessage question sent for %s", turn.session_label)
        return result

    def notify_at_desk(self, turn: TurnCompleted) -> None:
        summary: str | None = None
        if self.summarizer is not None:
            try:
                summary = self.summarizer.summarize(turn.last_user_prompt)
            except Exception as exc:
                logger.warning("Summary generation failed: %s", exc)
        message = f"{summary or SUMMARY_FALLBACK} on {turn.main_context} and waiting for further instructions"
        self.speaker.speak(message)
