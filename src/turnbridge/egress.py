from __future__ import annotations

import hashlib
import logging
import re
import subprocess
import threading
import time

from .ingress import ChatDbIngress
from .utils import applescript_quote, sanitise_for_applescript

logger = logging.getLogger("turnbridge.egress")


class IMessageEgress:
    """Sends operator-facing iMessages through Messages.app via osascript.

    Every outgoing message is prefixed with ``reply_marker`` so the tailer
    can tell our own messages from the operator's replies.
    """

    def __init__(
        self,
        recipient: str,
        reply_marker: str = "🤖",
        ingress: ChatDbIngress | None = None,
        handle_ids: list[int] | None = None,
        max_chunk_chars: int = 1200,
        retries: int = 3,
        suppress_duplicate_outbound_seconds: float = 90.0,
    ):
        self.recipient = recipient
        self.reply_marker = reply_marker
        self.ingress = ingress
        self.handle_ids = list(handle_ids or [])
        self.max_chunk_chars = max_chunk_chars
        self.retries = retries
        self.suppress_duplicate_outbound_seconds = suppress_duplicate_outbound_seconds
        self._recent_fingerprints: dict[str, float] = {}
        self._last_sent: str | None = None
        self._lock = threading.Lock()

    def _chunk(self, text: str) -> list[str]:
        if len(text) <= self.max_chunk_chars:
            return [text]
        chunks = []
        remaining = text
        while remaining:
            chunks.append(remaining[: self.max_chunk_chars])
            remaining = remaining[self.max_chunk_chars :]
        return chunks

    @staticmethod
    def _osascript_send(recipient: str, text: str) -> None:
        script = (
            f'tell application "Messages" to send "{applescript_quote(text)}" '
            f'to buddy "{applescript_quote(recipient)}"'
        )
        subprocess.run(["osascript", "-e", script], check=True, capture_output=True, text=True, timeout=30)

    @staticmethod
    def _normalize_text(text: str) -> str:
        cleaned = (text or "").replace("’", "'").replace("‘", "'")
        return re.sub(r"\s+", " ", cleaned).strip().lower()

    def _fingerprint(self, recipient: str, text: str) -> str:
        payload = f"{recipient.strip()}:{self._normalize_text(text)}"
        return hashlib.sha256(payload.encode()).hexdigest()

    def _gc_recent(self, now: float) -> None:
        expired = [
            fingerprint
            for fingerprint, ts in self._recent_fingerprints.items()
            if (now - ts) > self.suppress_duplicate_outbound_seconds
        ]
        for fingerprint in expired:
            self._recent_fingerprints.pop(fingerprint, None)

    def strip_marker(self, text: str) -> str:
        stripped = text.strip()
        if self.reply_marker and stripped.startswith(self.reply_marker):
            stripped = stripped[len(self.reply_marker) :]
        return stripped.strip()

    def is_duplicate_of_last(self, text: str) -> bool:
        """Compare ``text`` with the most recent message sent to the operator.

        The Messages database is authoritative (it also sees messages sent
        by a previous run); the in-memory copy covers a missing database.
        """
        last: str | None = None
        if self.ingress is not None and self.handle_ids:
            try:
                last = self.ingress.last_outgoing_text(self.handle_ids[0])
            except Exception as exc:
                logger.warning("Could not read last outgoing message: %s", exc)
        if last is None:
            with self._lock:
                last = self._last_sent
        if last is None:
            return False
        # Compare what Messages actually received, after AppleScript sanitising.
        return sanitise_for_applescript(self.strip_marker(last)) == sanitise_for_applescript(text.strip())

    def send(self, text: str, recipient: str | None = None, dedupe: bool = False) -> None:
        """Send ``text`` to ``recipient`` (default: the configured one).

        Only ``dedupe`` sends are checked against the recent-fingerprint
        window; operator notices such as delivery confirmations always go out.
        """
        target = recipient or self.recipient
        if not target:
            logger.warning("iMessage recipient not configured; dropping %s-char message", len(text))
            return
        outbound = f"{self.reply_marker} {text.strip()}" if self.reply_marker else text.strip()

        now = time.time()
        fingerprint = self._fingerprint(target, outbound)
        with self._lock:
            self._gc_recent(now)
            last_ts = self._recent_fingerprints.get(fingerprint)
        if dedupe and last_ts is not None and (now - last_ts) <= self.suppress_duplicate_outbound_seconds:
            logger.info(
                "Suppressing duplicate outbound message to %s (%s chars) within %.1fs window",
                target,
                len(outbound),
                self.suppress_duplicate_outbound_seconds,
            )
            return

        logger.info("Sending iMessage to %s (%s chars)", target, len(outbound))
        for chunk in self._chunk(outbound):
            last_error: Exception | None = None
            for attempt in range(1, self.retries + 1):
                try:
                    self._osascript_send(target, chunk)
                    last_error = None
                    break
                except (OSError, subprocess.SubprocessError) as exc:
                    last_error = exc
                    logger.warning("Send retry %s failed for %s: %s", attempt, target, exc)
                    time.sleep(0.25 * attempt)
            if last_error is not None:
                raise RuntimeError(f"Failed to send iMessage after retries: {last_error}") from last_error

        with self._lock:
            self._recent_fingerprints[fingerprint] = time.time()
            self._last_sent = outbound
