from __future__ import annotations

import asyncio
import logging
import sqlite3
import time
from pathlib import Path
from typing import Any, Callable

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .errors import EventStoreError
from .ingress import ChatDbIngress
from .models import InboundRow, ReplyReceived
from .store import append_reply_received

logger = logging.getLogger("turnbridge.tailer")


class ChatDbChangeHandler(FileSystemEventHandler):
    """Fires ``on_change`` when chat.db or its write-ahead log is created or modified."""

    def __init__(self, db_path: Path, on_change: Callable[[], None]):
        self.names = {db_path.name, f"{db_path.name}-wal"}
        self.on_change = on_change

    def _maybe_fire(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        if Path(str(event.src_path)).name in self.names:
            self.on_change()

    def on_modified(self, event: FileSystemEvent) -> None:
        self._maybe_fire(event)

    def on_created(self, event: FileSystemEvent) -> None:
        self._maybe_fire(event)


def collapse_twins(inbound: list[InboundRow], self_sent: list[InboundRow]) -> list[InboundRow]:
    """Merge both classes in ROWID order, collapsing cross-class same-text twins.

    When a text shows up in both classes (a self-chat message seen once as
    sent and once as received), only its highest-ROWID occurrence is kept
    and the other class's occurrences are recorded in ``covered_rowids``.
    Repeats within one class are separate messages and all survive.
    """
    by_text: dict[str, list[InboundRow]] = {}
    for row in [*inbound, *self_sent]:
        by_text.setdefault(row.text, []).append(row)

    dropped: set[int] = set()
    for rows in by_text.values():
        if len({row.is_from_me for row in rows}) < 2:
            continue
        keeper = max(rows, key=lambda row: row.rowid)
        for row in rows:
            if row.is_from_me != keeper.is_from_me:
                keeper.covered_rowids.append(row.rowid)
                dropped.add(row.rowid)

    merged = [row for row in [*inbound, *self_sent] if row.rowid not in dropped]
    merged.sort(key=lambda row: row.rowid)
    return merged


class InboundTailer:
    """Turns new Messages rows from the operator into ReplyReceived facts.

    Two in-memory cursors (received and self-sent rows) are seeded from the
    current MAX(ROWID) so history is never replayed. A cursor only moves
    past a row once the fact for it is in the store; a failed append ends
    the pass and the row is fetched again on the next poll.
    """

    def __init__(
        self,
        ingress: ChatDbIngress,
        store: Any,
        handle_ids: list[int],
        *,
        track_self_sent: bool = True,
        poll_interval_seconds: float = 5.0,
        reply_marker: str = "🤖",
    ):
        self.ingress = ingress
        self.store = store
        self.handle_ids = list(handle_ids)
        self.track_self_sent = track_self_sent
        self.poll_interval_seconds = poll_interval_seconds
        self.reply_marker = reply_marker
        self.inbound_cursor: int | None = None
        self.self_sent_cursor: int | None = None
        self._last_db_warning_at = 0.0

    def _throttled_db_warning(self, message: str, interval_seconds: float = 30.0) -> None:
        now = time.time()
        if (now - self._last_db_warning_at) >= interval_seconds:
            logger.warning(message)
            self._last_db_warning_at = now

    @property
    def seeded(self) -> bool:
        return self.inbound_cursor is not None and self.self_sent_cursor is not None

    def seed(self) -> bool:
        """Set both cursors to the current MAX(ROWID).

        When chat.db is missing or unreadable the cursors stay unset and
        ``poll()`` retries the seed; an existing but empty table seeds at 0.
        """
        if not self.ingress.db_path.exists():
            logger.warning("chat.db at %s is missing; cursors stay unseeded until it appears", self.ingress.db_path)
            return False
        try:
            latest = self.ingress.latest_rowid()
        except sqlite3.Error as exc:
            logger.warning("Could not read chat.db at %s (%s); cursors stay unseeded", self.ingress.db_path, exc)
            return False
        latest = latest or 0
        self.inbound_cursor = latest
        self.self_sent_cursor = latest
        logger.info("Tailer cursors seeded at rowid=%s", latest)
        return True

    def _is_excluded(self, row: InboundRow) -> bool:
        text = row.text.strip()
        return not text or (bool(self.reply_marker) and text.startswith(self.reply_marker))

    def _fetch(self) -> tuple[list[InboundRow], list[InboundRow]]:
        inbound = self.ingress.fetch_messages(self.inbound_cursor, self.handle_ids, is_from_me=False)
        self_sent: list[InboundRow] = []
        if self.track_self_sent:
            self_sent = self.ingress.fetch_messages(self.self_sent_cursor, self.handle_ids, is_from_me=True)
        return inbound, self_sent

    def poll(self) -> int:
        """Run one tailing pass. Returns the number of facts appended."""
        if not self.handle_ids:
            return 0
        if not self.ingress.db_path.exists():
            self._throttled_db_warning(
                f"Messages DB not found at {self.ingress.db_path}. "
                "Update turnbridge_messages_db_path and ensure Messages is enabled on this Mac."
            )
            return 0
        if not self.seeded:
            # History present at the first successful read is never replayed.
            self.seed()
            return 0
        try:
            inbound, self_sent = self._fetch()
        except sqlite3.OperationalError as exc:
            self._throttled_db_warning(
                f"Messages DB read failed ({exc}). Grant the terminal Full Disk Access and verify "
                f"turnbridge_messages_db_path={self.ingress.db_path}"
            )
            return 0

        for row in [*inbound, *self_sent]:
            row.text = row.text.strip()
        candidates = collapse_twins(
            [row for row in inbound if not self._is_excluded(row)],
            [row for row in self_sent if not self._is_excluded(row)],
        )

        done: set[int] = {row.rowid for row in [*inbound, *self_sent] if self._is_excluded(row)}
        pending_inbound = [row.rowid for row in inbound]
        pending_self = [row.rowid for row in self_sent]

        appended = 0
        for row in candidates:
            try:
                append_reply_received(self.store, ReplyReceived(text=row.text))
            except EventStoreError as exc:
                logger.warning("Append of rowid=%s failed, retrying next poll: %s", row.rowid, exc)
                break
            appended += 1
            logger.info(
                "Reply received rowid=%s from_me=%s chars=%s",
                row.rowid,
                row.is_from_me,
                len(row.text),
            )
            done.add(row.rowid)
            done.update(row.covered_rowids)

        self.inbound_cursor = _advance(self.inbound_cursor, pending_inbound, done)
        self.self_sent_cursor = _advance(self.self_sent_cursor, pending_self, done)
        return appended

    async def run(self, shutdown: asyncio.Event) -> None:
        await asyncio.to_thread(self.seed)
        loop = asyncio.get_running_loop()
        changes: asyncio.Queue[None] = asyncio.Queue()

        def _on_change() -> None:
            loop.call_soon_threadsafe(changes.put_nowait, None)

        observer = self._start_observer(_on_change)
        try:
            while not shutdown.is_set():
                woke_on_change = await _wait_for_trigger(shutdown, changes, self.poll_interval_seconds)
                if shutdown.is_set():
                    break
                if woke_on_change:
                    while not changes.empty():
                        changes.get_nowait()
                try:
                    await asyncio.to_thread(self.poll)
                except Exception as exc:
                    logger.exception("Tailer poll error: %s", exc)
        finally:
            if observer is not None:
                observer.stop()
                observer.join(timeout=5.0)
            logger.info("Tailer stopped at inbound=%s self_sent=%s", self.inbound_cursor, self.self_sent_cursor)

    def _start_observer(self, on_change: Callable[[], None]) -> Any:
        db_path = self.ingress.db_path
        handler = ChatDbChangeHandler(db_path, on_change)
        observer = Observer()
        try:
            observer.schedule(handler, str(db_path.parent), recursive=False)
            observer.start()
        except (OSError, RuntimeError) as exc:
            logger.warning(
                "File watcher unavailable for %s (%s); polling every %.1fs",
                db_path.parent,
                exc,
                self.poll_interval_seconds,
            )
            return None
        logger.info("File watcher active on %s", db_path.parent)
        return observer


def _advance(cursor: int, rowids: list[int], done: set[int]) -> int:
    """Move ``cursor`` through ascending ``rowids`` while each one is done."""
    for rowid in rowids:
        if rowid not in done:
            break
        cursor = max(cursor, rowid)
    return cursor


async def _wait_for_trigger(shutdown: asyncio.Event, changes: asyncio.Queue[None], timeout: float) -> bool:
    """Wait for shutdown, a change notification, or the timer. True when a change arrived."""
    shutdown_task = asyncio.ensure_future(shutdown.wait())
    change_task = asyncio.ensure_future(changes.get())
    try:
        done, _ = await asyncio.wait(
            [shutdown_task, change_task], timeout=timeout, return_when=asyncio.FIRST_COMPLETED
        )
    finally:
        shutdown_task.cancel()
        change_task.cancel()
    return change_task in done and not change_task.cancelled()
