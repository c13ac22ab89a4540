from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Any, Awaitable, Callable

from .errors import ConcurrencyError, EventStoreError
from .models import EventEnvelope, FactType, ReplyReceived, TurnCompleted

logger = logging.getLogger("turnbridge.store")

STREAM_ID = "turnbridge.events"
CONSUMER_NAME = "turnbridge.notifier"
SYSTEM_ACTOR = "system:turnbridge"

# expected_version sentinels for append()
ANY_VERSION = -2
NO_STREAM = -1


class SQLiteEventStore:
    """Append-only fact log on SQLite (WAL mode), thread-safe with one cached connection.

    Every fact gets a global ``position`` (commit order across streams) and a
    per-stream ``version`` starting at 0. Consumers keep their own checkpoint
    (the last position they finished handling) in ``consumer_checkpoints``.
    """

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()
        self._listeners: list[Callable[[], None]] = []

    def _connect(self) -> sqlite3.Connection:
        """Get or create a cached database connection (thread-safe)."""
        with self._lock:
            if self._conn is not None:
                return self._conn
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(self.db_path, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            self._conn = conn
            return conn

    def close(self) -> None:
        """Close the cached database connection."""
        with self._lock:
            if self._conn is not None:
                try:
                    self._conn.close()
                except sqlite3.Error as exc:
                    logger.warning("Error closing event store: %s", exc)
                self._conn = None

    def bootstrap(self) -> None:
        conn = self._connect()
        with self._lock:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS events (
                    position INTEGER PRIMARY KEY AUTOINCREMENT,
                    stream_id TEXT NOT NULL,
                    version INTEGER NOT NULL,
                    event_type TEXT NOT NULL,
                    payload_json TEXT NOT NULL,
                    actor_id TEXT NOT NULL,
                    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
                    UNIQUE (stream_id, version)
                );

                CREATE TABLE IF NOT EXISTS consumer_checkpoints (
                    consumer TEXT PRIMARY KEY,
                    position INTEGER NOT NULL,
                    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
                );

                CREATE INDEX IF NOT EXISTS idx_events_stream ON events(stream_id, version);
                """
            )
            conn.commit()

    def add_append_listener(self, listener: Callable[[], None]) -> None:
        self._listeners.append(listener)

    def append(
        self,
        stream_id: str,
        expected_version: int,
        facts: list[tuple[str, dict[str, Any]]],
        actor_id: str = SYSTEM_ACTOR,
    ) -> list[EventEnvelope]:
        """Atomically append ``facts`` (type, payload) to ``stream_id``.

        ``expected_version`` is ANY_VERSION, NO_STREAM, or the stream's
        current version; anything else raises ConcurrencyError and nothing
        is written.
        """
        if not facts:
            return []
        conn = self._connect()
        with self._lock:
            try:
                row = conn.execute(
                    "SELECT MAX(version) AS v FROM events WHERE stream_id = ?", (stream_id,)
                ).fetchone()
                current = NO_STREAM if row is None or row["v"] is None else int(row["v"])
                if expected_version != ANY_VERSION and expected_version != current:
                    raise ConcurrencyError(stream_id, expected_version, current)

                envelopes: list[EventEnvelope] = []
                version = current
                for event_type, payload in facts:
                    version += 1
                    payload_json = json.dumps(payload, ensure_ascii=False)
                    cursor = conn.execute(
                        """
                        INSERT INTO events(stream_id, version, event_type, payload_json, actor_id)
                        VALUES(?, ?, ?, ?, ?)
                        """,
                        (stream_id, version, event_type, payload_json, actor_id),
                    )
                    stored = conn.execute(
                        "SELECT * FROM events WHERE position = ?", (cursor.lastrowid,)
                    ).fetchone()
                    envelopes.append(self._row_to_envelope(stored))
                conn.commit()
            except ConcurrencyError:
                conn.rollback()
                raise
            except sqlite3.Error as exc:
                conn.rollback()
                raise EventStoreError(f"append to {stream_id!r} failed: {exc}") from exc

        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                logger.debug("Append listener failed", exc_info=True)
        return envelopes

    def read_after(self, position: int, limit: int = 100) -> list[EventEnvelope]:
        conn = self._connect()
        with self._lock:
            rows = conn.execute(
                "SELECT * FROM events WHERE position > ? ORDER BY position ASC LIMIT ?",
                (int(position), int(limit)),
            ).fetchall()
            return [self._row_to_envelope(row) for row in rows]

    def stream_version(self, stream_id: str) -> int:
        conn = self._connect()
        with self._lock:
            row = conn.execute(
                "SELECT MAX(version) AS v FROM events WHERE stream_id = ?", (stream_id,)
            ).fetchone()
            return NO_STREAM if row is None or row["v"] is None else int(row["v"])

    def load_checkpoint(self, consumer: str) -> int:
        conn = self._connect()
        with self._lock:
            row = conn.execute(
                "SELECT position FROM consumer_checkpoints WHERE consumer = ?", (consumer,)
            ).fetchone()
            return int(row["position"]) if row is not None else 0

    def save_checkpoint(self, consumer: str, position: int) -> None:
        conn = self._connect()
        with self._lock:
            conn.execute(
                """
                INSERT INTO consumer_checkpoints(consumer, position, updated_at)
                VALUES(?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(consumer) DO UPDATE SET
                    position=excluded.position,
                    updated_at=CURRENT_TIMESTAMP
                """,
                (consumer, int(position)),
            )
            conn.commit()

    def checkpoint(self) -> None:
        """Flush WAL pages into the main database file so the next open is clean."""
        conn = self._connect()
        with self._lock:
            conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")

    @staticmethod
    def _row_to_envelope(row: sqlite3.Row) -> EventEnvelope:
        return EventEnvelope(
            position=int(row["position"]),
            stream_id=row["stream_id"],
            version=int(row["version"]),
            type=row["event_type"],
            payload=json.loads(row["payload_json"]),
            actor_id=row["actor_id"],
            created_at=row["created_at"],
        )


def append_turn_completed(store: Any, turn: TurnCompleted) -> list[EventEnvelope]:
    return store.append(STREAM_ID, ANY_VERSION, [(FactType.TURN_COMPLETED.value, turn.to_payload())])


def append_reply_received(store: Any, reply: ReplyReceived) -> list[EventEnvelope]:
    return store.append(STREAM_ID, ANY_VERSION, [(FactType.REPLY_RECEIVED.value, reply.to_payload())])


BatchHandler = Callable[[list[EventEnvelope]], Awaitable[None]]


class Projector:
    """Delivers committed facts to one named consumer, at least once, in order.

    The checkpoint is saved only after the handler returns, so a crash
    mid-batch redelivers that batch on the next start.
    """

    def __init__(
        self,
        store: Any,
        consumer_name: str = CONSUMER_NAME,
        batch_size: int = 100,
        idle_seconds: float = 1.0,
    ):
        self.store = store
        self.consumer_name = consumer_name
        self.batch_size = max(1, int(batch_size))
        self.idle_seconds = idle_seconds

    async def run(self, handler: BatchHandler, shutdown: asyncio.Event) -> None:
        loop = asyncio.get_running_loop()
        wake = asyncio.Event()

        def _on_append() -> None:
            loop.call_soon_threadsafe(wake.set)

        self.store.add_append_listener(_on_append)
        position = await asyncio.to_thread(self.store.load_checkpoint, self.consumer_name)
        logger.info("Projector %s starting at position=%s", self.consumer_name, position)

        while not shutdown.is_set():
            wake.clear()
            batch = await asyncio.to_thread(self.store.read_after, position, self.batch_size)
            if batch:
                try:
                    await handler(batch)
                except Exception as exc:
                    logger.exception(
                        "Projector %s handler failed at position=%s: %s",
                        self.consumer_name,
                        batch[0].position,
                        exc,
                    )
                    await _wait_first(shutdown, None, self.idle_seconds)
                    continue
                position = batch[-1].position
                await asyncio.to_thread(self.store.save_checkpoint, self.consumer_name, position)
                continue
            await _wait_first(shutdown, wake, self.idle_seconds)

        logger.info("Projector %s shutting down at position=%s", self.consumer_name, position)


async def _wait_first(shutdown: asyncio.Event, wake: asyncio.Event | None, timeout: float) -> None:
    """Wait for shutdown, a wake-up, or the timeout, whichever comes first."""
    waiters = [asyncio.ensure_future(shutdown.wait())]
    if wake is not None:
        waiters.append(asyncio.ensure_future(wake.wait()))
    try:
        await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for waiter in waiters:
            waiter.cancel()
