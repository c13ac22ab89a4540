from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Any

from .models import InboundRow

logger = logging.getLogger("turnbridge.ingress")


class ChatDbIngress:
    """Reads message rows from the local Messages SQLite database."""

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self._conn: sqlite3.Connection | None = None

    def _connect(self) -> sqlite3.Connection:
        if self._conn is not None:
            return self._conn
        # Read-only URI mode so we never mutate the Messages DB.
        uri = f"file:{self.db_path}?mode=ro"
        conn = sqlite3.connect(uri, uri=True, timeout=2.0, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA query_only=ON")
        self._conn = conn
        return conn

    def _reset_connection(self) -> None:
        if self._conn is not None:
            try:
                self._conn.close()
            except sqlite3.Error as exc:
                logger.debug("Ignoring error while closing chat.db connection: %s", exc)
            self._conn = None

    def close(self) -> None:
        self._reset_connection()

    def _query_all(self, query: str, params: list[Any]) -> list[sqlite3.Row]:
        # Retry once after reconnect for transient DB-open failures.
        for attempt in range(2):
            try:
                conn = self._connect()
                return conn.execute(query, params).fetchall()
            except sqlite3.OperationalError as exc:
                self._reset_connection()
                if "unable to open database file" not in str(exc).lower() or attempt == 1:
                    raise
        return []

    def fetch_messages(
        self,
        since_rowid: int,
        handle_ids: list[int],
        is_from_me: bool,
        limit: int = 200,
    ) -> list[InboundRow]:
        """Rows after ``since_rowid`` from ``handle_ids`` with non-empty text, ascending ROWID."""
        if not handle_ids or not self.db_path.exists():
            return []
        placeholders = ",".join(["?"] * len(handle_ids))
        query = f"""
            SELECT m.ROWID AS rowid, m.text AS text, m.is_from_me AS is_from_me
            FROM message m
            WHERE m.ROWID > ?
              AND m.handle_id IN ({placeholders})
              AND m.is_from_me = ?
              AND m.text IS NOT NULL
              AND m.text != ''
            ORDER BY m.ROWID ASC
            LIMIT {int(limit)}
        """
        params: list[Any] = [int(since_rowid), *[int(h) for h in handle_ids], 1 if is_from_me else 0]
        rows = self._query_all(query, params)
        return [
            InboundRow(rowid=int(row["rowid"]), text=row["text"], is_from_me=bool(row["is_from_me"]))
            for row in rows
        ]

    def latest_rowid(self) -> int | None:
        if not self.db_path.exists():
            return None
        rows = self._query_all("SELECT MAX(ROWID) AS max_rowid FROM message", [])
        if not rows:
            return None
        row = rows[0]
        if row is None or row[0] is None:
            return None
        return int(row[0])

    def last_outgoing_text(self, handle_id: int) -> str | None:
        """Text of the most recent message we sent to ``handle_id``, if any."""
        if not self.db_path.exists():
            return None
        rows = self._query_all(
            """
            SELECT text FROM message
            WHERE handle_id = ? AND is_from_me = 1
            ORDER BY ROWID DESC LIMIT 1
            """,
            [int(handle_id)],
        )
        if not rows or rows[0]["text"] is None:
            return None
        text = str(rows[0]["text"]).strip()
        return text or None
