"""SQLite persistence for submitted reports.

Reports are stored as JSON under ``<version>!<epoch ms>`` keys, so a
lexicographic scan returns them in submission order.

Usage::

    store = ReportStore("./storage/reports.db")
    store.open()                       # idempotent
    key = store.put_report(report_dict)
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import time
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

VERSION = "v1"

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS reports (
    key         TEXT PRIMARY KEY,
    body        TEXT NOT NULL,
    created_at  TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
"""


class ReportStore:
    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()

    def open(self) -> None:
        if self._conn is not None:
            return
        if str(self.path) != ":memory:":
            self.path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.path), check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.executescript(_SCHEMA_SQL)
        conn.commit()
        self._conn = conn

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("ReportStore is not open")
        return self._conn

    def put_report(self, report: dict[str, Any]) -> str:
        """Persist *report* and return its key."""
        body = json.dumps(report)
        with self._lock:
            key = self._next_key()
            self.conn.execute("INSERT INTO reports (key, body) VALUES (?, ?)", (key, body))
            self.conn.commit()
        logger.debug("Stored report %s (%d bytes)", key, len(body))
        return key

    def get_report(self, key: str) -> dict[str, Any] | None:
        row = self.conn.execute("SELECT body FROM reports WHERE key = ?", (key,)).fetchone()
        return json.loads(row["body"]) if row else None

    def list_keys(self, version: str = VERSION) -> list[str]:
        cur = self.conn.execute(
            "SELECT key FROM reports WHERE key LIKE ? ORDER BY key", (f"{version}!%",)
        )
        return [row["key"] for row in cur.fetchall()]

    def _next_key(self) -> str:
        # Reports in the same millisecond get a zero-padded suffix so keys sort in order.
        base = f"{VERSION}!{int(time.time() * 1000)}"
        key, n = base, 0
        while self.conn.execute("SELECT 1 FROM reports WHERE key = ?", (key,)).fetchone():
            n += 1
            key = f"{base}-{n:06d}"
        return key
