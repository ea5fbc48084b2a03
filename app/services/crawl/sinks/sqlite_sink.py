"""Embedded relational sink backed by SQLite.

Uniqueness of external_id is enforced by the schema, so a duplicate insert is
a no-op even if exists() was skipped.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Optional

from ..base import QuestionRecord, now_iso
from .base import Sink, SinkError, validate_identifier

logger = logging.getLogger(__name__)


class SqliteSink(Sink):
    name = "sqlite"

    def __init__(self, path: str, *, table: str = "questions") -> None:
        self.path = path
        self.table = validate_identifier(table)
        self._conn: Optional[sqlite3.Connection] = None

    def open(self) -> None:
        try:
            if self.path != ":memory:":
                Path(self.path).parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self.path)
            self._conn.row_factory = sqlite3.Row
            self.init_schema()
        except (sqlite3.Error, OSError) as exc:
            raise SinkError(f"Cannot open SQLite sink {self.path}: {exc}") from exc
        logger.info("SQLite sink ready at %s (table %s)", self.path, self.table)

    def init_schema(self) -> None:
        conn = self._require_conn()
        conn.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {self.table} (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                external_id INTEGER NOT NULL UNIQUE,
                title TEXT NOT NULL,
                source_page INTEGER,
                published_at TEXT,
                view_count INTEGER,
                inserted_at TEXT NOT NULL
            )
            """
        )
        conn.commit()

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def exists(self, external_id: int) -> bool:
        conn = self._require_conn()
        try:
            row = conn.execute(
                f"SELECT 1 FROM {self.table} WHERE external_id = ?", (int(external_id),)
            ).fetchone()
        except (sqlite3.Error, OverflowError) as exc:
            raise SinkError(f"Lookup of {external_id} failed: {exc}") from exc
        return row is not None

    def insert(self, record: QuestionRecord) -> bool:
        self.check_record(record)
        conn = self._require_conn()
        try:
            cur = conn.execute(
                f"""
                INSERT OR IGNORE INTO {self.table}
                    (external_id, title, source_page, published_at, view_count, inserted_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    record.external_id,
                    record.title,
                    record.source_page,
                    record.published_at.isoformat() if record.published_at else None,
                    record.view_count,
                    now_iso(),
                ),
            )
            conn.commit()
        except (sqlite3.Error, OverflowError) as exc:
            conn.rollback()
            raise SinkError(f"Insert of {record.external_id} failed: {exc}") from exc
        return cur.rowcount == 1

    def count(self) -> int:
        conn = self._require_conn()
        return int(conn.execute(f"SELECT COUNT(*) FROM {self.table}").fetchone()[0])

    def _require_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise SinkError("SQLite sink is not open")
        return self._conn
