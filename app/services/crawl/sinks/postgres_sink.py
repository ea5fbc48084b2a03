"""Networked relational sink (psycopg + SQL).

Schema creation is idempotent (CREATE IF NOT EXISTS) and uniqueness of
external_id is enforced by the table, so ON CONFLICT turns duplicates into
no-ops.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

import psycopg

from app.db import postgres_connector

from ..base import QuestionRecord
from .base import Sink, SinkError, validate_identifier

logger = logging.getLogger(__name__)


class PostgresSink(Sink):
    name = "postgres"

    def __init__(
        self,
        dsn: str,
        *,
        table: str = "questions",
        connect: Optional[Callable[[str], Any]] = None,
    ) -> None:
        self.dsn = dsn
        self.table = validate_identifier(table)
        self._connect = connect or postgres_connector.connect
        self._conn = None

    def open(self) -> None:
        try:
            self._conn = self._connect(self.dsn)
            self.init_schema()
        except (RuntimeError, psycopg.Error) as exc:
            raise SinkError(f"Cannot open Postgres sink: {exc}") from exc
        logger.info("Postgres sink ready (table %s)", self.table)

    def init_schema(self) -> None:
        with self._require_conn().cursor() as cur:
            cur.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self.table} (
                  id BIGSERIAL PRIMARY KEY,
                  external_id BIGINT NOT NULL UNIQUE,
                  title TEXT NOT NULL,
                  source_page INTEGER,
                  published_at TIMESTAMPTZ,
                  view_count BIGINT,
                  inserted_at TIMESTAMPTZ NOT NULL DEFAULT now()
                );
                """
            )

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def exists(self, external_id: int) -> bool:
        try:
            with self._require_conn().cursor() as cur:
                cur.execute(f"SELECT 1 FROM {self.table} WHERE external_id = %s", (int(external_id),))
                return cur.fetchone() is not None
        except psycopg.Error as exc:
            raise SinkError(f"Lookup of {external_id} failed: {exc}") from exc

    def insert(self, record: QuestionRecord) -> bool:
        self.check_record(record)
        try:
            with self._require_conn().cursor() as cur:
                cur.execute(
                    f"""
                    INSERT INTO {self.table} (external_id, title, source_page, published_at, view_count)
                    VALUES (%(external_id)s, %(title)s, %(source_page)s, %(published_at)s, %(view_count)s)
                    ON CONFLICT (external_id) DO NOTHING
                    """,
                    {
                        "external_id": record.external_id,
                        "title": record.title,
                        "source_page": record.source_page,
                        "published_at": record.published_at,
                        "view_count": record.view_count,
                    },
                )
                return cur.rowcount == 1
        except psycopg.Error as exc:
            raise SinkError(f"Insert of {record.external_id} failed: {exc}") from exc

    def count(self) -> int:
        with self._require_conn().cursor() as cur:
            cur.execute(f"SELECT COUNT(*) FROM {self.table}")
            return int(cur.fetchone()[0] or 0)

    def _require_conn(self):
        if self._conn is None:
            raise SinkError("Postgres sink is not open")
        return self._conn
