"""Interchangeable persistence backends behind the Sink contract.

- jsonl_sink.py: flat file (JSON Lines)
- sqlite_sink.py: embedded relational store
- postgres_sink.py: networked relational store (psycopg)
"""

from __future__ import annotations

from app.models.crawl import CrawlSettings

from .base import Sink, SinkError

__all__ = ["Sink", "SinkError", "open_sink"]


def open_sink(settings: CrawlSettings) -> Sink:
    """Build and open the sink selected by ``settings.sink``.

    Raises SinkError when the backing store cannot be opened.
    """
    sink: Sink
    if settings.sink == "jsonl":
        from .jsonl_sink import JsonlSink

        sink = JsonlSink(settings.jsonl_path)
    elif settings.sink == "sqlite":
        from .sqlite_sink import SqliteSink

        sink = SqliteSink(settings.sqlite_path, table=settings.sink_table)
    elif settings.sink == "postgres":
        from app.db.postgres_connector import get_pg_dsn

        from .postgres_sink import PostgresSink

        try:
            dsn = get_pg_dsn(settings.pg_dsn)
        except RuntimeError as exc:
            raise SinkError(str(exc)) from exc
        sink = PostgresSink(dsn, table=settings.sink_table)
    else:
        raise SinkError(f"Unknown sink kind: {settings.sink!r}")
    sink.open()
    return sink
