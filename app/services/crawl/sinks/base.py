from __future__ import annotations

import re

from ..base import MAX_EXTERNAL_ID, QuestionRecord


_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class SinkError(Exception):
    """A record could not be persisted, or the sink could not be opened."""


def validate_identifier(name: str) -> str:
    if not _IDENTIFIER_RE.match(name or ""):
        raise SinkError(f"Invalid table name: {name!r}")
    return name


class Sink:
    """Persistence contract shared by every backing store.

    insert() must be safe to call twice with the same external id: the second
    call returns False and writes nothing. Implementations enforce this at the
    storage layer where they can (unique constraint).
    """

    name: str = "base"

    def open(self) -> None:
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError

    def exists(self, external_id: int) -> bool:
        raise NotImplementedError

    def insert(self, record: QuestionRecord) -> bool:
        raise NotImplementedError

    def count(self) -> int:
        raise NotImplementedError

    def __enter__(self) -> "Sink":
        self.open()
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    @staticmethod
    def check_record(record: QuestionRecord) -> None:
        # external_id 0 is the extractor's marker for an unparsable link
        if not 0 < record.external_id <= MAX_EXTERNAL_ID:
            raise SinkError(f"Rejecting record with invalid external id {record.external_id}: {record.title!r}")
        if not (record.title or "").strip():
            raise SinkError(f"Rejecting record {record.external_id} with empty title")
