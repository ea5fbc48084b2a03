from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import IO, Optional, Set

from ..base import QuestionRecord, canonical_json, now_iso
from .base import Sink, SinkError

logger = logging.getLogger(__name__)


class JsonlSink(Sink):
    """Flat-file sink: one JSON object per line, keyed by external_id.

    The id index is rebuilt from the file at open(). Each insert is flushed
    and fsynced so the checkpoint never runs ahead of the data on disk.
    """

    name = "jsonl"

    def __init__(self, path: str) -> None:
        self.path = Path(path)
        self._ids: Set[int] = set()
        self._fh: Optional[IO[str]] = None

    def open(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            if self.path.exists():
                self._load_ids()
            self._fh = open(self.path, "a", encoding="utf-8")
            if self._ends_mid_line():
                self._fh.write("\n")
                self._fh.flush()
        except OSError as exc:
            raise SinkError(f"Cannot open JSONL sink {self.path}: {exc}") from exc
        logger.info("JSONL sink ready at %s (%d existing records)", self.path, len(self._ids))

    def close(self) -> None:
        if self._fh is not None:
            self._fh.close()
            self._fh = None

    def exists(self, external_id: int) -> bool:
        return int(external_id) in self._ids

    def insert(self, record: QuestionRecord) -> bool:
        self.check_record(record)
        if self._fh is None:
            raise SinkError("JSONL sink is not open")
        if record.external_id in self._ids:
            return False
        rec = record.to_dict()
        rec["inserted_at"] = now_iso()
        try:
            self._fh.write(canonical_json(rec) + "\n")
            self._fh.flush()
            os.fsync(self._fh.fileno())
        except OSError as exc:
            raise SinkError(f"Write to {self.path} failed: {exc}") from exc
        self._ids.add(record.external_id)
        return True

    def count(self) -> int:
        return len(self._ids)

    def _ends_mid_line(self) -> bool:
        if not self.path.exists() or self.path.stat().st_size == 0:
            return False
        with open(self.path, "rb") as f:
            f.seek(-1, os.SEEK_END)
            return f.read(1) != b"\n"

    def _load_ids(self) -> None:
        # Bytes, so a line cut inside a multi-byte character fails on its own
        with open(self.path, "rb") as f:
            for lineno, raw in enumerate(f, start=1):
                if not raw.strip():
                    continue
                try:
                    rec = json.loads(raw.decode("utf-8"))
                    self._ids.add(int(rec["external_id"]))
                except (ValueError, KeyError, TypeError):
                    # A torn last line from a crash is skipped, not fatal
                    logger.warning("Skipping unreadable line %d in %s", lineno, self.path)
