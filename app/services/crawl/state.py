"""Durable run progress: the checkpoint and the per-run failure log.

Both are single-writer, single-process files. The checkpoint is one
human-readable integer; the failure log holds one failed page per line,
followed by a tab and the failure reason.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import List, Union

from .base import CheckpointError, FailureEntry

logger = logging.getLogger(__name__)

PathLike = Union[str, "os.PathLike[str]"]


def ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


class CheckpointStore:
    """Last page fully committed to the sink; 0 means never run."""

    def __init__(self, path: PathLike) -> None:
        self.path = Path(path)

    def read(self) -> int:
        if not self.path.exists():
            return 0
        raw = self.path.read_text(encoding="utf-8").strip()
        if not raw:
            return 0
        try:
            page = int(raw)
        except ValueError:
            raise CheckpointError(f"checkpoint {self.path} holds {raw!r}, expected an integer") from None
        if page < 0:
            raise CheckpointError(f"checkpoint {self.path} holds negative page {page}")
        return page

    def write(self, page: int) -> None:
        """Replace the checkpoint atomically; a crash mid-write keeps the old value."""
        if page < 0:
            raise ValueError(f"checkpoint page must be non-negative, got {page}")
        ensure_parent(self.path)
        tmp = self.path.with_name(self.path.name + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            f.write(f"{int(page)}\n")
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, self.path)


class FailureLog:
    """Append-only list of pages that could not be processed in the current run."""

    def __init__(self, path: PathLike) -> None:
        self.path = Path(path)

    def reset(self) -> None:
        ensure_parent(self.path)
        with open(self.path, "w", encoding="utf-8"):
            pass

    def append(self, entry: FailureEntry) -> None:
        ensure_parent(self.path)
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(f"{entry.page}\t{entry.reason}\n")
            f.flush()
            os.fsync(f.fileno())

    def entries(self) -> List[FailureEntry]:
        if not self.path.exists():
            return []
        out: List[FailureEntry] = []
        with open(self.path, "r", encoding="utf-8") as f:
            for lineno, line in enumerate(f, start=1):
                s = line.strip()
                if not s:
                    continue
                page_s, _, reason = s.partition("\t")
                try:
                    page = int(page_s)
                except ValueError:
                    logger.warning("Ignoring malformed failure log line %d in %s: %r", lineno, self.path, s)
                    continue
                # Bare page numbers (no reason column) are accepted too.
                out.append(FailureEntry(page=page, reason=reason.strip() or "unknown"))
        return out

    def pages(self) -> List[int]:
        return [e.page for e in self.entries()]
