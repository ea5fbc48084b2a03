"""Resumable paginated harvesting subsystem.

Structure:
- base.py: common types, exceptions and the spider contract
- planner.py: page count and per-run window arithmetic
- spiders/: selector-driven page parsers
- fetcher.py: httpx client for the listing
- sinks/: dedup-aware persistence backends (jsonl, sqlite, postgres)
- state.py: checkpoint file and per-run failure log
- pipeline.py: the sequential page loop that ties it all together
- config.py: settings loading from .env / environment / CLI
- runner.py: CLI entrypoint and run outcome (exit codes)

Pages are processed strictly one at a time, newest first, and the
checkpoint only advances after a page's records are durably persisted.
"""

__all__ = [
    "base",
    "planner",
    "pipeline",
    "runner",
]
