import os
from typing import Optional

import psycopg


def get_pg_dsn(explicit: Optional[str] = None) -> str:
    """Resolve the Postgres DSN from an explicit value or the environment.

    Raises a helpful RuntimeError when no DSN is configured.
    """
    dsn = explicit or os.getenv("HARVEST_PG_DSN") or os.getenv("PG_DSN")
    if not dsn:
        raise RuntimeError(
            "No Postgres DSN configured for the 'postgres' sink.\n"
            "Pass --pg-dsn or define HARVEST_PG_DSN in your environment or .env file, e.g.\n"
            "HARVEST_PG_DSN='dbname=harvest user=harvest password=secret host=localhost port=5432'"
        )
    return dsn


def connect(dsn: str):
    """Open an autocommit connection, raising an actionable RuntimeError on failure."""
    try:
        return psycopg.connect(dsn, autocommit=True)
    except psycopg.Error as exc:
        raise RuntimeError(
            f"Failed to connect to Postgres. Check that the database is running and the DSN is correct.\nError: {exc}"
        ) from exc
