"""Settings loading for the harvester.

Precedence, lowest first: model defaults, an env file (``--env-file``,
``HARVEST_ENV_FILE`` or ``./.env``; only keys not already in the
environment), ``HARVEST_*`` environment variables, explicit overrides such
as CLI flags.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from app.models.crawl import CrawlSettings, ExtractionPolicy

ENV_PREFIX = "HARVEST_"
ENV_FILE_VAR = ENV_PREFIX + "ENV_FILE"
DEFAULT_ENV_FILE = ".env"

# Settings fields that may be set from the environment (HARVEST_<FIELD>).
_ENV_FIELDS = (
    "base_url",
    "page_size",
    "pages_per_run",
    "delay_min",
    "delay_max",
    "timeout",
    "user_agent",
    "checkpoint_path",
    "failure_log_path",
    "sink",
    "jsonl_path",
    "sqlite_path",
    "sink_table",
    "pg_dsn",
    "log_level",
)


def read_env_file(path: str) -> Dict[str, str]:
    """Parse ``KEY=value`` lines; ``export`` prefixes, comments and quotes are handled."""
    values: Dict[str, str] = {}
    for line in Path(path).read_text(encoding="utf-8").splitlines():
        s = line.strip()
        if s.startswith("export "):
            s = s[len("export "):].lstrip()
        if not s or s.startswith("#") or "=" not in s:
            continue
        key, val = (part.strip() for part in s.split("=", 1))
        if len(val) >= 2 and val[0] == val[-1] and val[0] in "'\"":
            val = val[1:-1]
        if key:
            values[key] = val
    return values


def load_env_file(path: str, environ: Optional[Dict[str, str]] = None) -> List[str]:
    """Copy keys from ``path`` into ``environ`` (os.environ by default).

    Keys already set to a non-empty value win over the file. Returns the keys
    that were applied.
    """
    target = os.environ if environ is None else environ
    applied = []
    for key, val in read_env_file(path).items():
        if not target.get(key):
            target[key] = val
            applied.append(key)
    return applied


def resolve_env_file(explicit: Optional[str], env: Mapping[str, str]) -> Optional[str]:
    """Pick the env file: --env-file, then HARVEST_ENV_FILE, then ./.env if it exists.

    An explicitly named file that is missing raises FileNotFoundError.
    """
    named = explicit or env.get(ENV_FILE_VAR)
    if named:
        if not Path(named).is_file():
            raise FileNotFoundError(f"env file not found: {named}")
        return named
    return DEFAULT_ENV_FILE if Path(DEFAULT_ENV_FILE).is_file() else None


def load_policy(path: str) -> ExtractionPolicy:
    return ExtractionPolicy.model_validate_json(Path(path).read_text(encoding="utf-8"))


def load_settings(
    env: Optional[Mapping[str, str]] = None,
    *,
    env_file: Optional[str] = None,
    **overrides: Any,
) -> CrawlSettings:
    """Build CrawlSettings from the environment plus explicit overrides.

    ``env`` defaults to os.environ. The env file (see resolve_env_file) is
    merged into os.environ when ``env`` is omitted, and into a copy of ``env``
    when one is passed together with ``env_file``. Overrides whose value is
    None are ignored so unset CLI flags fall through. Raises
    pydantic.ValidationError on invalid values and OSError on an unreadable
    env or policy file.
    """
    if env is None:
        path = resolve_env_file(env_file, os.environ)
        if path:
            load_env_file(path)
        env = os.environ
    elif env_file:
        env = dict(env)
        load_env_file(resolve_env_file(env_file, env), env)

    values: Dict[str, Any] = {}
    for name in _ENV_FIELDS:
        raw = env.get(ENV_PREFIX + name.upper())
        if raw is not None and raw != "":
            values[name] = raw

    policy_path = overrides.pop("policy", None) or env.get(ENV_PREFIX + "EXTRACTION_POLICY")
    if policy_path:
        values["extraction"] = load_policy(policy_path)

    values.update({k: v for k, v in overrides.items() if v is not None})
    return CrawlSettings(**values)
