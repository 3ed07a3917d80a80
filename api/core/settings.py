"""
Runtime settings read from the environment.

This is the only module that reads env vars for the query core. Blank or
unparseable values fall back to the defaults below instead of failing.
"""

from __future__ import annotations

import os
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

DEFAULT_STATEMENT_TIMEOUT_MS = 3_000
DEFAULT_BATCH_SIZE = 1_000
DEFAULT_WORKER_COUNT = 4
DEFAULT_WORKER_MODE = "process"


def _env_str(name: str, default: str = "") -> str:
    return os.environ.get(name, default).strip() or default


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name, "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "on"}


def _sanitize_database_url(url: str) -> str:
    # asyncpg rejects libpq's sslmode in the DSN query string.
    parts = urlsplit(url)
    if not parts.query:
        return url

    params = [(k, v) for (k, v) in parse_qsl(parts.query, keep_blank_values=True) if k != "sslmode"]
    query = urlencode(params)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))


def database_url() -> str:
    url = _env_str("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is not set.")
    return _sanitize_database_url(url)


def pool_min_size() -> int:
    return max(_env_int("DB_POOL_MIN", 1), 1)


def pool_max_size() -> int:
    return max(_env_int("DB_POOL_MAX", 5), pool_min_size())


def default_statement_timeout_ms() -> int:
    """
    Session statement timeout used when the actor has no preference.
    """
    value = _env_int("STATEMENT_TIMEOUT_MS", DEFAULT_STATEMENT_TIMEOUT_MS)
    return value if value > 0 else DEFAULT_STATEMENT_TIMEOUT_MS


def batch_size() -> int:
    value = _env_int("BATCH_SIZE", DEFAULT_BATCH_SIZE)
    return value if value > 0 else DEFAULT_BATCH_SIZE


def worker_count() -> int:
    value = _env_int("WORKER_COUNT", DEFAULT_WORKER_COUNT)
    return value if value > 0 else DEFAULT_WORKER_COUNT


def worker_mode() -> str:
    """
    "thread" or "process". Chosen by the deployment, never by detecting tests.
    """
    value = _env_str("WORKER_MODE", DEFAULT_WORKER_MODE).lower()
    return value if value in {"thread", "process"} else DEFAULT_WORKER_MODE


def archive_enabled() -> bool:
    return _env_bool("ARCHIVE_ENABLED", False)
