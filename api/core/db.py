"""
Async database access helpers (raw SQL) using asyncpg.

This module owns the connection pool. FastAPI initializes it on startup and
closes it on shutdown (see `api/main.py`).

A session is one pooled connection held for one logical call. Statement
timeouts are per session, so unrelated work must never share one.

The server-side `statement_timeout` is the only query limit. Connections carry
no client-side `command_timeout`, which would fire before Postgres cancels a
guarded statement and would cap `without_timeout` work.

SQL parameter style:
- asyncpg uses positional placeholders: $1, $2, $3, ...
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import asyncpg

from . import settings
from .context import ActorContext

_pool: asyncpg.Pool | None = None


async def init_pool() -> None:
    global _pool
    if _pool is not None:
        return None
    _pool = await asyncpg.create_pool(
        dsn=settings.database_url(),
        min_size=settings.pool_min_size(),
        max_size=settings.pool_max_size(),
        command_timeout=None,
        server_settings={"statement_timeout": str(settings.default_statement_timeout_ms())},
    )


async def close_pool() -> None:
    global _pool
    if _pool is None:
        return None
    await _pool.close()
    _pool = None


def pool() -> asyncpg.Pool:
    if _pool is None:
        raise RuntimeError("DB pool is not initialized. Call init_pool() on startup.")
    return _pool


async def connect() -> asyncpg.Connection:
    """
    Open a standalone connection (no pool).

    Batch workers run on their own event loop, where the shared pool cannot be
    used, so they open one of these instead.
    """
    return await asyncpg.connect(
        dsn=settings.database_url(),
        command_timeout=None,
        server_settings={"statement_timeout": str(settings.default_statement_timeout_ms())},
    )


async def apply_actor_timeout(conn: asyncpg.Connection, actor: ActorContext | None) -> None:
    timeout_ms = settings.default_statement_timeout_ms()
    if actor is not None:
        timeout_ms = actor.statement_timeout_ms(timeout_ms)
    await conn.execute("SELECT set_config('statement_timeout', $1, false)", str(timeout_ms))


@asynccontextmanager
async def session(actor: ActorContext | None = None) -> AsyncIterator[asyncpg.Connection]:
    """
    Acquire a pooled connection for one logical call.

    The session starts at the actor's statement timeout (or the default), which
    is the value every timeout guard restores to.
    """
    async with pool().acquire() as conn:  # type: asyncpg.Connection
        await apply_actor_timeout(conn, actor)
        yield conn


def in_transaction(conn: asyncpg.Connection) -> bool:
    return bool(conn.is_in_transaction())


def _record_to_dict(record: asyncpg.Record) -> dict[str, Any]:
    return dict(record)


async def fetch_all(sql: str, *args: Any, conn: asyncpg.Connection | None = None) -> list[dict[str, Any]]:
    """
    Run a query and return all rows as a list of dicts.
    """
    rows = await (conn or pool()).fetch(sql, *args)
    return [_record_to_dict(r) for r in rows]


async def fetch_value(sql: str, *args: Any, conn: asyncpg.Connection | None = None) -> Any:
    return await (conn or pool()).fetchval(sql, *args)

