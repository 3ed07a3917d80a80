"""
Statement-timeout guard.

Sets the session's `statement_timeout` around a unit of work and always puts
the previous value back, on success, on timeout and on any other failure.

The previous value is read from the session on entry, so nested guards
restore to the enclosing guard's limit, and the outermost one restores to
whatever the session started with (the actor's timeout, see `db.session`).

A statement timeout (or a client-side asyncpg timeout) is reported as a
`TimedOut(fallback)` outcome, never as an exception. Every other error is
logged as unexpected and re-raised as is.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, ClassVar, Generic, TypeVar

import asyncpg

logger = logging.getLogger(__name__)

T = TypeVar("T")

_READ_LIMIT_SQL = "SELECT current_setting('statement_timeout')"
_SET_LIMIT_SQL = "SELECT set_config('statement_timeout', $1, false)"

# Postgres treats 0 as "no limit".
NO_LIMIT = "0"


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    ok: ClassVar[bool] = True
    timed_out: ClassVar[bool] = False

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True)
class TimedOut(Generic[T]):
    fallback: T

    ok: ClassVar[bool] = False
    timed_out: ClassVar[bool] = True

    @property
    def value(self) -> T:
        return self.fallback

    def unwrap(self) -> T:
        return self.fallback


@dataclass(frozen=True)
class Failed:
    error: BaseException
    key: Any = None

    ok: ClassVar[bool] = False
    timed_out: ClassVar[bool] = False

    def unwrap(self) -> Any:
        raise self.error


async def read_limit(conn: asyncpg.Connection) -> str:
    return str(await conn.fetchval(_READ_LIMIT_SQL))


async def _set_limit(conn: asyncpg.Connection, value: str) -> None:
    await conn.execute(_SET_LIMIT_SQL, value)


async def _restore_after_failure(conn: asyncpg.Connection, prior: str) -> None:
    # The original error must win over a failed restore.
    try:
        await _set_limit(conn, prior)
    except Exception:
        logger.exception("statement_timeout_restore_failed prior=%s", prior)


@asynccontextmanager
async def _limit_scope(conn: asyncpg.Connection, value: str) -> AsyncIterator[str]:
    prior = await read_limit(conn)
    await _set_limit(conn, value)
    try:
        yield prior
    except BaseException:
        await _restore_after_failure(conn, prior)
        raise
    await _set_limit(conn, prior)


def _validate_duration(duration_ms: int) -> str:
    if int(duration_ms) <= 0:
        raise ValueError("duration_ms must be > 0; use without_timeout() to disable the limit.")
    return str(int(duration_ms))


@asynccontextmanager
async def timeout_scope(conn: asyncpg.Connection, duration_ms: int) -> AsyncIterator[str]:
    """
    Run several statements under one limit. Does not recover from timeouts.
    """
    async with _limit_scope(conn, _validate_duration(duration_ms)) as prior:
        yield prior


@asynccontextmanager
async def no_timeout_scope(conn: asyncpg.Connection) -> AsyncIterator[str]:
    async with _limit_scope(conn, NO_LIMIT) as prior:
        yield prior


async def _run_op(conn: asyncpg.Connection, op: Callable[[asyncpg.Connection], Awaitable[T]]) -> T:
    if conn.is_in_transaction():
        # Savepoint: a cancelled statement only aborts the guarded work, so the
        # enclosing transaction (and the restore) keep working.
        async with conn.transaction():
            return await op(conn)
    return await op(conn)


async def with_timeout(
    conn: asyncpg.Connection,
    duration_ms: int,
    fallback: T,
    op: Callable[[asyncpg.Connection], Awaitable[T]],
    *,
    label: str = "query",
) -> Ok[T] | TimedOut[T]:
    """
    Run `op(conn)` with the session limited to `duration_ms`.

    Returns `Ok(value)` on success and `TimedOut(fallback)` when Postgres
    cancels a statement for exceeding the limit.
    """
    limit = _validate_duration(duration_ms)
    async with _limit_scope(conn, limit):
        try:
            value = await _run_op(conn, op)
        except asyncpg.exceptions.QueryCanceledError as exc:
            logger.info("statement_timeout expected=true label=%s timeout_ms=%s error=%s", label, limit, exc)
            return TimedOut(fallback)
        except TimeoutError:
            # Client-side timeout from a connection opened with a command_timeout.
            logger.info("statement_timeout expected=true source=client label=%s timeout_ms=%s", label, limit)
            return TimedOut(fallback)
        except Exception:
            logger.exception("query_failed expected=false label=%s timeout_ms=%s", label, limit)
            raise
    return Ok(value)


async def without_timeout(
    conn: asyncpg.Connection,
    op: Callable[[asyncpg.Connection], Awaitable[T]],
) -> T:
    """
    Run `op(conn)` with the limit disabled. Only for administrative and batch paths.
    """
    async with no_timeout_scope(conn):
        return await op(conn)
