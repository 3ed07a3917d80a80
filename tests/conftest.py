from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import pytest


class FakeTransaction:
    def __init__(self, conn: FakeConnection) -> None:
        self.conn = conn

    async def __aenter__(self) -> FakeTransaction:
        self.conn.savepoints += 1
        self.conn.depth += 1
        return self

    async def __aexit__(self, *exc: Any) -> bool:
        self.conn.depth -= 1
        return False


class FakeConnection:
    """
    Stand-in for an asyncpg connection.

    Tracks the session's statement_timeout like Postgres does, serves
    `rows` for page (LIMIT/OFFSET) and keyset (`key > $n`) queries, and
    raises the exception mapped to any SQL substring in `fail_on`.
    """

    def __init__(
        self,
        rows: list[dict[str, Any]] | None = None,
        *,
        statement_timeout: str = "3s",
        in_transaction: bool = False,
    ) -> None:
        self.rows = list(rows or [])
        self.statement_timeout = statement_timeout
        self.in_transaction = in_transaction
        self.timeout_history: list[str] = []
        self.queries: list[tuple[str, tuple[Any, ...]]] = []
        self.fail_on: dict[str, BaseException] = {}
        self.savepoints = 0
        self.depth = 0

    def is_in_transaction(self) -> bool:
        return self.in_transaction or self.depth > 0

    def transaction(self) -> FakeTransaction:
        return FakeTransaction(self)

    def _record(self, sql: str, args: tuple[Any, ...]) -> None:
        self.queries.append((sql, args))
        for arg in args:
            # asyncpg refuses to encode ints outside bigint.
            if isinstance(arg, int) and not -(2**63) <= arg < 2**63:
                raise OverflowError(f"value out of int64 range: {arg}")
        for needle, exc in self.fail_on.items():
            if needle in sql:
                raise exc

    async def execute(self, sql: str, *args: Any) -> str:
        if "set_config('statement_timeout'" in sql:
            self.statement_timeout = str(args[0])
            self.timeout_history.append(str(args[0]))
            return "SELECT 1"
        self._record(sql, args)
        return "OK"

    async def fetchval(self, sql: str, *args: Any) -> Any:
        if "current_setting('statement_timeout')" in sql:
            return self.statement_timeout
        self._record(sql, args)
        if "count(*)" in sql:
            return len(self.rows)
        raise AssertionError(f"unexpected fetchval: {sql}")

    async def fetchrow(self, sql: str, *args: Any) -> dict[str, Any] | None:
        rows = await self.fetch(sql, *args)
        return rows[0] if rows else None

    async def fetch(self, sql: str, *args: Any) -> list[dict[str, Any]]:
        self._record(sql, args)
        if "OFFSET" in sql:
            limit, offset = args[-2], args[-1]
            return [dict(r) for r in self.rows[offset : offset + limit]]
        limit = args[-1]
        after = args[-2] if " > $" in sql else None
        rows = [r for r in self.rows if after is None or r["id"] > after]
        return [dict(r) for r in rows[:limit]]

    def page_queries(self) -> list[tuple[str, tuple[Any, ...]]]:
        return [q for q in self.queries if "OFFSET" in q[0]]

    def count_queries(self) -> list[tuple[str, tuple[Any, ...]]]:
        return [q for q in self.queries if "count(*)" in q[0]]


def make_rows(n: int, **extra: Any) -> list[dict[str, Any]]:
    return [{"id": i, **extra} for i in range(1, n + 1)]


def touch_record(record: dict[str, Any], actor: Any) -> None:
    # Module-level so process workers can unpickle it.
    out = Path(record["out_dir"]) / f"{record['id']}-{actor.actor_id}"
    out.write_text("ok")


@pytest.fixture
def fake_session(monkeypatch):
    """
    Route `db.session` to a FakeConnection; returns the connection.
    """
    from core import db

    conn = FakeConnection()

    @asynccontextmanager
    async def _session(actor=None):
        await db.apply_actor_timeout(conn, actor)
        yield conn

    monkeypatch.setattr(db, "session", _session)
    return conn
