"""
Batch source SQL (raw).

Rows are read with keyset pagination on a unique, ordered key: each batch
starts strictly after the last key of the previous one. Unlike OFFSET, this
never skips or repeats a row between batches and stays cheap on big tables.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import asyncpg

from core import db


@dataclass(frozen=True)
class KeysetSource:
    table: str
    key: str = "id"
    columns: str = "*"
    # Extra predicate using $1..$n for `args`; key/limit placeholders follow.
    where: str = ""
    args: tuple[Any, ...] = ()

    def batch_sql(self, *, first: bool) -> str:
        clauses: list[str] = []
        if self.where:
            clauses.append(f"({self.where})")
        n = len(self.args)
        if not first:
            n += 1
            clauses.append(f"{self.key} > ${n}")
        where_sql = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        return f"SELECT {self.columns} FROM {self.table}{where_sql} ORDER BY {self.key} ASC LIMIT ${n + 1}"

    def record_key(self, record: dict[str, Any]) -> Any:
        return record[self.key]

    async def fetch_batch(self, conn: asyncpg.Connection, *, after: Any, limit: int) -> list[dict[str, Any]]:
        first = after is None
        args = list(self.args)
        if not first:
            args.append(after)
        args.append(limit)
        return await db.fetch_all(self.batch_sql(first=first), *args, conn=conn)
