"""
Search SQL (raw).

`QueryPlan` collects WHERE clauses and their positional arguments and
renders the two statements a paginated search needs:
- a count over the filtered predicate
- one page of rows, ordered, with LIMIT/OFFSET
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

import asyncpg

from core import db
from core.context import ActorContext

from .filters import FilterRegistry


class QueryPlan:
    def __init__(self, source: str, columns: str = "*", order_by: str = "") -> None:
        self.source = source
        self.columns = columns
        self.order_by = order_by
        self.clauses: list[str] = []
        self.args: list[Any] = []

    def arg(self, value: Any) -> str:
        """
        Register a positional argument and return its placeholder ($n).
        """
        self.args.append(value)
        return f"${len(self.args)}"

    def where(self, clause: str, *values: Any) -> QueryPlan:
        """
        Add a predicate. Each `{}` in `clause` becomes the placeholder of the
        matching value. Literal braces must be doubled.
        """
        placeholders = [self.arg(v) for v in values]
        self.clauses.append(clause.format(*placeholders))
        return self

    def where_sql(self) -> str:
        if not self.clauses:
            return ""
        return " WHERE " + " AND ".join(f"({c})" for c in self.clauses)

    def count_sql(self) -> tuple[str, list[Any]]:
        return f"SELECT count(*) FROM {self.source}{self.where_sql()}", list(self.args)

    def page_sql(self, *, limit: int, offset: int) -> tuple[str, list[Any]]:
        args = list(self.args)
        args.extend([limit, offset])
        order = f" ORDER BY {self.order_by}" if self.order_by else ""
        sql = (
            f"SELECT {self.columns} FROM {self.source}{self.where_sql()}{order}"
            f" LIMIT ${len(args) - 1} OFFSET ${len(args)}"
        )
        return sql, args


def _all_visible(plan: QueryPlan, actor: ActorContext) -> None:
    return None


@dataclass(frozen=True)
class Searchable:
    """
    A search target: where rows come from, how they can be filtered and ordered.

    `visible` is the row-level visibility hook. It receives the actor and may
    add predicates; the default restricts nothing.
    """

    name: str
    source: str
    filters: FilterRegistry
    orders: Mapping[str, str]
    default_order: str
    columns: str = "*"
    key: str = "id"
    visible: Callable[[QueryPlan, ActorContext], None] = field(default=_all_visible)

    def __post_init__(self) -> None:
        if self.default_order not in self.orders:
            raise ValueError(f"{self.name}: default order '{self.default_order}' is not declared.")

    def order_for(self, name: str | None) -> str:
        expr = self.orders.get(name or "") or self.orders[self.default_order]
        # Offset pagination needs a total order; the key breaks ties.
        tail = expr.rsplit(",", 1)[-1].split()[0] if expr else ""
        if tail != self.key:
            expr = f"{expr}, {self.key}" if expr else self.key
        return expr

    def plan(self, search: Mapping[str, Any], actor: ActorContext) -> QueryPlan:
        order = search.get("order")
        plan = QueryPlan(
            self.source,
            columns=self.columns,
            order_by=self.order_for(order if isinstance(order, str) else None),
        )
        self.visible(plan, actor)
        self.filters.apply(plan, search)
        return plan


async def count_rows(conn: asyncpg.Connection, plan: QueryPlan) -> int:
    sql, args = plan.count_sql()
    value = await db.fetch_value(sql, *args, conn=conn)
    return int(value or 0)


async def fetch_rows(conn: asyncpg.Connection, plan: QueryPlan, *, limit: int, offset: int) -> list[dict[str, Any]]:
    sql, args = plan.page_sql(limit=limit, offset=offset)
    return await db.fetch_all(sql, *args, conn=conn)
