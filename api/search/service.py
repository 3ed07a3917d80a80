"""
Search executor: SearchSpec in, bounded page out.

Counting every match is expensive, so it only happens when the SearchSpec asks for
it (`count_pages`). Otherwise one extra row is fetched to tell whether a next
page exists. Both statements run under a statement timeout; a timeout
degrades the page instead of failing the request.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

import asyncpg

from core import settings
from core.context import ActorContext
from core.timeouts import with_timeout

from . import repository
from .repository import Searchable
from .schemas import Page, SearchSpec

logger = logging.getLogger(__name__)

SITEMAP_FORMAT = "sitemap"
SITEMAP_MAX_LIMIT = 10_000
DEFAULT_MAX_LIMIT = 1_000
DEFAULT_LIMIT = 20

# OFFSET is a bigint; anything past it cannot hold rows.
MAX_OFFSET = 2**63 - 1


def max_limit(response_format: str | None) -> int:
    if (response_format or "").strip().lower() == SITEMAP_FORMAT:
        return SITEMAP_MAX_LIMIT
    return DEFAULT_MAX_LIMIT


def clamp_limit(requested: int | None, response_format: str | None = None) -> int:
    ceiling = max_limit(response_format)
    if requested is None:
        return min(DEFAULT_LIMIT, ceiling)
    return max(1, min(int(requested), ceiling))


def clamp_page(requested: int | None) -> int:
    if requested is None:
        return 1
    return max(int(requested), 1)


async def paginate(
    conn: asyncpg.Connection,
    searchable: Searchable,
    spec: SearchSpec,
    actor: ActorContext,
) -> Page[dict[str, Any]]:
    limit = clamp_limit(spec.limit, spec.response_format)
    page = clamp_page(spec.page)
    offset = (page - 1) * limit
    timeout_ms = actor.statement_timeout_ms(settings.default_statement_timeout_ms())

    plan = searchable.plan(spec.search, actor)

    total_count: int | None = None
    if spec.count_pages:
        counted = await with_timeout(
            conn,
            timeout_ms,
            None,
            lambda c: repository.count_rows(c, plan),
            label=f"{searchable.name}.count",
        )
        total_count = counted.value

    # Without a count, one extra row tells whether a next page exists.
    fetch_limit = limit if total_count is not None else limit + 1
    if total_count is not None and offset >= total_count:
        return Page(items=[], current_page=page, limit=limit, total_count=total_count, has_next=False)
    if offset > MAX_OFFSET:
        return Page(items=[], current_page=page, limit=limit, total_count=total_count, has_next=False)

    fetched = await with_timeout(
        conn,
        timeout_ms,
        [],
        lambda c: repository.fetch_rows(c, plan, limit=fetch_limit, offset=offset),
        label=f"{searchable.name}.rows",
    )
    if fetched.timed_out:
        logger.info("search_degraded searchable=%s page=%s limit=%s", searchable.name, page, limit)
        return Page(items=[], current_page=page, limit=limit, total_count=total_count, has_next=False, timed_out=True)

    rows = list(fetched.value)
    if total_count is not None:
        has_next = page * limit < total_count
    else:
        has_next = len(rows) > limit
        rows = rows[:limit]

    return Page(items=rows, current_page=page, limit=limit, total_count=total_count, has_next=has_next)


async def paginated_search(
    conn: asyncpg.Connection,
    searchable: Searchable,
    params: Mapping[str, Any],
    actor: ActorContext,
    *,
    page: Any = None,
    limit: Any = None,
    count_pages: bool | None = None,
    defaults: Mapping[str, Any] | None = None,
) -> Page[dict[str, Any]]:
    """
    Build a `SearchSpec` from request params, then paginate it.
    """
    spec = SearchSpec.from_params(
        params,
        page=page,
        limit=limit,
        count_pages=count_pages,
        defaults=defaults,
    )
    return await paginate(conn, searchable, spec, actor)
