"""
Version archive business logic.

The archive is an optional subsystem. When it is not configured nothing is
recorded, and listing it is a configuration error rather than an empty result.
"""

from __future__ import annotations

from typing import Any, Mapping

import asyncpg

from core import settings
from core.context import ActorContext
from core.errors import FeatureDisabled
from search import service as search_service
from search.schemas import Page

from . import repository


def ensure_available() -> None:
    if not settings.archive_enabled():
        raise FeatureDisabled(
            "archive",
            "Archive service is not configured. Post versions are not saved.",
        )


async def list_versions(
    conn: asyncpg.Connection,
    params: Mapping[str, Any],
    actor: ActorContext,
) -> Page[dict[str, Any]]:
    """
    Callers check `ensure_available()` first, before taking a connection.
    """
    return await search_service.paginated_search(conn, repository.VERSIONS, params, actor)
