"""
Version archive API endpoints.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from core import db
from core.context import ActorContext, actor_from_request
from search.schemas import nest_query_params

from . import service

router = APIRouter()


@router.get("/versions")
async def list_versions(
    request: Request,
    actor: ActorContext = Depends(actor_from_request),
) -> dict:
    """
    Paginated version history. Query: page, limit, format, search[...].
    """
    # Fail before taking a connection from the pool.
    service.ensure_available()
    params = nest_query_params(request.query_params.multi_items())
    async with db.session(actor) as conn:
        page = await service.list_versions(conn, params, actor)
    return page.model_dump()
