"""
Search input (`SearchSpec`) and output (`Page`) models.
"""

from __future__ import annotations

import re
from typing import Any, Generic, Iterable, Mapping, TypeVar

from pydantic import BaseModel, Field, field_validator

T = TypeVar("T")

SearchValue = str | list[str]


def _loose_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    raw = str(value).strip()
    try:
        return int(raw)
    except ValueError:
        return None


class SearchSpec(BaseModel):
    """
    A pre-sanitized search request: filter values plus pagination options.

    Bad `page`/`limit` values are not errors. They become None here and are
    clamped by the executor.
    """

    page: int | None = None
    limit: int | None = None
    response_format: str | None = None
    count_pages: bool = False
    search: dict[str, SearchValue] = Field(default_factory=dict)

    @field_validator("page", "limit", mode="before")
    @classmethod
    def coerce_int(cls, value: Any) -> int | None:
        return _loose_int(value)

    @field_validator("search", mode="before")
    @classmethod
    def coerce_search(cls, value: Any) -> dict[str, SearchValue]:
        if not isinstance(value, Mapping):
            return {}
        coerced: dict[str, SearchValue] = {}
        for key, item in value.items():
            if item is None:
                continue
            if isinstance(item, (list, tuple)):
                coerced[str(key)] = [str(v) for v in item]
            else:
                coerced[str(key)] = str(item)
        return coerced

    @classmethod
    def from_params(
        cls,
        params: Mapping[str, Any],
        *,
        page: Any = None,
        limit: Any = None,
        count_pages: bool | None = None,
        defaults: Mapping[str, Any] | None = None,
    ) -> SearchSpec:
        """
        Build a SearchSpec from request params (`page`, `limit`, `format`, `search`).

        `defaults` sit underneath the user's search values. Pages are only
        counted when the caller actually searched for something, unless
        `count_pages` says otherwise.
        """
        raw_search = params.get("search")
        user_search = dict(raw_search) if isinstance(raw_search, Mapping) else {}
        merged = {**dict(defaults or {}), **user_search}

        if count_pages is None:
            count_pages = any(v not in (None, "", []) for v in user_search.values())

        return cls(
            page=page if page is not None else params.get("page"),
            limit=limit if limit is not None else params.get("limit"),
            response_format=params.get("format"),
            count_pages=bool(count_pages),
            search=merged,
        )


_SEARCH_KEY_RE = re.compile(r"^search\[([^\[\]]+)\](\[\])?$")


def nest_query_params(items: Iterable[tuple[str, str]]) -> dict[str, Any]:
    """
    Fold flat query items into the params mapping `SearchSpec.from_params` reads.

    `search[post_id]=1` becomes `{"search": {"post_id": "1"}}` and repeated
    `search[rating][]=s` items collect into a list.
    """
    params: dict[str, Any] = {}
    search: dict[str, Any] = {}
    for key, value in items:
        match = _SEARCH_KEY_RE.match(key)
        if match is None:
            params[key] = value
            continue
        name, is_list = match.group(1), match.group(2) is not None
        if is_list:
            search.setdefault(name, []).append(value)
        else:
            search[name] = value
    params["search"] = search
    return params


class Page(BaseModel, Generic[T]):
    items: list[T]
    current_page: int
    limit: int
    # None when pages were not counted (or the count timed out).
    total_count: int | None = None
    has_next: bool = False
    timed_out: bool = False
