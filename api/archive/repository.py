"""
Version archive search target.

`post_versions` holds one row per saved change to a post (who changed it,
from where, and the tag string after the change).
"""

from __future__ import annotations

from search import filters
from search.repository import Searchable

VERSION_COLUMNS = "id, post_id, updater_id, updater_ip_addr, tags, rating, created_at"

VERSION_FILTERS = filters.FilterRegistry(
    [
        filters.numeric("id", "id"),
        filters.numeric("post_id", "post_id"),
        filters.numeric("updater_id", "updater_id"),
        # host() drops the /32 mask that inet::text would keep.
        filters.equals("updater_ip_addr", "host(updater_ip_addr)"),
        filters.text_contains("tags_contain", "tags"),
        filters.one_of("rating", "rating"),
    ]
)

VERSIONS = Searchable(
    name="post_versions",
    source="post_versions",
    columns=VERSION_COLUMNS,
    filters=VERSION_FILTERS,
    orders={
        "id_desc": "id DESC",
        "id_asc": "id ASC",
    },
    default_order="id_desc",
)
