"""
Named search filters.

Each searchable model declares a `FilterRegistry` once, at import time. A
request's `search` mapping is then applied key by key: known keys go to
their handler, unknown keys are ignored. Handlers check the value against
the shape they declare before touching the query.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Iterable, Mapping

from core.errors import InvalidSearchParam

if TYPE_CHECKING:
    from .repository import QueryPlan

logger = logging.getLogger(__name__)

SCALAR = "scalar"
LIST = "list"
ANY = "any"

# Reserved search keys that are not filters.
RESERVED_KEYS = frozenset({"order"})

_TRUE_WORDS = {"true", "t", "yes", "y", "1", "on"}
_FALSE_WORDS = {"false", "f", "no", "n", "0", "off"}
_COMPARISON_RE = re.compile(r"^(>=|<=|>|<)\s*(.+)$")


@dataclass(frozen=True)
class FilterHandler:
    name: str
    shape: str
    apply: Callable[[QueryPlan, Any], None]

    def __post_init__(self) -> None:
        if self.shape not in {SCALAR, LIST, ANY}:
            raise ValueError(f"Unknown filter shape '{self.shape}' for filter '{self.name}'.")

    def normalize(self, value: Any) -> Any:
        if self.shape == SCALAR:
            if not isinstance(value, str):
                raise InvalidSearchParam(self.name, SCALAR, value)
            return value.strip()
        if self.shape == LIST:
            if isinstance(value, str):
                return [v.strip() for v in value.split(",") if v.strip()]
            if isinstance(value, (list, tuple)):
                return [str(v).strip() for v in value if str(v).strip()]
            raise InvalidSearchParam(self.name, LIST, value)
        return value.strip() if isinstance(value, str) else value

    def __call__(self, plan: QueryPlan, value: Any) -> None:
        normalized = self.normalize(value)
        if normalized in ("", []):
            return None
        self.apply(plan, normalized)


class FilterRegistry:
    def __init__(self, handlers: Iterable[FilterHandler] = ()) -> None:
        self._handlers: dict[str, FilterHandler] = {}
        for handler in handlers:
            self.register(handler)

    def register(self, handler: FilterHandler) -> FilterHandler:
        if handler.name in RESERVED_KEYS:
            raise ValueError(f"'{handler.name}' is a reserved search key.")
        if handler.name in self._handlers:
            raise ValueError(f"Duplicate search filter '{handler.name}'.")
        self._handlers[handler.name] = handler
        return handler

    def apply(self, plan: QueryPlan, search: Mapping[str, Any]) -> None:
        for key, value in search.items():
            if key in RESERVED_KEYS:
                continue
            handler = self._handlers.get(key)
            if handler is None:
                logger.debug("search_param_ignored key=%s", key)
                continue
            handler(plan, value)


def _cast(name: str, cast: Callable[[str], Any], raw: str) -> Any:
    try:
        return cast(raw)
    except (TypeError, ValueError) as exc:
        raise InvalidSearchParam(name, getattr(cast, "__name__", "typed"), raw) from exc


def equals(name: str, column: str, *, cast: Callable[[str], Any] = str) -> FilterHandler:
    def apply(plan: QueryPlan, value: str) -> None:
        plan.where(f"{column} = {{}}", _cast(name, cast, value))

    return FilterHandler(name, SCALAR, apply)


def one_of(name: str, column: str, *, cast: Callable[[str], Any] = str) -> FilterHandler:
    def apply(plan: QueryPlan, values: list[str]) -> None:
        plan.where(f"{column} = ANY({{}})", [_cast(name, cast, v) for v in values])

    return FilterHandler(name, LIST, apply)


def numeric(name: str, column: str, *, cast: Callable[[str], Any] = int) -> FilterHandler:
    """
    Numeric matcher: `5`, `1,2,3`, `5..10`, `>5`, `<=10`; lists are OR-ed.
    """

    def apply(plan: QueryPlan, value: str | list[str]) -> None:
        if isinstance(value, list):
            plan.where(f"{column} = ANY({{}})", [_cast(name, cast, v) for v in value])
            return
        if "," in value:
            parts = [v.strip() for v in value.split(",") if v.strip()]
            plan.where(f"{column} = ANY({{}})", [_cast(name, cast, v) for v in parts])
            return
        if ".." in value:
            low, _, high = value.partition("..")
            if low.strip():
                plan.where(f"{column} >= {{}}", _cast(name, cast, low.strip()))
            if high.strip():
                plan.where(f"{column} <= {{}}", _cast(name, cast, high.strip()))
            return
        match = _COMPARISON_RE.match(value)
        if match:
            op, raw = match.groups()
            plan.where(f"{column} {op} {{}}", _cast(name, cast, raw.strip()))
            return
        plan.where(f"{column} = {{}}", _cast(name, cast, value))

    return FilterHandler(name, ANY, apply)


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def text_contains(name: str, column: str) -> FilterHandler:
    def apply(plan: QueryPlan, value: str) -> None:
        plan.where(f"{column} ILIKE ('%' || {{}} || '%') ESCAPE '\\'", _escape_like(value))

    return FilterHandler(name, SCALAR, apply)


def boolean(name: str, column: str) -> FilterHandler:
    def apply(plan: QueryPlan, value: str) -> None:
        word = value.lower()
        if word in _TRUE_WORDS:
            plan.where(f"{column} = {{}}", True)
        elif word in _FALSE_WORDS:
            plan.where(f"{column} = {{}}", False)
        else:
            raise InvalidSearchParam(name, "boolean", value)

    return FilterHandler(name, SCALAR, apply)
