"""
Actor context: who an operation runs as.

The context is an explicit value passed through every call. `actor_scope`
exists for collaborators (policy checks) that run inside a batch worker and
need to see the actor for exactly one record.
"""

from __future__ import annotations

import dataclasses
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Iterator

from fastapi import Header, Request

_scoped_actor: ContextVar[ActorContext | None] = ContextVar("scoped_actor", default=None)


@dataclass(frozen=True)
class ActorContext:
    actor_id: int | None = None
    origin_address: str | None = None
    # Milliseconds. None means "use the system default".
    timeout_preference: int | None = None

    @classmethod
    def anonymous(cls, origin_address: str | None = None) -> ActorContext:
        return cls(actor_id=None, origin_address=origin_address)

    def copy(self) -> ActorContext:
        return dataclasses.replace(self)

    def statement_timeout_ms(self, default: int) -> int:
        if self.timeout_preference is not None and self.timeout_preference > 0:
            return int(self.timeout_preference)
        return default


def current_actor() -> ActorContext | None:
    return _scoped_actor.get()


@contextmanager
def actor_scope(actor: ActorContext) -> Iterator[ActorContext]:
    token = _scoped_actor.set(actor)
    try:
        yield actor
    finally:
        _scoped_actor.reset(token)


def _optional_int(raw: str | None) -> int | None:
    raw = (raw or "").strip()
    if not raw.isdigit():
        return None
    return int(raw)


async def actor_from_request(
    request: Request,
    x_actor_id: str | None = Header(default=None),
    x_statement_timeout: str | None = Header(default=None),
) -> ActorContext:
    """
    FastAPI dependency. Authentication happens upstream; it forwards the
    resolved actor id and the actor's timeout preference as headers.
    """
    return ActorContext(
        actor_id=_optional_int(x_actor_id),
        origin_address=request.client.host if request.client else None,
        timeout_preference=_optional_int(x_statement_timeout),
    )
