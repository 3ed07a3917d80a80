"""
Error taxonomy for the query core.

Timeouts are not here on purpose: they are reported as `TimedOut` outcomes
(see `core/timeouts.py`) and never raised to callers. Pagination params are
clamped silently, so there is no pagination error either.
"""

from __future__ import annotations

from typing import Any

import asyncpg

# Unexpected data-store errors are re-raised unmodified and mapped to HTTP 500.
QueryFailure = asyncpg.PostgresError


class InvalidSearchParam(ValueError):
    """
    A search value does not match the shape its filter declares.
    """

    def __init__(self, key: str, expected: str, value: Any) -> None:
        self.key = key
        self.expected = expected
        self.value = value
        super().__init__(f"Search param '{key}' expects a {expected} value, got {type(value).__name__}.")


class FeatureDisabled(RuntimeError):
    """
    A subsystem required by the operation is not configured. Not retried.
    """

    def __init__(self, feature: str, detail: str | None = None) -> None:
        self.feature = feature
        super().__init__(detail or f"{feature} is not configured.")


class BatchWorkerFailure(RuntimeError):
    """
    `action` failed for one record under the fail-fast policy.
    """

    def __init__(self, record_key: Any, cause: BaseException, *, dispatched: int, completed: int) -> None:
        self.record_key = record_key
        self.cause = cause
        self.dispatched = dispatched
        self.completed = completed
        super().__init__(f"Batch action failed for record {record_key!r}: {type(cause).__name__}: {cause}")


class BatchFailures(RuntimeError):
    """
    Aggregate of the per-record failures collected under the best-effort policy.
    """

    def __init__(self, failures: list, *, processed: int) -> None:
        self.failures = list(failures)
        self.processed = processed
        keys = ", ".join(repr(f.key) for f in self.failures[:10])
        more = "" if len(self.failures) <= 10 else f" (+{len(self.failures) - 10} more)"
        super().__init__(f"{len(self.failures)} record(s) failed: {keys}{more}")
