"""
Batch job options and run report.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from core import settings
from core.timeouts import Failed


class WorkerMode(str, Enum):
    THREAD = "thread"
    PROCESS = "process"


class FailPolicy(str, Enum):
    FAIL_FAST = "fail_fast"
    BEST_EFFORT = "best_effort"


def _default_worker_mode() -> WorkerMode:
    return WorkerMode(settings.worker_mode())


@dataclass(frozen=True)
class BatchJob:
    batch_size: int = field(default_factory=settings.batch_size)
    worker_mode: WorkerMode = field(default_factory=_default_worker_mode)
    worker_count: int = field(default_factory=settings.worker_count)
    fail_policy: FailPolicy = FailPolicy.FAIL_FAST

    def __post_init__(self) -> None:
        if self.batch_size <= 0:
            raise ValueError("batch_size must be > 0.")
        if self.worker_count <= 0:
            raise ValueError("worker_count must be > 0.")
        # Accept plain strings ("thread", "best_effort") from config.
        object.__setattr__(self, "worker_mode", WorkerMode(self.worker_mode))
        object.__setattr__(self, "fail_policy", FailPolicy(self.fail_policy))


@dataclass
class BatchReport:
    processed: int = 0
    dispatched: int = 0
    batches: int = 0
    sequential: bool = False
    failures: list[Failed] = field(default_factory=list)
