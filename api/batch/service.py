"""
Parallel batch runner.

Walks a large table in key order, one bounded batch at a time, and hands each
record to a pool of worker threads or processes.

Rules:
- Inside an open transaction nothing is parallelized. Workers (processes in
  particular) cannot see uncommitted rows, so the records are processed
  sequentially on the caller's task instead.
- Workers never inherit the actor from the caller. Each record gets its own
  copy of the actor, installed with `actor_scope` for that record only.
- Fail-fast (default): the first failure stops dispatching, lets in-flight
  records finish, then raises `BatchWorkerFailure`. Best-effort: failures are
  collected and reported together as `BatchFailures` after the last batch.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import multiprocessing
from concurrent.futures import Executor, ProcessPoolExecutor, ThreadPoolExecutor
from functools import partial
from typing import Any, AsyncIterator, Callable

import asyncpg

from core import db
from core.context import ActorContext, actor_scope
from core.errors import BatchFailures, BatchWorkerFailure
from core.timeouts import Failed, without_timeout

from .repository import KeysetSource
from .schemas import BatchJob, BatchReport, FailPolicy, WorkerMode

logger = logging.getLogger(__name__)

# action(record, actor); may be a coroutine function.
Action = Callable[[dict[str, Any], ActorContext], Any]

_EXHAUSTED = object()


def _process_record(action: Action, actor: ActorContext, record: dict[str, Any]) -> None:
    # Runs in a worker thread or process, which has no event loop of its own.
    with actor_scope(actor):
        result = action(record, actor)
        if inspect.isawaitable(result):
            asyncio.run(_await(result))


async def _await(awaitable: Any) -> Any:
    return await awaitable


def _make_executor(job: BatchJob) -> Executor:
    if job.worker_mode is WorkerMode.PROCESS:
        # spawn: forking a process that holds an event loop and open sockets is unsafe.
        return ProcessPoolExecutor(
            max_workers=job.worker_count,
            mp_context=multiprocessing.get_context("spawn"),
        )
    return ThreadPoolExecutor(max_workers=job.worker_count, thread_name_prefix="batch-worker")


async def _batches(conn: asyncpg.Connection, source: KeysetSource, batch_size: int) -> AsyncIterator[list[dict[str, Any]]]:
    after: Any = None
    while True:
        batch = await without_timeout(conn, partial(source.fetch_batch, after=after, limit=batch_size))
        if not batch:
            return
        yield batch
        if len(batch) < batch_size:
            return
        after = source.record_key(batch[-1])


def _record_failure(job: BatchJob, report: BatchReport, key: Any, exc: BaseException) -> None:
    if job.fail_policy is FailPolicy.FAIL_FAST:
        logger.warning("batch_record_failed key=%s policy=%s", key, job.fail_policy.value, exc_info=exc)
        raise BatchWorkerFailure(key, exc, dispatched=report.dispatched, completed=report.processed) from exc
    logger.warning("batch_record_failed key=%s policy=%s error=%s", key, job.fail_policy.value, exc)
    report.failures.append(Failed(exc, key=key))


async def _run_sequential(
    conn: asyncpg.Connection,
    source: KeysetSource,
    job: BatchJob,
    actor: ActorContext,
    action: Action,
    report: BatchReport,
) -> None:
    async for batch in _batches(conn, source, job.batch_size):
        report.batches += 1
        for record in batch:
            key = source.record_key(record)
            report.dispatched += 1
            scoped = actor.copy()
            try:
                with actor_scope(scoped):
                    result = action(record, scoped)
                    if inspect.isawaitable(result):
                        await result
            except Exception as exc:
                _record_failure(job, report, key, exc)
                continue
            report.processed += 1


async def _dispatch_batch(
    executor: Executor,
    batch: list[dict[str, Any]],
    source: KeysetSource,
    job: BatchJob,
    actor: ActorContext,
    action: Action,
    report: BatchReport,
) -> None:
    loop = asyncio.get_running_loop()
    records = iter(batch)
    in_flight: dict[asyncio.Future, Any] = {}
    first_failure: tuple[Any, BaseException] | None = None
    exhausted = False

    while True:
        # At most worker_count records are handed out at a time, so a
        # fail-fast stop leaves the rest of the batch undispatched.
        while first_failure is None and not exhausted and len(in_flight) < job.worker_count:
            record = next(records, _EXHAUSTED)
            if record is _EXHAUSTED:
                exhausted = True
                break
            future = loop.run_in_executor(executor, _process_record, action, actor.copy(), record)
            in_flight[future] = source.record_key(record)
            report.dispatched += 1

        if not in_flight:
            break

        done, _ = await asyncio.wait(in_flight, return_when=asyncio.FIRST_COMPLETED)
        for future in done:
            key = in_flight.pop(future)
            exc = future.exception()
            if exc is None:
                report.processed += 1
            elif job.fail_policy is FailPolicy.FAIL_FAST:
                if first_failure is None:
                    first_failure = (key, exc)
                else:
                    logger.warning("batch_record_failed key=%s policy=%s error=%s", key, job.fail_policy.value, exc)
            else:
                _record_failure(job, report, key, exc)

    if first_failure is not None:
        _record_failure(job, report, *first_failure)


async def parallel_each(
    conn: asyncpg.Connection,
    source: KeysetSource,
    job: BatchJob,
    actor: ActorContext,
    action: Action,
) -> BatchReport:
    """
    Call `action(record, actor)` once for every row of `source`.

    `conn` is only used to read batches (without a statement timeout, this is
    a batch path) and to detect an open transaction. Actions that need the
    database open their own connection (`db.connect()`) when run in workers.
    """
    report = BatchReport()

    if db.in_transaction(conn):
        logger.debug("batch_sequential reason=open_transaction table=%s", source.table)
        report.sequential = True
        await _run_sequential(conn, source, job, actor, action, report)
    else:
        executor = _make_executor(job)
        try:
            async for batch in _batches(conn, source, job.batch_size):
                report.batches += 1
                logger.debug(
                    "batch_dispatch table=%s batch=%s size=%s mode=%s workers=%s",
                    source.table,
                    report.batches,
                    len(batch),
                    job.worker_mode.value,
                    job.worker_count,
                )
                await _dispatch_batch(executor, batch, source, job, actor, action, report)
        finally:
            # Joining workers (processes especially) blocks; keep it off the loop.
            await asyncio.to_thread(executor.shutdown, wait=True, cancel_futures=True)

    if report.failures:
        raise BatchFailures(report.failures, processed=report.processed)

    logger.info(
        "batch_complete table=%s processed=%s batches=%s sequential=%s",
        source.table,
        report.processed,
        report.batches,
        report.sequential,
    )
    return report
