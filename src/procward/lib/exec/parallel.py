"""Concurrent batch dispatch with a join-all barrier."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Sequence

import structlog

from procward.lib.config.settings import get_config
from procward.lib.domain import BatchResult, Job, JobResult, OutputMode
from procward.lib.exec.errors import SpawnFailure
from procward.lib.exec.spawn import ProcessHandle

logger = structlog.get_logger(__name__)


def _resolve_limit(max_concurrency: int | None) -> int | None:
    limit = get_config().max_parallel if max_concurrency is None else max_concurrency
    if limit is not None and limit < 1:
        raise ValueError("max_concurrency must be >= 1 when provided.")
    return limit


async def _run_job(job: Job) -> JobResult:
    logger.debug("parallel.job_started", index=job.index, argv=list(job.invocation.argv))
    try:
        handle = await ProcessHandle.spawn(job.invocation, OutputMode.CAPTURE)
    except SpawnFailure as exc:
        logger.warning(
            "parallel.spawn_failed",
            index=job.index,
            reason=exc.reason,
            exit_code=exc.exit_code,
        )
        return JobResult(index=job.index, exit_code=exc.exit_code)

    try:
        exit_code = await handle.wait()
    except asyncio.CancelledError:
        await handle.terminate()
        raise

    logger.debug("parallel.job_finished", index=job.index, exit_code=exit_code)
    return JobResult(index=job.index, exit_code=exit_code, stdout=handle.output)


async def run_parallel(
    jobs: Sequence[Job],
    *,
    max_concurrency: int | None = None,
) -> BatchResult:
    """Run every job concurrently and return results in submission order.

    Each job's stdout goes to its own buffer. There is no early return: the
    call blocks until every job has finished, so one hanging job holds up the
    batch unless the caller bounded it with a deadline.
    """

    if not jobs:
        return BatchResult()

    indices = [job.index for job in jobs]
    if len(set(indices)) != len(indices):
        raise ValueError("Job indices must be unique within a batch.")

    limit = _resolve_limit(max_concurrency)
    semaphore = asyncio.Semaphore(limit) if limit is not None else None

    async def _bounded(job: Job) -> JobResult:
        if semaphore is None:
            return await _run_job(job)
        async with semaphore:
            return await _run_job(job)

    logger.info("parallel.started", jobs=len(jobs), max_concurrency=limit)
    started_at = time.monotonic()
    results = await asyncio.gather(*(_bounded(job) for job in jobs))
    batch = BatchResult.from_results(results)

    log = logger.bind(
        jobs=len(batch),
        failed=[item.index for item in batch.failed],
        duration_seconds=round(time.monotonic() - started_at, 3),
    )
    if batch.all_succeeded:
        log.info("parallel.finished", all_succeeded=True)
    else:
        log.warning("parallel.finished", all_succeeded=False)
    return batch


def run_parallel_sync(
    jobs: Sequence[Job],
    *,
    max_concurrency: int | None = None,
) -> BatchResult:
    return asyncio.run(run_parallel(jobs, max_concurrency=max_concurrency))
