"""Program availability checks and exit-code probes."""

from __future__ import annotations

import asyncio
import shutil
from collections.abc import Mapping, Sequence

import structlog

from procward.lib.domain import Invocation, Job, OutputMode, ToolCheckReport, as_invocation
from procward.lib.exec.errors import SpawnFailure
from procward.lib.exec.parallel import run_parallel
from procward.lib.exec.spawn import execute

logger = structlog.get_logger(__name__)


def program_exists(name: str) -> bool:
    return bool(name.strip()) and shutil.which(name) is not None


def require_program(name: str) -> str:
    """Resolve a program on PATH or raise SpawnFailure."""

    if not name.strip():
        raise SpawnFailure(None, "A program name is required.")
    resolved = shutil.which(name)
    if resolved is None:
        raise SpawnFailure(Invocation.of(name), f"Missing required program: {name}")
    logger.debug("probe.program_found", program=name, path=resolved)
    return resolved


async def expect_exit(expected_code: int, invocation: Invocation | Sequence[str]) -> bool:
    """Run silently and report whether the status matched `expected_code`."""

    resolved = as_invocation(invocation)
    try:
        actual = (await execute(resolved, OutputMode.SILENT)).exit_code
    except SpawnFailure as exc:
        actual = exc.exit_code
    matched = actual == expected_code
    logger.debug(
        "probe.exit_checked",
        argv=list(resolved.argv),
        expected=expected_code,
        actual=actual,
        matched=matched,
    )
    return matched


def expect_exit_sync(expected_code: int, invocation: Invocation | Sequence[str]) -> bool:
    return asyncio.run(expect_exit(expected_code, invocation))


async def check_tools(
    checks: Mapping[str, Invocation | Sequence[str]],
    *,
    max_concurrency: int | None = None,
) -> ToolCheckReport:
    """Run one probe command per tool concurrently; a tool passes on status 0."""

    names = tuple(checks)
    jobs = tuple(
        Job(index=index, invocation=as_invocation(checks[name]))
        for index, name in enumerate(names)
    )
    batch = await run_parallel(jobs, max_concurrency=max_concurrency)

    statuses = {names[result.index]: result.exit_code for result in batch.results}
    passed = tuple(name for name in names if statuses[name] == 0)
    failed = tuple(name for name in names if statuses[name] != 0)

    log = logger.bind(total=len(names), passed=len(passed), failed=list(failed))
    if failed:
        log.warning("probe.tools_checked")
    else:
        log.info("probe.tools_checked")
    return ToolCheckReport(passed=passed, failed=failed, statuses=statuses)


def check_tools_sync(
    checks: Mapping[str, Invocation | Sequence[str]],
    *,
    max_concurrency: int | None = None,
) -> ToolCheckReport:
    return asyncio.run(check_tools(checks, max_concurrency=max_concurrency))
