"""Deadline enforcement for spawned processes."""

from __future__ import annotations

import asyncio
import signal
from collections.abc import Sequence
from typing import Final

import structlog

from procward.lib.domain import DeadlineResult, Invocation, OutputMode, as_invocation
from procward.lib.exec.errors import SpawnFailure, TimeoutExceeded
from procward.lib.exec.spawn import ProcessHandle

# Same status GNU `timeout` reports for an expired deadline.
TIMEOUT_EXIT_CODE: Final[int] = 124

logger = structlog.get_logger(__name__)


async def terminate_process(
    handle: ProcessHandle,
    *,
    grace_seconds: float | None = None,
) -> int:
    """Gracefully terminate a process group and force-kill if it does not exit."""

    # A deadline is an infra-enforced limit (not a user interrupt), so begin
    # with SIGTERM and only escalate to SIGKILL after grace.
    return await handle.terminate(grace_seconds=grace_seconds, first_signal=signal.SIGTERM)


async def wait_for_process_exit(
    handle: ProcessHandle,
    *,
    timeout_seconds: float | None,
    kill_grace_seconds: float | None = None,
) -> int:
    """Wait for process completion with timeout-triggered termination."""

    if timeout_seconds is None:
        return await handle.wait()

    if timeout_seconds <= 0:
        raise ValueError("timeout_seconds must be > 0 when provided.")

    try:
        return await asyncio.wait_for(handle.wait(), timeout=timeout_seconds)
    except TimeoutError as exc:
        await terminate_process(handle, grace_seconds=kill_grace_seconds)
        raise TimeoutExceeded(timeout_seconds) from exc


async def guard_deadline(
    invocation: Invocation | Sequence[str],
    seconds: float,
    *,
    mode: OutputMode = OutputMode.PASSTHROUGH,
    kill_grace_seconds: float | None = None,
) -> DeadlineResult:
    """Race one child against a timer; the child never outlives this call."""

    if seconds <= 0:
        raise ValueError("seconds must be > 0.")

    resolved = as_invocation(invocation)
    log = logger.bind(argv=list(resolved.argv), timeout_seconds=seconds)
    try:
        handle = await ProcessHandle.spawn(resolved, mode)
    except SpawnFailure as exc:
        log.error("deadline.spawn_failed", reason=exc.reason, exit_code=exc.exit_code)
        raise

    try:
        exit_code = await wait_for_process_exit(
            handle,
            timeout_seconds=seconds,
            kill_grace_seconds=kill_grace_seconds,
        )
    except TimeoutExceeded:
        log.warning("deadline.exceeded", raw_return_code=handle.returncode)
        return DeadlineResult(
            exit_code=TIMEOUT_EXIT_CODE,
            timed_out=True,
            raw_return_code=handle.returncode,
        )
    except asyncio.CancelledError:
        await terminate_process(handle, grace_seconds=kill_grace_seconds)
        raise

    # The leader is gone; take any background members of its group with it.
    handle.kill()
    log.info("deadline.completed", exit_code=exit_code)
    return DeadlineResult(exit_code=exit_code, timed_out=False, raw_return_code=exit_code)


async def run_with_timeout(
    invocation: Invocation | Sequence[str],
    seconds: float,
    *,
    mode: OutputMode = OutputMode.PASSTHROUGH,
    kill_grace_seconds: float | None = None,
) -> int:
    result = await guard_deadline(
        invocation,
        seconds,
        mode=mode,
        kill_grace_seconds=kill_grace_seconds,
    )
    return result.exit_code


def guard_deadline_sync(
    invocation: Invocation | Sequence[str],
    seconds: float,
    *,
    mode: OutputMode = OutputMode.PASSTHROUGH,
    kill_grace_seconds: float | None = None,
) -> DeadlineResult:
    return asyncio.run(
        guard_deadline(invocation, seconds, mode=mode, kill_grace_seconds=kill_grace_seconds)
    )


def run_with_timeout_sync(
    invocation: Invocation | Sequence[str],
    seconds: float,
    *,
    mode: OutputMode = OutputMode.PASSTHROUGH,
    kill_grace_seconds: float | None = None,
) -> int:
    return asyncio.run(
        run_with_timeout(invocation, seconds, mode=mode, kill_grace_seconds=kill_grace_seconds)
    )
