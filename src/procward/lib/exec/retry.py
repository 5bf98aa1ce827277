"""Fixed-delay retry loop over the execution gateway."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import replace

import structlog

from procward.lib.config.settings import get_config
from procward.lib.domain import Invocation, OutputMode, RetrySession, as_invocation
from procward.lib.exec.errors import SpawnFailure
from procward.lib.exec.spawn import execute

logger = structlog.get_logger(__name__)


def _resolve_policy(
    max_attempts: int | None,
    delay_seconds: float | None,
) -> tuple[int, float]:
    config = get_config()
    attempts = config.retry_attempts if max_attempts is None else max_attempts
    delay = config.retry_delay_seconds if delay_seconds is None else delay_seconds

    if attempts < 1:
        logger.warning("retry.attempts_clamped", requested=attempts, effective=1)
        attempts = 1
    if delay < 0:
        logger.warning("retry.delay_clamped", requested=delay, effective=0.0)
        delay = 0.0
    return attempts, float(delay)


async def retry_session(
    invocation: Invocation | Sequence[str],
    max_attempts: int | None = None,
    delay_seconds: float | None = None,
    *,
    mode: OutputMode = OutputMode.PASSTHROUGH,
) -> RetrySession:
    """Run until the first success or until attempts are exhausted.

    A spawn failure uses up one attempt and ends the session: retrying a
    program that cannot be started never changes the outcome.
    """

    resolved = as_invocation(invocation)
    attempts, delay = _resolve_policy(max_attempts, delay_seconds)
    session = RetrySession(max_attempts=attempts, delay_seconds=delay)
    log = logger.bind(argv=list(resolved.argv), max_attempts=attempts)

    for attempt in range(1, attempts + 1):
        try:
            status = (await execute(resolved, mode)).exit_code
        except SpawnFailure as exc:
            log.error("retry.spawn_failed", attempt=attempt, reason=exc.reason)
            return replace(session, attempts_made=attempt, final_status=exc.exit_code)

        session = replace(session, attempts_made=attempt, final_status=status)
        if status == 0:
            log.info("retry.succeeded", attempts_made=attempt)
            return session

        if attempt < attempts:
            log.warning(
                "retry.attempt_failed",
                attempt=attempt,
                exit_code=status,
                delay_seconds=delay,
            )
            if delay > 0:
                await asyncio.sleep(delay)

    log.warning("retry.exhausted", attempts_made=session.attempts_made, exit_code=session.final_status)
    return session


async def retry(
    invocation: Invocation | Sequence[str],
    max_attempts: int | None = None,
    delay_seconds: float | None = None,
    *,
    mode: OutputMode = OutputMode.PASSTHROUGH,
) -> int:
    session = await retry_session(invocation, max_attempts, delay_seconds, mode=mode)
    # A session always makes at least one attempt, so final_status is set.
    return session.final_status if session.final_status is not None else 1


def retry_session_sync(
    invocation: Invocation | Sequence[str],
    max_attempts: int | None = None,
    delay_seconds: float | None = None,
    *,
    mode: OutputMode = OutputMode.PASSTHROUGH,
) -> RetrySession:
    return asyncio.run(retry_session(invocation, max_attempts, delay_seconds, mode=mode))


def retry_sync(
    invocation: Invocation | Sequence[str],
    max_attempts: int | None = None,
    delay_seconds: float | None = None,
    *,
    mode: OutputMode = OutputMode.PASSTHROUGH,
) -> int:
    return asyncio.run(retry(invocation, max_attempts, delay_seconds, mode=mode))
