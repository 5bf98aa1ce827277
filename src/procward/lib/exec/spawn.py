"""Process handles and the single-command execution gateway."""

from __future__ import annotations

import asyncio
import os
import signal
import tempfile
import time
from collections.abc import Sequence
from typing import IO

import structlog

from procward.lib.config.settings import get_config
from procward.lib.domain import ExecResult, Invocation, OutputMode, as_invocation
from procward.lib.exec.errors import SpawnFailure
from procward.lib.exec.process_groups import signal_process_group
from procward.lib.exec.signals import normalize_return_code

logger = structlog.get_logger(__name__)


def _stream_targets(
    mode: OutputMode,
    buffer: IO[bytes] | None,
) -> tuple[IO[bytes] | int | None, int | None]:
    if mode is OutputMode.CAPTURE:
        return buffer, None
    if mode is OutputMode.SILENT:
        return asyncio.subprocess.DEVNULL, asyncio.subprocess.DEVNULL
    return None, None


class ProcessHandle:
    """One spawned child leading its own process group.

    Captured stdout goes to a private temporary file rather than a pipe, so
    the handle is finished when the child exits even if a background member
    of its group still holds the descriptor open.
    """

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        invocation: Invocation,
        mode: OutputMode,
        buffer: IO[bytes] | None = None,
    ) -> None:
        self._process = process
        self.invocation = invocation
        self.mode = mode
        self._buffer = buffer
        self._output = b""
        self._exit_code: int | None = None

    @classmethod
    async def spawn(
        cls,
        invocation: Invocation,
        mode: OutputMode = OutputMode.PASSTHROUGH,
    ) -> ProcessHandle:
        if not invocation.argv:
            raise SpawnFailure.empty(invocation)

        buffer = tempfile.TemporaryFile() if mode is OutputMode.CAPTURE else None
        stdout, stderr = _stream_targets(mode, buffer)
        try:
            process = await asyncio.create_subprocess_exec(
                *invocation.argv,
                env=invocation.child_env(os.environ),
                stdout=stdout,
                stderr=stderr,
                start_new_session=True,
            )
        except (OSError, ValueError) as exc:
            if buffer is not None:
                buffer.close()
            raise SpawnFailure.from_spawn_error(invocation, exc) from exc
        return cls(process, invocation, mode, buffer)

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def pgid(self) -> int:
        # start_new_session makes the child its own group leader.
        return self._process.pid

    @property
    def returncode(self) -> int | None:
        return self._exit_code

    @property
    def running(self) -> bool:
        return self._process.returncode is None

    @property
    def output(self) -> bytes:
        return self._output

    async def wait(self) -> int:
        """Block until the child exits; returns the normalized exit status."""

        raw_return_code = await self._process.wait()
        self._collect_output()
        self._exit_code = normalize_return_code(raw_return_code)
        return self._exit_code

    def _collect_output(self) -> None:
        if self._buffer is None or self._buffer.closed:
            return
        self._buffer.seek(0)
        self._output = self._buffer.read()
        self._buffer.close()

    def kill(self) -> None:
        signal_process_group(self.pgid, signal.SIGKILL)

    async def terminate(
        self,
        *,
        grace_seconds: float | None = None,
        first_signal: signal.Signals = signal.SIGTERM,
    ) -> int:
        """Signal the group, escalate to SIGKILL after grace, and reap the child."""

        grace = get_config().kill_grace_seconds if grace_seconds is None else grace_seconds
        if self._process.returncode is None:
            signal_process_group(self.pgid, first_signal)
            try:
                await asyncio.wait_for(self._process.wait(), timeout=grace)
            except TimeoutError:
                signal_process_group(self.pgid, signal.SIGKILL)

        # Sweep grandchildren that outlived the group leader.
        signal_process_group(self.pgid, signal.SIGKILL)
        return await self.wait()


async def execute(
    invocation: Invocation | Sequence[str],
    mode: OutputMode = OutputMode.PASSTHROUGH,
) -> ExecResult:
    """Run one command to completion and return its status unchanged."""

    resolved = as_invocation(invocation)
    log = logger.bind(argv=list(resolved.argv), mode=str(mode))
    if not resolved.argv:
        log.error("command.spawn_failed", reason="empty invocation")
        raise SpawnFailure.empty(resolved)

    log.info("command.start", command=resolved.describe())
    started_at = time.monotonic()
    try:
        handle = await ProcessHandle.spawn(resolved, mode)
    except SpawnFailure as exc:
        log.error("command.spawn_failed", reason=exc.reason, exit_code=exc.exit_code)
        raise

    try:
        exit_code = await handle.wait()
    except asyncio.CancelledError:
        # Cancellation mirrors Ctrl-C: give the group SIGINT before forcing it down.
        await handle.terminate(first_signal=signal.SIGINT)
        raise

    duration_seconds = round(time.monotonic() - started_at, 3)
    if exit_code == 0:
        log.info("command.end", exit_code=exit_code, duration_seconds=duration_seconds)
    else:
        log.warning("command.end", exit_code=exit_code, duration_seconds=duration_seconds)

    return ExecResult(
        exit_code=exit_code,
        invocation=resolved,
        stdout=handle.output if mode is OutputMode.CAPTURE else None,
    )


def execute_sync(
    invocation: Invocation | Sequence[str],
    mode: OutputMode = OutputMode.PASSTHROUGH,
) -> ExecResult:
    return asyncio.run(execute(invocation, mode))
