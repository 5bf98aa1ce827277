"""Execution gateway and process handle tests."""

from __future__ import annotations

import asyncio
import os
import sys
import time
from pathlib import Path

import pytest

from procward.lib.domain import Invocation, OutputMode
from procward.lib.exec.errors import SpawnFailure
from procward.lib.exec.spawn import ProcessHandle, execute, execute_sync


def _python(code: str) -> list[str]:
    return [sys.executable, "-c", code]


def _pid_exists(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


@pytest.mark.asyncio
async def test_execute_returns_child_status_unchanged() -> None:
    assert (await execute(_python("pass"))).exit_code == 0
    assert (await execute(_python("raise SystemExit(3)"))).exit_code == 3
    assert (await execute(_python("raise SystemExit(255)"))).exit_code == 255


@pytest.mark.asyncio
async def test_execute_empty_invocation_is_a_spawn_failure() -> None:
    with pytest.raises(SpawnFailure) as exc_info:
        await execute(Invocation(argv=()))

    assert exc_info.value.exit_code == 2


@pytest.mark.asyncio
async def test_execute_missing_program_maps_to_127() -> None:
    with pytest.raises(SpawnFailure) as exc_info:
        await execute(["procward-definitely-missing-program"])

    assert exc_info.value.exit_code == 127
    assert "procward-definitely-missing-program" in exc_info.value.reason


@pytest.mark.asyncio
async def test_execute_non_executable_file_maps_to_126(tmp_path: Path) -> None:
    script = tmp_path / "not-executable.sh"
    script.write_text("#!/bin/sh\nexit 0\n", encoding="utf-8")
    script.chmod(0o644)

    with pytest.raises(SpawnFailure) as exc_info:
        await execute([str(script)])

    assert exc_info.value.exit_code == 126


@pytest.mark.asyncio
async def test_env_overlay_reaches_child_without_touching_parent(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.delenv("PROCWARD_TEST_OVERLAY", raising=False)
    invocation = Invocation.of(
        *_python("import os; print(os.environ['PROCWARD_TEST_OVERLAY'])"),
        env={"PROCWARD_TEST_OVERLAY": "from-overlay"},
    )

    result = await execute(invocation, OutputMode.CAPTURE)

    assert result.exit_code == 0
    assert result.text.strip() == "from-overlay"
    assert "PROCWARD_TEST_OVERLAY" not in os.environ


@pytest.mark.asyncio
async def test_output_modes_control_captured_stdout() -> None:
    command = _python("print('hello')")

    captured = await execute(command, OutputMode.CAPTURE)
    silent = await execute(command, OutputMode.SILENT)

    assert captured.stdout == b"hello\n"
    assert silent.stdout is None
    assert silent.exit_code == 0


@pytest.mark.asyncio
async def test_capture_keeps_large_output_intact() -> None:
    result = await execute(
        _python("import sys; sys.stdout.write('x' * 1_000_000)"),
        OutputMode.CAPTURE,
    )

    assert result.exit_code == 0
    assert result.stdout is not None
    assert len(result.stdout) == 1_000_000


@pytest.mark.asyncio
async def test_signal_death_is_reported_as_128_plus_signal() -> None:
    result = await execute(_python("import os, signal; os.kill(os.getpid(), signal.SIGTERM)"))

    assert result.exit_code == 143


@pytest.mark.asyncio
async def test_terminate_escalates_to_sigkill_after_grace(tmp_path: Path) -> None:
    ready = tmp_path / "ready"
    code = (
        "import signal, time\n"
        "from pathlib import Path\n"
        "signal.signal(signal.SIGTERM, signal.SIG_IGN)\n"
        f"Path({str(ready)!r}).write_text('ok')\n"
        "time.sleep(30)\n"
    )
    handle = await ProcessHandle.spawn(Invocation.of(*_python(code)), OutputMode.SILENT)
    assert handle.pgid == handle.pid

    deadline = time.monotonic() + 5.0
    while not ready.exists() and time.monotonic() < deadline:
        await asyncio.sleep(0.02)

    started = time.monotonic()
    exit_code = await handle.terminate(grace_seconds=0.2)

    assert exit_code == 137
    assert handle.returncode == 137
    assert handle.running is False
    assert time.monotonic() - started < 5.0


@pytest.mark.asyncio
async def test_cancelled_execute_does_not_leave_child_running(tmp_path: Path) -> None:
    pid_path = tmp_path / "child.pid"
    code = (
        "import os, time\n"
        "from pathlib import Path\n"
        f"Path({str(pid_path)!r}).write_text(str(os.getpid()))\n"
        "time.sleep(30)\n"
    )
    task = asyncio.create_task(execute(_python(code), OutputMode.SILENT))

    deadline = time.monotonic() + 5.0
    while not pid_path.exists() and time.monotonic() < deadline:
        await asyncio.sleep(0.02)
    await asyncio.sleep(0.05)

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    child_pid = int(pid_path.read_text(encoding="utf-8"))
    assert _pid_exists(child_pid) is False


def test_execute_sync_runs_outside_an_event_loop() -> None:
    result = execute_sync(_python("print('sync')"), OutputMode.CAPTURE)

    assert result.exit_code == 0
    assert result.text == "sync\n"


@pytest.mark.asyncio
async def test_nul_byte_in_env_overlay_is_a_spawn_failure() -> None:
    with pytest.raises(SpawnFailure) as exc_info:
        await execute(Invocation.of(*_python("pass"), env={"PROCWARD_BAD": "a\0b"}))

    assert exc_info.value.exit_code == 126
