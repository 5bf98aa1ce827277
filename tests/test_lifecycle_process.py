"""Cleanup registry behaviour across real process exits and signals."""

from __future__ import annotations

import signal
import subprocess
import sys
import textwrap
import time
from pathlib import Path

import pytest

_PRELUDE = """
from __future__ import annotations

import sys
import time
from pathlib import Path

from procward.lib.lifecycle import init_lifecycle
from procward.lib.logging import configure_logging

configure_logging()

workdir = Path(sys.argv[1])
log_path = workdir / "actions.log"


def record(name: str):
    def _record() -> None:
        with log_path.open("a", encoding="utf-8") as handle:
            handle.write(f"{name}\\n")

    return _record
"""


def _write_worker(tmp_path: Path, body: str) -> Path:
    script = tmp_path / "worker.py"
    script.write_text(textwrap.dedent(_PRELUDE) + textwrap.dedent(body), encoding="utf-8")
    return script


def _start(script: Path, tmp_path: Path, env: dict[str, str]) -> subprocess.Popen[str]:
    return subprocess.Popen(
        [sys.executable, str(script), str(tmp_path)],
        env=env,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
    )


def _wait_for(path: Path, timeout: float = 10.0) -> None:
    deadline = time.monotonic() + timeout
    while not path.exists():
        if time.monotonic() > deadline:
            raise AssertionError(f"timed out waiting for {path}")
        time.sleep(0.02)


def _log_lines(tmp_path: Path) -> list[str]:
    return (tmp_path / "actions.log").read_text(encoding="utf-8").splitlines()


_SIGNAL_WORKER = """
lifecycle = init_lifecycle()
for name in ("A", "B", "C"):
    lifecycle.register_action(record(name), label=name)
scratch = workdir / "scratch.txt"
scratch.write_text("x", encoding="utf-8")
lifecycle.register_temp_file(scratch)
lifecycle.register_temp_dir(workdir / "scratch-dir")
(workdir / "scratch-dir").mkdir()
(workdir / "ready").write_text("ok", encoding="utf-8")

while True:
    time.sleep(0.1)
"""


def test_normal_exit_runs_teardown(tmp_path: Path, cli_env: dict[str, str]) -> None:
    script = _write_worker(
        tmp_path,
        """
        lifecycle = init_lifecycle()
        lifecycle.register_action(record("A"))
        lifecycle.register_action(record("B"))
        scratch = workdir / "scratch.txt"
        scratch.write_text("x", encoding="utf-8")
        lifecycle.register_temp_file(scratch)
        """,
    )

    process = _start(script, tmp_path, cli_env)
    process.communicate(timeout=15)

    assert process.returncode == 0
    assert _log_lines(tmp_path) == ["B", "A"]
    assert not (tmp_path / "scratch.txt").exists()


@pytest.mark.parametrize("received", [signal.SIGTERM, signal.SIGINT])
def test_signal_runs_teardown_once_then_dies_by_signal(
    tmp_path: Path,
    cli_env: dict[str, str],
    received: signal.Signals,
) -> None:
    script = _write_worker(tmp_path, _SIGNAL_WORKER)

    process = _start(script, tmp_path, cli_env)
    try:
        _wait_for(tmp_path / "ready")
        process.send_signal(received)
        process.communicate(timeout=15)
    finally:
        if process.poll() is None:
            process.kill()
            process.wait()

    assert process.returncode == -received
    assert _log_lines(tmp_path) == ["C", "B", "A"]
    assert not (tmp_path / "scratch.txt").exists()
    assert not (tmp_path / "scratch-dir").exists()


def test_signal_during_protect_reports_130(tmp_path: Path, cli_env: dict[str, str]) -> None:
    script = _write_worker(
        tmp_path,
        """
        lifecycle = init_lifecycle()
        lifecycle.register_action(record("A"))
        lifecycle.register_action(record("B"))


        def main() -> int:
            (workdir / "ready").write_text("ok", encoding="utf-8")
            while True:
                time.sleep(0.1)


        raise SystemExit(lifecycle.protect(main))
        """,
    )

    process = _start(script, tmp_path, cli_env)
    try:
        _wait_for(tmp_path / "ready")
        process.send_signal(signal.SIGINT)
        process.communicate(timeout=15)
    finally:
        if process.poll() is None:
            process.kill()
            process.wait()

    assert process.returncode == 130
    assert _log_lines(tmp_path) == ["B", "A"]


def test_command_string_actions_print_in_reverse_order(
    tmp_path: Path,
    cli_env: dict[str, str],
) -> None:
    script = _write_worker(
        tmp_path,
        """
        import shlex

        lifecycle = init_lifecycle()
        for word in ("A", "B"):
            lifecycle.register_action(
                shlex.join([sys.executable, "-c", f"print({word!r}, flush=True)"])
            )
        sys.stdout.flush()
        """,
    )

    process = _start(script, tmp_path, cli_env)
    stdout, _ = process.communicate(timeout=15)

    assert process.returncode == 0
    assert stdout.splitlines() == ["B", "A"]


def test_failing_action_keeps_program_status(tmp_path: Path, cli_env: dict[str, str]) -> None:
    script = _write_worker(
        tmp_path,
        """
        lifecycle = init_lifecycle()
        lifecycle.register_action(record("A"))
        lifecycle.register_action([sys.executable, "-c", "raise SystemExit(9)"], label="broken")
        raise SystemExit(7)
        """,
    )

    process = _start(script, tmp_path, cli_env)
    process.communicate(timeout=15)

    assert process.returncode == 7
    assert _log_lines(tmp_path) == ["A"]


def test_interpreter_exit_leaves_status_unknown(tmp_path: Path, cli_env: dict[str, str]) -> None:
    script = _write_worker(
        tmp_path,
        """
        lifecycle = init_lifecycle()


        def _report() -> None:
            (workdir / "status.txt").write_text(repr(lifecycle.exit_status), encoding="utf-8")


        lifecycle.register_action(_report)
        sys.exit(7)
        """,
    )

    process = _start(script, tmp_path, cli_env)
    process.communicate(timeout=15)

    assert process.returncode == 7
    assert (tmp_path / "status.txt").read_text(encoding="utf-8") == "None"
