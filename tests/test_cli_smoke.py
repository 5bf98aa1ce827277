"""Smoke tests for the procward CLI entry point."""

from __future__ import annotations

import json
import shlex
import sys

from procward import __version__

PY = sys.executable


def test_help_lists_commands(run_procward) -> None:
    result = run_procward(["--help"])

    assert result.returncode == 0
    for expected in ["run", "retry", "timeout", "parallel", "check"]:
        assert expected in result.stdout


def test_version_flag(run_procward) -> None:
    result = run_procward(["--version"])

    assert result.returncode == 0
    assert __version__ in result.stdout


def test_run_exits_with_child_status(run_procward) -> None:
    result = run_procward(["run", "--", PY, "-c", "raise SystemExit(4)"])

    assert result.returncode == 4


def test_run_capture_prints_child_stdout(run_procward) -> None:
    result = run_procward(
        [
            "run",
            "--capture",
            "--env",
            "GREETING=hello",
            "--",
            PY,
            "-c",
            "import os; print(os.environ['GREETING'])",
        ]
    )

    assert result.returncode == 0
    assert result.stdout == "hello\n"


def test_verbose_flags_before_separator_are_consumed(run_procward) -> None:
    echo_args = "import sys; print(sys.argv[1:])"

    result = run_procward(["-v", "run", "--capture", "--", PY, "-c", echo_args, "-v"])

    assert result.returncode == 0
    assert result.stdout.strip() == "['-v']"
    assert "command.start" in result.stderr


def test_run_missing_program_exits_127(run_procward) -> None:
    result = run_procward(["run", "--", "procward-definitely-missing-program"])

    assert result.returncode == 127
    assert "error: Program not found" in result.stderr


def test_run_rejects_malformed_env_overlay(run_procward) -> None:
    result = run_procward(["run", "--env", "NOVALUE", "--", PY, "-c", "pass"])

    assert result.returncode == 1
    assert "error:" in result.stderr


def test_retry_returns_last_status(run_procward) -> None:
    result = run_procward(
        ["retry", "--attempts", "2", "--delay", "0", "--", PY, "-c", "raise SystemExit(3)"]
    )

    assert result.returncode == 3


def test_timeout_reports_124(run_procward) -> None:
    result = run_procward(["timeout", "0.5", "--", PY, "-c", "import time; time.sleep(30)"])

    assert result.returncode == 124


def test_parallel_json_output(run_procward) -> None:
    ok = shlex.join([PY, "-c", "print('ok')"])
    failing = shlex.join([PY, "-c", "raise SystemExit(2)"])

    result = run_procward(["parallel", "--json", ok, failing])

    assert result.returncode == 1
    payload = json.loads(result.stdout)
    assert payload["all_succeeded"] is False
    assert [(item["index"], item["exit_code"]) for item in payload["results"]] == [(0, 0), (1, 2)]
    assert payload["results"][0]["stdout"] == "ok\n"


def test_parallel_text_output(run_procward) -> None:
    commands = [shlex.join([PY, "-c", f"print('job{index}')"]) for index in range(2)]

    result = run_procward(["parallel", *commands])

    assert result.returncode == 0
    assert result.stdout.splitlines() == ["[0] exit=0", "job0", "[1] exit=0", "job1"]


def test_check_reports_each_tool(run_procward) -> None:
    result = run_procward(
        [
            "check",
            f"python={shlex.join([PY, '--version'])}",
            "missing=procward-definitely-missing-program",
        ]
    )

    assert result.returncode == 1
    assert "PASS python" in result.stdout
    assert "FAIL missing (exit 127)" in result.stdout
