"""Cyclopts CLI entry point for procward."""

from __future__ import annotations

import shlex
import sys
from typing import TYPE_CHECKING, Annotated

from cyclopts import App, Parameter

from procward import __version__
from procward.cli.output import emit_json, error, write_stdout
from procward.lib.domain import Invocation, OutputMode, build_batch
from procward.lib.exec.errors import SpawnFailure
from procward.lib.exec.parallel import run_parallel_sync
from procward.lib.exec.probes import check_tools_sync
from procward.lib.exec.retry import retry_sync
from procward.lib.exec.spawn import execute_sync
from procward.lib.exec.timeout import run_with_timeout_sync
from procward.lib.lifecycle import init_lifecycle

if TYPE_CHECKING:
    from collections.abc import Sequence

app = App(
    name="procward",
    help="Run external commands with retries, deadlines, batching and cleanup.",
    version=__version__,
    help_formatter="plain",
)

EnvOption = Annotated[
    tuple[str, ...],
    Parameter(
        name="--env",
        help="Environment overlay for the child, NAME=value (repeatable).",
        negative_iterable=(),
    ),
]


def _invocation(command: Sequence[str], env: Sequence[str]) -> Invocation:
    return Invocation(argv=tuple(command), env=Invocation.parse_env_overlays(env))


@app.command(name="run")
def run_cmd(
    *command: str,
    env: EnvOption = (),
    capture: Annotated[
        bool,
        Parameter(name="--capture", help="Buffer stdout and print it after the command exits."),
    ] = False,
    silent: Annotated[
        bool,
        Parameter(name="--silent", help="Discard the command's stdout and stderr."),
    ] = False,
) -> None:
    """Run one command and exit with its status."""

    if capture and silent:
        raise ValueError("--capture and --silent are mutually exclusive.")
    mode = OutputMode.PASSTHROUGH
    if capture:
        mode = OutputMode.CAPTURE
    elif silent:
        mode = OutputMode.SILENT

    result = execute_sync(_invocation(command, env), mode)
    if result.stdout:
        write_stdout(result.stdout)
    raise SystemExit(result.exit_code)


@app.command(name="retry")
def retry_cmd(
    *command: str,
    env: EnvOption = (),
    attempts: Annotated[
        int | None,
        Parameter(name=["--attempts", "-n"], help="Maximum attempts (config default: 3)."),
    ] = None,
    delay: Annotated[
        float | None,
        Parameter(name=["--delay", "-d"], help="Seconds between attempts (config default: 1)."),
    ] = None,
) -> None:
    """Re-run a command until it succeeds or attempts run out."""

    raise SystemExit(retry_sync(_invocation(command, env), attempts, delay))


@app.command(name="timeout")
def timeout_cmd(
    seconds: Annotated[float, Parameter(help="Deadline in seconds.")],
    *command: str,
    env: EnvOption = (),
    kill_grace: Annotated[
        float | None,
        Parameter(name="--kill-grace", help="Seconds between SIGTERM and SIGKILL."),
    ] = None,
) -> None:
    """Run a command under a deadline; exits 124 when the deadline fires."""

    status = run_with_timeout_sync(
        _invocation(command, env),
        seconds,
        kill_grace_seconds=kill_grace,
    )
    raise SystemExit(status)


@app.command(name="parallel")
def parallel_cmd(
    *commands: str,
    max_concurrency: Annotated[
        int | None,
        Parameter(name="--max-concurrency", help="Upper bound on simultaneously running jobs."),
    ] = None,
    json_mode: Annotated[
        bool,
        Parameter(name="--json", help="Emit the batch result as JSON."),
    ] = False,
) -> None:
    """Run each quoted command string concurrently and wait for all of them."""

    jobs = build_batch(shlex.split(command) for command in commands)
    batch = run_parallel_sync(jobs, max_concurrency=max_concurrency)
    if json_mode:
        emit_json(batch)
    else:
        for result in batch.results:
            print(f"[{result.index}] exit={result.exit_code}", flush=True)
            if result.stdout:
                write_stdout(result.stdout)
    raise SystemExit(0 if batch.all_succeeded else 1)


@app.command(name="check")
def check_cmd(
    *checks: str,
    max_concurrency: Annotated[
        int | None,
        Parameter(name="--max-concurrency", help="Upper bound on simultaneously running probes."),
    ] = None,
) -> None:
    """Probe tools with NAME='COMMAND' pairs; a tool passes when its command exits 0."""

    if not checks:
        raise ValueError("At least one NAME=COMMAND check is required.")

    parsed: dict[str, list[str]] = {}
    for entry in checks:
        name, separator, command = entry.partition("=")
        name = name.strip()
        if not separator or not name:
            raise ValueError(f"Invalid check {entry!r}; expected NAME=COMMAND.")
        parsed[name] = shlex.split(command)

    report = check_tools_sync(parsed, max_concurrency=max_concurrency)
    for name in report.passed:
        print(f"PASS {name}")
    for name in report.failed:
        print(f"FAIL {name} (exit {report.statuses[name]})")
    raise SystemExit(0 if report.ok else 1)


def _extract_global_options(argv: Sequence[str]) -> tuple[list[str], bool, int]:
    """Strip logging flags; tokens after `--` belong to the child command."""

    json_logs = False
    verbosity = 0
    cleaned: list[str] = []

    for index, arg in enumerate(argv):
        if arg == "--":
            cleaned.extend(argv[index:])
            break
        if arg == "--json-logs":
            json_logs = True
            continue
        if arg in {"-v", "--verbose"}:
            verbosity += 1
            continue
        if arg == "-vv":
            verbosity += 2
            continue
        cleaned.append(arg)
    return cleaned, json_logs, verbosity


def _dispatch(args: Sequence[str]) -> int:
    try:
        app(list(args))
    except SpawnFailure as exc:
        error(exc.reason)
        return exc.exit_code
    except (ValueError, OSError) as exc:
        error(str(exc))
        return 1
    return 0


def main(argv: Sequence[str] | None = None) -> None:
    """CLI entry point used by `procward` and `python -m procward`."""

    from procward.lib.logging import configure_logging

    args = list(sys.argv[1:] if argv is None else argv)
    cleaned_args, json_logs, verbosity = _extract_global_options(args)

    # Configure logging early so structlog output goes to stderr, not stdout.
    configure_logging(json_mode=json_logs, verbosity=verbosity)

    lifecycle = init_lifecycle()
    raise SystemExit(lifecycle.protect(lambda: _dispatch(cleaned_args)))
