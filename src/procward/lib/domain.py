"""Core domain types for process invocation and batch results."""

from __future__ import annotations

import shlex
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import StrEnum

EnvOverlay = tuple[tuple[str, str], ...]


class OutputMode(StrEnum):
    """How a child's standard streams are wired."""

    PASSTHROUGH = "passthrough"
    CAPTURE = "capture"
    SILENT = "silent"


def _normalize_env(env: Mapping[str, str] | Iterable[tuple[str, str]] | None) -> EnvOverlay:
    if env is None:
        return ()
    items = env.items() if isinstance(env, Mapping) else env
    normalized: list[tuple[str, str]] = []
    for name, value in items:
        if not name or "=" in name:
            raise ValueError(f"Invalid environment variable name: {name!r}")
        normalized.append((str(name), str(value)))
    return tuple(normalized)


@dataclass(frozen=True, slots=True)
class Invocation:
    """One external program call: argv tokens plus environment overlays.

    Tokens are handed to the OS as an argument vector and are never
    interpreted by a shell.
    """

    argv: tuple[str, ...]
    env: EnvOverlay = ()

    @classmethod
    def of(
        cls,
        *argv: str,
        env: Mapping[str, str] | Iterable[tuple[str, str]] | None = None,
    ) -> Invocation:
        return cls(argv=tuple(str(token) for token in argv), env=_normalize_env(env))

    @classmethod
    def from_tokens(
        cls,
        tokens: Sequence[str],
        *,
        env: Mapping[str, str] | Iterable[tuple[str, str]] | None = None,
    ) -> Invocation:
        return cls.of(*tokens, env=env)

    @staticmethod
    def parse_env_overlays(entries: Iterable[str]) -> EnvOverlay:
        """Parse `NAME=value` entries, keeping their order."""

        parsed: list[tuple[str, str]] = []
        for entry in entries:
            name, sep, value = entry.partition("=")
            if not sep or not name.strip():
                raise ValueError(f"Invalid environment overlay {entry!r}: expected NAME=value.")
            parsed.append((name.strip(), value))
        return _normalize_env(parsed)

    def with_env(self, env: Mapping[str, str] | Iterable[tuple[str, str]]) -> Invocation:
        return Invocation(argv=self.argv, env=(*self.env, *_normalize_env(env)))

    @property
    def program(self) -> str | None:
        return self.argv[0] if self.argv else None

    def child_env(self, base_env: Mapping[str, str]) -> dict[str, str] | None:
        """Return the merged child environment, or None to inherit unchanged."""

        if not self.env:
            return None
        merged = dict(base_env)
        merged.update(self.env)
        return merged

    def describe(self) -> str:
        """Shell-quoted rendering for diagnostics only."""

        prefix = " ".join(f"{name}={shlex.quote(value)}" for name, value in self.env)
        command = shlex.join(self.argv)
        return f"{prefix} {command}" if prefix else command


def as_invocation(value: Invocation | Sequence[str]) -> Invocation:
    if isinstance(value, Invocation):
        return value
    if isinstance(value, str):
        raise TypeError("Pass command tokens as a sequence, not a single string.")
    return Invocation.from_tokens(value)


@dataclass(frozen=True, slots=True)
class ExecResult:
    """Outcome of one gateway call."""

    exit_code: int
    invocation: Invocation
    stdout: bytes | None = None

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def text(self) -> str:
        if self.stdout is None:
            return ""
        return self.stdout.decode("utf-8", errors="replace")

    def check_returncode(self) -> ExecResult:
        from procward.lib.exec.errors import CommandFailure

        if self.exit_code != 0:
            raise CommandFailure(self.invocation, self.exit_code)
        return self


@dataclass(frozen=True, slots=True)
class Job:
    index: int
    invocation: Invocation


def build_batch(invocations: Iterable[Invocation | Sequence[str]]) -> tuple[Job, ...]:
    """Assign submission indices to a batch of invocations."""

    return tuple(
        Job(index=index, invocation=as_invocation(item))
        for index, item in enumerate(invocations)
    )


@dataclass(frozen=True, slots=True)
class JobResult:
    index: int
    exit_code: int
    stdout: bytes = b""

    @property
    def text(self) -> str:
        return self.stdout.decode("utf-8", errors="replace")


@dataclass(frozen=True, slots=True)
class BatchResult:
    """Complete, submission-ordered outcome of a parallel batch."""

    results: tuple[JobResult, ...] = ()
    all_succeeded: bool = True

    @classmethod
    def from_results(cls, results: Iterable[JobResult]) -> BatchResult:
        ordered = tuple(sorted(results, key=lambda item: item.index))
        return cls(
            results=ordered,
            all_succeeded=all(item.exit_code == 0 for item in ordered),
        )

    @property
    def failed(self) -> tuple[JobResult, ...]:
        return tuple(item for item in self.results if item.exit_code != 0)

    def __len__(self) -> int:
        return len(self.results)


@dataclass(frozen=True, slots=True)
class RetrySession:
    max_attempts: int
    delay_seconds: float
    attempts_made: int = 0
    final_status: int | None = None


@dataclass(frozen=True, slots=True)
class DeadlineResult:
    """Deadline guard outcome; `timed_out` separates a real 124 from a deadline hit."""

    exit_code: int
    timed_out: bool
    raw_return_code: int | None = None


@dataclass(frozen=True, slots=True)
class ToolCheckReport:
    passed: tuple[str, ...] = ()
    failed: tuple[str, ...] = ()
    statuses: dict[str, int] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed
