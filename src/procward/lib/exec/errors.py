"""Error taxonomy for process execution and teardown."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from procward.lib.domain import Invocation

EXIT_USAGE = 2
EXIT_NOT_EXECUTABLE = 126
EXIT_NOT_FOUND = 127


class ProcwardError(Exception):
    """Base class for procward errors."""


class SpawnFailure(ProcwardError):
    """The child process could not be created at all."""

    def __init__(
        self,
        invocation: Invocation | None,
        reason: str,
        *,
        exit_code: int = EXIT_NOT_FOUND,
    ) -> None:
        self.invocation = invocation
        self.reason = reason
        self.exit_code = exit_code
        super().__init__(reason)

    @classmethod
    def empty(cls, invocation: Invocation | None = None) -> SpawnFailure:
        return cls(invocation, "Cannot spawn process: command is empty.", exit_code=EXIT_USAGE)

    @classmethod
    def from_spawn_error(
        cls,
        invocation: Invocation,
        error: OSError | ValueError,
    ) -> SpawnFailure:
        program = invocation.program or ""
        if isinstance(error, ValueError):
            # Embedded NUL bytes in argv or env are rejected before exec.
            return cls(
                invocation,
                f"Invalid arguments for {program!r}: {error}",
                exit_code=EXIT_NOT_EXECUTABLE,
            )
        if isinstance(error, FileNotFoundError):
            return cls(invocation, f"Program not found: {program}", exit_code=EXIT_NOT_FOUND)
        if isinstance(error, PermissionError):
            return cls(
                invocation,
                f"Program is not executable: {program}",
                exit_code=EXIT_NOT_EXECUTABLE,
            )
        return cls(
            invocation,
            f"Failed to spawn {program}: {error}",
            exit_code=EXIT_NOT_EXECUTABLE,
        )


class CommandFailure(ProcwardError):
    """A child ran and exited with a nonzero status."""

    def __init__(self, invocation: Invocation, exit_code: int) -> None:
        self.invocation = invocation
        self.exit_code = exit_code
        super().__init__(f"Command failed ({exit_code}): {invocation.describe()}")


class TimeoutExceeded(ProcwardError, TimeoutError):
    """Raised when a child exceeds its deadline and was terminated."""

    def __init__(self, timeout_seconds: float) -> None:
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Command exceeded timeout after {timeout_seconds:.3f}s")


class CleanupActionFailure(ProcwardError):
    """One teardown action failed; recorded and logged, never escalated."""

    def __init__(self, label: str, cause: BaseException) -> None:
        self.label = label
        self.cause = cause
        super().__init__(f"Cleanup action '{label}' failed: {cause}")


class LifecycleError(ProcwardError):
    """Misuse of the process-wide lifecycle context."""
