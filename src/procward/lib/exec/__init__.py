"""Execution engine primitives."""

from procward.lib.exec.errors import (
    CleanupActionFailure,
    CommandFailure,
    LifecycleError,
    ProcwardError,
    SpawnFailure,
    TimeoutExceeded,
)
from procward.lib.exec.parallel import run_parallel, run_parallel_sync
from procward.lib.exec.probes import (
    check_tools,
    check_tools_sync,
    expect_exit,
    expect_exit_sync,
    program_exists,
    require_program,
)
from procward.lib.exec.retry import retry, retry_session, retry_session_sync, retry_sync
from procward.lib.exec.signals import normalize_return_code, signal_to_exit_code
from procward.lib.exec.spawn import ProcessHandle, execute, execute_sync
from procward.lib.exec.timeout import (
    TIMEOUT_EXIT_CODE,
    guard_deadline,
    guard_deadline_sync,
    run_with_timeout,
    run_with_timeout_sync,
    terminate_process,
    wait_for_process_exit,
)

__all__ = [
    "TIMEOUT_EXIT_CODE",
    "CleanupActionFailure",
    "CommandFailure",
    "LifecycleError",
    "ProcessHandle",
    "ProcwardError",
    "SpawnFailure",
    "TimeoutExceeded",
    "check_tools",
    "check_tools_sync",
    "execute",
    "execute_sync",
    "expect_exit",
    "expect_exit_sync",
    "guard_deadline",
    "guard_deadline_sync",
    "normalize_return_code",
    "program_exists",
    "require_program",
    "retry",
    "retry_session",
    "retry_session_sync",
    "retry_sync",
    "run_parallel",
    "run_parallel_sync",
    "run_with_timeout",
    "run_with_timeout_sync",
    "signal_to_exit_code",
    "terminate_process",
    "wait_for_process_exit",
]
