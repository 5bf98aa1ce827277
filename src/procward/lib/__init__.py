"""Core procward library exports."""

from procward.lib.domain import (
    BatchResult,
    DeadlineResult,
    ExecResult,
    Invocation,
    Job,
    JobResult,
    OutputMode,
    RetrySession,
    build_batch,
)

__all__ = [
    "BatchResult",
    "DeadlineResult",
    "ExecResult",
    "Invocation",
    "Job",
    "JobResult",
    "OutputMode",
    "RetrySession",
    "build_batch",
]
