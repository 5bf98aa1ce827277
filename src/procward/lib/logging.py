"""Structlog setup for the procward CLI.

The library modules only ask structlog for loggers; nothing under
``procward.lib`` configures output. Programs embedding procward keep their own
setup, and the CLI calls :func:`configure_logging` once before dispatching.
"""

from __future__ import annotations

import logging as std_logging
import sys
from typing import TextIO

import structlog

# Indexed by the number of -v flags; anything past the end means debug.
_LEVELS = (std_logging.WARNING, std_logging.INFO, std_logging.DEBUG)


def level_for_verbosity(verbosity: int) -> int:
    return _LEVELS[min(max(verbosity, 0), len(_LEVELS) - 1)]


def _processors(json_mode: bool, stream: TextIO) -> list[structlog.typing.Processor]:
    processors: list[structlog.typing.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if json_mode:
        processors.append(structlog.processors.dict_tracebacks)
        processors.append(structlog.processors.JSONRenderer())
    else:
        isatty = getattr(stream, "isatty", None)
        processors.append(structlog.dev.ConsoleRenderer(colors=bool(isatty and isatty())))
    return processors


def configure_logging(
    json_mode: bool = False,
    verbosity: int = 0,
    *,
    stream: TextIO | None = None,
) -> None:
    """Route procward diagnostics to ``stream`` (stderr by default).

    Child stdout and captured job output own stdout, so diagnostics never go
    there. Verbosity 0 shows warnings, 1 adds info, 2 or more adds debug.
    """

    target = sys.stderr if stream is None else stream
    level = level_for_verbosity(verbosity)

    handler = std_logging.StreamHandler(target)
    handler.setFormatter(std_logging.Formatter("%(message)s"))
    std_logging.basicConfig(level=level, handlers=[handler], force=True)

    structlog.configure(
        processors=_processors(json_mode, target),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=target),
        # Module-level loggers must pick up a later reconfiguration.
        cache_logger_on_first_use=False,
    )
