"""CLI output helpers."""

from __future__ import annotations

import json
import sys
from typing import Any

from procward.lib.serialization import to_jsonable


def emit_json(value: Any) -> None:
    print(json.dumps(to_jsonable(value), sort_keys=True))


def write_stdout(payload: bytes) -> None:
    """Forward raw child output without re-encoding it."""

    sys.stdout.flush()
    sys.stdout.buffer.write(payload)
    sys.stdout.buffer.flush()


def error(message: str) -> None:
    print(f"error: {message}", file=sys.stderr)
