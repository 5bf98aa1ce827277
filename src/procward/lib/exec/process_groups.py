"""Process-group helpers for subprocess lifecycle management."""

from __future__ import annotations

import os
import signal


def signal_process_group(pgid: int | None, signum: signal.Signals) -> bool:
    """Send one signal to a whole process group.

    Children are started in their own session, so the group id equals the
    leader's pid and stays valid for surviving grandchildren after the leader
    has been reaped. ProcessLookupError is an expected race.
    """

    if pgid is None or pgid <= 0:
        return False

    try:
        os.killpg(pgid, signum)
    except ProcessLookupError:
        return False
    except PermissionError:
        return False
    return True


def process_group_alive(pgid: int | None) -> bool:
    if pgid is None or pgid <= 0:
        return False
    try:
        os.killpg(pgid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True
