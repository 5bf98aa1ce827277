"""Signal hooks and exit-status mapping."""

from __future__ import annotations

import os
import signal
from collections.abc import Callable
from threading import RLock
from types import FrameType
from typing import Final, cast

TARGET_SIGNALS: Final[tuple[signal.Signals, ...]] = (signal.SIGINT, signal.SIGTERM)

SignalCallback = Callable[[signal.Signals, FrameType | None], None]


def signal_to_exit_code(received_signal: signal.Signals | None) -> int | None:
    """Map a terminating signal to the shell's `128 + N` exit status."""

    if received_signal is None:
        return None
    return 128 + int(received_signal)


def normalize_return_code(raw_return_code: int) -> int:
    """Fold asyncio's negative "killed by signal" codes into 0-255."""

    if raw_return_code >= 0:
        return raw_return_code & 0xFF
    try:
        signum = signal.Signals(-raw_return_code)
    except ValueError:
        return 128 + (-raw_return_code & 0x7F)
    return cast("int", signal_to_exit_code(signum))


class SignalHooks:
    """Installs one handler per target signal and remembers what it replaced."""

    def __init__(
        self,
        callback: SignalCallback,
        signals: tuple[signal.Signals, ...] = TARGET_SIGNALS,
    ) -> None:
        self._callback = callback
        self._signals = signals
        self._lock = RLock()
        self._previous_handlers: dict[signal.Signals, signal.Handlers] = {}
        self._installed = False

    @property
    def installed(self) -> bool:
        return self._installed

    def install(self) -> bool:
        """Install handlers; returns False off the main thread."""

        with self._lock:
            if self._installed:
                return True

            previous_handlers: dict[signal.Signals, signal.Handlers] = {}
            try:
                for signum in self._signals:
                    previous_handlers[signum] = cast("signal.Handlers", signal.getsignal(signum))
                    signal.signal(signum, self._on_signal)
            except ValueError:
                # Signal handlers can only be changed from the main thread.
                for signum, handler in previous_handlers.items():
                    try:
                        signal.signal(signum, handler)
                    except ValueError:
                        pass
                return False

            self._previous_handlers = previous_handlers
            self._installed = True
            return True

    def uninstall(self) -> None:
        with self._lock:
            if not self._installed:
                return
            try:
                for signum in self._signals:
                    signal.signal(signum, self._previous_handlers.get(signum, signal.SIG_DFL))
            except ValueError:
                return
            self._installed = False

    def previous_handler(self, signum: signal.Signals) -> signal.Handlers:
        return self._previous_handlers.get(signum, signal.SIG_DFL)

    def dispatch_previous(self, signum: signal.Signals, frame: FrameType | None) -> None:
        """Hand the signal to whatever was installed before us."""

        previous_handler = self.previous_handler(signum)
        if previous_handler == signal.SIG_IGN:
            return
        if previous_handler == signal.SIG_DFL or previous_handler is None:
            # Re-emit so the OS observes the original termination.
            signal.signal(signum, signal.SIG_DFL)
            os.kill(os.getpid(), signum)
            return
        if callable(previous_handler):
            previous_handler(signum.value, frame)

    def _on_signal(self, raw_signum: int, frame: FrameType | None) -> None:
        self._callback(signal.Signals(raw_signum), frame)
