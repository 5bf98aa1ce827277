"""Process-wide teardown of cleanup actions and ephemeral paths.

One `LifecycleContext` per process owns an ordered action stack and two path
sets. Teardown runs exactly once, from whichever trigger fires first: the
interpreter's exit hook, SIGINT, SIGTERM, `protect(...)` at the entry point,
or an explicit `shutdown_lifecycle()`. Actions run newest first; files are
removed next, then directories. Nothing teardown does can change the exit
status of the program it protects.
"""

from __future__ import annotations

import asyncio
import atexit
import os
import shlex
import shutil
import signal
import subprocess
import sys
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from threading import Lock
from types import FrameType
from typing import TypeAlias

import structlog

from procward.lib.domain import ExecResult, Invocation, OutputMode, as_invocation
from procward.lib.exec.errors import CleanupActionFailure, LifecycleError
from procward.lib.exec.signals import SignalHooks, signal_to_exit_code
from procward.lib.exec.spawn import execute

logger = structlog.get_logger(__name__)

ActionLike: TypeAlias = Callable[[], object] | str | Sequence[str] | Invocation
PathLike: TypeAlias = str | os.PathLike[str]


class LifecycleState(StrEnum):
    UNINSTALLED = "uninstalled"
    INSTALLED = "installed"
    TEARING_DOWN = "tearing_down"
    DONE = "done"


@dataclass(frozen=True, slots=True)
class CleanupAction:
    label: str
    callback: Callable[[], object]

    def run(self) -> None:
        self.callback()


@dataclass(frozen=True, slots=True)
class CleanupSnapshot:
    """Read-only view of what teardown would release."""

    state: LifecycleState
    actions: tuple[str, ...]
    temp_files: tuple[str, ...]
    temp_dirs: tuple[str, ...]


def _command_callback(invocation: Invocation) -> Callable[[], object]:
    # Teardown may run inside a signal handler while an event loop is live,
    # so command actions use a plain blocking subprocess call.
    def _run() -> None:
        subprocess.run(
            list(invocation.argv),
            env=invocation.child_env(os.environ),
            check=True,
        )

    return _run


def _coerce_action(action: ActionLike, label: str | None) -> CleanupAction:
    if isinstance(action, Invocation):
        invocation = action
    elif isinstance(action, str):
        invocation = Invocation.from_tokens(shlex.split(action))
    elif callable(action):
        name = label or getattr(action, "__qualname__", None) or repr(action)
        return CleanupAction(label=name, callback=action)
    else:
        invocation = as_invocation(action)

    if not invocation.argv:
        raise ValueError("Cleanup command must not be empty.")
    return CleanupAction(
        label=label or invocation.describe(),
        callback=_command_callback(invocation),
    )


def _normalize_path(path: PathLike) -> str:
    normalized = os.fspath(path)
    if not normalized.strip():
        raise ValueError("Cleanup path must not be empty.")
    return normalized


def _remove_file(path: str) -> None:
    try:
        os.unlink(path)
    except FileNotFoundError:
        return
    except OSError as exc:
        logger.warning("lifecycle.temp_file_remove_failed", path=path, error=str(exc))
        return
    logger.debug("lifecycle.temp_file_removed", path=path)


def _remove_dir(path: str) -> None:
    try:
        shutil.rmtree(path)
    except FileNotFoundError:
        return
    except OSError as exc:
        logger.warning("lifecycle.temp_dir_remove_failed", path=path, error=str(exc))
        return
    logger.debug("lifecycle.temp_dir_removed", path=path)


def _exit_code_from_system_exit(exc: SystemExit) -> int:
    if exc.code is None:
        return 0
    if isinstance(exc.code, int):
        return exc.code
    print(exc.code, file=sys.stderr)
    return 1


class LifecycleContext:
    """Ordered teardown stack plus ephemeral file/directory sets."""

    def __init__(self, *, handle_signals: bool = True) -> None:
        self._state = LifecycleState.UNINSTALLED
        self._actions: list[CleanupAction] = []
        # dicts as insertion-ordered sets
        self._temp_files: dict[str, None] = {}
        self._temp_dirs: dict[str, None] = {}
        self._transition_lock = Lock()
        self._signal_hooks = SignalHooks(self._on_signal) if handle_signals else None
        self._exit_hook_registered = False
        self._exit_status: int | None = None
        self.failures: list[CleanupActionFailure] = []

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def exit_status(self) -> int | None:
        """Status captured when teardown started.

        None before teardown and when teardown ran from the interpreter exit
        hook, where the final status is not observable.
        """

        return self._exit_status

    def install(self) -> None:
        """Register the exit hook and signal handlers; later calls are no-ops."""

        if self._state is not LifecycleState.UNINSTALLED:
            return

        atexit.register(self._on_exit)
        self._exit_hook_registered = True
        if self._signal_hooks is not None and not self._signal_hooks.install():
            logger.warning(
                "lifecycle.signal_hooks_unavailable",
                reason="signal handlers can only be installed from the main thread",
            )
        self._state = LifecycleState.INSTALLED
        logger.debug("lifecycle.installed")

    def uninstall(self) -> None:
        """Remove hooks without running teardown."""

        self._remove_hooks()
        if self._state is LifecycleState.INSTALLED:
            self._state = LifecycleState.UNINSTALLED

    def register_action(self, action: ActionLike, *, label: str | None = None) -> CleanupAction:
        """Push a teardown action: a callable, a command string, or argv tokens.

        Command strings are split into tokens and run without a shell.
        """

        cleanup = _coerce_action(action, label)
        self._warn_if_closed(kind="action", target=cleanup.label)
        self._actions.append(cleanup)
        logger.debug("lifecycle.action_registered", label=cleanup.label)
        self.install()
        return cleanup

    def register_temp_file(self, path: PathLike) -> str:
        normalized = _normalize_path(path)
        self._warn_if_closed(kind="temp_file", target=normalized)
        self._temp_files.setdefault(normalized, None)
        logger.debug("lifecycle.temp_file_registered", path=normalized)
        self.install()
        return normalized

    def register_temp_dir(self, path: PathLike) -> str:
        normalized = _normalize_path(path)
        self._warn_if_closed(kind="temp_dir", target=normalized)
        self._temp_dirs.setdefault(normalized, None)
        logger.debug("lifecycle.temp_dir_registered", path=normalized)
        self.install()
        return normalized

    async def run_protected(self, invocation: Invocation | Sequence[str]) -> ExecResult:
        """Run a command and register the path it prints, if it printed one.

        Heuristic: only a single trimmed line naming an existing file or
        directory is registered. Multi-line output is left alone.
        """

        result = await execute(invocation, OutputMode.CAPTURE)
        self._register_from_output(result.text)
        return result

    def run_protected_sync(self, invocation: Invocation | Sequence[str]) -> ExecResult:
        return asyncio.run(self.run_protected(invocation))

    def teardown(self, exit_code: int = 0) -> int:
        """Release everything once; returns `exit_code` unchanged."""

        self._teardown_once(exit_code)
        return exit_code

    def protect(self, main: Callable[[], int | None]) -> int:
        """Run `main` as a program entry point and tear down afterwards."""

        self.install()
        exit_code = 1
        try:
            try:
                result = main()
                exit_code = 0 if result is None else int(result)
            except SystemExit as exc:
                exit_code = _exit_code_from_system_exit(exc)
            except KeyboardInterrupt:
                exit_code = 130
            except Exception:
                logger.exception("lifecycle.main_failed")
                exit_code = 1
        finally:
            self.teardown(exit_code)
        return exit_code

    def clear_all(self) -> None:
        """Forget every registration without running it (testing only)."""

        self._actions.clear()
        self._temp_files.clear()
        self._temp_dirs.clear()
        logger.debug("lifecycle.cleared")

    def snapshot(self) -> CleanupSnapshot:
        return CleanupSnapshot(
            state=self._state,
            actions=tuple(action.label for action in self._actions),
            temp_files=tuple(self._temp_files),
            temp_dirs=tuple(self._temp_dirs),
        )

    def _warn_if_closed(self, *, kind: str, target: str) -> None:
        if self._state in (LifecycleState.TEARING_DOWN, LifecycleState.DONE):
            logger.warning("lifecycle.registered_after_teardown", kind=kind, target=target)

    def _register_from_output(self, output: str) -> str | None:
        candidate = output.strip()
        if not candidate:
            return None
        if "\n" in candidate:
            logger.debug("lifecycle.auto_register_skipped", reason="multi-line output")
            return None

        path = Path(candidate)
        if path.is_file():
            return self.register_temp_file(candidate)
        if path.is_dir():
            return self.register_temp_dir(candidate)
        return None

    def _claim_teardown(self) -> bool:
        # Non-blocking so a signal landing mid-transition on the same thread
        # backs off instead of deadlocking.
        if not self._transition_lock.acquire(blocking=False):
            return False
        try:
            if self._state in (LifecycleState.TEARING_DOWN, LifecycleState.DONE):
                return False
            self._state = LifecycleState.TEARING_DOWN
            return True
        finally:
            self._transition_lock.release()

    def _teardown_once(self, exit_code: int | None) -> bool:
        if not self._claim_teardown():
            return False

        self._exit_status = exit_code
        log = logger.bind(exit_code=exit_code)
        log.debug(
            "lifecycle.teardown_started",
            actions=len(self._actions),
            temp_files=len(self._temp_files),
            temp_dirs=len(self._temp_dirs),
        )

        for action in reversed(tuple(self._actions)):
            try:
                action.run()
            except (Exception, SystemExit) as exc:
                failure = CleanupActionFailure(action.label, exc)
                self.failures.append(failure)
                log.warning("lifecycle.action_failed", label=action.label, error=str(exc))

        for path in tuple(self._temp_files):
            _remove_file(path)
        for path in tuple(self._temp_dirs):
            _remove_dir(path)

        self._state = LifecycleState.DONE
        self._remove_hooks()
        log.debug("lifecycle.teardown_finished", failures=len(self.failures))
        return True

    def _remove_hooks(self) -> None:
        if self._exit_hook_registered:
            atexit.unregister(self._on_exit)
            self._exit_hook_registered = False
        if self._signal_hooks is not None:
            self._signal_hooks.uninstall()

    def _on_exit(self) -> None:
        # The interpreter is already unwinding this hook; skip unregistering it.
        self._exit_hook_registered = False
        self._teardown_once(None)

    def _on_signal(self, signum: signal.Signals, frame: FrameType | None) -> None:
        exit_code = signal_to_exit_code(signum)
        logger.warning("lifecycle.signal_received", signal=signum.name)
        if not self._teardown_once(exit_code if exit_code is not None else 1):
            return
        if self._signal_hooks is not None:
            self._signal_hooks.dispatch_previous(signum, frame)


_LIFECYCLE_LOCK = Lock()
_LIFECYCLE: LifecycleContext | None = None


def init_lifecycle(*, handle_signals: bool = True) -> LifecycleContext:
    """Create the process-wide lifecycle context, or return the existing one."""

    global _LIFECYCLE
    with _LIFECYCLE_LOCK:
        if _LIFECYCLE is None:
            _LIFECYCLE = LifecycleContext(handle_signals=handle_signals)
        return _LIFECYCLE


def get_lifecycle() -> LifecycleContext:
    context = _LIFECYCLE
    if context is None:
        raise LifecycleError("Lifecycle context is not initialised; call init_lifecycle() first.")
    return context


def shutdown_lifecycle(exit_code: int = 0) -> int:
    """Tear down and detach the process-wide context; returns `exit_code`."""

    global _LIFECYCLE
    with _LIFECYCLE_LOCK:
        context = _LIFECYCLE
        _LIFECYCLE = None
    if context is None:
        return exit_code
    context.teardown(exit_code)
    context.uninstall()
    return exit_code
