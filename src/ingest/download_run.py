"""Download run handle, lifecycle states, and the single-run guard.

A ``DownloadRun`` is created per invocation and carries the cancellation
signal, the user-facing log, and the lifecycle state the host reads.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator

from core.errors import TowerDbRunInProgressError, TowerDbStateError
from core.progress import ProgressLog
from core.types import DownloadResult, RunState

ALLOWED_STATE_TRANSITIONS: dict[RunState, tuple[RunState, ...]] = {
    "idle": ("running",),
    "running": ("completed", "cancelled", "failed"),
    "completed": (),
    "cancelled": (),
    "failed": (),
}


def validate_transition(current: RunState, next_state: RunState) -> None:
    """Validate one lifecycle transition against allowed state machine edges."""
    allowed_states = ALLOWED_STATE_TRANSITIONS[current]
    if next_state not in allowed_states:
        raise TowerDbStateError(
            f"Invalid download run state transition {current!r} -> {next_state!r}. "
            f"Allowed: {', '.join(allowed_states) or 'none'}."
        )


class DownloadRun:
    """Per-invocation run handle shared between the worker and the host."""

    def __init__(self) -> None:
        self.progress = ProgressLog()
        self._cancel_event = threading.Event()
        self._finished_event = threading.Event()
        self._lock = threading.Lock()
        self._state: RunState = "idle"
        self._result: DownloadResult | None = None
        self._error: BaseException | None = None

    @property
    def state(self) -> RunState:
        with self._lock:
            return self._state

    @property
    def result(self) -> DownloadResult | None:
        with self._lock:
            return self._result

    @property
    def error(self) -> BaseException | None:
        with self._lock:
            return self._error

    def cancel(self) -> None:
        """Request cooperative cancellation."""
        self._cancel_event.set()

    def is_cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def log_text(self) -> str:
        return self.progress.text()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the run reaches a terminal state."""
        return self._finished_event.wait(timeout)

    def transition(self, next_state: RunState) -> None:
        """Move to the next lifecycle state."""
        with self._lock:
            validate_transition(self._state, next_state)
            self._state = next_state

    def finish(
        self,
        state: RunState,
        result: DownloadResult | None = None,
        error: BaseException | None = None,
    ) -> None:
        """Record the terminal state and wake waiters."""
        with self._lock:
            validate_transition(self._state, state)
            self._state = state
            self._result = result
            self._error = error
        self._finished_event.set()


class DownloadGuard:
    """Mutual-exclusion guard allowing one running download at a time."""

    def __init__(self) -> None:
        self._lock = threading.Lock()

    def is_held(self) -> bool:
        return self._lock.locked()

    @contextmanager
    def hold(self) -> Iterator[None]:
        """Hold the guard for one run.

        Raises:
            TowerDbRunInProgressError: If another run holds the guard.
        """
        self.acquire()
        try:
            yield
        finally:
            self.release()

    def acquire(self) -> None:
        if not self._lock.acquire(blocking=False):
            raise TowerDbRunInProgressError(
                "A tower database download is already running. "
                "Cancel it or wait for it to finish before starting another."
            )

    def release(self) -> None:
        self._lock.release()
