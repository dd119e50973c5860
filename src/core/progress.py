"""User-facing download log and progress state.

This module keeps the run log shown by the host: tagged lines accumulate,
while progress lines replace each other so only the latest one is shown.
"""

from __future__ import annotations

import threading

from core.logging_config import get_logger

_LOGGER = get_logger(__name__)


class ProgressLog:
    """Thread-safe accumulated log plus one replaceable progress line."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._lines: list[str] = []
        self._progress_line: str | None = None
        self._percentage: int | None = 0
        self._message = ""

    def info(self, message: str) -> None:
        """Append an informational line."""
        self._append("info", message)
        _LOGGER.info("download_log", message=message)

    def warn(self, message: str) -> None:
        """Append a warning line."""
        self._append("warn", message)
        _LOGGER.warning("download_log", message=message)

    def fail(self, message: str) -> None:
        """Append a failure line."""
        self._append("fail", message)
        _LOGGER.error("download_log", message=message)

    def progress(self, percentage: int | None, message: str) -> None:
        """Replace the current progress line.

        Args:
            percentage: Completion estimate in 0-100, or None when unknown.
            message: Status text shown next to the percentage.
        """
        tag = "---%" if percentage is None else f"{percentage:03d}%"
        with self._lock:
            self._percentage = percentage
            self._message = message
            self._progress_line = _format_line(tag, message)
        _LOGGER.debug("download_progress", percentage=percentage, message=message)

    def clear(self) -> None:
        """Drop all lines and reset progress."""
        with self._lock:
            self._lines.clear()
            self._progress_line = None
            self._percentage = 0
            self._message = ""

    @property
    def percentage(self) -> int | None:
        with self._lock:
            return self._percentage

    @property
    def message(self) -> str:
        with self._lock:
            return self._message

    def lines(self) -> tuple[str, ...]:
        """Return accumulated non-progress lines in emission order."""
        with self._lock:
            return tuple(self._lines)

    def text(self) -> str:
        """Render the accumulated log followed by the pending progress line."""
        with self._lock:
            log_text = "".join(self._lines)
            if self._progress_line is None:
                return log_text
            return log_text + self._progress_line

    def _append(self, tag: str, message: str) -> None:
        with self._lock:
            self._progress_line = None
            self._lines.append(_format_line(tag, message))


def _format_line(tag: str, message: str) -> str:
    return f"[{tag}]  {message}\n"
