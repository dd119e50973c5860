"""Unit tests for the download run log."""

from __future__ import annotations

from core.progress import ProgressLog


def test_progress_lines_replace_each_other() -> None:
    """Only the latest progress line should be shown after the log."""
    progress = ProgressLog()
    progress.info("MCC filter: world")
    progress.progress(10, "Records read 1000, records inserted 10")
    progress.progress(20, "Records read 2000, records inserted 20")

    assert progress.text() == (
        "[info]  MCC filter: world\n"
        "[020%]  Records read 2000, records inserted 20\n"
    )
    assert (progress.percentage, progress.message) == (20, "Records read 2000, records inserted 20")


def test_log_lines_accumulate_and_clear_pending_progress() -> None:
    """Non-progress lines should accumulate and drop the pending progress line."""
    progress = ProgressLog()
    progress.progress(50, "halfway")
    progress.warn("Download cancelled")
    progress.fail("network error: boom")

    assert progress.lines() == ("[warn]  Download cancelled\n", "[fail]  network error: boom\n")
    assert progress.text() == "".join(progress.lines())


def test_unknown_percentage_renders_placeholder() -> None:
    """Indeterminate progress should render without a number."""
    progress = ProgressLog()
    progress.progress(None, "Records read 1000, records inserted 0")

    assert progress.text() == "[---%]  Records read 1000, records inserted 0\n"


def test_clear_resets_state() -> None:
    """Clearing should drop lines and reset progress."""
    progress = ProgressLog()
    progress.info("old run")
    progress.progress(70, "old progress")

    progress.clear()

    assert progress.text() == "" and progress.percentage == 0


class _FakeLogger:
    def __init__(self) -> None:
        self.events: list[tuple[str, str, dict[str, object]]] = []

    def info(self, event: str, **fields: object) -> None:
        self.events.append(("info", event, fields))

    def warning(self, event: str, **fields: object) -> None:
        self.events.append(("warning", event, fields))

    def error(self, event: str, **fields: object) -> None:
        self.events.append(("error", event, fields))

    def debug(self, event: str, **fields: object) -> None:
        self.events.append(("debug", event, fields))


def test_log_lines_are_mirrored_to_structured_logger(monkeypatch) -> None:
    """Each run log line should also be emitted as a structured event."""
    fake_logger = _FakeLogger()
    monkeypatch.setattr("core.progress._LOGGER", fake_logger)
    progress = ProgressLog()

    progress.info("Getting data from Mozilla")
    progress.progress(None, "Records read 1000, records inserted 3")
    progress.fail("decode error: truncated")

    assert fake_logger.events == [
        ("info", "download_log", {"message": "Getting data from Mozilla"}),
        (
            "debug",
            "download_progress",
            {"percentage": None, "message": "Records read 1000, records inserted 3"},
        ),
        ("error", "download_log", {"message": "decode error: truncated"}),
    ]
