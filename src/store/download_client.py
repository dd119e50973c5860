"""Python SDK for tower database downloads.

This module exposes the host-facing client: synchronous and background
downloads, cancellation, and read access to the run log and progress.
"""

from __future__ import annotations

import threading
from typing import Sequence

import httpx

from core.config import TowerDbConfig
from core.logging_config import get_logger
from core.resources import KeepAliveResource
from core.types import DownloadResult, DownloadSettings
from ingest.download_run import DownloadGuard, DownloadRun
from ingest.orchestrator import DownloadOrchestrator

_LOGGER = get_logger(__name__)


class TowerDbClient:
    """Primary SDK entry point for building the tower database."""

    def __init__(
        self,
        config: TowerDbConfig | None = None,
        resources: Sequence[KeepAliveResource] = (),
        http_client: httpx.Client | None = None,
    ) -> None:
        """Create SDK client.

        Args:
            config: Optional runtime configuration.
            resources: Keep-alive resources held while a download runs.
            http_client: Optional HTTP client shared by all downloads.
        """
        self._config = config or TowerDbConfig.from_env()
        self._resources = tuple(resources)
        self._http_client = http_client
        self._guard = DownloadGuard()
        self._current_run: DownloadRun | None = None

    @property
    def config(self) -> TowerDbConfig:
        return self._config

    @property
    def current_run(self) -> DownloadRun | None:
        """Most recently started run, running or finished."""
        return self._current_run

    def is_running(self) -> bool:
        return self._guard.is_held()

    def download(self, settings: DownloadSettings) -> DownloadResult:
        """Run a download on the calling thread.

        Args:
            settings: Host download settings.

        Returns:
            Terminal run outcome.

        Raises:
            TowerDbRunInProgressError: If another download is running.
            TowerDbError: If the download fails.
        """
        with self._guard.hold():
            run = DownloadRun()
            self._current_run = run
            return self._orchestrator(settings, run).run()

    def start_download(self, settings: DownloadSettings) -> DownloadRun:
        """Start a download on a background thread and return its handle.

        The outcome is not reported back to the caller; failures are kept
        on the run handle and in its log.

        Raises:
            TowerDbRunInProgressError: If another download is running.
        """
        self._guard.acquire()
        run = DownloadRun()
        self._current_run = run
        orchestrator = self._orchestrator(settings, run)
        worker = threading.Thread(
            target=self._run_in_background,
            args=(orchestrator,),
            name="towerdb-download",
            daemon=True,
        )
        try:
            worker.start()
        except RuntimeError:
            self._guard.release()
            raise
        return run

    def cancel(self) -> None:
        """Request cancellation of the current run, if any."""
        if self._current_run is not None:
            self._current_run.cancel()

    def log_text(self) -> str:
        """Return the current run log, including the latest progress line."""
        if self._current_run is None:
            return ""
        return self._current_run.log_text()

    def progress(self) -> tuple[int | None, str]:
        """Return the current progress percentage and status message."""
        if self._current_run is None:
            return 0, ""
        return self._current_run.progress.percentage, self._current_run.progress.message

    def _orchestrator(self, settings: DownloadSettings, run: DownloadRun) -> DownloadOrchestrator:
        return DownloadOrchestrator(
            settings,
            self._config,
            run,
            client=self._http_client,
            resources=self._resources,
        )

    def _run_in_background(self, orchestrator: DownloadOrchestrator) -> None:
        try:
            orchestrator.run()
        except Exception as error:
            _LOGGER.warning("background_download_failed", error=str(error))
        finally:
            self._guard.release()
