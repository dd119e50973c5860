"""Download orchestration for tower database builds.

This module coordinates one download run: keep-alive resources, code
filters, per-provider ingest into a staged database, and the final
publish-or-discard decision.
"""

from __future__ import annotations

import time
from contextlib import ExitStack
from datetime import datetime
from pathlib import Path
from typing import Sequence

import httpx

from core.config import TowerDbConfig
from core.errors import (
    TowerDbConfigError,
    TowerDbDecodeError,
    TowerDbNetworkError,
    TowerDbStorageError,
)
from core.logging_config import get_logger
from core.progress import ProgressLog
from core.resources import KeepAliveResource, hold_resources
from core.types import DownloadResult, DownloadSettings, IngestOptions, IngestResult, RunState
from ingest.code_filter import CodeFilter, build_code_filter
from ingest.download_run import DownloadRun
from ingest.pipeline import ingest_provider
from ingest.providers import PROVIDER_DISPLAY_NAMES, build_provider_sources
from store.database_builder import StagedDatabaseBuilder

_LOGGER = get_logger(__name__)

_ERROR_KINDS: tuple[tuple[type[Exception], str], ...] = (
    (TowerDbConfigError, "configuration error"),
    (TowerDbNetworkError, "network error"),
    (TowerDbDecodeError, "decode error"),
    (TowerDbStorageError, "storage error"),
)


class DownloadOrchestrator:
    """Runs one download from filters to published database."""

    def __init__(
        self,
        settings: DownloadSettings,
        config: TowerDbConfig,
        run: DownloadRun,
        client: httpx.Client | None = None,
        resources: Sequence[KeepAliveResource] = (),
        now: datetime | None = None,
    ) -> None:
        self._settings = settings
        self._config = config
        self._run = run
        self._client = client
        self._resources = resources
        self._now = now
        self._options = IngestOptions(batch_size=config.batch_size)
        self._results: list[IngestResult] = []

    def run(self) -> DownloadResult:
        """Execute the run and return its outcome.

        Cancellation is not an error: the staged database is discarded and
        a cancelled result is returned.

        Raises:
            TowerDbError: Any configuration, network, decode or storage
                failure, after the staged database has been discarded.
        """
        started_at = time.monotonic()
        self._run.transition("running")
        progress = self._run.progress
        state: RunState = "failed"
        published_path: Path | None = None
        failure: BaseException | None = None
        progress.clear()
        try:
            with hold_resources(self._resources):
                published_path = self._build_and_publish(progress)
            state = "completed" if published_path is not None else "cancelled"
        except Exception as error:
            failure = error
            progress.fail(f"{_error_kind(error)}: {error}")
            _LOGGER.error("download_run_failed", error_kind=_error_kind(error), error=str(error))
            raise
        finally:
            elapsed_ms = int((time.monotonic() - started_at) * 1000)
            progress.info(f"Total time {elapsed_ms} ms")
            progress.info("Finished")
            result = DownloadResult(
                state=state,
                providers=tuple(self._results),
                elapsed_ms=elapsed_ms,
                published_path=published_path,
            )
            _LOGGER.info(
                "download_run_finished",
                state=state,
                elapsed_ms=elapsed_ms,
                providers=[item.provider for item in self._results],
                published_path=str(published_path) if published_path else None,
            )
            self._run.finish(state, result=result, error=failure)
        return result

    def _build_and_publish(self, progress: ProgressLog) -> Path | None:
        """Stage, fill and publish the database; None when cancelled."""
        builder: StagedDatabaseBuilder | None = None
        try:
            mcc_filter = _build_filter("MCC", self._settings.mcc_filters, progress)
            mnc_filter = _build_filter("MNC", self._settings.mnc_filters, progress)
            sources = build_provider_sources(self._settings, self._config, self._now)
            builder = StagedDatabaseBuilder(self._config.data_root).open_new()
            builder.create_schema()
            with ExitStack() as stack:
                client = self._client or stack.enter_context(_build_http_client(self._config))
                for source in sources:
                    if self._run.is_cancelled():
                        break
                    display_name = PROVIDER_DISPLAY_NAMES.get(source.name, source.name)
                    progress.info(f"Getting data from {display_name}")
                    self._results.append(
                        ingest_provider(
                            source,
                            mcc_filter,
                            mnc_filter,
                            builder,
                            progress,
                            self._run.is_cancelled,
                            client,
                            self._options,
                        )
                    )
            if self._run.is_cancelled():
                builder.discard()
                progress.warn("Download cancelled, new database discarded")
                return None
            progress.progress(100, "Creating indexes")
            builder.create_index()
            return builder.finalize_publish(self._config.new_database_path)
        except Exception:
            if builder is not None:
                builder.discard()
            raise


def run_download(
    settings: DownloadSettings,
    config: TowerDbConfig,
    run: DownloadRun | None = None,
    client: httpx.Client | None = None,
    resources: Sequence[KeepAliveResource] = (),
) -> DownloadResult:
    """Run one download synchronously.

    Args:
        settings: Host download settings.
        config: Runtime configuration.
        run: Optional run handle for cancellation and log access.
        client: Optional HTTP client; one is created when omitted.
        resources: Keep-alive resources held for the run.

    Returns:
        Terminal run outcome.

    Raises:
        TowerDbError: If the run fails.
    """
    orchestrator = DownloadOrchestrator(
        settings,
        config,
        run or DownloadRun(),
        client=client,
        resources=resources,
    )
    return orchestrator.run()


def _build_filter(label: str, codes: str, progress: ProgressLog) -> CodeFilter:
    """Build one code filter and describe it in the run log."""
    code_filter = build_code_filter(codes)
    if code_filter.is_restrictive:
        progress.info(f"{label} filter: {codes}")
        return code_filter
    if codes:
        progress.warn(f"{label} filter '{codes}' has no valid codes in 0-999, accepting all")
    progress.info(f"{label} filter: world")
    return code_filter


def _build_http_client(config: TowerDbConfig) -> httpx.Client:
    return httpx.Client(timeout=config.http_timeout_seconds, follow_redirects=True)


def _error_kind(error: BaseException) -> str:
    for error_type, kind in _ERROR_KINDS:
        if isinstance(error, error_type):
            return kind
    return "unexpected error"
