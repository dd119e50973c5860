"""Public SDK surface for TowerDb.

This module provides a stable import path for host applications.
It re-exports the primary client and typed option models.
"""

from __future__ import annotations

from core.config import TowerDbConfig
from core.errors import (
    TowerDbConfigError,
    TowerDbDecodeError,
    TowerDbError,
    TowerDbNetworkError,
    TowerDbRunInProgressError,
    TowerDbStorageError,
)
from core.resources import KeepAliveResource
from core.types import DownloadResult, DownloadSettings, IngestResult
from ingest.code_filter import CodeFilter, build_code_filter
from ingest.download_run import DownloadRun
from ingest.orchestrator import run_download
from store.download_client import TowerDbClient

__all__ = [
    "CodeFilter",
    "DownloadResult",
    "DownloadRun",
    "DownloadSettings",
    "IngestResult",
    "KeepAliveResource",
    "TowerDbClient",
    "TowerDbConfig",
    "TowerDbConfigError",
    "TowerDbDecodeError",
    "TowerDbError",
    "TowerDbNetworkError",
    "TowerDbRunInProgressError",
    "TowerDbStorageError",
    "build_code_filter",
    "run_download",
]
