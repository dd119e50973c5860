"""Shared typed models.

This module defines immutable data models used by the filter, ingest,
store, and SDK layers to keep interfaces explicit and stable.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from core.constants import DEFAULT_PROGRESS_INTERVAL, DEFAULT_TRANSACTION_BATCH_SIZE

RunState = Literal["idle", "running", "completed", "cancelled", "failed"]


@dataclass(frozen=True)
class DownloadSettings:
    """Host-owned download preferences.

    Attributes:
        mcc_filters: Comma-separated MCC codes; empty means every country.
        mnc_filters: Comma-separated MNC codes; empty means every network.
        use_opencellid: Download the OpenCellID full export.
        use_mozilla: Download the Mozilla Location Service export.
        opencellid_api_key: OpenCellID token, passed verbatim into the URL.
    """

    mcc_filters: str = ""
    mnc_filters: str = ""
    use_opencellid: bool = False
    use_mozilla: bool = True
    opencellid_api_key: str = ""


@dataclass(frozen=True)
class ProviderSource:
    """One resolved provider download.

    Attributes:
        name: Stable provider identifier.
        url: Fully resolved download URL.
    """

    name: str
    url: str


@dataclass(frozen=True)
class IngestOptions:
    """Tuning knobs for one provider ingest.

    Attributes:
        batch_size: Accepted rows per committed transaction.
        progress_interval: Rows read between progress updates.
    """

    batch_size: int = DEFAULT_TRANSACTION_BATCH_SIZE
    progress_interval: int = DEFAULT_PROGRESS_INTERVAL


@dataclass(frozen=True)
class IngestResult:
    """Counters reported by one provider ingest.

    Attributes:
        provider: Provider identifier.
        records_read: Rows consumed from the CSV stream.
        records_inserted: Rows that passed the filters and were inserted.
        elapsed_ms: Wall-clock duration of the ingest.
        cancelled: Whether cancellation stopped row consumption early.
    """

    provider: str
    records_read: int
    records_inserted: int
    elapsed_ms: int
    cancelled: bool = False


@dataclass(frozen=True)
class DownloadResult:
    """Outcome of a finished download run.

    Attributes:
        state: Terminal run state.
        providers: Per-provider ingest counters in processing order.
        elapsed_ms: Total run duration.
        published_path: Published database path when the run completed.
    """

    state: RunState
    providers: tuple[IngestResult, ...]
    elapsed_ms: int
    published_path: Path | None = None
