"""Per-provider ingest pipeline.

This module streams one provider export, filters rows by MCC/MNC codes,
and inserts accepted rows into the staged database in bounded
transactions while publishing progress to the run log.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import BinaryIO, Callable

import httpx

from core.errors import TowerDbDecodeError
from core.logging_config import get_logger
from core.progress import ProgressLog
from core.types import IngestOptions, IngestResult, ProviderSource
from ingest.code_filter import CodeFilter, parse_code
from ingest.csv_decoder import StreamingCsvDecoder
from ingest.http_source import open_provider_stream
from store.database_builder import StagedDatabaseBuilder

_LOGGER = get_logger(__name__)

# CSV column -> database column
REQUIRED_COLUMNS = {
    "mcc": "mcc",
    "net": "mnc",
    "area": "lac",
    "cell": "cellid",
    "lon": "longitude",
    "lat": "latitude",
    "range": "accuracy",
    "samples": "samples",
}


@dataclass(frozen=True)
class ColumnIndexes:
    """Positions of the required columns within a provider row."""

    mcc: int
    mnc: int
    lac: int
    cellid: int
    longitude: int
    latitude: int
    accuracy: int
    samples: int

    @property
    def highest(self) -> int:
        return max(
            self.mcc,
            self.mnc,
            self.lac,
            self.cellid,
            self.longitude,
            self.latitude,
            self.accuracy,
            self.samples,
        )


@dataclass(frozen=True)
class RecordCounts:
    """Row counters for one stream."""

    records_read: int
    records_inserted: int
    cancelled: bool


def resolve_columns(header: list[str]) -> ColumnIndexes:
    """Map required CSV columns to their positions.

    Args:
        header: Column names from the provider header row.

    Returns:
        Column positions for the tower fields.

    Raises:
        TowerDbDecodeError: If any required column is missing.
    """
    missing = [column for column in REQUIRED_COLUMNS if column not in header]
    if missing:
        raise TowerDbDecodeError(
            f"Provider CSV header is missing required column(s): {', '.join(missing)}. "
            f"Expected at least: {', '.join(REQUIRED_COLUMNS)}."
        )
    positions = {field: header.index(column) for column, field in REQUIRED_COLUMNS.items()}
    return ColumnIndexes(**positions)


def ingest_provider(
    source: ProviderSource,
    mcc_filter: CodeFilter,
    mnc_filter: CodeFilter,
    builder: StagedDatabaseBuilder,
    progress: ProgressLog,
    is_cancelled: Callable[[], bool],
    client: httpx.Client,
    options: IngestOptions | None = None,
) -> IngestResult:
    """Download one provider export into the staged database.

    Args:
        source: Provider and resolved URL.
        mcc_filter: Accepted mobile country codes.
        mnc_filter: Accepted mobile network codes.
        builder: Open staged database with schema created.
        progress: Run log receiving status lines.
        is_cancelled: Cancellation check polled once per row.
        client: HTTP client used for the download.
        options: Batch and progress cadence.

    Returns:
        Read/inserted counters and timing.

    Raises:
        TowerDbConfigError: If the URL is malformed.
        TowerDbNetworkError: If the request fails.
        TowerDbDecodeError: If the stream or header is malformed.
        TowerDbStorageError: If inserts or commits fail.
    """
    started_at = time.monotonic()
    progress.info(f"URL: {source.url}")
    _LOGGER.info("provider_ingest_started", provider=source.name, url=source.url)
    with open_provider_stream(client, source.url) as stream:
        progress.info(f"Content length: {_describe_length(stream.content_length)}")
        counts = load_tower_records(
            stream.body,
            stream.content_length,
            mcc_filter,
            mnc_filter,
            builder,
            progress,
            is_cancelled,
            options or IngestOptions(),
        )
    elapsed_ms = int((time.monotonic() - started_at) * 1000)
    progress.info(_describe_counts(counts.records_read, counts.records_inserted))
    progress.info(
        f"Total time {elapsed_ms} ms ({_format_rate(elapsed_ms, counts.records_read)} ms/record)"
    )
    _LOGGER.info(
        "provider_ingest_completed",
        provider=source.name,
        records_read=counts.records_read,
        records_inserted=counts.records_inserted,
        elapsed_ms=elapsed_ms,
        cancelled=counts.cancelled,
    )
    return IngestResult(
        provider=source.name,
        records_read=counts.records_read,
        records_inserted=counts.records_inserted,
        elapsed_ms=elapsed_ms,
        cancelled=counts.cancelled,
    )


def load_tower_records(
    raw_stream: BinaryIO,
    content_length: int | None,
    mcc_filter: CodeFilter,
    mnc_filter: CodeFilter,
    builder: StagedDatabaseBuilder,
    progress: ProgressLog,
    is_cancelled: Callable[[], bool],
    options: IngestOptions,
) -> RecordCounts:
    """Decode a gzip CSV stream and insert accepted rows.

    The final, possibly partial, transaction is committed even when the
    loop stops because of cancellation. When decoding or storage fails
    mid-stream, the counts reached so far are logged before re-raising.
    """
    decoder = StreamingCsvDecoder(raw_stream)
    columns = resolve_columns(decoder.parse_header())
    records_read = 0
    records_inserted = 0
    cancelled = False
    progress.progress(decoder.estimate_percentage(content_length), _describe_counts(0, 0))
    builder.begin_transaction()
    try:
        while True:
            if is_cancelled():
                cancelled = True
                break
            record = decoder.next_record()
            if record is None:
                break
            records_read += 1
            if records_read % options.progress_interval == 0:
                progress.progress(
                    decoder.estimate_percentage(content_length),
                    _describe_counts(records_read, records_inserted),
                )
            row = _accepted_row(record, columns, mcc_filter, mnc_filter)
            if row is None:
                continue
            builder.insert(*row)
            records_inserted += 1
            if records_inserted % options.batch_size == 0:
                builder.commit_transaction()
                builder.begin_transaction()
    except Exception:
        progress.fail(f"Ingest stopped: {_describe_counts(records_read, records_inserted)}")
        raise
    if cancelled:
        progress.warn("Download cancelled")
    builder.commit_transaction()
    return RecordCounts(
        records_read=records_read,
        records_inserted=records_inserted,
        cancelled=cancelled,
    )


def _accepted_row(
    record: list[str],
    columns: ColumnIndexes,
    mcc_filter: CodeFilter,
    mnc_filter: CodeFilter,
) -> tuple[int, str, str, str, str, str, str, str] | None:
    """Return insert values for a row that passes both filters."""
    if len(record) <= columns.highest:
        return None
    mcc = parse_code(record[columns.mcc])
    mnc = parse_code(record[columns.mnc])
    if mcc is None or mnc is None:
        return None
    if not (mcc_filter.accepts(mcc) and mnc_filter.accepts(mnc)):
        return None
    return (
        mcc,
        record[columns.mnc],
        record[columns.lac],
        record[columns.cellid],
        record[columns.longitude],
        record[columns.latitude],
        record[columns.accuracy],
        record[columns.samples],
    )


def _describe_length(content_length: int | None) -> str:
    return "unknown" if content_length is None else str(content_length)


def _format_rate(elapsed_ms: int, records_read: int) -> str:
    """Format milliseconds per record; undefined when nothing was read."""
    if records_read == 0:
        return "n/a"
    return f"{elapsed_ms / records_read:.3f}"


def _describe_counts(records_read: int, records_inserted: int) -> str:
    return f"Records read {records_read}, records inserted {records_inserted}"
