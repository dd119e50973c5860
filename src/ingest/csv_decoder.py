"""Streaming decoder for gzip-compressed provider CSV exports.

This module turns a compressed byte stream into lazy CSV records in
constant memory while counting compressed and decompressed bytes for
progress estimates.
"""

from __future__ import annotations

import csv
import gzip
import io
import zlib
from contextlib import contextmanager
from typing import BinaryIO, Iterator

from core.constants import COMPRESSION_RATIO_ESTIMATE, MIN_RECORD_FIELD_COUNT
from core.errors import TowerDbDecodeError


class _CountingReader(io.RawIOBase):
    """Raw reader that counts bytes pulled from a wrapped stream."""

    def __init__(self, source: BinaryIO) -> None:
        super().__init__()
        self._source = source
        self.bytes_read = 0

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:  # type: ignore[no-untyped-def]
        count = self._source.readinto(buffer)  # type: ignore[attr-defined]
        if count:
            self.bytes_read += count
        return count or 0


class StreamingCsvDecoder:
    """Forward-only CSV record reader over a gzip byte stream.

    Records are produced one at a time; the whole export is never held in
    memory. A row with too few fields ends the stream, since providers
    sometimes close files with a truncated trailing row.
    """

    def __init__(self, raw_stream: BinaryIO) -> None:
        self._compressed = _CountingReader(raw_stream)
        self._decompressed = _CountingReader(
            gzip.GzipFile(fileobj=self._compressed, mode="rb")  # type: ignore[arg-type]
        )
        text_stream = io.TextIOWrapper(
            io.BufferedReader(self._decompressed),
            encoding="utf-8",
            newline="",
        )
        self._reader = csv.reader(text_stream)
        self._header_parsed = False
        self._exhausted = False

    @property
    def bytes_consumed(self) -> int:
        """Compressed bytes read from the source stream so far."""
        return self._compressed.bytes_read

    @property
    def bytes_decoded(self) -> int:
        """Decompressed bytes produced so far."""
        return self._decompressed.bytes_read

    def parse_header(self) -> list[str]:
        """Consume and return the header row.

        Returns:
            Column names in file order.

        Raises:
            TowerDbDecodeError: If the header was already read or is missing.
        """
        if self._header_parsed:
            raise TowerDbDecodeError("CSV header was already parsed for this stream.")
        self._header_parsed = True
        with _decode_errors():
            header = next(self._reader, None)
        if not header:
            raise TowerDbDecodeError(
                "Provider stream is empty: expected a CSV header row. "
                "Check that the provider URL points at a cell export."
            )
        return [column.strip() for column in header]

    def next_record(self) -> list[str] | None:
        """Return the next data row, or None at end of stream.

        Raises:
            TowerDbDecodeError: If gzip or CSV framing is broken.
        """
        if self._exhausted:
            return None
        if not self._header_parsed:
            raise TowerDbDecodeError("parse_header() must be called before reading records.")
        with _decode_errors():
            record = next(self._reader, None)
        if record is None or len(record) <= MIN_RECORD_FIELD_COUNT:
            self._exhausted = True
            return None
        return record

    def __iter__(self) -> Iterator[list[str]]:
        while True:
            record = self.next_record()
            if record is None:
                return
            yield record

    def estimate_percentage(self, content_length: int | None) -> int | None:
        """Estimate completion from decompressed bytes and declared length.

        Args:
            content_length: Declared compressed size, if the server sent one.

        Returns:
            Percentage clamped to 0-100, or None when size is unknown.
        """
        if content_length is None or content_length <= 0:
            return None
        expected_bytes = content_length * COMPRESSION_RATIO_ESTIMATE
        return max(0, min(100, (100 * self.bytes_decoded) // expected_bytes))


@contextmanager
def _decode_errors() -> Iterator[None]:
    """Translate codec and framing failures into decode errors."""
    try:
        yield
    except (OSError, EOFError, zlib.error) as error:
        raise TowerDbDecodeError(
            f"Failed to decompress provider stream: {error}. "
            "The download may be truncated or not gzip-compressed."
        ) from error
    except UnicodeDecodeError as error:
        raise TowerDbDecodeError(
            f"Provider stream is not valid UTF-8 text: {error.reason}."
        ) from error
    except csv.Error as error:
        raise TowerDbDecodeError(f"Malformed CSV in provider stream: {error}.") from error
