"""Staged SQLite database builder.

This module builds a new tower database in a temporary file next to the
publish target, then either moves it into place atomically or deletes it.
Readers of the target path only ever see the old file or the new one.
"""

from __future__ import annotations

import os
import sqlite3
import tempfile
from contextlib import contextmanager
from pathlib import Path
from types import TracebackType
from typing import Iterator

from core.constants import (
    CELLS_COLUMNS,
    CELLS_TABLE_NAME,
    DATABASE_SIDE_FILE_SUFFIXES,
    STAGING_FILE_PREFIX,
    STAGING_FILE_SUFFIX,
)
from core.errors import TowerDbStorageError
from core.logging_config import get_logger

_LOGGER = get_logger(__name__)

_CREATE_TABLE_SQL = f"""
CREATE TABLE {CELLS_TABLE_NAME} (
    mcc INTEGER,
    mnc TEXT,
    lac TEXT,
    cellid TEXT,
    longitude TEXT,
    latitude TEXT,
    accuracy TEXT,
    samples TEXT
)
"""
_CREATE_INDEX_SQL = (
    f"CREATE INDEX cells_cell_idx ON {CELLS_TABLE_NAME} (mcc, mnc, lac, cellid)",
    f"CREATE INDEX cells_position_idx ON {CELLS_TABLE_NAME} (latitude, longitude)",
)
_INSERT_SQL = (
    f"INSERT INTO {CELLS_TABLE_NAME} ({', '.join(CELLS_COLUMNS)}) "
    f"VALUES ({', '.join('?' for _ in CELLS_COLUMNS)})"
)


class StagedDatabaseBuilder:
    """Single-caller builder for a staged tower database.

    Usage order: ``open_new``, ``create_schema``, any number of
    ``begin_transaction``/``insert``/``commit_transaction`` cycles,
    ``create_index``, then ``finalize_publish`` or ``discard``.
    """

    def __init__(self, staging_dir: Path) -> None:
        self._staging_dir = staging_dir
        self._path: Path | None = None
        self._connection: sqlite3.Connection | None = None
        self._in_transaction = False
        self._published = False

    @property
    def path(self) -> Path | None:
        """Staging file path, once opened."""
        return self._path

    @property
    def in_transaction(self) -> bool:
        return self._in_transaction

    def __enter__(self) -> "StagedDatabaseBuilder":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        if not self._published:
            self.discard()

    def open_new(self) -> "StagedDatabaseBuilder":
        """Create a fresh staging file and open it.

        Raises:
            TowerDbStorageError: If the staging directory is not writable.
        """
        if self._path is not None:
            raise TowerDbStorageError(f"Staged database already opened at {self._path}.")
        try:
            self._staging_dir.mkdir(parents=True, exist_ok=True)
            handle, raw_path = tempfile.mkstemp(
                prefix=STAGING_FILE_PREFIX,
                suffix=STAGING_FILE_SUFFIX,
                dir=self._staging_dir,
            )
            os.close(handle)
        except OSError as error:
            raise TowerDbStorageError(
                f"Failed to create staged database in {self._staging_dir}: {error}. "
                "Make sure the data directory is writable."
            ) from error
        self._path = Path(raw_path)
        with _storage_errors(f"open staged database {self._path}"):
            self._connection = sqlite3.connect(str(self._path), isolation_level=None)
            self._connection.execute("PRAGMA synchronous = OFF")
        _LOGGER.info("staged_database_opened", path=str(self._path))
        return self

    def create_schema(self) -> None:
        """Create the cells table."""
        connection = self._require_connection()
        with _storage_errors("create cells table"):
            connection.execute(_CREATE_TABLE_SQL)

    def begin_transaction(self) -> None:
        """Open an explicit write transaction."""
        connection = self._require_connection()
        if self._in_transaction:
            raise TowerDbStorageError("Cannot begin a transaction: one is already open.")
        with _storage_errors("begin transaction"):
            connection.execute("BEGIN")
        self._in_transaction = True

    def commit_transaction(self) -> None:
        """Commit the open transaction."""
        connection = self._require_connection()
        if not self._in_transaction:
            raise TowerDbStorageError("Cannot commit: no transaction is open.")
        with _storage_errors("commit transaction"):
            connection.execute("COMMIT")
        self._in_transaction = False

    def insert(
        self,
        mcc: int,
        mnc: str,
        lac: str,
        cellid: str,
        longitude: str,
        latitude: str,
        accuracy: str,
        samples: str,
    ) -> None:
        """Append one tower row to the open transaction."""
        connection = self._require_connection()
        if not self._in_transaction:
            raise TowerDbStorageError("Cannot insert outside an open transaction.")
        with _storage_errors("insert tower row"):
            connection.execute(
                _INSERT_SQL,
                (mcc, mnc, lac, cellid, longitude, latitude, accuracy, samples),
            )

    def create_index(self) -> None:
        """Build lookup indexes once all rows are inserted."""
        connection = self._require_connection()
        if self._in_transaction:
            raise TowerDbStorageError("Cannot create indexes while a transaction is open.")
        with _storage_errors("create indexes"):
            for statement in _CREATE_INDEX_SQL:
                connection.execute(statement)

    def row_count(self) -> int:
        """Return the number of rows visible in the staged table."""
        connection = self._require_connection()
        with _storage_errors("count rows"):
            (count,) = connection.execute(f"SELECT COUNT(*) FROM {CELLS_TABLE_NAME}").fetchone()
        return int(count)

    def finalize_publish(self, target_path: Path) -> Path:
        """Move the staged database over the target path atomically.

        Args:
            target_path: Production path to replace.

        Returns:
            The published path.

        Raises:
            TowerDbStorageError: If the file cannot be synced or renamed.
        """
        staged_path = self._require_path()
        if self._in_transaction:
            raise TowerDbStorageError("Cannot publish while a transaction is open.")
        self._close()
        _remove_side_files(staged_path)
        try:
            _fsync_path(staged_path)
            os.replace(staged_path, target_path)
            _fsync_directory(target_path.parent)
        except OSError as error:
            raise TowerDbStorageError(
                f"Failed to publish staged database {staged_path} to {target_path}: {error}."
            ) from error
        self._published = True
        _LOGGER.info("staged_database_published", staged=str(staged_path), target=str(target_path))
        return target_path

    def discard(self) -> None:
        """Close and delete the staging file and its side files.

        Safe to call repeatedly and after partial failures.
        """
        self._close()
        staged_path = self._path
        if staged_path is None or self._published:
            return
        failures: list[str] = []
        for candidate in (staged_path, *_side_file_paths(staged_path)):
            try:
                candidate.unlink(missing_ok=True)
            except OSError as error:
                failures.append(f"{candidate}: {error}")
        if failures:
            _LOGGER.warning("staged_database_cleanup_failed", failures=failures)
            return
        _LOGGER.info("staged_database_discarded", path=str(staged_path))

    def _close(self) -> None:
        connection = self._connection
        if connection is None:
            return
        self._connection = None
        self._in_transaction = False
        with _storage_errors("close staged database"):
            connection.close()

    def _require_connection(self) -> sqlite3.Connection:
        if self._connection is None:
            raise TowerDbStorageError(
                "Staged database is not open. Call open_new() before writing."
            )
        return self._connection

    def _require_path(self) -> Path:
        if self._path is None:
            raise TowerDbStorageError("Staged database was never opened.")
        return self._path


@contextmanager
def _storage_errors(action: str) -> Iterator[None]:
    """Translate sqlite failures into storage errors."""
    try:
        yield
    except sqlite3.Error as error:
        raise TowerDbStorageError(f"Failed to {action}: {error}.") from error


def _side_file_paths(database_path: Path) -> tuple[Path, ...]:
    return tuple(
        database_path.with_name(database_path.name + suffix)
        for suffix in DATABASE_SIDE_FILE_SUFFIXES
    )


def _remove_side_files(database_path: Path) -> None:
    try:
        for side_path in _side_file_paths(database_path):
            side_path.unlink(missing_ok=True)
    except OSError as error:
        raise TowerDbStorageError(
            f"Failed to remove journal files for {database_path}: {error}."
        ) from error


def _fsync_path(path: Path) -> None:
    with path.open("rb+") as handle:
        os.fsync(handle.fileno())


def _fsync_directory(directory: Path) -> None:
    """Persist a rename on platforms that allow syncing directories."""
    if os.name != "posix":
        return
    handle = os.open(directory, os.O_RDONLY)
    try:
        os.fsync(handle)
    finally:
        os.close(handle)
