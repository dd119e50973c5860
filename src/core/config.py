"""Runtime configuration model for TowerDb.

This module owns all environment variable parsing and validation.
Other modules consume a typed config object instead of raw env reads.
"""

from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path

from core.constants import (
    DEFAULT_DATA_ROOT,
    DEFAULT_HTTP_TIMEOUT_SECONDS,
    DEFAULT_MOZILLA_URL_TEMPLATE,
    DEFAULT_NEW_DATABASE_NAME,
    DEFAULT_OPENCELLID_URL_TEMPLATE,
    DEFAULT_TRANSACTION_BATCH_SIZE,
)
from core.errors import TowerDbConfigError


@dataclass(frozen=True)
class TowerDbConfig:
    """Validated runtime configuration.

    Attributes:
        data_root: Directory holding the published database and staging files.
        new_database_name: File name the finished database is published under.
        opencellid_url_template: Format template with an ``{api_key}`` field.
        mozilla_url_template: Format template with a ``{date}`` field.
        http_timeout_seconds: Connect/read timeout for provider requests.
        batch_size: Accepted rows per committed transaction.
    """

    data_root: Path
    new_database_name: str
    opencellid_url_template: str
    mozilla_url_template: str
    http_timeout_seconds: float
    batch_size: int

    @property
    def new_database_path(self) -> Path:
        """Path the live lookup database picks new builds up from."""
        return self.data_root / self.new_database_name

    @classmethod
    def from_env(cls) -> "TowerDbConfig":
        """Build config from process environment variables.

        Returns:
            A validated config object.

        Raises:
            TowerDbConfigError: If environment values are invalid.
        """
        data_root_value = os.getenv("TOWERDB_DATA_ROOT", str(DEFAULT_DATA_ROOT))
        new_database_name = os.getenv("TOWERDB_NEW_DB_NAME", DEFAULT_NEW_DATABASE_NAME)
        opencellid_url = os.getenv("TOWERDB_OPENCELLID_URL", DEFAULT_OPENCELLID_URL_TEMPLATE)
        mozilla_url = os.getenv("TOWERDB_MOZILLA_URL", DEFAULT_MOZILLA_URL_TEMPLATE)
        timeout_value = os.getenv("TOWERDB_HTTP_TIMEOUT", str(DEFAULT_HTTP_TIMEOUT_SECONDS))
        batch_size_value = os.getenv("TOWERDB_BATCH_SIZE", str(DEFAULT_TRANSACTION_BATCH_SIZE))
        return cls(
            data_root=Path(data_root_value).expanduser().resolve(),
            new_database_name=_parse_file_name(new_database_name),
            opencellid_url_template=opencellid_url,
            mozilla_url_template=mozilla_url,
            http_timeout_seconds=_parse_timeout(timeout_value),
            batch_size=_parse_batch_size(batch_size_value),
        )


def _parse_file_name(raw_value: str) -> str:
    """Validate the published database file name.

    Raises:
        TowerDbConfigError: If value is empty or contains a directory part.
    """
    if not raw_value or Path(raw_value).name != raw_value:
        raise TowerDbConfigError(
            f"Invalid TOWERDB_NEW_DB_NAME value '{raw_value}': "
            "expected a plain file name without directories."
        )
    return raw_value


def _parse_timeout(raw_value: str) -> float:
    """Parse the HTTP timeout environment value.

    Args:
        raw_value: Raw string from environment.

    Returns:
        Positive timeout in seconds.

    Raises:
        TowerDbConfigError: If value is not a positive number.
    """
    try:
        timeout = float(raw_value)
    except ValueError as error:
        raise TowerDbConfigError(
            "Invalid TOWERDB_HTTP_TIMEOUT value: "
            f"expected number of seconds, got '{raw_value}'."
        ) from error
    if timeout <= 0:
        raise TowerDbConfigError(
            f"Invalid TOWERDB_HTTP_TIMEOUT value: expected a positive number, got {timeout}."
        )
    return timeout


def _parse_batch_size(raw_value: str) -> int:
    """Parse the transaction batch size environment value.

    Raises:
        TowerDbConfigError: If value is not a positive integer.
    """
    try:
        batch_size = int(raw_value)
    except ValueError as error:
        raise TowerDbConfigError(
            "Invalid TOWERDB_BATCH_SIZE value: "
            f"expected integer, got '{raw_value}'. "
            "Set TOWERDB_BATCH_SIZE to a positive row count."
        ) from error
    if batch_size <= 0:
        raise TowerDbConfigError(
            f"Invalid TOWERDB_BATCH_SIZE value: expected a positive integer, got {batch_size}."
        )
    return batch_size
