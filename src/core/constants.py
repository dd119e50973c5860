"""Core constants used across TowerDb modules.

This module centralizes non-domain-specific constants.
Keeping values here avoids magic literals in business logic.
"""

from __future__ import annotations

from datetime import timedelta, timezone
from pathlib import Path

DEFAULT_DATA_ROOT = Path(".towerdb")
DEFAULT_NEW_DATABASE_NAME = "lacells.db.new"
STAGING_FILE_PREFIX = "lacells-staging-"
STAGING_FILE_SUFFIX = ".db"
DATABASE_SIDE_FILE_SUFFIXES = ("-journal", "-wal", "-shm")
CELLS_TABLE_NAME = "cells"
CELLS_COLUMNS = (
    "mcc",
    "mnc",
    "lac",
    "cellid",
    "longitude",
    "latitude",
    "accuracy",
    "samples",
)
CODE_DOMAIN_SIZE = 1000
MIN_RECORD_FIELD_COUNT = 8
DEFAULT_TRANSACTION_BATCH_SIZE = 1000
DEFAULT_PROGRESS_INTERVAL = 1000
COMPRESSION_RATIO_ESTIMATE = 4
DEFAULT_HTTP_TIMEOUT_SECONDS = 60.0
HTTP_READ_CHUNK_SIZE = 64 * 1024
OPENCELLID_PROVIDER_NAME = "opencellid"
MOZILLA_PROVIDER_NAME = "mozilla"
DEFAULT_OPENCELLID_URL_TEMPLATE = (
    "https://opencellid.org/ocid/downloads?token={api_key}&type=full&file=cell_towers.csv.gz"
)
DEFAULT_MOZILLA_URL_TEMPLATE = (
    "https://d17pt8qph6ncyq.cloudfront.net/export/MLS-full-cell-export-{date}T000000.csv.gz"
)
# Mozilla publishes a little after midnight GMT; dating the request a few
# hours west of Greenwich gives the export time to appear.
MOZILLA_PUBLICATION_TIMEZONE = timezone(timedelta(hours=-3))
MOZILLA_DATE_FORMAT = "%Y-%m-%d"
