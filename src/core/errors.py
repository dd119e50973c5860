"""TowerDb exception hierarchy.

This module defines traceable domain errors with clear boundaries.
Each subsystem raises a specific error type for debuggability.
"""

from __future__ import annotations


class TowerDbError(Exception):
    """Base exception for all TowerDb failures."""


class TowerDbConfigError(TowerDbError):
    """Raised for invalid runtime configuration or provider URLs."""


class TowerDbNetworkError(TowerDbError):
    """Raised for connection failures and non-success HTTP responses."""


class TowerDbDecodeError(TowerDbError):
    """Raised for malformed gzip/CSV streams and missing header columns."""


class TowerDbStorageError(TowerDbError):
    """Raised when the staged database cannot be written or published."""


class TowerDbStateError(TowerDbError):
    """Raised for invalid download run state transitions."""


class TowerDbRunInProgressError(TowerDbError):
    """Raised when a download is started while another one is running."""
