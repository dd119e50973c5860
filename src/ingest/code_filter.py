"""MCC/MNC code filters.

This module turns a comma-separated code list into a fixed 0-999
membership table used to accept or reject tower rows.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from core.constants import CODE_DOMAIN_SIZE

_CODE_PATTERN = re.compile(r"[+-]?[0-9]+")


@dataclass(frozen=True)
class CodeFilter:
    """Immutable operator-code membership table.

    Attributes:
        table: One flag per code in 0-999.
        is_restrictive: False when every code is accepted.
    """

    table: tuple[bool, ...]
    is_restrictive: bool

    def accepts(self, code: int) -> bool:
        """Return whether a code is in range and enabled."""
        return 0 <= code < CODE_DOMAIN_SIZE and self.table[code]

    def enabled_codes(self) -> tuple[int, ...]:
        """Return enabled codes in ascending order."""
        return tuple(code for code, enabled in enumerate(self.table) if enabled)


WILDCARD_FILTER = CodeFilter(table=(True,) * CODE_DOMAIN_SIZE, is_restrictive=False)


def build_code_filter(codes: str) -> CodeFilter:
    """Build a filter from a comma-separated code list.

    Malformed and out-of-range tokens are skipped. When no token yields a
    usable code the filter accepts everything rather than nothing.

    Args:
        codes: Empty string or comma-separated integers.

    Returns:
        Code filter; never raises for malformed input.
    """
    if not codes:
        return WILDCARD_FILTER
    table = [False] * CODE_DOMAIN_SIZE
    enabled_count = 0
    for token in codes.split(","):
        code = parse_code(token)
        if code is None or not 0 <= code < CODE_DOMAIN_SIZE:
            continue
        table[code] = True
        enabled_count += 1
    if enabled_count == 0:
        return WILDCARD_FILTER
    return CodeFilter(table=tuple(table), is_restrictive=True)


def parse_code(text: str) -> int | None:
    """Parse a decimal integer code, returning None for malformed text."""
    candidate = text.strip()
    if not _CODE_PATTERN.fullmatch(candidate):
        return None
    return int(candidate)
