"""Provider catalog.

This module resolves which providers a run downloads, in a fixed order,
and formats their download URLs from config templates.
"""

from __future__ import annotations

from datetime import datetime, timezone

from core.config import TowerDbConfig
from core.constants import (
    MOZILLA_DATE_FORMAT,
    MOZILLA_PROVIDER_NAME,
    MOZILLA_PUBLICATION_TIMEZONE,
    OPENCELLID_PROVIDER_NAME,
)
from core.errors import TowerDbConfigError
from core.types import DownloadSettings, ProviderSource

PROVIDER_DISPLAY_NAMES = {
    OPENCELLID_PROVIDER_NAME: "OpenCellID",
    MOZILLA_PROVIDER_NAME: "Mozilla Location Service",
}


def build_provider_sources(
    settings: DownloadSettings,
    config: TowerDbConfig,
    now: datetime | None = None,
) -> list[ProviderSource]:
    """Return enabled providers with resolved URLs.

    Args:
        settings: Host download settings.
        config: Runtime configuration holding URL templates.
        now: Reference time for dated exports; defaults to the current time.

    Returns:
        Providers in processing order: OpenCellID, then Mozilla.

    Raises:
        TowerDbConfigError: If a URL template has unknown placeholders.
    """
    sources: list[ProviderSource] = []
    if settings.use_opencellid:
        url = _format_url(config.opencellid_url_template, api_key=settings.opencellid_api_key)
        sources.append(ProviderSource(name=OPENCELLID_PROVIDER_NAME, url=url))
    if settings.use_mozilla:
        url = _format_url(config.mozilla_url_template, date=mozilla_export_date(now))
        sources.append(ProviderSource(name=MOZILLA_PROVIDER_NAME, url=url))
    return sources


def mozilla_export_date(now: datetime | None = None) -> str:
    """Return the export date Mozilla should already have published.

    Naive datetimes are treated as UTC.
    """
    reference = now or datetime.now(MOZILLA_PUBLICATION_TIMEZONE)
    if reference.tzinfo is None:
        reference = reference.replace(tzinfo=timezone.utc)
    return reference.astimezone(MOZILLA_PUBLICATION_TIMEZONE).strftime(MOZILLA_DATE_FORMAT)


def _format_url(template: str, **fields: str) -> str:
    try:
        return template.format(**fields)
    except (KeyError, IndexError, ValueError) as error:
        raise TowerDbConfigError(
            f"Invalid provider URL template '{template}': {error!r}. "
            f"Supported placeholders: {', '.join('{' + name + '}' for name in fields)}."
        ) from error
