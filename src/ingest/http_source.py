"""Provider download streams over HTTP(S).

This module opens one streaming GET per provider with httpx and exposes
the undecoded response body as a binary stream for the CSV decoder.
"""

from __future__ import annotations

import io
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass
from typing import Iterator

import httpx

from core.constants import HTTP_READ_CHUNK_SIZE
from core.errors import TowerDbConfigError, TowerDbDecodeError, TowerDbNetworkError

_SUPPORTED_SCHEMES = ("http", "https")


@dataclass(frozen=True)
class ProviderStream:
    """Open provider response.

    Attributes:
        url: Requested URL.
        status_code: HTTP status of the response.
        content_length: Declared body size in bytes, when present and valid.
        body: Raw (still gzip-compressed) response body.
    """

    url: str
    status_code: int
    content_length: int | None
    body: io.RawIOBase


class _ResponseReader(io.RawIOBase):
    """Binary reader over an httpx raw byte iterator."""

    def __init__(self, url: str, chunks: Iterator[bytes]) -> None:
        super().__init__()
        self._url = url
        self._chunks = chunks
        self._pending = memoryview(b"")

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:  # type: ignore[no-untyped-def]
        while not self._pending:
            try:
                self._pending = memoryview(next(self._chunks))
            except StopIteration:
                return 0
            except httpx.TransportError as error:
                raise TowerDbDecodeError(
                    f"Download from {self._url} was interrupted: {error}. "
                    "Retry once the connection is stable."
                ) from error
        count = min(len(buffer), len(self._pending))
        buffer[:count] = self._pending[:count]
        self._pending = self._pending[count:]
        return count


def validate_provider_url(url: str) -> httpx.URL:
    """Parse and check a provider URL.

    Args:
        url: Absolute http or https URL.

    Returns:
        Parsed httpx URL.

    Raises:
        TowerDbConfigError: If the URL is malformed or not http(s).
    """
    try:
        parsed = httpx.URL(url)
    except httpx.InvalidURL as error:
        raise TowerDbConfigError(f"Malformed provider URL '{url}': {error}.") from error
    if parsed.scheme not in _SUPPORTED_SCHEMES or not parsed.host:
        raise TowerDbConfigError(
            f"Malformed provider URL '{url}': expected an absolute http or https URL."
        )
    return parsed


@contextmanager
def open_provider_stream(client: httpx.Client, url: str) -> Iterator[ProviderStream]:
    """Open a streaming GET request for a provider export.

    Args:
        client: HTTP client used for the request.
        url: Provider download URL.

    Yields:
        The open provider stream; the connection closes on exit.

    Raises:
        TowerDbConfigError: If the URL is malformed.
        TowerDbNetworkError: If the connection fails or status is not 2xx.
    """
    request_url = validate_provider_url(url)
    with ExitStack() as stack:
        try:
            response = stack.enter_context(client.stream("GET", request_url))
        except httpx.TransportError as error:
            raise TowerDbNetworkError(f"Failed to connect to {url}: {error}.") from error
        if not response.is_success:
            raise TowerDbNetworkError(
                f"Provider request to {url} failed with HTTP {response.status_code}. "
                "Check the API key and that the export exists."
            )
        yield ProviderStream(
            url=url,
            status_code=response.status_code,
            content_length=_content_length(response),
            body=_ResponseReader(url, response.iter_raw(HTTP_READ_CHUNK_SIZE)),
        )


def _content_length(response: httpx.Response) -> int | None:
    """Read the declared content length, ignoring absent or bogus values."""
    raw_value = response.headers.get("content-length")
    if raw_value is None:
        return None
    try:
        length = int(raw_value)
    except ValueError:
        return None
    return length if length >= 0 else None
