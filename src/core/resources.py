"""Scoped keep-alive resources for long downloads.

Hosts plug in whatever keeps the process awake and networked (wake locks,
power assertions, connectivity reservations). A run acquires each resource
once and releases it exactly once, whatever the outcome.
"""

from __future__ import annotations

from contextlib import ExitStack, contextmanager
from typing import Iterator, Protocol, Sequence

from core.logging_config import get_logger

_LOGGER = get_logger(__name__)


class KeepAliveResource(Protocol):
    """Host resource held for the duration of one download run."""

    name: str

    def acquire(self) -> None:
        ...

    def release(self) -> None:
        ...


@contextmanager
def hold_resources(resources: Sequence[KeepAliveResource]) -> Iterator[None]:
    """Acquire resources in order and release them in reverse order.

    A resource whose ``acquire`` raised is not released; every resource
    acquired before it is.
    """
    with ExitStack() as stack:
        for resource in resources:
            resource.acquire()
            stack.callback(_release, resource)
            _LOGGER.debug("resource_acquired", resource=resource.name)
        yield


def _release(resource: KeepAliveResource) -> None:
    resource.release()
    _LOGGER.debug("resource_released", resource=resource.name)
