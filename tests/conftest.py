"""Shared test fixtures and marker registration."""

from __future__ import annotations

import pytest

from remote_channel import ObjectId, RetrySettings
from remote_channel.transports import MemoryTransport
from tests.faults import FlakyTransport


def pytest_configure(config: object) -> None:
    """Register custom markers."""
    if isinstance(config, pytest.Config):
        config.addinivalue_line("markers", "integration: requires external services")


@pytest.fixture()
def memory() -> MemoryTransport:
    return MemoryTransport()


@pytest.fixture()
def flaky(memory: MemoryTransport) -> FlakyTransport:
    """A fault-injecting wrapper around the ``memory`` transport."""
    return FlakyTransport(memory)


@pytest.fixture()
def fast_retry() -> RetrySettings:
    """Retry settings that never sleep, allowing three retries."""
    return RetrySettings(max_retries=3, max_elapsed=None, min_attempts=1, initial_delay=0.0, max_delay=0.0, jitter=0.0)


@pytest.fixture()
def target() -> ObjectId:
    return ObjectId("bucket", "dir/object.bin")
