"""pytest configuration for peer-doctor tests."""

from __future__ import annotations

import pytest

from peerdoctor.transport.memory import MemoryNetwork


# Configure asyncio mode for pytest-asyncio
def pytest_configure(config):
    config.addinivalue_line(
        "markers", "asyncio: mark test as async"
    )


@pytest.fixture
def network() -> MemoryNetwork:
    return MemoryNetwork()
