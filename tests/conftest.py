"""Pytest configuration and shared fixtures.

This module provides:
- Common test fixtures for data directories, devices and interfaces
- A real SQLite store and a synchronous event bus
- Pytest markers for test categorization (unit, integration, slow)
"""
import tempfile
from pathlib import Path
from typing import Generator
from unittest.mock import MagicMock

import pytest

from monitor.models import Device, InterfaceStats, MonitoredInterface


# =============================================================================
# Pytest Configuration
# =============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers for test categorization."""
    config.addinivalue_line("markers", "unit: mark test as a unit test (fast, isolated)")
    config.addinivalue_line("markers", "integration: mark test as an integration test")
    config.addinivalue_line("markers", "slow: mark test as slow running")


# =============================================================================
# Directory and Path Fixtures
# =============================================================================


@pytest.fixture
def temp_data_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test data."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


# =============================================================================
# Sample Data Fixtures
# =============================================================================


@pytest.fixture
def sample_device() -> Device:
    """A router with the native API enabled."""
    return Device(
        id="dev-1",
        name="core-router",
        address="192.0.2.1",
        owner_id="user-1",
        username="admin",
        secret="secret",
    )


@pytest.fixture
def sample_interface(sample_device: Device) -> MonitoredInterface:
    """ether1 monitored with a 1 MB/s minimum."""
    return MonitoredInterface(
        id="if-1",
        device_id=sample_device.id,
        interface_name="ether1",
        min_threshold_bps=1_000_000,
    )


@pytest.fixture
def sample_stats() -> list:
    return [
        InterfaceStats(name="ether1", rx_bytes_per_second=2_000_000,
                       tx_bytes_per_second=500_000, comment="WAN"),
        InterfaceStats(name="ether2", rx_bytes_per_second=10_000,
                       tx_bytes_per_second=20_000),
    ]


# =============================================================================
# Store and Bus Fixtures
# =============================================================================


@pytest.fixture
def store(temp_data_dir: Path):
    """A real SQLite store in a temporary directory."""
    from storage.sqlite_store import SQLiteStore

    return SQLiteStore(data_dir=temp_data_dir)


@pytest.fixture
def sync_event_bus():
    """Event bus that dispatches on the publishing thread."""
    from app.events import EventBus

    return EventBus(async_mode=False)


@pytest.fixture
def mock_event_bus() -> MagicMock:
    """Create a mock event bus for testing event-driven components."""
    mock_bus = MagicMock()
    mock_bus.publish = MagicMock()
    mock_bus.subscribe = MagicMock()
    mock_bus.unsubscribe = MagicMock()
    return mock_bus


# =============================================================================
# Integration Test Fixtures
# =============================================================================


@pytest.fixture
def integration_data_dir(tmp_path: Path) -> Path:
    """Create a complete data directory structure for integration tests."""
    data_dir = tmp_path / ".router-monitor"
    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir
