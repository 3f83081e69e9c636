"""Mock implementations for testing Router Monitor.

Provides fake protocol backends, a fake prober and a recording sink that
can be used in unit tests without any network access.

Usage:
    from tests.mocks import MockBackend, MockProber

    backend = MockBackend(ConnectionMethod.REST)
    backend.set_stats("192.0.2.1", [InterfaceStats("ether1", 1000, 0)])
"""

import threading
import time
from datetime import datetime
from typing import Dict, List, Optional, Set

from config.exceptions import BackendError, ConnectivityFailure, PersistenceFailure
from monitor.backend import ProtocolBackend
from monitor.models import ConnectionMethod, Device, InterfaceStats, Sample


# === Mock Components ===


class MockBackend(ProtocolBackend):
    """Fake protocol backend.

    Per device address it either returns configured stats, raises a
    configured error, or blocks for a while (to exercise deadlines).
    """

    def __init__(self, method: ConnectionMethod):
        self.method = method
        self._stats: Dict[str, List[InterfaceStats]] = {}
        self._errors: Dict[str, BackendError] = {}
        self._delays: Dict[str, float] = {}
        self.calls: List[str] = []
        self._lock = threading.Lock()

    def set_stats(self, address: str, stats: List[InterfaceStats]) -> None:
        """Make polls of ``address`` succeed with these stats."""
        self._errors.pop(address, None)
        self._stats[address] = stats

    def set_error(self, address: str, error: Optional[BackendError] = None) -> None:
        """Make polls of ``address`` fail."""
        self._errors[address] = error or ConnectivityFailure(f"{address} timed out")

    def set_delay(self, address: str, seconds: float) -> None:
        self._delays[address] = seconds

    def fetch_interface_stats(self, device: Device) -> List[InterfaceStats]:
        with self._lock:
            self.calls.append(device.address)
        delay = self._delays.get(device.address)
        if delay:
            time.sleep(delay)
        if device.address in self._errors:
            raise self._errors[device.address]
        if device.address not in self._stats:
            raise ConnectivityFailure(f"{device.address} not configured")
        return list(self._stats[device.address])

    def fetch_interface_names(self, device: Device) -> List[str]:
        return [s.name for s in self.fetch_interface_stats(device)]


class MockProber:
    """Fake reachability prober answering from a set of addresses."""

    def __init__(self, reachable: Optional[Set[str]] = None):
        self.reachable: Set[str] = set(reachable or ())
        self.calls: List[str] = []

    def is_reachable(self, device: Device) -> bool:
        self.calls.append(device.address)
        return device.address in self.reachable


class RecordingSink:
    """Sample sink that records writes and can be told to fail."""

    def __init__(self):
        self.written: Dict[str, List[Sample]] = {}
        self.fail_devices: Set[str] = set()

    def append_samples(self, device_id: str, samples) -> int:
        samples = list(samples)
        if device_id in self.fail_devices:
            raise PersistenceFailure(f"disk full writing {device_id}")
        self.written.setdefault(device_id, []).extend(samples)
        return len(samples)


class MockSettingsManager:
    """Minimal SettingsManager stand-in for controller tests."""

    def __init__(self):
        self.intervals = {"poll": 60.0, "realtime": 1.0, "alert_check": 60.0, "flush": 300.0}
        self.retention_days = 730
        self.pushgateway_url = ""
        self.metrics_port = 0

    def get_intervals(self) -> Dict[str, float]:
        return dict(self.intervals)

    def set_interval(self, name: str, seconds: float) -> None:
        self.intervals[name] = seconds

    def get_retention_days(self) -> int:
        return self.retention_days

    def get_pushgateway_url(self) -> str:
        return self.pushgateway_url

    def get_metrics_port(self) -> int:
        return self.metrics_port


# === Builders ===


def make_sample(device_id: str = "dev-1", interface_name: str = "ether1",
                rx: float = 0.0, tx: float = 0.0,
                timestamp: Optional[datetime] = None, running: bool = True) -> Sample:
    """Build a Sample with sensible defaults."""
    return Sample(
        timestamp=timestamp or datetime.now(),
        device_id=device_id,
        interface_name=interface_name,
        rx_bytes_per_second=rx,
        tx_bytes_per_second=tx,
        total_bytes_per_second=rx + tx,
        running=running,
    )
