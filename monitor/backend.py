"""Common base for the device protocol backends.

A backend knows how to talk one protocol to one device. It fetches raw
interface readings and raises a typed ``BackendError`` on failure. It never
retries: retry and fallback belong to the connection selector.
"""
import threading
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from config import get_logger
from monitor.models import ConnectionMethod, Device, InterfaceStats

logger = get_logger(__name__)


@dataclass
class CounterReading:
    """Raw byte counters of one interface at one instant."""
    name: str
    rx_bytes: int
    tx_bytes: int
    comment: Optional[str] = None
    running: bool = True
    mac_address: Optional[str] = None


class CounterRateTracker:
    """Turns cumulative byte counters into bytes-per-second rates.

    Keeps the previous reading per (host, interface). The first reading of an
    interface yields 0 B/s; a counter that went backwards (wrap or device
    reboot) is clamped to 0 B/s.

    Thread-safe: realtime and persisted polls of the same device may overlap.
    """

    def __init__(self):
        self._previous: Dict[Tuple[str, str], Tuple[int, int, float]] = {}
        self._lock = threading.Lock()

    def rates(self, host: str, readings: List[CounterReading],
              now: Optional[float] = None) -> List[InterfaceStats]:
        """Convert counter readings to rates and remember them for next time."""
        now = time.monotonic() if now is None else now
        results = []

        with self._lock:
            for reading in readings:
                key = (host, reading.name)
                previous = self._previous.get(key)
                rx_rate = tx_rate = 0.0

                if previous:
                    prev_rx, prev_tx, prev_time = previous
                    elapsed = now - prev_time
                    if elapsed > 0:
                        rx_rate = max(0.0, (reading.rx_bytes - prev_rx) / elapsed)
                        tx_rate = max(0.0, (reading.tx_bytes - prev_tx) / elapsed)

                self._previous[key] = (reading.rx_bytes, reading.tx_bytes, now)
                results.append(InterfaceStats(
                    name=reading.name,
                    rx_bytes_per_second=rx_rate,
                    tx_bytes_per_second=tx_rate,
                    comment=reading.comment,
                    running=reading.running,
                    mac_address=reading.mac_address,
                ))

        return results

    def forget(self, host: str) -> None:
        """Drop remembered counters for a host (e.g., device removed)."""
        with self._lock:
            for key in [k for k in self._previous if k[0] == host]:
                del self._previous[key]


class ProtocolBackend:
    """Base class for the three protocol backends.

    Subclasses implement ``fetch_interface_stats`` and
    ``fetch_interface_names``.
    """

    method: ConnectionMethod = ConnectionMethod.NONE

    def fetch_interface_stats(self, device: Device) -> List[InterfaceStats]:
        """Fetch current per-interface rates.

        Raises:
            AuthenticationFailure: Credentials rejected.
            ConnectivityFailure: Timeout, refused or unreachable.
            ProtocolError: Malformed or unexpected response.
        """
        raise NotImplementedError("Subclasses must implement fetch_interface_stats()")

    def fetch_interface_names(self, device: Device) -> List[str]:
        """List the device's interface names."""
        raise NotImplementedError("Subclasses must implement fetch_interface_names()")

    def test_connection(self, device: Device) -> bool:
        """Return True if the device answers this protocol with these credentials."""
        try:
            self.fetch_interface_names(device)
            return True
        except Exception as e:
            logger.debug(f"{self.method.value} connection test failed for {device.display_name}: {e}")
            return False

    def __repr__(self) -> str:
        return f"{type(self).__name__}(method={self.method.value})"
