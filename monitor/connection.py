"""Connection method selection and fallback for a device."""
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

from config import get_logger
from config.exceptions import BackendError
from monitor.backend import ProtocolBackend
from monitor.models import ConnectionMethod, Device, InterfaceStats

logger = get_logger(__name__)


@dataclass
class SelectionResult:
    """Outcome of one selection attempt for one device.

    ``errors`` maps each failed method to its error category ("auth",
    "connectivity", "protocol" or "unexpected"); raw exceptions never leave
    the selector.
    """
    success: bool
    method: ConnectionMethod = ConnectionMethod.NONE
    stats: List[InterfaceStats] = field(default_factory=list)
    errors: Dict[ConnectionMethod, str] = field(default_factory=dict)

    @property
    def error_category(self) -> Optional[str]:
        """Category of the last failure, or None on success."""
        if self.success or not self.errors:
            return None
        return list(self.errors.values())[-1]


class ConnectionSelector:
    """Picks a working protocol for a device.

    The device's cached ``last_successful_method`` is tried first; on failure
    the remaining enabled methods follow in REST, Native, SNMP order. Each
    method is attempted at most once per call. Backends never retry, so the
    worst case is one attempt per enabled protocol.

    The selector does not mutate the device. Callers apply the returned
    method and connection flag.
    """

    def __init__(self, backends: Mapping[ConnectionMethod, ProtocolBackend]):
        self._backends = dict(backends)

    def backend(self, method: ConnectionMethod) -> Optional[ProtocolBackend]:
        return self._backends.get(method)

    def attempt_order(self, device: Device) -> List[ConnectionMethod]:
        """Methods to try for this device, in order."""
        enabled = [m for m in device.enabled_methods() if m in self._backends]
        cached = device.last_successful_method
        if cached in enabled:
            enabled.remove(cached)
            enabled.insert(0, cached)
        return enabled

    def select(self, device: Device) -> SelectionResult:
        """Fetch interface stats using the first method that works."""
        result = SelectionResult(success=False)
        order = self.attempt_order(device)

        if not order:
            logger.debug(f"No enabled protocol for {device.display_name}")
            return result

        for method in order:
            backend = self._backends[method]
            try:
                stats = backend.fetch_interface_stats(device)
            except BackendError as e:
                result.errors[method] = e.category
                logger.debug(
                    f"{method.value} failed for {device.display_name} ({e.category}): {e.message}"
                )
                continue
            except Exception as e:
                result.errors[method] = "unexpected"
                logger.warning(
                    f"{method.value} raised unexpectedly for {device.display_name}: {e}"
                )
                continue

            if method != device.last_successful_method:
                logger.info(f"{device.display_name} now polled via {method.value}")
            result.success = True
            result.method = method
            result.stats = stats
            return result

        logger.debug(
            f"All methods failed for {device.display_name}: "
            + ", ".join(f"{m.value}={c}" for m, c in result.errors.items())
        )
        return result

    def test_method(self, device: Device, method: ConnectionMethod) -> bool:
        """Check one protocol without touching the cache."""
        backend = self._backends.get(method)
        if backend is None:
            return False
        return backend.test_connection(device)
