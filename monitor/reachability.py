"""Reachability probe.

Reachability is independent of credentials: a device that accepts a TCP
connection on any enabled protocol port is reachable, even if every login
fails. SNMP runs over UDP and has no handshake to probe, so when no TCP
port answers and SNMP is enabled, a single ``sysUpTime`` GET under the same
short timeout stands in for the connect test.
"""
import socket

from config import INTERVALS, get_logger
from monitor.models import Device

logger = get_logger(__name__)


class ReachabilityProber:
    """Short-timeout connect test against a device's protocol ports.

    Args:
        timeout: Per-port connect timeout in seconds.
        snmp: Backend providing ``is_alive(device, timeout)`` for the SNMP
            port; without it SNMP-only devices are never reachable by probe.
    """

    def __init__(self, timeout: float = INTERVALS.PROBE_TIMEOUT_SECONDS, snmp=None):
        self._timeout = timeout
        self._snmp = snmp

    def probe_port(self, address: str, port: int) -> bool:
        try:
            with socket.create_connection((address, port), timeout=self._timeout):
                return True
        except OSError as e:
            # socket.timeout and ConnectionRefusedError are OSError subclasses
            logger.debug(f"Probe {address}:{port} failed: {e}")
            return False

    def probe_snmp(self, device: Device) -> bool:
        if self._snmp is None:
            return False
        return self._snmp.is_alive(device, self._timeout)

    def is_reachable(self, device: Device) -> bool:
        """True if any enabled TCP port answers, or the SNMP agent does."""
        for port in device.tcp_ports():
            if self.probe_port(device.address, port):
                return True
        if device.snmp_enabled:
            return self.probe_snmp(device)
        return False
