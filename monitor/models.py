"""Data model shared by the polling, buffering and alerting components."""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple

from config import NETWORK


class ConnectionMethod(Enum):
    """Protocol used to poll a device."""
    NATIVE = "native"
    REST = "rest"
    SNMP = "snmp"
    NONE = "none"

    @classmethod
    def parse(cls, value: Optional[str]) -> 'ConnectionMethod':
        """Parse a stored method name, mapping unknown or empty values to NONE."""
        if not value:
            return cls.NONE
        try:
            return cls(value)
        except ValueError:
            return cls.NONE


class AlertSeverity(Enum):
    """Alert severity levels."""
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


class AlertKind(Enum):
    """What an alert is about."""
    TRAFFIC = "traffic"
    PORT_DOWN = "port_down"
    CONNECTIVITY = "connectivity"


@dataclass
class Device:
    """A monitored router.

    Credentials are opaque: decryption happens before a Device is built.
    ``connected``, ``reachable`` and ``last_successful_method`` are written
    only by the scheduler.
    """
    id: str
    name: str
    address: str
    owner_id: str = ""
    username: str = ""
    secret: str = ""
    native_enabled: bool = True
    native_port: int = NETWORK.NATIVE_PORT
    rest_enabled: bool = False
    rest_port: int = NETWORK.REST_PORT
    snmp_enabled: bool = False
    snmp_port: int = NETWORK.SNMP_PORT
    snmp_community: str = NETWORK.SNMP_COMMUNITY
    snmp_version: str = NETWORK.SNMP_VERSION
    last_successful_method: ConnectionMethod = ConnectionMethod.NONE
    connected: bool = False
    reachable: bool = False
    last_connected: Optional[datetime] = None

    def enabled_methods(self) -> Tuple[ConnectionMethod, ...]:
        """Enabled protocols in fixed priority order."""
        flags = {
            ConnectionMethod.REST: self.rest_enabled,
            ConnectionMethod.NATIVE: self.native_enabled,
            ConnectionMethod.SNMP: self.snmp_enabled,
        }
        return tuple(
            ConnectionMethod(name) for name in NETWORK.METHOD_PRIORITY
            if flags[ConnectionMethod(name)]
        )

    def tcp_ports(self) -> Tuple[int, ...]:
        """TCP ports of the enabled protocols (SNMP is UDP and has none)."""
        ports = []
        if self.rest_enabled:
            ports.append(self.rest_port)
        if self.native_enabled:
            ports.append(self.native_port)
        return tuple(ports)

    @property
    def display_name(self) -> str:
        return f"{self.name} ({self.address})"


@dataclass(frozen=True)
class MonitoredInterface:
    """An interface configured for threshold alerting (read-only to the core)."""
    id: str
    device_id: str
    interface_name: str
    enabled: bool = True
    min_threshold_bps: float = 0
    email_notifications: bool = True
    popup_notifications: bool = True
    severity: Optional[AlertSeverity] = None


@dataclass
class InterfaceStats:
    """One backend reading for one interface."""
    name: str
    rx_bytes_per_second: float
    tx_bytes_per_second: float
    comment: Optional[str] = None
    running: bool = True
    mac_address: Optional[str] = None

    @property
    def total_bytes_per_second(self) -> float:
        return self.rx_bytes_per_second + self.tx_bytes_per_second


@dataclass(frozen=True)
class Sample:
    """One throughput measurement for a device interface."""
    timestamp: datetime
    device_id: str
    interface_name: str
    rx_bytes_per_second: float
    tx_bytes_per_second: float
    total_bytes_per_second: float
    comment: Optional[str] = None
    # Link state as reported by the router; not persisted
    running: bool = True

    @classmethod
    def from_stats(cls, device_id: str, stats: InterfaceStats,
                   timestamp: Optional[datetime] = None) -> 'Sample':
        return cls(
            timestamp=timestamp or datetime.now(),
            device_id=device_id,
            interface_name=stats.name,
            rx_bytes_per_second=stats.rx_bytes_per_second,
            tx_bytes_per_second=stats.tx_bytes_per_second,
            total_bytes_per_second=stats.total_bytes_per_second,
            comment=stats.comment,
            running=stats.running,
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "device_id": self.device_id,
            "interface_name": self.interface_name,
            "rx_bytes_per_second": self.rx_bytes_per_second,
            "tx_bytes_per_second": self.tx_bytes_per_second,
            "total_bytes_per_second": self.total_bytes_per_second,
            "comment": self.comment,
            "running": self.running,
        }


@dataclass
class Alert:
    """A raised alert, device-scoped when ``interface_name`` is None."""
    device_id: str
    severity: AlertSeverity
    kind: AlertKind
    message: str
    user_id: str = ""
    interface_id: Optional[str] = None
    interface_name: Optional[str] = None
    interface_comment: Optional[str] = None
    observed_value: Optional[float] = None
    threshold: Optional[float] = None
    acknowledged: bool = False
    acknowledged_at: Optional[datetime] = None
    acknowledged_by: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)
    id: Optional[int] = None

    @property
    def is_device_scoped(self) -> bool:
        return self.interface_name is None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "device_id": self.device_id,
            "interface_id": self.interface_id,
            "interface_name": self.interface_name,
            "interface_comment": self.interface_comment,
            "user_id": self.user_id,
            "severity": self.severity.value,
            "kind": self.kind.value,
            "message": self.message,
            "observed_value": self.observed_value,
            "threshold": self.threshold,
            "acknowledged": self.acknowledged,
            "acknowledged_at": self.acknowledged_at.isoformat() if self.acknowledged_at else None,
            "acknowledged_by": self.acknowledged_by,
            "created_at": self.created_at.isoformat(),
        }
