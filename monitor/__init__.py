"""Router monitoring components.

This package polls routers over three protocols, keeps recent throughput
in memory, persists it in batches and raises alerts.

Modules:
    models: Devices, interfaces, samples and alerts
    backend: Protocol backend interface and counter-to-rate tracking
    routeros_api: RouterOS native API (TCP 8728)
    rest_client: RouterOS REST API (HTTPS)
    snmp_client: SNMP v1/v2c IF-MIB polling
    connection: Per-device protocol selection with fallback
    reachability: TCP port probing
    scheduler: Poll cycles and realtime ticks
    traffic: Realtime ring buffer
    flusher: Ring buffer to durable store
    alerts: Threshold and connectivity alert engine
    notifications: Email and realtime alert delivery
    metrics_exporter: Prometheus metrics
    utils: Shared formatting helpers

Example:
    >>> from monitor import ConnectionSelector, RestApiBackend, ConnectionMethod
    >>> selector = ConnectionSelector({ConnectionMethod.REST: RestApiBackend()})
    >>> result = selector.select(device)
    >>> print(result.method, len(result.stats))
"""
from .alerts import AlertEngine, EvaluationReport, ViolationCounters
from .backend import CounterRateTracker, ProtocolBackend
from .connection import ConnectionSelector, SelectionResult
from .flusher import FlushReport, PersistenceFlusher
from .models import (
    Alert,
    AlertKind,
    AlertSeverity,
    ConnectionMethod,
    Device,
    InterfaceStats,
    MonitoredInterface,
    Sample,
)
from .reachability import ReachabilityProber
from .rest_client import RestApiBackend
from .routeros_api import NativeApiBackend
from .scheduler import PollPhase, PollResult, PollScheduler
from .snmp_client import SnmpBackend
from .traffic import RealtimeTrafficStore
from .utils import format_bytes, format_rate

__all__ = [
    # Model
    "Alert",
    "AlertKind",
    "AlertSeverity",
    "ConnectionMethod",
    "Device",
    "InterfaceStats",
    "MonitoredInterface",
    "Sample",
    # Backends
    "ProtocolBackend",
    "CounterRateTracker",
    "NativeApiBackend",
    "RestApiBackend",
    "SnmpBackend",
    # Polling
    "ConnectionSelector",
    "SelectionResult",
    "ReachabilityProber",
    "PollScheduler",
    "PollPhase",
    "PollResult",
    # Buffering and persistence
    "RealtimeTrafficStore",
    "PersistenceFlusher",
    "FlushReport",
    # Alerting
    "AlertEngine",
    "EvaluationReport",
    "ViolationCounters",
    # Utilities
    "format_bytes",
    "format_rate",
]
