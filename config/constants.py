"""Centralized constants and configuration for Router Monitor.

All intervals, thresholds, ports and storage names live here so that the
scheduler, alert engine and storage layer agree on a single set of values.

Usage:
    from config.constants import INTERVALS, THRESHOLDS, STORAGE

    poll_every = INTERVALS.POLL_SECONDS
    strikes = THRESHOLDS.VIOLATION_LIMIT
"""
from dataclasses import dataclass


@dataclass(frozen=True)
class Intervals:
    """Time intervals for the background jobs (in seconds).

    All interval values are in seconds unless otherwise specified.
    """
    # Persisted polling and reachability
    POLL_SECONDS: float = 60.0

    # Realtime polling for devices under active observation
    REALTIME_SECONDS: float = 1.0

    # Alert evaluation pass
    ALERT_CHECK_SECONDS: float = 60.0

    # Ring buffer -> durable store
    FLUSH_SECONDS: float = 300.0

    # Old-sample cleanup
    CLEANUP_SECONDS: float = 86400.0

    # Delay before the first poll after startup
    STARTUP_DELAY_SECONDS: float = 5.0

    # Protocol timeouts
    NATIVE_TIMEOUT_SECONDS: float = 10.0
    REST_TIMEOUT_SECONDS: float = 10.0
    SNMP_TIMEOUT_SECONDS: float = 5.0
    SNMP_RETRIES: int = 1
    PROBE_TIMEOUT_SECONDS: float = 2.0

    # Hard deadline for one device's task within a poll cycle
    DEVICE_DEADLINE_SECONDS: float = 45.0

    # Realtime tasks must finish well inside one tick window
    REALTIME_DEADLINE_SECONDS: float = 5.0

    # A sample older than this is not used for threshold evaluation
    SAMPLE_MAX_AGE_SECONDS: float = 150.0

    # SQLite busy timeout for the flush write
    STORE_TIMEOUT_SECONDS: float = 30.0


@dataclass(frozen=True)
class Thresholds:
    """Threshold values for alerting and buffering."""
    # Consecutive failed evaluations before an alert is raised
    VIOLATION_LIMIT: int = 3

    # Severity bands (percent below the configured minimum)
    CRITICAL_PERCENT_BELOW: float = 50.0
    WARNING_PERCENT_BELOW: float = 25.0

    # Realtime ring buffer: 2 hours at 1 Hz
    RING_BUFFER_CAPACITY: int = 7200

    # Points per interface sent to live viewers
    LIVE_POINTS_PER_INTERFACE: int = 100

    # Poll worker pool
    MAX_POLL_WORKERS: int = 32


@dataclass(frozen=True)
class StorageConfig:
    """Storage and file-related configuration."""
    # Directory and file names
    DATA_DIR_NAME: str = ".router-monitor"
    SETTINGS_FILE: str = "settings.json"
    LOG_FILE: str = "router_monitor.log"

    # SQLite database
    DATABASE_FILE: str = "router_monitor.db"

    # Data retention (two years)
    RETENTION_DAYS: int = 730

    # Log rotation
    LOG_MAX_BYTES: int = 5_000_000  # 5MB
    LOG_BACKUP_COUNT: int = 3

    # Backup settings
    BACKUP_DIR: str = "backups"
    MAX_BACKUPS: int = 5


@dataclass(frozen=True)
class NetworkConfig:
    """Device protocol defaults."""
    NATIVE_PORT: int = 8728
    REST_PORT: int = 443
    SNMP_PORT: int = 161
    SNMP_COMMUNITY: str = "public"
    SNMP_VERSION: str = "2c"

    # Fallback order when the cached method fails
    METHOD_PRIORITY: tuple = ("rest", "native", "snmp")

    # Verify TLS on the REST API (RouterOS ships self-signed certificates)
    REST_VERIFY_TLS: bool = False

    # SNMP table walk limit
    SNMP_MAX_ROWS: int = 512


@dataclass(frozen=True)
class AlertConfig:
    """Alert identities and wording."""
    SYSTEM_ACTOR: str = "system"
    CONNECTIVITY_SEVERITY: str = "critical"
    PORT_DOWN_SEVERITY: str = "critical"


# Global instances - import these
INTERVALS = Intervals()
THRESHOLDS = Thresholds()
STORAGE = StorageConfig()
NETWORK = NetworkConfig()
ALERTS = AlertConfig()
