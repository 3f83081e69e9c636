"""SQLite-based persistence for devices, samples and alerts.

This module is the durable side of the monitor: the credential/device
store, the monitored interface configuration, the long-term sample sink
and the alert log.

Features:
- Device records with opaque credentials and scheduler-owned state
- Monitored interface configuration (threshold and notification flags)
- Batched sample writes, one transaction per device flush
- Alert log with at most one open alert per (device, interface)
- Notification delivery log
- Retention cleanup and backup
"""
import shutil
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

from config import INTERVALS, STORAGE, get_logger
from config.exceptions import PersistenceFailure
from monitor.models import (
    Alert,
    AlertKind,
    AlertSeverity,
    ConnectionMethod,
    Device,
    InterfaceStats,
    MonitoredInterface,
    Sample,
)

logger = get_logger(__name__)


# Schema version for migrations
SCHEMA_VERSION = 1


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat(timespec='microseconds') if value else None


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class SQLiteStore:
    """Handles persistence of devices, samples and alerts to SQLite.

    Every public method opens its own short-lived connection, so the store
    can be shared between the scheduler, flusher and alert threads. Writes
    are serialized with a lock; reads rely on WAL for concurrency.
    """

    DEFAULT_DATA_DIR = Path.home() / STORAGE.DATA_DIR_NAME

    # SQL schema for database tables
    SCHEMA = """
    -- Monitored routers; secret is opaque (decrypted elsewhere)
    CREATE TABLE IF NOT EXISTS devices (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        address TEXT NOT NULL,
        owner_id TEXT NOT NULL DEFAULT '',
        username TEXT NOT NULL DEFAULT '',
        secret TEXT NOT NULL DEFAULT '',
        native_enabled INTEGER NOT NULL DEFAULT 1,
        native_port INTEGER NOT NULL DEFAULT 8728,
        rest_enabled INTEGER NOT NULL DEFAULT 0,
        rest_port INTEGER NOT NULL DEFAULT 443,
        snmp_enabled INTEGER NOT NULL DEFAULT 0,
        snmp_port INTEGER NOT NULL DEFAULT 161,
        snmp_community TEXT NOT NULL DEFAULT 'public',
        snmp_version TEXT NOT NULL DEFAULT '2c',
        last_successful_method TEXT NOT NULL DEFAULT 'none',
        connected INTEGER NOT NULL DEFAULT 0,
        reachable INTEGER NOT NULL DEFAULT 0,
        last_connected TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    );

    -- Users assigned to a device besides its owner
    CREATE TABLE IF NOT EXISTS device_users (
        device_id TEXT NOT NULL REFERENCES devices(id) ON DELETE CASCADE,
        user_id TEXT NOT NULL,
        PRIMARY KEY (device_id, user_id)
    );

    -- Interfaces configured for threshold alerting
    CREATE TABLE IF NOT EXISTS monitored_interfaces (
        id TEXT PRIMARY KEY,
        device_id TEXT NOT NULL REFERENCES devices(id) ON DELETE CASCADE,
        interface_name TEXT NOT NULL,
        enabled INTEGER NOT NULL DEFAULT 1,
        min_threshold_bps REAL NOT NULL DEFAULT 0,
        email_notifications INTEGER NOT NULL DEFAULT 1,
        popup_notifications INTEGER NOT NULL DEFAULT 1,
        severity TEXT,
        UNIQUE(device_id, interface_name)
    );

    -- Every interface seen on a device, refreshed on each successful poll
    CREATE TABLE IF NOT EXISTS router_interfaces (
        device_id TEXT NOT NULL REFERENCES devices(id) ON DELETE CASCADE,
        interface_name TEXT NOT NULL,
        comment TEXT,
        mac_address TEXT,
        running INTEGER NOT NULL DEFAULT 1,
        last_seen TEXT NOT NULL,
        PRIMARY KEY (device_id, interface_name)
    );

    -- Long-term sample sink
    CREATE TABLE IF NOT EXISTS traffic_samples (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        device_id TEXT NOT NULL,
        interface_name TEXT NOT NULL,
        timestamp TEXT NOT NULL,
        rx_bytes_per_second REAL NOT NULL,
        tx_bytes_per_second REAL NOT NULL,
        total_bytes_per_second REAL NOT NULL,
        comment TEXT
    );

    CREATE TABLE IF NOT EXISTS alerts (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        device_id TEXT NOT NULL,
        interface_id TEXT,
        interface_name TEXT,
        interface_comment TEXT,
        user_id TEXT NOT NULL DEFAULT '',
        severity TEXT NOT NULL,
        kind TEXT NOT NULL,
        message TEXT NOT NULL,
        observed_value REAL,
        threshold REAL,
        acknowledged INTEGER NOT NULL DEFAULT 0,
        acknowledged_at TEXT,
        acknowledged_by TEXT,
        created_at TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS notifications (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        alert_id INTEGER NOT NULL REFERENCES alerts(id) ON DELETE CASCADE,
        user_id TEXT NOT NULL,
        channel TEXT NOT NULL,
        delivered INTEGER NOT NULL,
        error TEXT,
        created_at TEXT NOT NULL
    );

    -- Schema version tracking
    CREATE TABLE IF NOT EXISTS schema_info (
        key TEXT PRIMARY KEY,
        value TEXT
    );

    -- At most one unacknowledged alert per (device, interface-or-none)
    CREATE UNIQUE INDEX IF NOT EXISTS idx_alerts_open
        ON alerts(device_id, IFNULL(interface_name, ''))
        WHERE acknowledged = 0;

    -- Indexes for common queries
    CREATE INDEX IF NOT EXISTS idx_samples_lookup
        ON traffic_samples(device_id, interface_name, timestamp);
    CREATE INDEX IF NOT EXISTS idx_samples_timestamp ON traffic_samples(timestamp);
    CREATE INDEX IF NOT EXISTS idx_alerts_created ON alerts(created_at);
    CREATE INDEX IF NOT EXISTS idx_interfaces_device ON monitored_interfaces(device_id);
    """

    def __init__(self, data_dir: Optional[Path] = None,
                 timeout: float = INTERVALS.STORE_TIMEOUT_SECONDS):
        """Initialize SQLite store.

        Args:
            data_dir: Directory for database file. Defaults to ~/.router-monitor/
            timeout: SQLite busy timeout in seconds.
        """
        self.data_dir = Path(data_dir) if data_dir else self.DEFAULT_DATA_DIR
        self.db_path = self.data_dir / STORAGE.DATABASE_FILE
        self._timeout = timeout
        self._lock = threading.Lock()

        self._ensure_data_dir()
        self._init_db()

        logger.info(f"SQLiteStore initialized at {self.db_path}")

    def _ensure_data_dir(self) -> None:
        """Create data directory if it doesn't exist."""
        self.data_dir.mkdir(parents=True, exist_ok=True)

    @contextmanager
    def _connection(self):
        """Context manager for database connections.

        Uses WAL mode for better concurrency and enables foreign keys.
        """
        conn = sqlite3.connect(
            self.db_path,
            timeout=self._timeout,
            isolation_level=None  # Autocommit mode, we handle transactions manually
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        try:
            yield conn
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        try:
            with self._connection() as conn:
                conn.executescript(self.SCHEMA)
                conn.execute(
                    "INSERT OR IGNORE INTO schema_info (key, value) VALUES (?, ?)",
                    ("version", str(SCHEMA_VERSION))
                )
            logger.debug("Database schema initialized")
        except sqlite3.Error as e:
            logger.error(f"Failed to initialize database: {e}")
            raise PersistenceFailure(f"Database initialization failed: {e}")

    # === Row mapping ===

    @staticmethod
    def _row_to_device(row: sqlite3.Row) -> Device:
        return Device(
            id=row["id"],
            name=row["name"],
            address=row["address"],
            owner_id=row["owner_id"],
            username=row["username"],
            secret=row["secret"],
            native_enabled=bool(row["native_enabled"]),
            native_port=row["native_port"],
            rest_enabled=bool(row["rest_enabled"]),
            rest_port=row["rest_port"],
            snmp_enabled=bool(row["snmp_enabled"]),
            snmp_port=row["snmp_port"],
            snmp_community=row["snmp_community"],
            snmp_version=row["snmp_version"],
            last_successful_method=ConnectionMethod.parse(row["last_successful_method"]),
            connected=bool(row["connected"]),
            reachable=bool(row["reachable"]),
            last_connected=_parse_ts(row["last_connected"]),
        )

    @staticmethod
    def _row_to_interface(row: sqlite3.Row) -> MonitoredInterface:
        return MonitoredInterface(
            id=row["id"],
            device_id=row["device_id"],
            interface_name=row["interface_name"],
            enabled=bool(row["enabled"]),
            min_threshold_bps=row["min_threshold_bps"],
            email_notifications=bool(row["email_notifications"]),
            popup_notifications=bool(row["popup_notifications"]),
            severity=AlertSeverity(row["severity"]) if row["severity"] else None,
        )

    @staticmethod
    def _row_to_alert(row: sqlite3.Row) -> Alert:
        return Alert(
            id=row["id"],
            device_id=row["device_id"],
            interface_id=row["interface_id"],
            interface_name=row["interface_name"],
            interface_comment=row["interface_comment"],
            user_id=row["user_id"],
            severity=AlertSeverity(row["severity"]),
            kind=AlertKind(row["kind"]),
            message=row["message"],
            observed_value=row["observed_value"],
            threshold=row["threshold"],
            acknowledged=bool(row["acknowledged"]),
            acknowledged_at=_parse_ts(row["acknowledged_at"]),
            acknowledged_by=row["acknowledged_by"],
            created_at=_parse_ts(row["created_at"]),
        )

    @staticmethod
    def _row_to_sample(row: sqlite3.Row) -> Sample:
        return Sample(
            timestamp=_parse_ts(row["timestamp"]),
            device_id=row["device_id"],
            interface_name=row["interface_name"],
            rx_bytes_per_second=row["rx_bytes_per_second"],
            tx_bytes_per_second=row["tx_bytes_per_second"],
            total_bytes_per_second=row["total_bytes_per_second"],
            comment=row["comment"],
        )

    # === Device Methods ===

    def save_device(self, device: Device) -> None:
        """Insert or update a device's configuration.

        Scheduler-owned state (connected, reachable, method) is written only
        on insert; use ``update_device_state`` afterwards.
        """
        with self._lock:
            try:
                with self._connection() as conn:
                    conn.execute("""
                        INSERT INTO devices
                        (id, name, address, owner_id, username, secret,
                         native_enabled, native_port, rest_enabled, rest_port,
                         snmp_enabled, snmp_port, snmp_community, snmp_version,
                         last_successful_method, connected, reachable, last_connected)
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                        ON CONFLICT(id) DO UPDATE SET
                            name = excluded.name,
                            address = excluded.address,
                            owner_id = excluded.owner_id,
                            username = excluded.username,
                            secret = excluded.secret,
                            native_enabled = excluded.native_enabled,
                            native_port = excluded.native_port,
                            rest_enabled = excluded.rest_enabled,
                            rest_port = excluded.rest_port,
                            snmp_enabled = excluded.snmp_enabled,
                            snmp_port = excluded.snmp_port,
                            snmp_community = excluded.snmp_community,
                            snmp_version = excluded.snmp_version
                    """, (
                        device.id, device.name, device.address, device.owner_id,
                        device.username, device.secret,
                        int(device.native_enabled), device.native_port,
                        int(device.rest_enabled), device.rest_port,
                        int(device.snmp_enabled), device.snmp_port,
                        device.snmp_community, device.snmp_version,
                        device.last_successful_method.value,
                        int(device.connected), int(device.reachable),
                        _ts(device.last_connected),
                    ))
            except sqlite3.Error as e:
                logger.error(f"Failed to save device {device.id}: {e}")
                raise PersistenceFailure(f"Failed to save device: {e}", {"device_id": device.id})

    def get_device(self, device_id: str) -> Optional[Device]:
        """Get a device by id."""
        try:
            with self._connection() as conn:
                row = conn.execute("SELECT * FROM devices WHERE id = ?", (device_id,)).fetchone()
                return self._row_to_device(row) if row else None
        except sqlite3.Error as e:
            logger.error(f"Failed to get device: {e}")
            return None

    def get_all_devices(self) -> List[Device]:
        """Get all device records."""
        try:
            with self._connection() as conn:
                cursor = conn.execute("SELECT * FROM devices ORDER BY name")
                return [self._row_to_device(row) for row in cursor]
        except sqlite3.Error as e:
            logger.error(f"Failed to get devices: {e}")
            return []

    def delete_device(self, device_id: str) -> bool:
        with self._lock:
            try:
                with self._connection() as conn:
                    cursor = conn.execute("DELETE FROM devices WHERE id = ?", (device_id,))
                    return cursor.rowcount > 0
            except sqlite3.Error as e:
                logger.error(f"Failed to delete device {device_id}: {e}")
                raise PersistenceFailure(f"Failed to delete device: {e}", {"device_id": device_id})

    def update_device_state(self, device_id: str, connected: bool, reachable: bool,
                            method: ConnectionMethod,
                            last_connected: Optional[datetime] = None) -> None:
        """Write the scheduler-owned connection state of a device.

        ``last_connected`` is only overwritten when given.
        """
        with self._lock:
            try:
                with self._connection() as conn:
                    conn.execute("""
                        UPDATE devices SET
                            connected = ?,
                            reachable = ?,
                            last_successful_method = ?,
                            last_connected = COALESCE(?, last_connected)
                        WHERE id = ?
                    """, (int(connected), int(reachable), method.value,
                          _ts(last_connected), device_id))
            except sqlite3.Error as e:
                logger.error(f"Failed to update state of device {device_id}: {e}")
                raise PersistenceFailure(
                    f"Failed to update device state: {e}", {"device_id": device_id}
                )

    def assign_user(self, device_id: str, user_id: str) -> None:
        """Give a user access to a device's alerts."""
        with self._lock:
            try:
                with self._connection() as conn:
                    conn.execute(
                        "INSERT OR IGNORE INTO device_users (device_id, user_id) VALUES (?, ?)",
                        (device_id, user_id)
                    )
            except sqlite3.Error as e:
                logger.error(f"Failed to assign user {user_id} to {device_id}: {e}")
                raise PersistenceFailure(f"Failed to assign user: {e}")

    def get_alert_recipients(self, device_id: str) -> List[str]:
        """User ids to notify for a device: the owner first, then assigned users."""
        try:
            with self._connection() as conn:
                owner = conn.execute(
                    "SELECT owner_id FROM devices WHERE id = ?", (device_id,)
                ).fetchone()
                assigned = conn.execute(
                    "SELECT user_id FROM device_users WHERE device_id = ? ORDER BY user_id",
                    (device_id,)
                ).fetchall()
        except sqlite3.Error as e:
            logger.error(f"Failed to get recipients for {device_id}: {e}")
            return []

        recipients: List[str] = []
        if owner and owner["owner_id"]:
            recipients.append(owner["owner_id"])
        for row in assigned:
            if row["user_id"] not in recipients:
                recipients.append(row["user_id"])
        return recipients

    # === Monitored Interface Methods ===

    def save_interface(self, interface: MonitoredInterface) -> None:
        """Insert or replace a monitored interface configuration."""
        with self._lock:
            try:
                with self._connection() as conn:
                    conn.execute("""
                        INSERT OR REPLACE INTO monitored_interfaces
                        (id, device_id, interface_name, enabled, min_threshold_bps,
                         email_notifications, popup_notifications, severity)
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """, (
                        interface.id, interface.device_id, interface.interface_name,
                        int(interface.enabled), interface.min_threshold_bps,
                        int(interface.email_notifications), int(interface.popup_notifications),
                        interface.severity.value if interface.severity else None,
                    ))
            except sqlite3.Error as e:
                logger.error(f"Failed to save interface {interface.id}: {e}")
                raise PersistenceFailure(f"Failed to save interface: {e}", {"id": interface.id})

    def delete_interface(self, interface_id: str) -> bool:
        with self._lock:
            try:
                with self._connection() as conn:
                    cursor = conn.execute(
                        "DELETE FROM monitored_interfaces WHERE id = ?", (interface_id,)
                    )
                    return cursor.rowcount > 0
            except sqlite3.Error as e:
                logger.error(f"Failed to delete interface {interface_id}: {e}")
                raise PersistenceFailure(f"Failed to delete interface: {e}", {"id": interface_id})

    def get_monitored_interfaces(self, device_id: Optional[str] = None,
                                 enabled_only: bool = True) -> List[MonitoredInterface]:
        """The live monitored interface list, optionally for one device."""
        query = "SELECT * FROM monitored_interfaces WHERE 1 = 1"
        params: list = []
        if device_id is not None:
            query += " AND device_id = ?"
            params.append(device_id)
        if enabled_only:
            query += " AND enabled = 1"
        query += " ORDER BY device_id, interface_name"

        try:
            with self._connection() as conn:
                return [self._row_to_interface(row) for row in conn.execute(query, params)]
        except sqlite3.Error as e:
            logger.error(f"Failed to get monitored interfaces: {e}")
            return []

    def upsert_router_interfaces(self, device_id: str, stats: Sequence[InterfaceStats],
                                 seen_at: Optional[datetime] = None) -> None:
        """Refresh the cached interface list of a device from one poll."""
        seen = _ts(seen_at or datetime.now())
        with self._lock:
            try:
                with self._connection() as conn:
                    conn.execute("BEGIN TRANSACTION")
                    try:
                        conn.executemany("""
                            INSERT INTO router_interfaces
                            (device_id, interface_name, comment, mac_address, running, last_seen)
                            VALUES (?, ?, ?, ?, ?, ?)
                            ON CONFLICT(device_id, interface_name) DO UPDATE SET
                                comment = excluded.comment,
                                mac_address = excluded.mac_address,
                                running = excluded.running,
                                last_seen = excluded.last_seen
                        """, [
                            (device_id, s.name, s.comment, s.mac_address, int(s.running), seen)
                            for s in stats
                        ])
                        conn.execute("COMMIT")
                    except Exception:
                        conn.execute("ROLLBACK")
                        raise
            except sqlite3.Error as e:
                logger.error(f"Failed to cache interfaces of {device_id}: {e}")
                raise PersistenceFailure(
                    f"Failed to cache interfaces: {e}", {"device_id": device_id}
                )

    def get_router_interfaces(self, device_id: str) -> List[Dict]:
        """Cached interfaces of a device (name, comment, MAC, running, last seen)."""
        try:
            with self._connection() as conn:
                cursor = conn.execute(
                    "SELECT * FROM router_interfaces WHERE device_id = ? ORDER BY interface_name",
                    (device_id,)
                )
                return [dict(row) for row in cursor]
        except sqlite3.Error as e:
            logger.error(f"Failed to get cached interfaces: {e}")
            return []

    # === Sample Methods ===

    def append_samples(self, device_id: str, samples: Iterable[Sample]) -> int:
        """Write a batch of samples for one device in a single transaction.

        Returns:
            Number of samples written.

        Raises:
            PersistenceFailure: The write failed; nothing was committed.
        """
        rows = [
            (device_id, s.interface_name, _ts(s.timestamp), s.rx_bytes_per_second,
             s.tx_bytes_per_second, s.total_bytes_per_second, s.comment)
            for s in samples
        ]
        if not rows:
            return 0

        with self._lock:
            try:
                with self._connection() as conn:
                    conn.execute("BEGIN TRANSACTION")
                    try:
                        conn.executemany("""
                            INSERT INTO traffic_samples
                            (device_id, interface_name, timestamp, rx_bytes_per_second,
                             tx_bytes_per_second, total_bytes_per_second, comment)
                            VALUES (?, ?, ?, ?, ?, ?, ?)
                        """, rows)
                        conn.execute("COMMIT")
                    except Exception:
                        conn.execute("ROLLBACK")
                        raise
            except sqlite3.Error as e:
                logger.error(f"Failed to append {len(rows)} samples for {device_id}: {e}")
                raise PersistenceFailure(
                    f"Failed to append samples: {e}",
                    {"device_id": device_id, "count": len(rows)}
                )
        return len(rows)

    def get_samples(self, device_id: str, interface_name: Optional[str] = None,
                    since: Optional[datetime] = None, until: Optional[datetime] = None,
                    limit: Optional[int] = None) -> List[Sample]:
        """Stored samples of a device, oldest first."""
        query = "SELECT * FROM traffic_samples WHERE device_id = ?"
        params: list = [device_id]
        if interface_name is not None:
            query += " AND interface_name = ?"
            params.append(interface_name)
        if since is not None:
            query += " AND timestamp >= ?"
            params.append(_ts(since))
        if until is not None:
            query += " AND timestamp <= ?"
            params.append(_ts(until))
        query += " ORDER BY timestamp, id"
        if limit is not None:
            query += " LIMIT ?"
            params.append(int(limit))

        try:
            with self._connection() as conn:
                return [self._row_to_sample(row) for row in conn.execute(query, params)]
        except sqlite3.Error as e:
            logger.error(f"Failed to get samples for {device_id}: {e}")
            return []

    def cleanup_old_samples(self, keep_days: Optional[int] = None) -> int:
        """Remove samples and acknowledged alerts older than the retention window.

        Args:
            keep_days: Number of days to retain. Defaults to STORAGE.RETENTION_DAYS

        Returns:
            Number of records deleted
        """
        keep_days = keep_days or STORAGE.RETENTION_DAYS
        cutoff = _ts(datetime.now() - timedelta(days=keep_days))

        with self._lock:
            try:
                with self._connection() as conn:
                    cursor = conn.execute(
                        "DELETE FROM traffic_samples WHERE timestamp < ?", (cutoff,)
                    )
                    samples_deleted = cursor.rowcount

                    cursor = conn.execute(
                        "DELETE FROM alerts WHERE acknowledged = 1 AND created_at < ?", (cutoff,)
                    )
                    alerts_deleted = cursor.rowcount

                    total_deleted = samples_deleted + alerts_deleted
                    if total_deleted > 0:
                        logger.info(
                            f"Cleanup: removed {samples_deleted} samples, "
                            f"{alerts_deleted} alerts older than {keep_days} days"
                        )
                    return total_deleted
            except sqlite3.Error as e:
                logger.error(f"Cleanup failed: {e}")
                return 0

    # === Alert Methods ===

    def create_alert(self, alert: Alert) -> Optional[Alert]:
        """Insert an alert and set its id.

        Returns:
            The stored alert, or None when an unacknowledged alert already
            exists for the same (device, interface).

        Raises:
            PersistenceFailure: Any other database error.
        """
        with self._lock:
            try:
                with self._connection() as conn:
                    cursor = conn.execute("""
                        INSERT INTO alerts
                        (device_id, interface_id, interface_name, interface_comment, user_id,
                         severity, kind, message, observed_value, threshold,
                         acknowledged, acknowledged_at, acknowledged_by, created_at)
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """, (
                        alert.device_id, alert.interface_id, alert.interface_name,
                        alert.interface_comment, alert.user_id,
                        alert.severity.value, alert.kind.value, alert.message,
                        alert.observed_value, alert.threshold,
                        int(alert.acknowledged), _ts(alert.acknowledged_at),
                        alert.acknowledged_by, _ts(alert.created_at),
                    ))
                    alert.id = cursor.lastrowid
                    return alert
            except sqlite3.IntegrityError:
                logger.debug(
                    f"Open alert already exists for {alert.device_id}/"
                    f"{alert.interface_name or '-'}, not creating duplicate"
                )
                return None
            except sqlite3.Error as e:
                logger.error(f"Failed to create alert: {e}")
                raise PersistenceFailure(f"Failed to create alert: {e}", {"device_id": alert.device_id})

    def get_alert(self, alert_id: int) -> Optional[Alert]:
        try:
            with self._connection() as conn:
                row = conn.execute("SELECT * FROM alerts WHERE id = ?", (alert_id,)).fetchone()
                return self._row_to_alert(row) if row else None
        except sqlite3.Error as e:
            logger.error(f"Failed to get alert {alert_id}: {e}")
            return None

    def get_open_alert(self, device_id: str,
                       interface_name: Optional[str] = None) -> Optional[Alert]:
        """The unacknowledged alert for (device, interface-or-none), if any.

        Raises:
            PersistenceFailure: The lookup failed.
        """
        try:
            with self._connection() as conn:
                row = conn.execute("""
                    SELECT * FROM alerts
                    WHERE device_id = ? AND IFNULL(interface_name, '') = ? AND acknowledged = 0
                """, (device_id, interface_name or '')).fetchone()
                return self._row_to_alert(row) if row else None
        except sqlite3.Error as e:
            logger.error(f"Failed to get open alert: {e}")
            raise PersistenceFailure(
                f"Failed to get open alert: {e}",
                {"device_id": device_id, "interface_name": interface_name},
            )

    def list_alerts(self, device_id: Optional[str] = None,
                    acknowledged: Optional[bool] = None, limit: int = 100) -> List[Alert]:
        """Alerts, newest first."""
        query = "SELECT * FROM alerts WHERE 1 = 1"
        params: list = []
        if device_id is not None:
            query += " AND device_id = ?"
            params.append(device_id)
        if acknowledged is not None:
            query += " AND acknowledged = ?"
            params.append(int(acknowledged))
        query += " ORDER BY created_at DESC, id DESC LIMIT ?"
        params.append(int(limit))

        try:
            with self._connection() as conn:
                return [self._row_to_alert(row) for row in conn.execute(query, params)]
        except sqlite3.Error as e:
            logger.error(f"Failed to list alerts: {e}")
            return []

    def acknowledge_alert(self, alert_id: int, actor: str,
                          at: Optional[datetime] = None) -> bool:
        """Acknowledge an open alert.

        Returns:
            True if the alert was open and is now acknowledged.
        """
        with self._lock:
            try:
                with self._connection() as conn:
                    cursor = conn.execute("""
                        UPDATE alerts SET acknowledged = 1, acknowledged_at = ?, acknowledged_by = ?
                        WHERE id = ? AND acknowledged = 0
                    """, (_ts(at or datetime.now()), actor, alert_id))
                    return cursor.rowcount > 0
            except sqlite3.Error as e:
                logger.error(f"Failed to acknowledge alert {alert_id}: {e}")
                raise PersistenceFailure(f"Failed to acknowledge alert: {e}", {"alert_id": alert_id})

    def record_notification(self, alert_id: int, user_id: str, channel: str,
                            delivered: bool, error: Optional[str] = None) -> None:
        """Log one delivery attempt. Never raises; a lost log row is only logged."""
        with self._lock:
            try:
                with self._connection() as conn:
                    conn.execute("""
                        INSERT INTO notifications
                        (alert_id, user_id, channel, delivered, error, created_at)
                        VALUES (?, ?, ?, ?, ?, ?)
                    """, (alert_id, user_id, channel, int(delivered), error, _ts(datetime.now())))
            except sqlite3.Error as e:
                logger.error(f"Failed to record notification for alert {alert_id}: {e}")

    def get_notifications(self, alert_id: int) -> List[Dict]:
        try:
            with self._connection() as conn:
                cursor = conn.execute(
                    "SELECT * FROM notifications WHERE alert_id = ? ORDER BY id", (alert_id,)
                )
                return [dict(row) for row in cursor]
        except sqlite3.Error as e:
            logger.error(f"Failed to get notifications: {e}")
            return []

    # === Backup Methods ===

    def backup(self, backup_path: Optional[Path] = None) -> Path:
        """Create a backup of the database.

        Args:
            backup_path: Optional custom backup path. If not provided,
                        creates backup in data_dir/backups with timestamp.

        Returns:
            Path to the backup file
        """
        if backup_path is None:
            backup_dir = self.data_dir / STORAGE.BACKUP_DIR
            backup_dir.mkdir(parents=True, exist_ok=True)
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            backup_path = backup_dir / f"backup_{timestamp}.db"
            self._prune_backups(backup_dir)

        backup_path = Path(backup_path)

        try:
            with self._lock:
                # Ensure WAL is checkpointed before backup
                with self._connection() as conn:
                    conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")

                shutil.copy2(self.db_path, backup_path)

            logger.info(f"Database backed up to {backup_path}")
            return backup_path
        except (OSError, sqlite3.Error) as e:
            logger.error(f"Backup failed: {e}")
            raise PersistenceFailure(f"Failed to create backup: {e}")

    def _prune_backups(self, backup_dir: Path) -> None:
        """Keep at most MAX_BACKUPS - 1 old backups before a new one is written."""
        backups = sorted(backup_dir.glob("backup_*.db"))
        for old in backups[:max(0, len(backups) - STORAGE.MAX_BACKUPS + 1)]:
            try:
                old.unlink()
            except OSError as e:
                logger.warning(f"Could not remove old backup {old}: {e}")

    # === Utility Methods ===

    def get_data_file_path(self) -> str:
        """Get the path to the database file."""
        return str(self.db_path)

    def get_database_stats(self) -> Dict:
        """Record counts and file size."""
        try:
            with self._connection() as conn:
                counts = {
                    table: conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]  # nosec B608
                    for table in ("devices", "monitored_interfaces", "traffic_samples", "alerts")
                }
            file_size = self.db_path.stat().st_size if self.db_path.exists() else 0
            counts["file_size_bytes"] = file_size
            return counts
        except (OSError, sqlite3.Error) as e:
            logger.error(f"Failed to get database stats: {e}")
            return {}
