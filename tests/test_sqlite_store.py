"""Tests for SQLite storage backend."""

import sqlite3
from datetime import datetime, timedelta
from unittest.mock import patch

import pytest

from config.exceptions import PersistenceFailure
from monitor.models import (
    Alert,
    AlertKind,
    AlertSeverity,
    ConnectionMethod,
    InterfaceStats,
    MonitoredInterface,
)
from storage.sqlite_store import SQLiteStore
from tests.mocks import make_sample


def _alert(device_id="dev-1", interface_name="ether1", **kwargs) -> Alert:
    kind = AlertKind.TRAFFIC if interface_name else AlertKind.CONNECTIVITY
    return Alert(device_id=device_id, interface_name=interface_name,
                 severity=AlertSeverity.WARNING, kind=kind, message="low", **kwargs)


class TestSQLiteStore:
    """Tests for SQLiteStore class."""

    def test_init_creates_database(self, temp_data_dir):
        """Test that initialization creates the database file."""
        SQLiteStore(data_dir=temp_data_dir)
        assert (temp_data_dir / "router_monitor.db").exists()

    # === Devices ===

    def test_save_and_get_device(self, store, sample_device):
        store.save_device(sample_device)
        loaded = store.get_device("dev-1")

        assert loaded.name == "core-router"
        assert loaded.native_enabled is True
        assert loaded.rest_enabled is False
        assert loaded.last_successful_method == ConnectionMethod.NONE

    def test_get_missing_device(self, store):
        assert store.get_device("nope") is None

    def test_save_device_does_not_overwrite_state(self, store, sample_device):
        store.save_device(sample_device)
        store.update_device_state("dev-1", True, True, ConnectionMethod.NATIVE)

        sample_device.name = "renamed"
        store.save_device(sample_device)

        loaded = store.get_device("dev-1")
        assert loaded.name == "renamed"
        assert loaded.connected is True
        assert loaded.last_successful_method == ConnectionMethod.NATIVE

    def test_update_device_state_keeps_last_connected(self, store, sample_device):
        store.save_device(sample_device)
        when = datetime(2026, 5, 1, 10, 0)
        store.update_device_state("dev-1", True, True, ConnectionMethod.REST, when)
        store.update_device_state("dev-1", False, False, ConnectionMethod.REST)

        loaded = store.get_device("dev-1")
        assert loaded.connected is False
        assert loaded.last_connected == when

    def test_delete_device_cascades(self, store, sample_device, sample_interface):
        store.save_device(sample_device)
        store.save_interface(sample_interface)

        assert store.delete_device("dev-1") is True
        assert store.get_monitored_interfaces() == []
        assert store.delete_device("dev-1") is False

    def test_alert_recipients_owner_first_without_duplicates(self, store, sample_device):
        store.save_device(sample_device)
        store.assign_user("dev-1", "user-3")
        store.assign_user("dev-1", "user-1")
        store.assign_user("dev-1", "user-2")

        assert store.get_alert_recipients("dev-1") == ["user-1", "user-2", "user-3"]

    # === Interfaces ===

    def test_monitored_interfaces_enabled_filter(self, store, sample_device, sample_interface):
        store.save_device(sample_device)
        store.save_interface(sample_interface)
        store.save_interface(MonitoredInterface(
            id="if-2", device_id="dev-1", interface_name="ether2", enabled=False,
            severity=AlertSeverity.CRITICAL,
        ))

        assert [i.interface_name for i in store.get_monitored_interfaces()] == ["ether1"]
        everything = store.get_monitored_interfaces("dev-1", enabled_only=False)
        assert len(everything) == 2
        assert everything[1].severity == AlertSeverity.CRITICAL

    def test_router_interface_cache_upserts(self, store, sample_device):
        store.save_device(sample_device)
        store.upsert_router_interfaces("dev-1", [
            InterfaceStats("ether1", 0, 0, comment="WAN", mac_address="AA"),
        ])
        store.upsert_router_interfaces("dev-1", [
            InterfaceStats("ether1", 0, 0, comment="Uplink", running=False),
            InterfaceStats("ether2", 0, 0),
        ])

        cached = store.get_router_interfaces("dev-1")
        assert [c["interface_name"] for c in cached] == ["ether1", "ether2"]
        assert cached[0]["comment"] == "Uplink"
        assert cached[0]["running"] == 0

    # === Samples ===

    def test_append_and_query_samples(self, store):
        base = datetime(2026, 1, 1, 12, 0)
        samples = [make_sample(rx=i, timestamp=base + timedelta(seconds=i)) for i in range(5)]

        assert store.append_samples("dev-1", samples) == 5
        assert store.append_samples("dev-1", []) == 0

        window = store.get_samples("dev-1", "ether1",
                                   since=base + timedelta(seconds=1),
                                   until=base + timedelta(seconds=3))
        assert [s.rx_bytes_per_second for s in window] == [1, 2, 3]
        assert window[0].timestamp == base + timedelta(seconds=1)

    def test_append_failure_raises_persistence_failure(self, store):
        with patch.object(store, "_connection", side_effect=sqlite3.OperationalError("disk I/O error")), \
                pytest.raises(PersistenceFailure):
            store.append_samples("dev-1", [make_sample()])

    def test_cleanup_old_samples(self, store):
        old = datetime.now() - timedelta(days=800)
        store.append_samples("dev-1", [make_sample(timestamp=old), make_sample()])

        assert store.cleanup_old_samples(keep_days=730) == 1
        assert len(store.get_samples("dev-1")) == 1

    # === Alerts ===

    def test_create_alert_sets_id(self, store):
        alert = store.create_alert(_alert())
        assert alert.id is not None
        assert store.get_alert(alert.id).message == "low"

    def test_only_one_open_alert_per_interface(self, store):
        assert store.create_alert(_alert()) is not None
        assert store.create_alert(_alert()) is None
        # Other interface and the device itself are separate keys
        assert store.create_alert(_alert(interface_name="ether2")) is not None
        assert store.create_alert(_alert(interface_name=None)) is not None
        assert store.create_alert(_alert(interface_name=None)) is None

    def test_acknowledged_alert_frees_the_key(self, store):
        first = store.create_alert(_alert())
        assert store.acknowledge_alert(first.id, "alice") is True

        second = store.create_alert(_alert())
        assert second is not None
        assert second.id != first.id

    def test_acknowledge_twice(self, store):
        alert = store.create_alert(_alert())
        assert store.acknowledge_alert(alert.id, "system") is True
        assert store.acknowledge_alert(alert.id, "alice") is False

        loaded = store.get_alert(alert.id)
        assert loaded.acknowledged is True
        assert loaded.acknowledged_by == "system"
        assert loaded.acknowledged_at is not None

    def test_get_open_alert(self, store):
        alert = store.create_alert(_alert(interface_name=None))
        assert store.get_open_alert("dev-1").id == alert.id
        assert store.get_open_alert("dev-1", "ether1") is None

    def test_get_open_alert_failure_raises(self, store):
        with patch.object(store, "_connection", side_effect=sqlite3.OperationalError("locked")), \
                pytest.raises(PersistenceFailure):
            store.get_open_alert("dev-1")

    def test_list_alerts_filters(self, store):
        a = store.create_alert(_alert())
        store.create_alert(_alert(interface_name="ether2"))
        store.acknowledge_alert(a.id, "bob")

        assert len(store.list_alerts("dev-1")) == 2
        assert [x.interface_name for x in store.list_alerts(acknowledged=False)] == ["ether2"]

    def test_record_notifications(self, store):
        alert = store.create_alert(_alert())
        store.record_notification(alert.id, "user-1", "email", True)
        store.record_notification(alert.id, "user-1", "popup", False, "offline")

        rows = store.get_notifications(alert.id)
        assert [(r["channel"], r["delivered"]) for r in rows] == [("email", 1), ("popup", 0)]
        assert rows[1]["error"] == "offline"

    # === Maintenance ===

    def test_backup(self, store, sample_device):
        store.save_device(sample_device)
        path = store.backup()

        assert path.exists()
        assert path.parent.name == "backups"

    def test_database_stats(self, store, sample_device):
        store.save_device(sample_device)
        stats = store.get_database_stats()
        assert stats["devices"] == 1
        assert stats["file_size_bytes"] > 0
