"""Tests for the SNMP backend.

The pysnmp walk is replaced by ``_walk`` stubs returning IF-MIB columns.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from config.exceptions import ConnectivityFailure, ProtocolError
from monitor.backend import CounterRateTracker, CounterReading
from monitor.models import Device
from monitor.snmp_client import OIDS, SnmpBackend

NAMES = {"1": "ether1", "2": "ether2", "3": ""}
STATUS = {"1": "1", "2": "2"}


@pytest.fixture
def snmp_device() -> Device:
    return Device(id="dev-3", name="switch", address="192.0.2.3",
                  native_enabled=False, snmp_enabled=True, snmp_version="2c")


def fake_walk(hc=None, legacy=None, hc_error=None):
    """Build a ``_walk`` replacement serving fixed tables."""
    def walk(device, oids):
        if oids == [OIDS["ifDescr"]]:
            return {OIDS["ifDescr"]: NAMES}
        if oids == [OIDS["ifDescr"], OIDS["ifOperStatus"]]:
            return {OIDS["ifDescr"]: NAMES, OIDS["ifOperStatus"]: STATUS}
        if oids == [OIDS["ifHCInOctets"], OIDS["ifHCOutOctets"]]:
            if hc_error:
                raise hc_error
            rx, tx = hc or ({}, {})
            return {OIDS["ifHCInOctets"]: rx, OIDS["ifHCOutOctets"]: tx}
        if oids == [OIDS["ifInOctets"], OIDS["ifOutOctets"]]:
            rx, tx = legacy or ({}, {})
            return {OIDS["ifInOctets"]: rx, OIDS["ifOutOctets"]: tx}
        raise AssertionError(f"unexpected walk {oids}")
    return walk


class TestSnmpBackend:
    """Tests for SnmpBackend table handling."""

    def test_mp_model(self, snmp_device):
        assert SnmpBackend._mp_model(snmp_device) == 1
        snmp_device.snmp_version = "1"
        assert SnmpBackend._mp_model(snmp_device) == 0

    def test_names_skip_empty_descriptions(self, snmp_device):
        backend = SnmpBackend()
        with patch.object(backend, "_walk", side_effect=fake_walk()):
            assert backend.fetch_interface_names(snmp_device) == ["ether1", "ether2"]

    def test_stats_use_hc_counters(self, snmp_device):
        tracker = CounterRateTracker()
        tracker.rates(snmp_device.address, [CounterReading("ether1", 0, 0),
                                            CounterReading("ether2", 0, 0)], now=0.0)
        backend = SnmpBackend(rate_tracker=tracker)
        hc = ({"1": "1000", "2": "0"}, {"1": "2000", "2": "0"})

        with patch.object(backend, "_walk", side_effect=fake_walk(hc=hc)), \
                patch.object(tracker, "rates", wraps=tracker.rates) as rates:
            stats = backend.fetch_interface_stats(snmp_device)

        readings = rates.call_args[0][1]
        by_name = {r.name: r for r in readings}
        assert by_name["ether1"].rx_bytes == 1000
        assert by_name["ether1"].tx_bytes == 2000
        assert by_name["ether1"].running is True
        assert by_name["ether2"].running is False
        assert [s.name for s in stats] == ["ether1", "ether2"]

    def test_falls_back_to_32bit_when_hc_empty(self, snmp_device):
        backend = SnmpBackend()
        legacy = ({"1": "10", "2": "20"}, {"1": "30", "2": "40"})
        with patch.object(backend, "_walk", side_effect=fake_walk(legacy=legacy)):
            stats = backend.fetch_interface_stats(snmp_device)
        assert len(stats) == 2

    def test_falls_back_to_32bit_on_hc_protocol_error(self, snmp_device):
        backend = SnmpBackend()
        legacy = ({"1": "10"}, {"1": "30"})
        walk = fake_walk(legacy=legacy, hc_error=ProtocolError("noSuchName", method="snmp"))
        with patch.object(backend, "_walk", side_effect=walk):
            stats = backend.fetch_interface_stats(snmp_device)
        assert [s.name for s in stats] == ["ether1"]

    def test_v1_skips_hc_columns(self, snmp_device):
        snmp_device.snmp_version = "1"
        backend = SnmpBackend()
        legacy = ({"1": "10"}, {"1": "30"})
        walk = fake_walk(legacy=legacy, hc_error=AssertionError("HC walked on v1"))
        with patch.object(backend, "_walk", side_effect=walk):
            assert len(backend.fetch_interface_stats(snmp_device)) == 1

    def test_hc_timeout_is_not_masked(self, snmp_device):
        backend = SnmpBackend()
        walk = fake_walk(hc_error=ConnectivityFailure("timed out", method="snmp"))
        with patch.object(backend, "_walk", side_effect=walk):
            with pytest.raises(ConnectivityFailure):
                backend.fetch_interface_stats(snmp_device)

    def test_non_numeric_counter_is_protocol_error(self, snmp_device):
        backend = SnmpBackend()
        hc = ({"1": "abc"}, {"1": "0"})
        with patch.object(backend, "_walk", side_effect=fake_walk(hc=hc)):
            with pytest.raises(ProtocolError):
                backend.fetch_interface_stats(snmp_device)

    def test_transport_error_becomes_connectivity_failure(self, snmp_device):
        backend = SnmpBackend(timeout=0.1, retries=0)

        async def broken(device, oids):
            raise OSError("no route to host")

        with patch.object(backend, "_walk_async", side_effect=broken):
            with pytest.raises(ConnectivityFailure):
                backend.fetch_interface_names(snmp_device)


class TestSnmpLiveness:
    """Tests for the sysUpTime GET used by the reachability probe."""

    @pytest.fixture
    def transport(self):
        with patch("monitor.snmp_client.SnmpEngine", MagicMock()), \
                patch("monitor.snmp_client.UdpTransportTarget.create", new=AsyncMock()) as create:
            yield create

    def test_answer_means_alive(self, snmp_device, transport):
        with patch("monitor.snmp_client.get_cmd",
                   new=AsyncMock(return_value=(None, 0, 0, []))) as get:
            assert SnmpBackend().is_alive(snmp_device, 2.0) is True

        assert get.call_args.kwargs["lookupMib"] is False
        transport.assert_called_once_with(("192.0.2.3", 161), timeout=2.0, retries=0)

    def test_timeout_indication_means_dead(self, snmp_device, transport):
        with patch("monitor.snmp_client.get_cmd",
                   new=AsyncMock(return_value=("No SNMP response received before timeout",
                                               0, 0, []))):
            assert SnmpBackend().is_alive(snmp_device, 2.0) is False

    def test_transport_error_means_dead(self, snmp_device):
        backend = SnmpBackend()

        async def broken(device, oid, timeout):
            raise OSError("no route to host")

        with patch.object(backend, "_get_async", side_effect=broken):
            assert backend.is_alive(snmp_device, 0.1) is False
