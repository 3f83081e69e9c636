"""Tests for the poll scheduler."""

import time

import pytest

from app.events import EventType
from monitor.connection import ConnectionSelector
from monitor.models import ConnectionMethod, Device, InterfaceStats, MonitoredInterface
from monitor.scheduler import PollPhase, PollScheduler
from monitor.traffic import RealtimeTrafficStore
from tests.mocks import MockBackend, MockProber

STATS = [
    InterfaceStats(name="ether1", rx_bytes_per_second=2_000_000, tx_bytes_per_second=10),
    InterfaceStats(name="ether2", rx_bytes_per_second=5_000, tx_bytes_per_second=10),
]


@pytest.fixture
def native():
    return MockBackend(ConnectionMethod.NATIVE)


@pytest.fixture
def rest():
    return MockBackend(ConnectionMethod.REST)


@pytest.fixture
def prober():
    return MockProber()


@pytest.fixture
def buffer():
    return RealtimeTrafficStore()


@pytest.fixture
def scheduler(store, native, rest, prober, buffer, mock_event_bus):
    selector = ConnectionSelector({ConnectionMethod.NATIVE: native, ConnectionMethod.REST: rest})
    sched = PollScheduler(store, selector, prober, buffer, bus=mock_event_bus,
                          max_workers=4, device_deadline=5, realtime_deadline=5)
    yield sched
    sched.shutdown()


def _add_device(store, device_id, address, monitored=("ether1",), **kwargs) -> Device:
    device = Device(id=device_id, name=f"router-{device_id}", address=address,
                    username="admin", secret="pw", **kwargs)
    store.save_device(device)
    for name in monitored:
        store.save_interface(MonitoredInterface(
            id=f"{device_id}-{name}", device_id=device_id, interface_name=name,
            min_threshold_bps=1_000_000,
        ))
    return device


def _published(bus, event_type):
    return [c.args[1] for c in bus.publish.call_args_list if c.args[0] == event_type]


class TestPollCycle:
    """Tests for PollScheduler.run_cycle."""

    def test_device_connects_within_one_cycle(self, scheduler, store, native, prober):
        _add_device(store, "a", "192.0.2.1")
        native.set_stats("192.0.2.1", STATS)
        prober.reachable.add("192.0.2.1")

        results = scheduler.run_cycle()

        assert len(results) == 1 and results[0].success
        device = store.get_device("a")
        assert device.connected is True
        assert device.reachable is True
        assert device.last_successful_method == ConnectionMethod.NATIVE
        assert device.last_connected is not None
        assert scheduler.state.phase("a") == PollPhase.SUCCESS

    def test_only_monitored_interfaces_are_buffered(self, scheduler, store, native, buffer):
        _add_device(store, "a", "192.0.2.1", monitored=("ether1",))
        native.set_stats("192.0.2.1", STATS)

        scheduler.run_cycle()

        assert buffer.interface_names("a") == ["ether1"]
        assert buffer.get_latest("a", "ether1").rx_bytes_per_second == 2_000_000

    def test_router_interface_cache_gets_every_interface(self, scheduler, store, native):
        _add_device(store, "a", "192.0.2.1")
        native.set_stats("192.0.2.1", STATS)

        scheduler.run_cycle()

        names = [row["interface_name"] for row in store.get_router_interfaces("a")]
        assert names == ["ether1", "ether2"]

    def test_device_without_interfaces_is_probed_not_fetched(
            self, scheduler, store, native, prober):
        _add_device(store, "a", "192.0.2.1", monitored=())
        prober.reachable.add("192.0.2.1")

        results = scheduler.run_cycle()

        assert native.calls == []
        assert prober.calls == ["192.0.2.1"]
        assert results[0].fetched is False
        device = store.get_device("a")
        assert device.reachable is True
        assert device.connected is False

    def test_successful_fetch_implies_reachable(self, scheduler, store, native):
        # Prober says no (e.g. only SNMP answers) but the fetch works
        _add_device(store, "a", "192.0.2.1")
        native.set_stats("192.0.2.1", STATS)

        scheduler.run_cycle()

        assert store.get_device("a").reachable is True

    def test_failure_keeps_cached_method(self, scheduler, store, native, rest):
        _add_device(store, "a", "192.0.2.1", rest_enabled=True)
        rest.set_stats("192.0.2.1", STATS)
        scheduler.run_cycle()
        assert store.get_device("a").last_successful_method == ConnectionMethod.REST

        rest.set_error("192.0.2.1")
        native.set_error("192.0.2.1")
        results = scheduler.run_cycle()

        assert results[0].success is False
        assert results[0].error_category == "connectivity"
        device = store.get_device("a")
        assert device.connected is False
        assert device.last_successful_method == ConnectionMethod.REST

    def test_fallback_switches_method(self, scheduler, store, native, rest):
        _add_device(store, "a", "192.0.2.1", rest_enabled=True,
                    last_successful_method=ConnectionMethod.REST)
        rest.set_error("192.0.2.1")
        native.set_stats("192.0.2.1", STATS)

        scheduler.run_cycle()

        assert rest.calls == ["192.0.2.1"]
        assert store.get_device("a").last_successful_method == ConnectionMethod.NATIVE

    def test_device_without_enabled_method(self, scheduler, store):
        _add_device(store, "a", "192.0.2.1", native_enabled=False)

        results = scheduler.run_cycle()

        assert results[0].success is False
        assert results[0].error_category == "no_method"

    def test_failures_are_isolated(self, scheduler, store, native):
        _add_device(store, "a", "192.0.2.1")
        _add_device(store, "b", "192.0.2.2")
        native.set_stats("192.0.2.1", STATS)
        native.set_error("192.0.2.2")

        results = {r.device_id: r for r in scheduler.run_cycle()}

        assert results["a"].success is True
        assert results["b"].success is False
        assert store.get_device("a").connected is True

    @pytest.mark.slow
    def test_slow_device_is_abandoned_at_deadline(self, store, native, prober, buffer):
        selector = ConnectionSelector({ConnectionMethod.NATIVE: native})
        scheduler = PollScheduler(store, selector, prober, buffer,
                                  max_workers=4, device_deadline=0.3)
        _add_device(store, "fast", "192.0.2.1")
        _add_device(store, "slow", "192.0.2.2")
        native.set_stats("192.0.2.1", STATS)
        native.set_stats("192.0.2.2", STATS)
        native.set_delay("192.0.2.2", 3.0)

        start = time.monotonic()
        results = {r.device_id: r for r in scheduler.run_cycle()}
        elapsed = time.monotonic() - start
        scheduler.shutdown()

        assert elapsed < 2.5
        assert results["fast"].success is True
        assert results["slow"].timed_out is True
        assert results["slow"].error_category == "deadline"
        assert store.get_device("slow").connected is False
        assert buffer.interface_names("slow") == []

    def test_publishes_poll_completed(self, scheduler, store, native, mock_event_bus):
        _add_device(store, "a", "192.0.2.1")
        _add_device(store, "b", "192.0.2.2")
        native.set_stats("192.0.2.1", STATS)

        scheduler.run_cycle()

        payloads = _published(mock_event_bus, EventType.POLL_COMPLETED)
        assert len(payloads) == 1
        assert payloads[0]["succeeded"] == 1
        assert payloads[0]["failed"] == 1

    def test_state_change_event_only_on_change(self, scheduler, store, native, mock_event_bus):
        _add_device(store, "a", "192.0.2.1")
        native.set_stats("192.0.2.1", STATS)

        scheduler.run_cycle()
        scheduler.run_cycle()

        changes = _published(mock_event_bus, EventType.DEVICE_STATE_CHANGED)
        assert len(changes) == 1
        assert changes[0]["connected"] is True

    def test_samples_of_one_cycle_share_a_timestamp(self, scheduler, store, native, buffer):
        _add_device(store, "a", "192.0.2.1", monitored=("ether1", "ether2"))
        native.set_stats("192.0.2.1", STATS)

        scheduler.run_cycle()

        assert buffer.get_latest("a", "ether1").timestamp == buffer.get_latest("a", "ether2").timestamp

    def test_records_metrics(self, store, native, prober, buffer):
        from unittest.mock import MagicMock

        metrics = MagicMock()
        selector = ConnectionSelector({ConnectionMethod.NATIVE: native})
        scheduler = PollScheduler(store, selector, prober, buffer, metrics=metrics, max_workers=2)
        _add_device(store, "a", "192.0.2.1")
        native.set_stats("192.0.2.1", STATS)

        scheduler.run_cycle()
        scheduler.shutdown()

        metrics.record_poll.assert_called_once()
        metrics.record_rates.assert_called_once_with("a", "ether1", 2_000_000, 10)
        metrics.record_device_counts.assert_called_once_with(connected=1, reachable=1)


class TestRealtime:
    """Tests for realtime subscriptions and ticks."""

    def test_first_and_last_subscriber(self, scheduler):
        assert scheduler.start_realtime("a", "alice") is True
        assert scheduler.start_realtime("a", "bob") is False
        assert scheduler.stop_realtime("a", "alice") is False
        assert scheduler.stop_realtime("a", "bob") is True
        assert scheduler.stop_realtime("a", "bob") is False

    def test_tick_without_watchers_does_nothing(self, scheduler, store, native):
        _add_device(store, "a", "192.0.2.1")
        assert scheduler.run_realtime_tick() == []
        assert native.calls == []

    def test_tick_buffers_all_interfaces_of_watched_devices(
            self, scheduler, store, native, prober, buffer, mock_event_bus):
        _add_device(store, "a", "192.0.2.1", monitored=("ether1",))
        _add_device(store, "b", "192.0.2.2")
        native.set_stats("192.0.2.1", STATS)
        native.set_stats("192.0.2.2", STATS)
        scheduler.start_realtime("a", "alice")

        scheduler.run_realtime_tick()

        assert native.calls == ["192.0.2.1"]
        assert prober.calls == []
        assert buffer.interface_names("a") == ["ether1", "ether2"]
        assert buffer.interface_names("b") == []
        payloads = _published(mock_event_bus, EventType.REALTIME_SAMPLES)
        assert payloads[0]["device_id"] == "a"
        assert len(payloads[0]["samples"]) == 2

    def test_failed_tick_changes_nothing(self, scheduler, store, native, buffer):
        _add_device(store, "a", "192.0.2.1")
        native.set_error("192.0.2.1")
        scheduler.start_realtime("a", "alice")

        results = scheduler.run_realtime_tick()

        assert results[0].success is False
        assert len(buffer) == 0

    def test_forget_device(self, scheduler, store, native, buffer):
        _add_device(store, "a", "192.0.2.1")
        native.set_stats("192.0.2.1", STATS)
        scheduler.start_realtime("a", "alice")
        scheduler.run_cycle()

        scheduler.forget_device("a")

        assert buffer.device_ids() == []
        assert scheduler.state.watched_devices() == []
        assert "a" not in scheduler.state.last_results
