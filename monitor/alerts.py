"""Threshold and reachability alert engine.

One evaluation pass runs every 60 seconds on a single thread:

- Every device: a strike when ``reachable`` is false, or when the device
  has monitored interfaces and its last stats fetch failed. Three
  consecutive strikes raise one critical connectivity alert. The first
  healthy pass acknowledges the open alert as "system".
- Every enabled monitored interface: a strike on the link counter when the
  router reports the port not running, otherwise a strike on the traffic
  counter when the latest RX rate is below its minimum threshold. Three
  consecutive strikes raise one port-down or traffic alert. The port coming
  back up, or traffic above the threshold, acknowledges it as "system".

After an alert is created, or an operator acknowledges it, its counters
restart at zero. While an alert is open for a (device, interface) pair,
further strikes create nothing.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from config import ALERTS, INTERVALS, THRESHOLDS, LogContext, get_logger
from config.exceptions import RouterMonitorError
from monitor.models import (
    Alert,
    AlertKind,
    AlertSeverity,
    Device,
    MonitoredInterface,
    Sample,
)
from monitor.traffic import RealtimeTrafficStore
from monitor.utils import format_rate

logger = get_logger(__name__)

# (device_id, None) for the device, (device_id, interface) for traffic,
# (device_id, interface, "link") for port state
CounterKey = Tuple[Optional[str], ...]


def device_key(device_id: str) -> CounterKey:
    return (device_id, None)


def traffic_key(device_id: str, interface_name: str) -> CounterKey:
    return (device_id, interface_name)


def link_key(device_id: str, interface_name: str) -> CounterKey:
    return (device_id, interface_name, "link")


class ViolationCounters:
    """Consecutive-violation counters keyed by ``CounterKey``.

    Touched only by the evaluation pass, so no locking.
    """

    def __init__(self):
        self._counts: Dict[CounterKey, int] = {}

    def increment(self, key: CounterKey) -> int:
        self._counts[key] = self._counts.get(key, 0) + 1
        return self._counts[key]

    def reset(self, key: CounterKey) -> None:
        self._counts.pop(key, None)

    def get(self, key: CounterKey) -> int:
        return self._counts.get(key, 0)

    def sweep(self, live_keys: Iterable[CounterKey]) -> int:
        """Drop counters whose device or interface is no longer configured."""
        live = set(live_keys)
        stale = [key for key in self._counts if key not in live]
        for key in stale:
            del self._counts[key]
        if stale:
            logger.debug(f"Swept {len(stale)} stale violation counters")
        return len(stale)

    def __len__(self) -> int:
        return len(self._counts)


def severity_for_shortfall(observed: float, threshold: float) -> AlertSeverity:
    """More than 50% below the threshold is critical, more than 25% a warning."""
    if threshold <= 0:
        return AlertSeverity.INFO
    percent_below = (threshold - observed) / threshold * 100
    if percent_below > THRESHOLDS.CRITICAL_PERCENT_BELOW:
        return AlertSeverity.CRITICAL
    if percent_below > THRESHOLDS.WARNING_PERCENT_BELOW:
        return AlertSeverity.WARNING
    return AlertSeverity.INFO


@dataclass
class EvaluationReport:
    """What one evaluation pass did."""
    created: List[Alert] = field(default_factory=list)
    auto_acknowledged: List[int] = field(default_factory=list)
    skipped_stale: int = 0
    errors: int = 0


class AlertEngine:
    """Hysteresis-gated, deduplicated alerting.

    Args:
        store: Alert/device/interface store (``SQLiteStore`` or compatible).
        buffer: Realtime buffer holding the latest samples.
        dispatcher: Receives every created alert; must not block.
        metrics: Optional metrics exporter.
        clock: Returns "now"; replaced in tests.
    """

    def __init__(self, store, buffer: RealtimeTrafficStore, dispatcher=None,
                 counters: Optional[ViolationCounters] = None, metrics=None,
                 violation_limit: int = THRESHOLDS.VIOLATION_LIMIT,
                 max_sample_age: float = INTERVALS.SAMPLE_MAX_AGE_SECONDS,
                 clock: Callable[[], datetime] = datetime.now):
        self._store = store
        self._buffer = buffer
        self._dispatcher = dispatcher
        self.counters = counters or ViolationCounters()
        self._metrics = metrics
        self._limit = violation_limit
        self._max_age = timedelta(seconds=max_sample_age)
        self._clock = clock

    def evaluate(self) -> EvaluationReport:
        """Run one evaluation pass over all devices and monitored interfaces."""
        report = EvaluationReport()
        live_keys: Set[CounterKey] = set()

        with LogContext(logger, "Alert evaluation"):
            devices = {d.id: d for d in self._store.get_all_devices()}
            # Read fresh every pass: thresholds and flags change at runtime
            interfaces = self._store.get_monitored_interfaces(enabled_only=True)
            fetched = {interface.device_id for interface in interfaces}

            for device in devices.values():
                live_keys.add(device_key(device.id))
                try:
                    self._evaluate_connectivity(device, device.id in fetched, report)
                except RouterMonitorError as e:
                    report.errors += 1
                    logger.error(f"Connectivity check for {device.display_name} failed: {e}")

            for interface in interfaces:
                device = devices.get(interface.device_id)
                if device is None:
                    continue
                live_keys.add(traffic_key(device.id, interface.interface_name))
                live_keys.add(link_key(device.id, interface.interface_name))
                try:
                    self._evaluate_interface(device, interface, report)
                except RouterMonitorError as e:
                    report.errors += 1
                    logger.error(
                        f"Threshold check for {device.name}/{interface.interface_name} failed: {e}"
                    )

            self.counters.sweep(live_keys)

        if report.created or report.auto_acknowledged:
            logger.info(
                f"Alert pass: {len(report.created)} created, "
                f"{len(report.auto_acknowledged)} auto-acknowledged"
            )
        return report

    # === Device connectivity ===

    def _evaluate_connectivity(self, device: Device, fetched: bool,
                               report: EvaluationReport) -> None:
        """Strike on an unreachable device, or on one whose stats fetch failed.

        ``connected`` is only meaningful for devices that are fetched, i.e.
        those with monitored interfaces; probe-only devices follow
        ``reachable`` alone.
        """
        key = device_key(device.id)
        fetch_failed = fetched and not device.connected

        if device.reachable and not fetch_failed:
            self.counters.reset(key)
            self._auto_acknowledge(device.id, None, AlertKind.CONNECTIVITY, report,
                                   f"{device.display_name} is reachable again")
            return

        strikes = self.counters.increment(key)
        reason = "unreachable" if not device.reachable else "not answering any protocol"
        logger.debug(f"{device.display_name} {reason} (check {strikes}/{self._limit})")
        if strikes < self._limit:
            return

        open_alert = self._store.get_open_alert(device.id, None)
        if open_alert is not None:
            logger.debug(
                f"{device.display_name} still {reason}, alert #{open_alert.id} already open"
            )
            return

        if not device.reachable:
            message = f"Router is UNREACHABLE - Cannot connect to {device.name} ({device.address})"
        else:
            message = (
                f"Router is NOT RESPONDING - {device.name} ({device.address}) accepts "
                f"connections but returned no interface statistics"
            )
        alert = Alert(
            device_id=device.id,
            user_id=device.owner_id,
            severity=AlertSeverity(ALERTS.CONNECTIVITY_SEVERITY),
            kind=AlertKind.CONNECTIVITY,
            message=message,
            created_at=self._clock(),
        )
        self._raise(alert, device, None, key, report)

    # === Interfaces ===

    def _latest_fresh_sample(self, device: Device, interface: MonitoredInterface) -> Optional[Sample]:
        sample = self._buffer.get_latest(device.id, interface.interface_name)
        if sample is None or self._clock() - sample.timestamp > self._max_age:
            return None
        return sample

    def _evaluate_interface(self, device: Device, interface: MonitoredInterface,
                            report: EvaluationReport) -> None:
        name = interface.interface_name
        sample = self._latest_fresh_sample(device, interface)

        if sample is None:
            # No fresh data: the streak neither grows nor breaks. A device
            # that stopped answering is counted by the connectivity check.
            report.skipped_stale += 1
            logger.debug(f"No fresh sample for {device.name}/{name}")
            return

        if not sample.running:
            # A down link carries no traffic; only the link alert applies
            self.counters.reset(traffic_key(device.id, name))
            self._evaluate_link_down(device, interface, sample, report)
            return

        self.counters.reset(link_key(device.id, name))
        self._auto_acknowledge(device.id, name, AlertKind.PORT_DOWN, report,
                               f"port {device.name}/{name} came back up")
        self._evaluate_traffic(device, interface, sample, report)

    def _evaluate_link_down(self, device: Device, interface: MonitoredInterface,
                            sample: Sample, report: EvaluationReport) -> None:
        name = interface.interface_name
        key = link_key(device.id, name)
        strikes = self.counters.increment(key)
        logger.debug(f"{device.name}/{name} is down (check {strikes}/{self._limit})")
        if strikes < self._limit:
            return

        open_alert = self._store.get_open_alert(device.id, name)
        if open_alert is not None:
            if open_alert.kind == AlertKind.PORT_DOWN:
                logger.debug(f"{device.name}/{name} still down, alert #{open_alert.id} already open")
                return
            # One open alert per interface: the link alert replaces a traffic alert
            self._close(open_alert, report, f"superseded, {device.name}/{name} is down")

        alert = Alert(
            device_id=device.id,
            user_id=device.owner_id,
            interface_id=interface.id,
            interface_name=name,
            interface_comment=sample.comment,
            severity=AlertSeverity(ALERTS.PORT_DOWN_SEVERITY),
            kind=AlertKind.PORT_DOWN,
            message=f"Port {name} is DOWN on {device.name}",
            observed_value=sample.rx_bytes_per_second,
            threshold=interface.min_threshold_bps,
            created_at=self._clock(),
        )
        self._raise(alert, device, interface, key, report)

    def _evaluate_traffic(self, device: Device, interface: MonitoredInterface,
                          sample: Sample, report: EvaluationReport) -> None:
        name = interface.interface_name
        key = traffic_key(device.id, name)
        observed = sample.rx_bytes_per_second
        threshold = interface.min_threshold_bps

        if observed >= threshold:
            self.counters.reset(key)
            self._auto_acknowledge(device.id, name, AlertKind.TRAFFIC, report,
                                   f"traffic on {device.name}/{name} recovered")
            return

        strikes = self.counters.increment(key)
        logger.debug(
            f"{device.name}/{name}: RX {format_rate(observed)} "
            f"below {format_rate(threshold)} (check {strikes}/{self._limit})"
        )
        if strikes < self._limit:
            return

        open_alert = self._store.get_open_alert(device.id, name)
        if open_alert is not None:
            logger.debug(
                f"{device.name}/{name} still below threshold, alert #{open_alert.id} already open"
            )
            return

        alert = Alert(
            device_id=device.id,
            user_id=device.owner_id,
            interface_id=interface.id,
            interface_name=name,
            interface_comment=sample.comment,
            severity=interface.severity or severity_for_shortfall(observed, threshold),
            kind=AlertKind.TRAFFIC,
            message=(
                f"RX traffic on {name} at {device.name} is below threshold: "
                f"{format_rate(observed)} < {format_rate(threshold)}"
            ),
            observed_value=observed,
            threshold=threshold,
            created_at=self._clock(),
        )
        self._raise(alert, device, interface, key, report)

    # === Shared ===

    def _raise(self, alert: Alert, device: Device, interface: Optional[MonitoredInterface],
               key: CounterKey, report: EvaluationReport) -> None:
        stored = self._store.create_alert(alert)
        if stored is None:
            # Lost a race with the unique index: an alert is already open
            return

        self.counters.reset(key)
        report.created.append(stored)
        logger.warning(f"Alert #{stored.id} [{stored.severity.value}]: {stored.message}")

        if self._metrics is not None:
            self._metrics.record_alert(stored.kind.value, stored.severity.value)
        if self._dispatcher is not None:
            try:
                self._dispatcher.dispatch(stored, device, interface)
            except Exception as e:
                logger.error(f"Could not queue notifications for alert #{stored.id}: {e}")

    def _close(self, alert: Alert, report: EvaluationReport, reason: str) -> None:
        if self._store.acknowledge_alert(alert.id, ALERTS.SYSTEM_ACTOR, self._clock()):
            report.auto_acknowledged.append(alert.id)
            logger.info(f"Auto-acknowledged alert #{alert.id}: {reason}")

    def _auto_acknowledge(self, device_id: str, interface_name: Optional[str],
                          kind: AlertKind, report: EvaluationReport, reason: str) -> None:
        open_alert = self._store.get_open_alert(device_id, interface_name)
        if open_alert is not None and open_alert.kind == kind:
            self._close(open_alert, report, reason)

    def acknowledge(self, alert_id: int, actor: str) -> bool:
        """Operator acknowledgment.

        The alert's counters restart, so a violation that persists raises a
        new alert only after another full streak.
        """
        alert = self._store.get_alert(alert_id)
        if alert is None or alert.acknowledged:
            return False
        if not self._store.acknowledge_alert(alert_id, actor, self._clock()):
            return False

        if alert.interface_name is None:
            self.counters.reset(device_key(alert.device_id))
        else:
            self.counters.reset(traffic_key(alert.device_id, alert.interface_name))
            self.counters.reset(link_key(alert.device_id, alert.interface_name))
        logger.info(f"Alert #{alert_id} acknowledged by {actor}")
        return True
