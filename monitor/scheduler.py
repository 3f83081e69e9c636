"""Poll cycle executor.

Each cycle fans out one task per device onto a thread pool:

    IDLE -> SELECTING_METHOD -> FETCHING -> SUCCESS | FAILURE -> IDLE

Devices with monitored interfaces are probed and fetched; devices without
are only probed. Tasks never touch shared state: they return a
``PollResult`` and the scheduler applies all results itself, so device
state and the ring buffer have a single writer. A task that runs past the
per-device deadline is abandoned and counted as a failure for that device
only; its late result is discarded.

The realtime tick does the same for devices someone is watching, once a
second, without probing.
"""
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Set

from app.events import EventType
from config import INTERVALS, THRESHOLDS, LogContext, get_logger
from config.exceptions import RouterMonitorError
from monitor.connection import ConnectionSelector
from monitor.models import ConnectionMethod, Device, InterfaceStats, Sample
from monitor.reachability import ReachabilityProber
from monitor.traffic import RealtimeTrafficStore

logger = get_logger(__name__)

# How often the join loop wakes up to check per-device deadlines
JOIN_STEP_SECONDS = 0.25


class PollPhase(Enum):
    """Where one device is within the current cycle."""
    IDLE = "idle"
    SELECTING_METHOD = "selecting_method"
    FETCHING = "fetching"
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass
class PollResult:
    """Structured outcome of one device's poll."""
    device_id: str
    success: bool
    reachable: bool
    fetched: bool
    method: ConnectionMethod = ConnectionMethod.NONE
    error_category: Optional[str] = None
    stats: List[InterfaceStats] = field(default_factory=list)
    duration: float = 0.0
    timed_out: bool = False


@dataclass
class SchedulerState:
    """Mutable scheduler state shared with poll tasks by reference.

    Tasks only write their own device's phase and start time.
    """
    phases: Dict[str, PollPhase] = field(default_factory=dict)
    started: Dict[str, float] = field(default_factory=dict)
    last_results: Dict[str, PollResult] = field(default_factory=dict)
    realtime_subscribers: Dict[str, Set[str]] = field(default_factory=dict)
    cycles: int = 0
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def set_phase(self, device_id: str, phase: PollPhase) -> None:
        with self.lock:
            self.phases[device_id] = phase

    def phase(self, device_id: str) -> PollPhase:
        with self.lock:
            return self.phases.get(device_id, PollPhase.IDLE)

    def mark_started(self, device_id: str) -> None:
        with self.lock:
            self.started[device_id] = time.monotonic()

    def started_at(self, device_id: str) -> Optional[float]:
        with self.lock:
            return self.started.get(device_id)

    def watched_devices(self) -> List[str]:
        with self.lock:
            return [d for d, subs in self.realtime_subscribers.items() if subs]


class PollScheduler:
    """Runs poll cycles and realtime ticks and applies their results.

    Args:
        store: Device/interface store (``SQLiteStore`` or compatible).
        selector: Picks and runs a protocol backend per device.
        prober: TCP reachability prober.
        buffer: Realtime ring buffer (this scheduler is its only writer).
        bus: Optional event bus for POLL_COMPLETED / REALTIME_SAMPLES.
        metrics: Optional metrics exporter.
    """

    def __init__(self, store, selector: ConnectionSelector, prober: ReachabilityProber,
                 buffer: RealtimeTrafficStore, bus=None, metrics=None,
                 max_workers: int = THRESHOLDS.MAX_POLL_WORKERS,
                 device_deadline: float = INTERVALS.DEVICE_DEADLINE_SECONDS,
                 realtime_deadline: float = INTERVALS.REALTIME_DEADLINE_SECONDS):
        self._store = store
        self._selector = selector
        self._prober = prober
        self._buffer = buffer
        self._bus = bus
        self._metrics = metrics
        self._device_deadline = device_deadline
        self._realtime_deadline = realtime_deadline
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="poll")
        self._apply_lock = threading.Lock()
        self.state = SchedulerState()

    # === Poll tasks (worker threads) ===

    def _poll_device(self, device: Device, fetch: bool, probe: bool = True) -> PollResult:
        """Probe and/or fetch one device. Never raises."""
        state = self.state
        state.mark_started(device.id)
        start = time.monotonic()
        result = PollResult(device_id=device.id, success=False, reachable=False, fetched=fetch)

        try:
            if probe:
                result.reachable = self._prober.is_reachable(device)

            if fetch:
                state.set_phase(device.id, PollPhase.SELECTING_METHOD)
                if not self._selector.attempt_order(device):
                    result.error_category = "no_method"
                else:
                    state.set_phase(device.id, PollPhase.FETCHING)
                    selection = self._selector.select(device)
                    result.success = selection.success
                    result.method = selection.method
                    result.stats = selection.stats
                    result.error_category = selection.error_category
                    # An answered protocol proves reachability (covers SNMP-only devices)
                    result.reachable = result.reachable or selection.success
            else:
                result.success = result.reachable
        except Exception as e:
            result.success = False
            result.error_category = "unexpected"
            logger.error(f"Poll task for {device.display_name} crashed: {e}", exc_info=True)

        result.duration = time.monotonic() - start
        state.set_phase(device.id, PollPhase.SUCCESS if result.success else PollPhase.FAILURE)
        return result

    def _run_tasks(self, devices: List[Device], fetch_ids: Set[str], probe: bool,
                   deadline: float) -> List[PollResult]:
        """Fan out one task per device and join with per-device deadlines."""
        pending: Dict[Future, Device] = {}
        for device in devices:
            self.state.set_phase(device.id, PollPhase.IDLE)
            with self.state.lock:
                self.state.started.pop(device.id, None)
            # Tasks get a private copy; the original is updated only in _apply
            future = self._executor.submit(
                self._poll_device, replace(device), device.id in fetch_ids, probe
            )
            pending[future] = device

        results: List[PollResult] = []
        while pending:
            done, _ = wait(list(pending), timeout=JOIN_STEP_SECONDS, return_when=FIRST_COMPLETED)
            for future in done:
                device = pending.pop(future)
                try:
                    results.append(future.result())
                except Exception as e:
                    logger.error(f"Poll task for {device.display_name} failed: {e}")
                    results.append(PollResult(
                        device_id=device.id, success=False, reachable=False,
                        fetched=device.id in fetch_ids, error_category="unexpected",
                    ))

            now = time.monotonic()
            for future, device in list(pending.items()):
                started = self.state.started_at(device.id)
                # Queued tasks have not started yet; their deadline has not begun
                if started is None or now - started <= deadline:
                    continue
                pending.pop(future)
                self.state.set_phase(device.id, PollPhase.FAILURE)
                logger.warning(
                    f"Abandoning poll of {device.display_name} after {deadline:.0f}s deadline"
                )
                results.append(PollResult(
                    device_id=device.id, success=False, reachable=False,
                    fetched=device.id in fetch_ids, error_category="deadline",
                    duration=now - started, timed_out=True,
                ))

        return results

    # === Applying results (scheduler thread) ===

    def _samples_for(self, result: PollResult, timestamp: datetime,
                     names: Optional[Set[str]]) -> List[Sample]:
        return [
            Sample.from_stats(result.device_id, stats, timestamp)
            for stats in result.stats
            if names is None or stats.name in names
        ]

    def _apply_cycle(self, devices: Dict[str, Device], results: List[PollResult],
                     monitored: Dict[str, Set[str]]) -> None:
        with self._apply_lock:
            timestamp = datetime.now()
            for result in results:
                device = devices[result.device_id]
                self._apply_device_state(device, result, always_write=True)

                if result.success and result.stats:
                    try:
                        self._store.upsert_router_interfaces(device.id, result.stats, timestamp)
                    except RouterMonitorError as e:
                        logger.error(f"Interface cache update failed for {device.name}: {e}")

                    names = monitored.get(device.id, set())
                    for stats in result.stats:
                        if stats.name not in names:
                            continue
                        if self._metrics is not None:
                            self._metrics.record_rates(
                                device.id, stats.name,
                                stats.rx_bytes_per_second, stats.tx_bytes_per_second,
                            )
                    missing = names - {s.name for s in result.stats}
                    if missing:
                        logger.warning(
                            f"Monitored interfaces not reported by {device.name}: "
                            f"{', '.join(sorted(missing))}"
                        )
                    self._buffer.add_many(self._samples_for(result, timestamp, names))

                if self._metrics is not None:
                    self._metrics.record_poll(result.success, result.method.value, result.duration)
                self.state.last_results[device.id] = result

    def _apply_device_state(self, device: Device, result: PollResult,
                            always_write: bool) -> None:
        connected = result.success if result.fetched else device.connected
        # A failed poll keeps the cached method so the next cycle retries it first
        method = result.method if result.success else device.last_successful_method
        reachable = result.reachable
        last_connected = datetime.now() if result.fetched and result.success else None

        changed = (
            connected != device.connected
            or reachable != device.reachable
            or method != device.last_successful_method
        )
        if not (changed or always_write):
            return

        try:
            self._store.update_device_state(device.id, connected, reachable, method, last_connected)
        except RouterMonitorError as e:
            logger.error(f"Could not save state of {device.display_name}: {e}")
            return

        if changed:
            logger.info(
                f"{device.display_name}: connected={connected} reachable={reachable} "
                f"method={method.value}"
            )
            if self._bus is not None:
                self._bus.publish(EventType.DEVICE_STATE_CHANGED, {
                    "device_id": device.id, "connected": connected,
                    "reachable": reachable, "method": method.value,
                }, source="scheduler")

        device.connected = connected
        device.reachable = reachable
        device.last_successful_method = method

    # === Public API ===

    def run_cycle(self) -> List[PollResult]:
        """Run one persisted poll cycle over every device."""
        with LogContext(logger, "Poll cycle") as ctx:
            devices = {d.id: d for d in self._store.get_all_devices()}
            monitored: Dict[str, Set[str]] = {}
            for interface in self._store.get_monitored_interfaces(enabled_only=True):
                monitored.setdefault(interface.device_id, set()).add(interface.interface_name)
            fetch_ids = {device_id for device_id in monitored if device_id in devices}

            logger.info(
                f"Polling {len(fetch_ids)} devices with monitored interfaces + "
                f"{len(devices) - len(fetch_ids)} for reachability only"
            )
            results = self._run_tasks(
                list(devices.values()), fetch_ids, probe=True, deadline=self._device_deadline
            )
            self._apply_cycle(devices, results, monitored)
            self.state.cycles += 1

        succeeded = sum(1 for r in results if r.success)
        if self._metrics is not None:
            self._metrics.record_device_counts(
                connected=sum(1 for d in devices.values() if d.connected),
                reachable=sum(1 for d in devices.values() if d.reachable),
            )
        if self._bus is not None:
            self._bus.publish(EventType.POLL_COMPLETED, {
                "succeeded": succeeded,
                "failed": len(results) - succeeded,
                "duration_ms": ctx.duration_ms,
            }, source="scheduler")
        return results

    def run_realtime_tick(self) -> List[PollResult]:
        """Fetch every watched device once and buffer all of its interfaces."""
        watched = self.state.watched_devices()
        if not watched:
            return []

        devices = {}
        for device_id in watched:
            device = self._store.get_device(device_id)
            if device is not None:
                devices[device_id] = device
        if not devices:
            return []

        results = self._run_tasks(
            list(devices.values()), set(devices), probe=False, deadline=self._realtime_deadline
        )

        with self._apply_lock:
            timestamp = datetime.now()
            for result in results:
                if not result.success:
                    logger.debug(f"Realtime poll of {devices[result.device_id].name} failed")
                    continue
                self._apply_device_state(devices[result.device_id], result, always_write=False)
                samples = self._samples_for(result, timestamp, None)
                self._buffer.add_many(samples)
                if self._bus is not None:
                    self._bus.publish(EventType.REALTIME_SAMPLES, {
                        "device_id": result.device_id,
                        "samples": [s.to_dict() for s in samples],
                    }, source="scheduler")
        return results

    def start_realtime(self, device_id: str, subscriber: str) -> bool:
        """Register a live viewer. Returns True if this started polling the device."""
        with self.state.lock:
            subscribers = self.state.realtime_subscribers.setdefault(device_id, set())
            first = not subscribers
            subscribers.add(subscriber)
        if first:
            logger.info(f"Realtime polling started for device {device_id}")
        return first

    def stop_realtime(self, device_id: str, subscriber: str) -> bool:
        """Unregister a live viewer. Returns True if polling stopped for the device."""
        with self.state.lock:
            subscribers = self.state.realtime_subscribers.get(device_id)
            if not subscribers:
                return False
            subscribers.discard(subscriber)
            last = not subscribers
            if last:
                del self.state.realtime_subscribers[device_id]
        if last:
            logger.info(f"Realtime polling stopped for device {device_id}")
        return last

    def forget_device(self, device_id: str) -> None:
        """Drop everything held in memory for a removed device."""
        with self.state.lock:
            self.state.realtime_subscribers.pop(device_id, None)
            self.state.phases.pop(device_id, None)
            self.state.started.pop(device_id, None)
            self.state.last_results.pop(device_id, None)
        self._buffer.remove_device(device_id)

    def shutdown(self) -> None:
        """Stop accepting work; running tasks finish on their own timeouts."""
        self._executor.shutdown(wait=False, cancel_futures=True)
