"""Service controller for Router Monitor.

Owns the background timers and coordinates the monitoring components.
Uses dependency injection for testability.

Usage:
    from app.controller import MonitorController
    from app.dependencies import create_dependencies

    deps = create_dependencies()
    controller = MonitorController(deps)
    controller.start()
"""
from typing import Dict, List, Optional

from app.dependencies import AppDependencies
from app.events import EventBus, EventType
from app.timer import IntervalTimer
from config import INTERVALS, get_logger, log_exception
from monitor.alerts import EvaluationReport
from monitor.flusher import FlushReport
from monitor.models import Sample
from monitor.scheduler import PollResult

logger = get_logger(__name__)


class MonitorController:
    """Central controller that runs the monitoring jobs.

    Five timers drive the service:
    - poll: persisted poll cycle over every device
    - realtime: 1 Hz polling of devices someone is watching
    - alerts: threshold and connectivity evaluation, then a metrics push
    - flush: ring buffer to SQLite
    - cleanup: retention sweep and database backup

    Every timer skips a tick while its previous run is still going.

    Attributes:
        deps: The dependency container with all components.
        event_bus: Event bus for publishing state changes.
    """

    def __init__(self, deps: AppDependencies, event_bus: Optional[EventBus] = None):
        """Initialize the controller with dependencies.

        Args:
            deps: AppDependencies container with all required components.
            event_bus: Optional event bus (defaults to the container's).
        """
        self.deps = deps
        self.event_bus = event_bus or deps.event_bus
        self._running = False

        intervals = deps.settings.get_intervals()
        self._timers: Dict[str, IntervalTimer] = {
            "poll": IntervalTimer(
                self.run_poll_cycle, intervals["poll"], name="poll",
                initial_delay=INTERVALS.STARTUP_DELAY_SECONDS,
            ),
            "realtime": IntervalTimer(
                self.run_realtime_tick, intervals["realtime"], name="realtime",
            ),
            "alerts": IntervalTimer(
                self.run_alert_pass, intervals["alert_check"], name="alerts",
                # Let the first poll cycle land before judging anything
                initial_delay=INTERVALS.STARTUP_DELAY_SECONDS + intervals["poll"],
            ),
            "flush": IntervalTimer(self.run_flush, intervals["flush"], name="flush"),
            "cleanup": IntervalTimer(
                self.run_cleanup, INTERVALS.CLEANUP_SECONDS, name="cleanup",
                initial_delay=INTERVALS.CLEANUP_SECONDS,
            ),
        }

        logger.info("MonitorController initialized")

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Start every background timer."""
        if self._running:
            return
        logger.info("Starting MonitorController...")
        self._running = True
        self.event_bus.publish(EventType.SERVICE_STARTING, source="controller")

        port = self.deps.settings.get_metrics_port()
        if port:
            self.deps.metrics.start_http(port)

        for timer in self._timers.values():
            timer.start()
        logger.info(f"MonitorController started ({len(self._timers)} timers)")

    def stop(self) -> None:
        """Stop the timers and persist whatever is still buffered."""
        if not self._running:
            return
        logger.info("Stopping MonitorController...")
        self._running = False

        for timer in self._timers.values():
            timer.stop()
        self.deps.scheduler.shutdown()

        # Final flush so a clean shutdown loses nothing
        self.run_flush()

        self.event_bus.publish(EventType.SERVICE_STOPPING, source="controller")
        self.event_bus.wait_until_idle()
        self.event_bus.shutdown()
        logger.info("MonitorController stopped")

    # === Jobs ===

    def run_poll_cycle(self) -> List[PollResult]:
        try:
            return self.deps.scheduler.run_cycle()
        except Exception as e:
            log_exception(logger, "Poll cycle error", e)
            return []

    def run_realtime_tick(self) -> List[PollResult]:
        try:
            return self.deps.scheduler.run_realtime_tick()
        except Exception as e:
            log_exception(logger, "Realtime tick error", e)
            return []

    def run_alert_pass(self) -> Optional[EvaluationReport]:
        """Evaluate alerts, then push metrics if a Pushgateway is configured."""
        report = None
        try:
            report = self.deps.alert_engine.evaluate()
        except Exception as e:
            log_exception(logger, "Alert evaluation error", e)

        gateway = self.deps.settings.get_pushgateway_url()
        if gateway:
            self.deps.metrics.push(gateway)
        return report

    def run_flush(self) -> Optional[FlushReport]:
        try:
            report = self.deps.flusher.flush()
        except Exception as e:
            log_exception(logger, "Flush error", e)
            return None

        self.event_bus.publish(EventType.FLUSH_COMPLETED, {
            "written": report.total_written,
            "failed": list(report.failed),
        }, source="flusher")
        return report

    def run_cleanup(self) -> int:
        """Delete samples past retention and take a database backup."""
        try:
            deleted = self.deps.store.cleanup_old_samples(self.deps.settings.get_retention_days())
            self.deps.store.backup()
            return deleted
        except Exception as e:
            log_exception(logger, "Cleanup error", e)
            return 0

    def run_once(self) -> Dict[str, object]:
        """Run one poll cycle, one alert pass and one flush, in that order."""
        results = self.run_poll_cycle()
        report = self.run_alert_pass()
        flushed = self.run_flush()
        return {
            "polled": len(results),
            "connected": sum(1 for r in results if r.success),
            "alerts_created": len(report.created) if report else 0,
            "samples_flushed": flushed.total_written if flushed else 0,
        }

    # === Actions ===

    def acknowledge_alert(self, alert_id: int, actor: str) -> bool:
        """Operator acknowledgment of an open alert."""
        if not self.deps.alert_engine.acknowledge(alert_id, actor):
            return False
        self.event_bus.publish(EventType.ALERT_ACKNOWLEDGED, {
            "alert_id": alert_id,
            "actor": actor,
        }, source="controller")
        return True

    def watch_device(self, device_id: str, viewer: str) -> bool:
        """Start realtime polling of a device for one viewer."""
        return self.deps.scheduler.start_realtime(device_id, viewer)

    def unwatch_device(self, device_id: str, viewer: str) -> bool:
        return self.deps.scheduler.stop_realtime(device_id, viewer)

    def get_live_samples(self, device_id: str, interface_name: str,
                         window: Optional[float] = None) -> List[Sample]:
        return self.deps.buffer.get_live_samples(device_id, interface_name, window)

    def remove_device(self, device_id: str) -> bool:
        """Delete a device and everything held in memory for it."""
        device = self.deps.store.get_device(device_id)
        if device is None:
            return False
        self.deps.scheduler.forget_device(device_id)
        self.deps.flusher.forget_device(device_id)
        self.deps.store.delete_device(device_id)
        logger.info(f"Device {device.display_name} removed")
        return True

    def set_interval(self, name: str, seconds: float) -> None:
        """Change a job interval; takes effect from the next tick."""
        self.deps.settings.set_interval(name, seconds)
        timer_name = "alerts" if name == "alert_check" else name
        self._timers[timer_name].interval = seconds
