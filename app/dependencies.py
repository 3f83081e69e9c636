"""Dependency injection container for Router Monitor.

Provides a centralized way to create and wire the monitoring components,
making them easier to test and swap out.

Usage:
    from app.dependencies import create_dependencies

    # Create all dependencies
    deps = create_dependencies()

    # Access individual components
    deps.scheduler.run_cycle()
    deps.alert_engine.evaluate()
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from config import STORAGE, get_logger

logger = get_logger(__name__)


@dataclass
class AppDependencies:
    """Container for all service dependencies.

    Using a dataclass makes dependencies explicit and easy to mock in tests.
    Each field represents a component that can be injected.
    """

    # Storage components
    store: "SQLiteStore"
    settings: "SettingsManager"

    # Polling components
    selector: "ConnectionSelector"
    prober: "ReachabilityProber"
    scheduler: "PollScheduler"

    # Buffering and persistence
    buffer: "RealtimeTrafficStore"
    flusher: "PersistenceFlusher"

    # Alerting
    alert_engine: "AlertEngine"
    dispatcher: "NotificationDispatcher"
    realtime: "RealtimeChannel"

    # Metrics
    metrics: "MetricsExporter"

    # Event bus
    event_bus: "EventBus"

    def __post_init__(self):
        """Log dependency creation."""
        logger.debug("AppDependencies container created")


def create_dependencies(
    data_dir: Optional[Path] = None, event_bus: Optional["EventBus"] = None
) -> AppDependencies:
    """Create all service dependencies.

    Factory function that instantiates all required components
    and wires them together.

    Args:
        data_dir: Override the default data directory.
        event_bus: Provide an existing event bus, or one will be created.

    Returns:
        AppDependencies container with all components.
    """
    # Import here to avoid circular imports
    from app.events import EventBus
    from monitor.alerts import AlertEngine
    from monitor.backend import CounterRateTracker
    from monitor.connection import ConnectionSelector
    from monitor.flusher import PersistenceFlusher
    from monitor.metrics_exporter import MetricsExporter
    from monitor.models import ConnectionMethod
    from monitor.notifications import EmailSink, NotificationDispatcher, RealtimeChannel
    from monitor.reachability import ReachabilityProber
    from monitor.rest_client import RestApiBackend
    from monitor.routeros_api import NativeApiBackend
    from monitor.scheduler import PollScheduler
    from monitor.snmp_client import SnmpBackend
    from monitor.traffic import RealtimeTrafficStore
    from storage.settings import get_settings_manager
    from storage.sqlite_store import SQLiteStore

    logger.info("Creating service dependencies...")

    # Resolve data directory
    if data_dir is None:
        data_dir = Path.home() / STORAGE.DATA_DIR_NAME

    # Create storage first (everything else reads from it)
    store = SQLiteStore(data_dir=data_dir)
    settings = get_settings_manager(data_dir)

    if event_bus is None:
        event_bus = EventBus()

    metrics = MetricsExporter()

    # Separate trackers: REST and SNMP counters of one device are not comparable
    snmp = SnmpBackend(rate_tracker=CounterRateTracker())
    selector = ConnectionSelector({
        ConnectionMethod.REST: RestApiBackend(rate_tracker=CounterRateTracker()),
        ConnectionMethod.NATIVE: NativeApiBackend(),
        ConnectionMethod.SNMP: snmp,
    })
    # UDP-only devices are probed with an SNMP GET
    prober = ReachabilityProber(snmp=snmp)

    buffer = RealtimeTrafficStore()
    scheduler = PollScheduler(
        store, selector, prober, buffer, bus=event_bus, metrics=metrics,
    )
    flusher = PersistenceFlusher(buffer, store, metrics=metrics)

    realtime = RealtimeChannel()
    dispatcher = NotificationDispatcher(
        store, event_bus, email=EmailSink(settings), realtime=realtime,
    )
    alert_engine = AlertEngine(store, buffer, dispatcher=dispatcher, metrics=metrics)

    deps = AppDependencies(
        store=store,
        settings=settings,
        selector=selector,
        prober=prober,
        scheduler=scheduler,
        buffer=buffer,
        flusher=flusher,
        alert_engine=alert_engine,
        dispatcher=dispatcher,
        realtime=realtime,
        metrics=metrics,
        event_bus=event_bus,
    )

    logger.info("All dependencies created successfully")
    return deps


def create_mock_dependencies(data_dir: Path, reachable: Optional[set] = None) -> AppDependencies:
    """Create dependencies for testing.

    Protocol backends and the prober are fakes that never touch the
    network; storage is a real SQLite file in ``data_dir``; the event bus
    is synchronous.

    Returns:
        AppDependencies with mock implementations. ``deps.selector`` holds
        one ``MockBackend`` per method, reachable through
        ``deps.selector.backend(method)``.
    """
    from app.events import EventBus
    from monitor.alerts import AlertEngine
    from monitor.connection import ConnectionSelector
    from monitor.flusher import PersistenceFlusher
    from monitor.metrics_exporter import MetricsExporter
    from monitor.models import ConnectionMethod
    from monitor.notifications import NotificationDispatcher, RealtimeChannel
    from monitor.scheduler import PollScheduler
    from monitor.traffic import RealtimeTrafficStore
    from storage.sqlite_store import SQLiteStore
    from tests.mocks import MockBackend, MockProber, MockSettingsManager

    logger.debug("Creating mock dependencies for testing")

    store = SQLiteStore(data_dir=data_dir)
    event_bus = EventBus(async_mode=False)
    metrics = MetricsExporter()
    selector = ConnectionSelector({
        method: MockBackend(method)
        for method in (ConnectionMethod.REST, ConnectionMethod.NATIVE, ConnectionMethod.SNMP)
    })
    prober = MockProber(reachable)
    buffer = RealtimeTrafficStore()
    realtime = RealtimeChannel()
    dispatcher = NotificationDispatcher(store, event_bus, realtime=realtime)

    return AppDependencies(
        store=store,
        settings=MockSettingsManager(),
        selector=selector,
        prober=prober,
        scheduler=PollScheduler(store, selector, prober, buffer, bus=event_bus,
                                metrics=metrics, max_workers=4),
        buffer=buffer,
        flusher=PersistenceFlusher(buffer, store, metrics=metrics),
        alert_engine=AlertEngine(store, buffer, dispatcher=dispatcher, metrics=metrics),
        dispatcher=dispatcher,
        realtime=realtime,
        metrics=metrics,
        event_bus=event_bus,
    )
