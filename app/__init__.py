"""Application module for Router Monitor.

Contains the service wiring:
- EventBus: Internal event communication
- IntervalTimer: Fixed-cadence background timer
- MonitorController: Background job orchestration (``app.controller``)
- AppDependencies: Component container (``app.dependencies``)

The controller and dependency container are imported from their modules
directly; they pull in the whole monitor package, which itself publishes
on the event bus.
"""

from app.events import Event, EventBus, EventType
from app.timer import IntervalTimer

__all__ = [
    "Event",
    "EventBus",
    "EventType",
    "IntervalTimer",
]
