"""Ring buffer to durable storage flusher.

Every flush pass writes each device's new samples in one ``append_samples``
call. Per-interface high-water marks (timestamp of the newest persisted
sample) advance only when the device's write succeeds, so a failed device is
retried in full on the next pass. The buffer itself is never modified.
"""
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from config import LogContext, get_logger
from config.exceptions import PersistenceFailure
from monitor.traffic import RealtimeTrafficStore
from monitor.utils import format_bytes

logger = get_logger(__name__)


@dataclass
class FlushReport:
    """Outcome of one flush pass."""
    written: Dict[str, int] = field(default_factory=dict)
    failed: List[str] = field(default_factory=list)

    @property
    def total_written(self) -> int:
        return sum(self.written.values())


class PersistenceFlusher:
    """Batches buffered samples into the durable sample sink.

    Args:
        buffer: The realtime buffer to read from.
        sink: Any object with ``append_samples(device_id, samples)``.
        metrics: Optional metrics exporter.
    """

    def __init__(self, buffer: RealtimeTrafficStore, sink, metrics=None):
        self._buffer = buffer
        self._sink = sink
        self._metrics = metrics
        self._high_water: Dict[str, Dict[str, datetime]] = {}
        # Flush passes from the timer and from shutdown must not interleave
        self._flush_lock = threading.Lock()

    def high_water_mark(self, device_id: str, interface_name: str) -> Optional[datetime]:
        return self._high_water.get(device_id, {}).get(interface_name)

    def forget_device(self, device_id: str) -> None:
        self._high_water.pop(device_id, None)

    def flush(self) -> FlushReport:
        """Persist every device's unflushed samples."""
        report = FlushReport()
        with self._flush_lock, LogContext(logger, "flush") as ctx:
            for device_id in self._buffer.device_ids():
                marks = self._high_water.setdefault(device_id, {})
                samples = self._buffer.samples_since(device_id, marks)
                if not samples:
                    continue
                try:
                    self._sink.append_samples(device_id, samples)
                except PersistenceFailure as e:
                    report.failed.append(device_id)
                    logger.error(
                        f"Flush of {len(samples)} samples for {device_id} failed, "
                        f"retrying next cycle: {e}"
                    )
                    continue
                except Exception as e:
                    report.failed.append(device_id)
                    logger.error(f"Unexpected flush error for {device_id}: {e}")
                    continue

                for sample in samples:
                    marks[sample.interface_name] = sample.timestamp
                report.written[device_id] = len(samples)

        if report.written or report.failed:
            # Rough size: seven columns of ~8 bytes per row
            logger.info(
                f"Flushed {report.total_written} samples "
                f"(~{format_bytes(report.total_written * 56)}) for {len(report.written)} "
                f"devices, {len(report.failed)} failed in {ctx.duration_ms:.0f}ms"
            )

        if self._metrics is not None:
            self._metrics.record_flush(report.total_written, len(report.failed))
        return report
