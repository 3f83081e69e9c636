"""Realtime traffic buffer.

Holds the most recent samples per (device, interface) in fixed-capacity
FIFO buffers: 7200 entries, two hours at one sample per second. The poll
scheduler is the only writer. The flusher, the alert engine and live viewers
read snapshots without blocking the writer.

Example:
    >>> store = RealtimeTrafficStore()
    >>> store.add(sample)
    >>> store.get_live_samples("r1", "ether1", window=60)
"""

from __future__ import annotations

import threading
from collections import deque
from datetime import datetime, timedelta
from typing import Deque, Dict, Iterable, List, Optional, Tuple

from config import THRESHOLDS, get_logger
from monitor.models import Sample

logger = get_logger(__name__)

BufferKey = Tuple[str, str]


class RealtimeTrafficStore:
    """Per-interface ring buffers of samples.

    Appends go to a ``deque(maxlen=capacity)``, which evicts the oldest
    sample once full. Readers call ``deque.copy()``, which runs atomically
    under the GIL, so a snapshot never sees a half-applied append and never
    raises on concurrent mutation.

    The lock only guards creation and removal of buffers, never appends or
    reads of an existing buffer.
    """

    def __init__(self, capacity: int = THRESHOLDS.RING_BUFFER_CAPACITY):
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = capacity
        self._buffers: Dict[BufferKey, Deque[Sample]] = {}
        self._lock = threading.Lock()

    def _buffer(self, device_id: str, interface_name: str) -> Deque[Sample]:
        key = (device_id, interface_name)
        buffer = self._buffers.get(key)
        if buffer is None:
            with self._lock:
                buffer = self._buffers.setdefault(key, deque(maxlen=self.capacity))
        return buffer

    def _snapshot(self, device_id: str, interface_name: str) -> List[Sample]:
        buffer = self._buffers.get((device_id, interface_name))
        if buffer is None:
            return []
        return list(buffer.copy())

    def _device_keys(self, device_id: str) -> List[BufferKey]:
        with self._lock:
            return [key for key in self._buffers if key[0] == device_id]

    # === Writer ===

    def add(self, sample: Sample) -> None:
        """Append one sample, evicting the oldest if the buffer is full."""
        self._buffer(sample.device_id, sample.interface_name).append(sample)

    def add_many(self, samples: Iterable[Sample]) -> int:
        count = 0
        for sample in samples:
            self.add(sample)
            count += 1
        return count

    def remove_device(self, device_id: str) -> None:
        """Drop all buffers of a device (e.g., device deleted)."""
        with self._lock:
            for key in [k for k in self._buffers if k[0] == device_id]:
                del self._buffers[key]
        logger.debug(f"Dropped realtime buffers for device {device_id}")

    # === Readers ===

    def get_live_samples(self, device_id: str, interface_name: str,
                         window: Optional[float] = None) -> List[Sample]:
        """Samples for one interface, oldest first.

        Args:
            device_id: Device identifier.
            interface_name: Interface name on that device.
            window: Only return samples from the last ``window`` seconds.
                None returns the whole buffer.
        """
        samples = self._snapshot(device_id, interface_name)
        if window is None:
            return samples
        cutoff = datetime.now() - timedelta(seconds=window)
        return [s for s in samples if s.timestamp >= cutoff]

    def get_latest(self, device_id: str, interface_name: str) -> Optional[Sample]:
        buffer = self._buffers.get((device_id, interface_name))
        if not buffer:
            return None
        try:
            return buffer[-1]
        except IndexError:
            return None

    def get_device_samples(self, device_id: str,
                           points_per_interface: int = THRESHOLDS.LIVE_POINTS_PER_INTERFACE
                           ) -> List[Sample]:
        """The most recent points of every interface of a device, oldest first."""
        result: List[Sample] = []
        for _, interface_name in self._device_keys(device_id):
            samples = self._snapshot(device_id, interface_name)
            result.extend(samples[-points_per_interface:] if points_per_interface > 0 else [])
        result.sort(key=lambda s: s.timestamp)
        return result

    def samples_since(self, device_id: str, marks: Dict[str, datetime]) -> List[Sample]:
        """Buffered samples of a device newer than each interface's mark, oldest first.

        ``marks`` maps interface names to the timestamp of the last sample
        already consumed; interfaces without a mark return everything.
        """
        result: List[Sample] = []
        for _, interface_name in self._device_keys(device_id):
            after = marks.get(interface_name)
            for sample in self._snapshot(device_id, interface_name):
                if after is None or sample.timestamp > after:
                    result.append(sample)
        result.sort(key=lambda s: s.timestamp)
        return result

    def average(self, device_id: str, interface_name: str, points: int = 10) -> Optional[float]:
        """Mean RX rate over the last ``points`` samples, None when empty."""
        samples = self._snapshot(device_id, interface_name)[-points:]
        if not samples:
            return None
        return sum(s.rx_bytes_per_second for s in samples) / len(samples)

    def device_ids(self) -> List[str]:
        with self._lock:
            return sorted({key[0] for key in self._buffers})

    def interface_names(self, device_id: str) -> List[str]:
        return sorted(key[1] for key in self._device_keys(device_id))

    def __len__(self) -> int:
        with self._lock:
            buffers = list(self._buffers.values())
        return sum(len(b) for b in buffers)
