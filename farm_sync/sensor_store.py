"""In-memory time-series store for device readings.

Pushed readings and bulk-pull results both enter through `record_reading`
and `load_historical_range`, so the reconciliation rules live here only:

- latest reading per device is last-write-wins by timestamp
- each (device, range) series is a bounded FIFO ordered by insertion
"""
import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Deque, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from pydantic import ValidationError

from farm_sync.models import Reading, Threshold
from farm_sync.thresholds import ThresholdTable

logger = logging.getLogger(__name__)

HISTORY_CAPACITY = 100
DEFAULT_RANGE = "24h"

SeriesKey = Tuple[str, str]


@dataclass(frozen=True)
class StoreSnapshot:
    """Read-only copy of the store state used by the evaluator."""
    latest: Mapping[str, Reading] = field(default_factory=dict)
    series: Mapping[SeriesKey, Tuple[Reading, ...]] = field(default_factory=dict)
    thresholds: Mapping[str, Threshold] = field(default_factory=dict)
    default_range: str = DEFAULT_RANGE

    def get_series(self, device_id: str, range_label: Optional[str] = None) -> Tuple[Reading, ...]:
        """Series for a device/range, empty if nothing is cached."""
        return self.series.get((device_id, range_label or self.default_range), ())


class TimeSeriesStore:
    """Latest-reading cache plus bounded historical series per device."""

    def __init__(
        self,
        thresholds: Optional[ThresholdTable] = None,
        capacity: int = HISTORY_CAPACITY,
        default_range: str = DEFAULT_RANGE,
    ):
        """Initialize store.

        Args:
            thresholds: Threshold table (default bounds if None)
            capacity: Maximum entries kept per (device, range) series
            default_range: Range label recorded readings are appended to
        """
        if capacity < 1:
            raise ValueError("capacity must be at least 1")

        self.thresholds = thresholds or ThresholdTable()
        self.capacity = capacity
        self.default_range = default_range
        self._latest: Dict[str, Reading] = {}
        self._series: Dict[SeriesKey, Deque[Reading]] = {}
        self._realtime_connected = False
        self._lock = threading.RLock()

    # Readings

    def record_reading(self, reading: Union[Reading, Mapping[str, Any]]) -> bool:
        """Record a reading from either the push channel or a pull.

        Args:
            reading: Reading or raw reading dict

        Returns:
            True if the reading became the device's latest reading
        """
        reading = self._coerce(reading)
        if reading is None:
            return False

        with self._lock:
            became_latest = self._apply_latest(reading)

            key = (reading.device_id, self.default_range)
            series = self._series.get(key)
            if series is None:
                series = deque(maxlen=self.capacity)
                self._series[key] = series

            series.append(reading)

        return became_latest

    def load_historical_range(
        self,
        device_id: str,
        range_label: str,
        readings: Iterable[Union[Reading, Mapping[str, Any]]],
    ) -> int:
        """Replace the cached series for a device/range with a pull result.

        Only the newest `capacity` entries of the pull are kept. The latest
        reading changes only if the pull holds something newer.

        Returns:
            Number of readings cached for the key
        """
        coerced = [r for r in (self._coerce(item) for item in readings) if r is not None]
        mismatched = [r for r in coerced if r.device_id != device_id]
        if mismatched:
            logger.warning(
                f"Dropping {len(mismatched)} readings for other devices from {device_id}/{range_label} pull"
            )
            coerced = [r for r in coerced if r.device_id == device_id]

        with self._lock:
            self._series[(device_id, range_label)] = deque(coerced, maxlen=self.capacity)
            if coerced:
                newest = max(coerced, key=lambda r: r.timestamp)
                self._apply_latest(newest)
            return len(self._series[(device_id, range_label)])

    def get_latest_reading(self, device_id: str) -> Optional[Reading]:
        """Latest reading for a device."""
        with self._lock:
            return self._latest.get(device_id)

    def latest_readings(self) -> Dict[str, Reading]:
        """Copy of all latest readings keyed by device id."""
        with self._lock:
            return dict(self._latest)

    def get_historical_data(self, device_id: str, range_label: Optional[str] = None) -> List[Reading]:
        """Cached series for a device/range in insertion order."""
        with self._lock:
            return list(self._series.get((device_id, range_label or self.default_range), ()))

    def device_ids(self) -> List[str]:
        """Devices that have a latest reading or a cached series."""
        with self._lock:
            ids = set(self._latest)
            ids.update(device_id for device_id, _ in self._series)
        return sorted(ids)

    # Thresholds

    def update_threshold(self, sensor_type: str, partial: Mapping[str, Any]) -> bool:
        """Merge partial bounds into a known sensor type's threshold."""
        with self._lock:
            updated = self.thresholds.update(sensor_type, partial)
        if not updated:
            logger.info(f"Threshold update for '{sensor_type}' ignored")
        return updated

    # Connection flag

    @property
    def realtime_connected(self) -> bool:
        return self._realtime_connected

    def set_realtime_connection(self, connected: bool) -> None:
        with self._lock:
            self._realtime_connected = connected

    # Clearing

    def clear_historical_data(self, device_id: Optional[str] = None) -> None:
        """Drop cached series for one device, or all series if no device given."""
        with self._lock:
            if device_id is None:
                self._series.clear()
                return
            for key in [k for k in self._series if k[0] == device_id]:
                del self._series[key]

    def clear_device(self, device_id: str) -> None:
        """Drop every cached entry for a device."""
        with self._lock:
            self._latest.pop(device_id, None)
            self.clear_historical_data(device_id)

    def reset(self) -> None:
        """Clear all readings and the connection flag."""
        with self._lock:
            self._latest.clear()
            self._series.clear()
            self._realtime_connected = False

    def snapshot(self) -> StoreSnapshot:
        """Consistent read-only copy of the current state."""
        with self._lock:
            return StoreSnapshot(
                latest=MappingProxyType(dict(self._latest)),
                series=MappingProxyType({k: tuple(v) for k, v in self._series.items()}),
                thresholds=MappingProxyType(self.thresholds.as_dict()),
                default_range=self.default_range,
            )

    # Internals

    def _apply_latest(self, reading: Reading) -> bool:
        current = self._latest.get(reading.device_id)
        if current is not None and reading.timestamp <= current.timestamp:
            return False
        self._latest[reading.device_id] = reading
        return True

    @staticmethod
    def _coerce(reading: Union[Reading, Mapping[str, Any]]) -> Optional[Reading]:
        if isinstance(reading, Reading):
            return reading
        try:
            return Reading.model_validate(reading)
        except ValidationError as e:
            logger.warning(f"Discarding invalid reading {reading!r}: {e}")
            return None
