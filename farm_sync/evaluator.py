"""Status, trend and statistics derived from a store snapshot.

All functions are pure: they read a `StoreSnapshot` and never touch the live
store, so callers decide when values are recomputed.
"""
from dataclasses import dataclass
from typing import Optional, Sequence

from farm_sync.models import Reading, SensorStatus, Statistics
from farm_sync.sensor_store import StoreSnapshot

# Relative deviation from optimal above which a reading is a warning
WARNING_DEVIATION = 0.1

# Number of readings in each of the recent/earlier trend windows
TREND_WINDOW = 10


@dataclass(frozen=True)
class EvaluationPolicy:
    """Tunable constants for status and trend evaluation."""
    warning_deviation: float = WARNING_DEVIATION
    trend_window: int = TREND_WINDOW


DEFAULT_POLICY = EvaluationPolicy()


def _mean(readings: Sequence[Reading]) -> float:
    return sum(r.value for r in readings) / len(readings)


def sensor_status(
    snapshot: StoreSnapshot,
    device_id: str,
    policy: EvaluationPolicy = DEFAULT_POLICY,
) -> SensorStatus:
    """Classify a device's latest reading against its sensor type's threshold."""
    reading = snapshot.latest.get(device_id)
    if reading is None:
        return SensorStatus.UNKNOWN

    threshold = snapshot.thresholds.get(reading.sensor_type)
    if threshold is None:
        return SensorStatus.NORMAL

    if reading.value < threshold.min or reading.value > threshold.max:
        return SensorStatus.CRITICAL

    # Zero optimal has no meaningful relative deviation
    if threshold.optimal == 0:
        return SensorStatus.NORMAL

    deviation = abs(reading.value - threshold.optimal) / threshold.optimal
    if deviation > policy.warning_deviation:
        return SensorStatus.WARNING

    return SensorStatus.NORMAL


def trend(
    snapshot: StoreSnapshot,
    device_id: str,
    range_label: Optional[str] = None,
    policy: EvaluationPolicy = DEFAULT_POLICY,
) -> float:
    """Percent change of the recent window average over the earlier one.

    The last `trend_window` entries are the recent window and the
    `trend_window` entries before them the earlier window, by position in
    the series.

    Returns:
        Percent change, or 0.0 when there is too little data or the earlier
        average is zero
    """
    data = snapshot.get_series(device_id, range_label)
    if len(data) < 2:
        return 0.0

    window = policy.trend_window
    recent = data[-window:]
    earlier = data[-2 * window:-window]
    if not earlier:
        return 0.0

    earlier_avg = _mean(earlier)
    if earlier_avg == 0:
        return 0.0

    return ((_mean(recent) - earlier_avg) / earlier_avg) * 100


def statistics(
    snapshot: StoreSnapshot,
    device_id: str,
    range_label: Optional[str] = None,
) -> Statistics:
    """Min/max/avg/count over a cached series, zeros if empty."""
    data = snapshot.get_series(device_id, range_label)
    if not data:
        return Statistics()

    values = [r.value for r in data]
    return Statistics(
        min=min(values),
        max=max(values),
        avg=sum(values) / len(values),
        count=len(values),
    )


def average_reading(
    snapshot: StoreSnapshot,
    device_id: str,
    range_label: Optional[str] = None,
) -> Optional[float]:
    """Mean value over a cached series, None if empty."""
    data = snapshot.get_series(device_id, range_label)
    if not data:
        return None
    return _mean(data)
