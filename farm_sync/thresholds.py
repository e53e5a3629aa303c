"""Threshold table for per-sensor-type bounds."""
import logging
from typing import Any, Dict, List, Mapping, Optional

from pydantic import ValidationError

from farm_sync.models import Threshold

logger = logging.getLogger(__name__)

# Default bounds seeded into every table
DEFAULT_THRESHOLDS: Dict[str, Threshold] = {
    "pH": Threshold(min=6.5, max=7.5, optimal=7.0),
    "temperature": Threshold(min=20, max=28, optimal=24),
    "light": Threshold(min=3500, max=5000, optimal=4000),
    "oxygen": Threshold(min=6.0, max=9.0, optimal=7.5),
}

BOUND_KEYS = ("min", "max", "optimal")


class ThresholdTable:
    """Holds the bounds for the known sensor types.

    The set of sensor types is fixed when the table is created. Updates only
    change bounds of known types; unknown types are ignored since thresholds
    are advisory.
    """

    def __init__(self, overrides: Optional[Mapping[str, Mapping[str, Any]]] = None):
        """Initialize threshold table.

        Args:
            overrides: Optional mapping of sensor type -> partial bounds,
                usually the `thresholds` section of the config file.
        """
        self._thresholds: Dict[str, Threshold] = dict(DEFAULT_THRESHOLDS)
        for sensor_type, bounds in (overrides or {}).items():
            if not self.update(sensor_type, bounds or {}):
                logger.warning(f"Ignoring threshold override for unknown sensor type '{sensor_type}'")

    def get(self, sensor_type: str) -> Optional[Threshold]:
        """Get bounds for a sensor type, or None if the type is unknown."""
        return self._thresholds.get(sensor_type)

    def update(self, sensor_type: str, partial: Mapping[str, Any]) -> bool:
        """Merge partial bounds into an existing threshold.

        Args:
            sensor_type: Sensor type (e.g., 'pH', 'temperature')
            partial: Any subset of min/max/optimal; None values are skipped

        Returns:
            True if the threshold was updated, False if the type is unknown
            or the values are invalid
        """
        current = self._thresholds.get(sensor_type)
        if current is None:
            return False

        changes = {k: v for k, v in partial.items() if k in BOUND_KEYS and v is not None}
        try:
            merged = Threshold.model_validate({**current.model_dump(), **changes})
        except ValidationError as e:
            logger.warning(f"Invalid threshold values for {sensor_type}: {e}")
            return False

        self._thresholds[sensor_type] = merged
        logger.debug(f"Threshold for {sensor_type} set to {merged}")
        return True

    @property
    def sensor_types(self) -> List[str]:
        """Known sensor types."""
        return list(self._thresholds)

    def as_dict(self) -> Dict[str, Threshold]:
        """Copy of the current thresholds."""
        return dict(self._thresholds)

    def reset(self) -> None:
        """Restore the default bounds."""
        self._thresholds = dict(DEFAULT_THRESHOLDS)
