"""Sinks for pushed alerts and device status updates."""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

from pydantic import ValidationError

from farm_sync.models import Alert, DeviceStatusUpdate, utc_now

logger = logging.getLogger(__name__)

ALERT_PRIORITIES = ("high", "medium", "low")


class AlertSink:
    """Keeps alerts newest-first and deduplicated by id."""

    def __init__(self):
        """Initialize alert sink."""
        self._alerts: List[Alert] = []
        self._ids = set()
        self._hooks: List[Callable[[Alert], None]] = []

    def on_new_alert(self, hook: Callable[[Alert], None]) -> None:
        """Register a hook called once for every accepted alert."""
        self._hooks.append(hook)

    def add(self, alert: Union[Alert, Mapping[str, Any]]) -> bool:
        """Add an alert unless one with the same id is already held.

        Returns:
            True if the alert was accepted
        """
        if not isinstance(alert, Alert):
            alert = Alert.model_validate(alert)

        if alert.id in self._ids:
            logger.debug(f"Ignoring duplicate alert {alert.id}")
            return False

        self._alerts.insert(0, alert)
        self._ids.add(alert.id)
        logger.info(f"🚨 New {alert.type} alert for {alert.device_id}: {alert.message}")

        for hook in list(self._hooks):
            try:
                hook(alert)
            except Exception as e:
                logger.error(f"❌ Alert hook failed: {e}", exc_info=True)
        return True

    def replace_all(self, alerts: Iterable[Union[Alert, Mapping[str, Any]]]) -> int:
        """Replace the held alerts with a bulk-pull result (no hooks fired)."""
        replaced: List[Alert] = []
        ids = set()
        for item in alerts:
            try:
                alert = item if isinstance(item, Alert) else Alert.model_validate(item)
            except ValidationError as e:
                logger.warning(f"Skipping invalid alert {item!r}: {e}")
                continue
            if alert.id in ids:
                continue
            ids.add(alert.id)
            replaced.append(alert)

        self._alerts = replaced
        self._ids = ids
        return len(replaced)

    def get(self, alert_id: str) -> Optional[Alert]:
        for alert in self._alerts:
            if alert.id == str(alert_id):
                return alert
        return None

    def update_local(self, alert_id: str, updates: Mapping[str, Any]) -> bool:
        """Merge updates into a held alert, keeping its position."""
        for index, alert in enumerate(self._alerts):
            if alert.id == str(alert_id):
                merged = {**alert.model_dump(), **dict(updates), "id": alert.id}
                self._alerts[index] = Alert.model_validate(merged)
                return True
        return False

    def resolve_local(self, alert_id: str) -> bool:
        return self.update_local(alert_id, {"resolved": True, "resolved_at": utc_now()})

    def clear_resolved(self) -> None:
        self._alerts = [a for a in self._alerts if not a.resolved]
        self._ids = {a.id for a in self._alerts}

    def reset(self) -> None:
        self._alerts = []
        self._ids = set()

    # Views

    @property
    def alerts(self) -> List[Alert]:
        """All alerts, newest first."""
        return list(self._alerts)

    def unresolved(self) -> List[Alert]:
        return [a for a in self._alerts if not a.resolved]

    def resolved(self) -> List[Alert]:
        return [a for a in self._alerts if a.resolved]

    def by_priority(self, priority: str) -> List[Alert]:
        """Unresolved alerts of one priority ('low', 'medium', 'high')."""
        return [a for a in self._alerts if a.type == priority and not a.resolved]

    def by_device(self, device_id: str) -> List[Alert]:
        return [a for a in self._alerts if a.device_id == str(device_id)]

    def counts(self) -> Dict[str, int]:
        """Unresolved alert counts per priority plus the total."""
        counts = {priority: len(self.by_priority(priority)) for priority in ALERT_PRIORITIES}
        counts["total"] = len(self.unresolved())
        return counts

    def in_time_range(self, start: datetime, end: datetime) -> List[Alert]:
        start, end = _aware(start), _aware(end)
        return [a for a in self._alerts if start <= a.timestamp <= end]

    def recent(self, hours: float = 24) -> List[Alert]:
        cutoff = utc_now() - timedelta(hours=hours)
        return [a for a in self._alerts if a.timestamp > cutoff]

    def __len__(self) -> int:
        return len(self._alerts)


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class DeviceStatusSink:
    """Device records updated by pushed status changes."""

    def __init__(self):
        """Initialize device status sink."""
        self._devices: Dict[str, Dict[str, Any]] = {}
        self._hooks: List[Callable[[Dict[str, Any]], None]] = []

    def on_status_change(self, hook: Callable[[Dict[str, Any]], None]) -> None:
        """Register a hook called with the updated device record."""
        self._hooks.append(hook)

    def load(self, devices: Iterable[Mapping[str, Any]]) -> int:
        """Replace records with a bulk device listing; entries need an 'id'."""
        loaded: Dict[str, Dict[str, Any]] = {}
        for device in devices:
            if device.get("id") is None:
                logger.warning(f"Skipping device without id: {device!r}")
                continue
            record = dict(device)
            record["id"] = str(record["id"])
            loaded[record["id"]] = record
        self._devices = loaded
        return len(loaded)

    def apply(self, update: Union[DeviceStatusUpdate, Mapping[str, Any]]) -> Dict[str, Any]:
        """Apply a status update.

        A status pushed for a device missing from the last listing creates a
        minimal record ({id, status, lastUpdate}) instead of being dropped,
        so the change is visible before the next bulk pull.
        """
        if not isinstance(update, DeviceStatusUpdate):
            update = DeviceStatusUpdate.model_validate(update)

        record = self._devices.setdefault(update.device_id, {"id": update.device_id})
        record["status"] = update.status
        record["lastUpdate"] = utc_now().isoformat()
        logger.info(f"🔧 Device {update.device_id} status: {update.status}")

        for hook in list(self._hooks):
            try:
                hook(dict(record))
            except Exception as e:
                logger.error(f"❌ Device status hook failed: {e}", exc_info=True)
        return dict(record)

    def get(self, device_id: str) -> Optional[Dict[str, Any]]:
        record = self._devices.get(str(device_id))
        return dict(record) if record is not None else None

    def all(self) -> List[Dict[str, Any]]:
        return [dict(r) for r in self._devices.values()]

    def device_ids(self) -> List[str]:
        return list(self._devices)

    def active(self) -> List[Dict[str, Any]]:
        return [dict(r) for r in self._devices.values() if r.get("status") == "active"]

    def inactive(self) -> List[Dict[str, Any]]:
        return [dict(r) for r in self._devices.values() if r.get("status") != "active"]

    def by_farm(self, farm_id) -> List[Dict[str, Any]]:
        return [dict(r) for r in self._devices.values() if str(r.get("farmId")) == str(farm_id)]

    def reset(self) -> None:
        self._devices = {}

    def __len__(self) -> int:
        return len(self._devices)
