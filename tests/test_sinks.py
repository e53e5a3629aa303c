"""Tests for the alert and device-status sinks."""
from datetime import timedelta

import pytest

from farm_sync.models import Alert, utc_now
from farm_sync.sinks import AlertSink, DeviceStatusSink


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def alerts() -> AlertSink:
    return AlertSink()


@pytest.fixture
def devices() -> DeviceStatusSink:
    return DeviceStatusSink()


def make_alert(alert_id: str, priority: str = "medium", device_id: str = "dev-1", **extra) -> dict:
    return {"id": alert_id, "deviceId": device_id, "type": priority, "message": f"alert {alert_id}", **extra}


# =============================================================================
# ALERTS
# =============================================================================

class TestAlertSink:

    def test_newest_first(self, alerts):
        alerts.add(make_alert("a-1"))
        alerts.add(make_alert("a-2"))
        assert [a.id for a in alerts.alerts] == ["a-2", "a-1"]

    def test_duplicate_id_is_ignored(self, alerts):
        assert alerts.add(make_alert("a-1", "high"))
        assert not alerts.add(make_alert("a-1", "low"))
        assert len(alerts) == 1
        assert alerts.get("a-1").type == "high"

    def test_hook_fires_once_per_new_alert(self, alerts):
        seen = []
        alerts.on_new_alert(lambda alert: seen.append(alert.id))
        alerts.add(make_alert("a-1"))
        alerts.add(make_alert("a-1"))
        alerts.add(Alert(id="a-2", type="low"))
        assert seen == ["a-1", "a-2"]

    def test_failing_hook_does_not_block_insert(self, alerts):
        def explode(alert):
            raise RuntimeError("boom")

        alerts.on_new_alert(explode)
        assert alerts.add(make_alert("a-1"))
        assert len(alerts) == 1

    def test_counts_only_unresolved(self, alerts):
        alerts.add(make_alert("a-1", "high"))
        alerts.add(make_alert("a-2", "high", resolved=True))
        alerts.add(make_alert("a-3", "low"))
        assert alerts.counts() == {"high": 1, "medium": 0, "low": 1, "total": 2}

    def test_resolve_local_keeps_position(self, alerts):
        alerts.add(make_alert("a-1"))
        alerts.add(make_alert("a-2"))

        assert alerts.resolve_local("a-1")
        assert [a.id for a in alerts.alerts] == ["a-2", "a-1"]
        resolved = alerts.get("a-1")
        assert resolved.resolved is True
        assert resolved.resolved_at is not None
        assert not alerts.resolve_local("missing")

    def test_clear_resolved_allows_id_again(self, alerts):
        alerts.add(make_alert("a-1"))
        alerts.resolve_local("a-1")
        alerts.clear_resolved()
        assert len(alerts) == 0
        assert alerts.add(make_alert("a-1"))

    def test_replace_all_dedupes_and_skips_invalid(self, alerts):
        seen = []
        alerts.on_new_alert(seen.append)
        count = alerts.replace_all([make_alert("a-1"), make_alert("a-1"), {"id": "bad", "type": "urgent"}])
        assert count == 1
        assert seen == []
        assert not alerts.add(make_alert("a-1"))

    def test_filters(self, alerts):
        alerts.add(make_alert("a-1", "high", "dev-1"))
        alerts.add(make_alert("a-2", "low", "dev-2"))
        alerts.add(make_alert("a-3", "high", "dev-2", resolved=True))

        assert [a.id for a in alerts.by_priority("high")] == ["a-1"]
        assert [a.id for a in alerts.by_device("dev-2")] == ["a-3", "a-2"]
        assert [a.id for a in alerts.resolved()] == ["a-3"]
        assert [a.id for a in alerts.unresolved()] == ["a-2", "a-1"]

    def test_time_filters(self, alerts):
        now = utc_now()
        alerts.add(make_alert("old", timestamp=(now - timedelta(days=2)).isoformat()))
        alerts.add(make_alert("new", timestamp=now.isoformat()))

        assert [a.id for a in alerts.recent(hours=24)] == ["new"]
        window = alerts.in_time_range(now - timedelta(days=3), now - timedelta(days=1))
        assert [a.id for a in window] == ["old"]


# =============================================================================
# DEVICE STATUS
# =============================================================================

class TestDeviceStatusSink:

    def test_load_replaces_records(self, devices):
        devices.apply({"deviceId": "stale", "status": "active"})
        loaded = devices.load([
            {"id": 1, "name": "pH probe", "status": "active", "farmId": 10},
            {"id": 2, "name": "Thermometer", "status": "inactive", "farmId": 11},
            {"name": "no id"},
        ])
        assert loaded == 2
        assert sorted(devices.device_ids()) == ["1", "2"]

    def test_apply_updates_status(self, devices):
        devices.load([{"id": "dev-1", "status": "active"}])
        record = devices.apply({"deviceId": "dev-1", "status": "maintenance"})
        assert record["status"] == "maintenance"
        assert "lastUpdate" in record
        assert devices.get("dev-1")["status"] == "maintenance"

    def test_apply_creates_unknown_device(self, devices):
        devices.load([{"id": "dev-1", "status": "active"}])
        devices.apply({"deviceId": "dev-new", "status": "active"})
        record = devices.get("dev-new")
        assert set(record) == {"id", "status", "lastUpdate"}
        assert record["id"] == "dev-new"
        assert sorted(devices.device_ids()) == ["dev-1", "dev-new"]

    def test_hook_receives_copy(self, devices):
        seen = []
        devices.on_status_change(seen.append)
        devices.apply({"deviceId": "dev-1", "status": "active"})
        seen[0]["status"] = "tampered"
        assert devices.get("dev-1")["status"] == "active"

    def test_views(self, devices):
        devices.load([
            {"id": 1, "status": "active", "farmId": 10},
            {"id": 2, "status": "inactive", "farmId": 10},
            {"id": 3, "status": "active", "farmId": 11},
        ])
        assert [d["id"] for d in devices.active()] == ["1", "3"]
        assert [d["id"] for d in devices.inactive()] == ["2"]
        assert [d["id"] for d in devices.by_farm("10")] == ["1", "2"]

    def test_reset(self, devices):
        devices.apply({"deviceId": "dev-1", "status": "active"})
        devices.reset()
        assert len(devices) == 0
