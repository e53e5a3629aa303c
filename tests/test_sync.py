"""Tests for the sync session: pulls, pushes and the derived view together."""
import asyncio

import httpx
import pytest
import pytest_asyncio

from farm_sync.api_client import FarmApiClient
from farm_sync.config import ConfigLoader
from farm_sync.models import ConnectionState, SensorStatus, TopicKind
from farm_sync.sync import FarmSyncSession

from conftest import wait_until

DEVICES = [
    {"id": "dev-1", "farmId": "farm-1", "status": "active"},
    {"id": "dev-2", "farmId": "farm-1", "status": "inactive"},
]


def api_handler(request):
    path = request.url.path
    if path == "/api/devices":
        return httpx.Response(200, json=DEVICES)
    if path == "/api/sensor-data/latest":
        return httpx.Response(200, json=[
            {"deviceId": "dev-1", "sensorType": "pH", "value": 6.2, "timestamp": "2024-05-01T12:00:00Z"},
        ])
    if path == "/api/sensor-data/dev-1/history":
        values = [20.0] * 10 + [24.0] * 10
        return httpx.Response(200, json=[
            {"sensorType": "temperature", "value": v, "timestamp": f"2024-05-01T10:{i:02d}:00Z"}
            for i, v in enumerate(values)
        ])
    if path == "/api/alerts":
        return httpx.Response(200, json=[{"id": "a-1", "deviceId": "dev-1", "type": "high"}])
    return httpx.Response(503, json={"error": "unavailable"})


# =============================================================================
# FIXTURES
# =============================================================================

@pytest_asyncio.fixture
async def session(transport_factory):
    config = ConfigLoader(data={"websocket": {"reconnect": {"base_delay": 0.01, "max_delay": 0.05}}})
    api = FarmApiClient("http://farm.test/api", transport=httpx.MockTransport(api_handler))
    session = FarmSyncSession(config, api_client=api, transport_factory=transport_factory)
    yield session
    await session.stop()


# =============================================================================
# TESTS
# =============================================================================

class TestFarmSyncSession:

    @pytest.mark.asyncio
    async def test_start_subscribes_known_devices(self, session, transport_factory):
        await session.refresh_devices()
        assert await session.start("token-1")

        assert transport_factory.credentials == ["token-1"]
        assert [(m["type"], m["data"]) for m in transport_factory.last.sent] == [
            ("subscribeDevice", {"deviceId": "dev-1"}),
            ("subscribeDevice", {"deviceId": "dev-2"}),
        ]
        assert session.store.realtime_connected is True

    @pytest.mark.asyncio
    async def test_start_without_server_keeps_retrying(self, session, transport_factory):
        transport_factory.fail_next = 2
        assert not await session.start()
        assert session.last_error == "connection refused"
        assert session.store.realtime_connected is False

        await wait_until(lambda: session.connection.state == ConnectionState.CONNECTED)
        assert session.last_error is None

    @pytest.mark.asyncio
    async def test_poll_once_merges_latest_and_devices(self, session):
        assert await session.poll_once()
        assert session.store.get_latest_reading("dev-1").value == 6.2
        assert len(session.devices) == 2
        assert len(session.registry) == 2

    @pytest.mark.asyncio
    async def test_pull_then_push_updates_view(self, session, transport_factory):
        await session.refresh_history("dev-1")
        await session.start()

        view = session.device_view("dev-1")
        assert view.range == "24h"
        assert view.statistics.count == 20
        assert view.trend == pytest.approx(20.0)
        assert view.status == SensorStatus.NORMAL

        transport_factory.last.push("sensorReading", {
            "deviceId": "dev-1",
            "sensorType": "temperature",
            "value": 30.0,
            "timestamp": "2024-05-01T11:00:00Z",
        })
        await wait_until(lambda: session.store.get_latest_reading("dev-1").value == 30.0)

        view = session.device_view("dev-1")
        assert view.status == SensorStatus.CRITICAL
        assert view.statistics.count == 21
        assert view.statistics.max == 30.0

    @pytest.mark.asyncio
    async def test_stale_pull_does_not_override_push(self, session, transport_factory):
        await session.start()
        transport_factory.last.push("sensorReading", {
            "deviceId": "dev-1",
            "sensorType": "pH",
            "value": 7.0,
            "timestamp": "2024-05-01T13:00:00Z",
        })
        await wait_until(lambda: session.store.get_latest_reading("dev-1") is not None)

        await session.refresh_latest()
        assert session.store.get_latest_reading("dev-1").value == 7.0

    @pytest.mark.asyncio
    async def test_pull_failure_records_error(self, session):
        assert await session.refresh_latest("dev-404") is None
        assert "HTTP 503" in session.last_error

    @pytest.mark.asyncio
    async def test_refresh_alerts_replaces_list(self, session):
        session.alerts.add({"id": "local", "type": "low"})
        alerts = await session.refresh_alerts()
        assert [a.id for a in alerts] == ["a-1"]
        assert [a.id for a in session.alerts.alerts] == ["a-1"]

    @pytest.mark.asyncio
    async def test_subscriptions_survive_reconnect(self, session, transport_factory):
        await session.start()
        await session.connection.subscribe_farm("farm-1")

        transport_factory.last.drop()
        await wait_until(lambda: session.connection.epoch == 2 and session.connection.is_connected)
        assert [(m["type"], m["data"]) for m in transport_factory.last.sent] == [
            ("subscribeFarm", {"farmId": "farm-1"}),
        ]
        assert list(session.registry)[0].kind == TopicKind.FARM

    @pytest.mark.asyncio
    async def test_reset_keeps_subscriptions(self, session):
        await session.poll_once()
        session.reset()

        assert session.store.latest_readings() == {}
        assert len(session.devices) == 0
        assert len(session.registry) == 2

    @pytest.mark.asyncio
    async def test_poll_forever_can_be_cancelled(self, session):
        task = asyncio.create_task(session.poll_forever(interval=0.01))
        await wait_until(lambda: session.store.get_latest_reading("dev-1") is not None)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    def test_all_device_views_include_devices_without_readings(self):
        session = FarmSyncSession(ConfigLoader(data={}))
        session.devices.load(DEVICES)
        views = session.all_device_views()
        assert [v.device_id for v in views] == ["dev-1", "dev-2"]
        assert all(v.status == SensorStatus.UNKNOWN for v in views)
