"""Sync session wiring the push channel, bulk pulls and the local view."""
import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from farm_sync import evaluator
from farm_sync.api_client import FarmApiClient
from farm_sync.config import ConfigLoader
from farm_sync.connection import ConnectionManager, TransportFactory
from farm_sync.dispatcher import EventDispatcher
from farm_sync.errors import ApiError
from farm_sync.evaluator import EvaluationPolicy
from farm_sync.models import Alert, DeviceView, Reading
from farm_sync.sensor_store import TimeSeriesStore
from farm_sync.sinks import AlertSink, DeviceStatusSink
from farm_sync.subscriptions import SubscriptionRegistry
from farm_sync.thresholds import ThresholdTable
from farm_sync.transport import WebSocketTransport

logger = logging.getLogger(__name__)

# Retry configuration for the polling loop
ERROR_DELAY = 5.0  # seconds after error
MAX_ERROR_BACKOFF = 5  # multiples of ERROR_DELAY


class FarmSyncSession:
    """One session's synchronized view of farm telemetry.

    Every component is an explicit instance owned by the session, so tests
    and applications can build as many independent sessions as they need.
    """

    def __init__(
        self,
        config: Optional[ConfigLoader] = None,
        api_client: Optional[FarmApiClient] = None,
        transport_factory: Optional[TransportFactory] = None,
    ):
        """Initialize session.

        Args:
            config: Loaded configuration (defaults only if None)
            api_client: Bulk-pull client; built from config if None
            transport_factory: Push transport factory; websocket if None
        """
        self.config = config or ConfigLoader(data={})

        store_config = self.config.get_store_config()
        ws_config = self.config.get_websocket_config()
        sync_config = self.config.get_sync_config()
        self.policy = EvaluationPolicy(**self.config.get_evaluation_config())
        self.poll_interval = sync_config['poll_interval']
        self.subscribe_known = sync_config['subscribe_known_devices']

        self.thresholds = ThresholdTable(self.config.get_thresholds())
        self.store = TimeSeriesStore(
            self.thresholds,
            capacity=store_config['history_capacity'],
            default_range=store_config['default_range'],
        )
        self.registry = SubscriptionRegistry()
        self.alerts = AlertSink()
        self.devices = DeviceStatusSink()

        if transport_factory is None:
            open_timeout = ws_config['open_timeout']

            async def transport_factory(url, credential):
                return await WebSocketTransport.open(url, credential, open_timeout=open_timeout)

        self.connection = ConnectionManager(
            self.registry,
            ws_config['url'],
            transport_factory=transport_factory,
            base_delay=ws_config['base_delay'],
            max_delay=ws_config['max_delay'],
        )
        self.dispatcher = EventDispatcher(
            self.store,
            self.alerts,
            self.devices,
            error_sink=self.connection.record_error,
        )
        self.connection.on_lifecycle(self.dispatcher.handle_lifecycle)
        self.connection.on_message(self.dispatcher.dispatch)

        if api_client is None:
            api_config = self.config.get_api_config()
            api_client = FarmApiClient(
                api_config['base_url'],
                token=self.config.get_token(),
                timeout=api_config['timeout'],
            )
        self.api = api_client

    @property
    def last_error(self) -> Optional[str]:
        return self.connection.last_error

    # Lifecycle

    async def start(self, credential: Optional[str] = None) -> bool:
        """Connect the push channel and subscribe to every known device."""
        if self.subscribe_known:
            await self.subscribe_known_devices()
        connected = await self.connection.connect(credential or self.config.get_token())
        if not connected:
            logger.warning(f"⚠️  Push channel not connected yet: {self.last_error}")
        return connected

    async def stop(self) -> None:
        """Disconnect and release the HTTP client."""
        await self.connection.disconnect()
        await self.api.close()

    def reset(self) -> None:
        """Clear all session data; subscriptions and thresholds are kept."""
        self.store.reset()
        self.alerts.reset()
        self.devices.reset()
        self.connection.clear_error()
        self.store.set_realtime_connection(self.connection.is_connected)

    async def subscribe_known_devices(self) -> int:
        """Subscribe to every device the session knows about."""
        device_ids = set(self.devices.device_ids()) | set(self.store.device_ids())
        for device_id in sorted(device_ids):
            await self.connection.subscribe_device(device_id)
        return len(device_ids)

    # Bulk pulls

    async def refresh_latest(self, device_id: Optional[str] = None) -> Optional[List[Reading]]:
        """Pull latest readings and merge them into the store."""
        try:
            readings = await self.api.get_latest_readings(device_id)
        except ApiError as e:
            self.connection.record_error(f"Failed to fetch latest readings: {e}")
            return None

        for reading in readings:
            self.store.record_reading(reading)
        logger.debug(f"Merged {len(readings)} latest readings")
        return readings

    async def refresh_history(
        self,
        device_id: str,
        range_label: Optional[str] = None,
        start_date: Optional[Union[datetime, str]] = None,
        end_date: Optional[Union[datetime, str]] = None,
        limit: Optional[int] = None,
    ) -> Optional[List[Reading]]:
        """Pull a device's history and replace the cached range with it."""
        range_label = range_label or self.store.default_range
        try:
            readings = await self.api.get_historical_data(
                device_id,
                range=range_label,
                start_date=start_date,
                end_date=end_date,
                limit=limit,
            )
        except ApiError as e:
            self.connection.record_error(f"Failed to fetch historical data: {e}")
            return None

        self.store.load_historical_range(device_id, range_label, readings)
        return readings

    async def refresh_alerts(self, resolved: Optional[bool] = None) -> Optional[List[Alert]]:
        """Pull alerts and replace the held list."""
        try:
            alerts = await self.api.get_alerts(resolved)
        except ApiError as e:
            self.connection.record_error(f"Failed to fetch alerts: {e}")
            return None
        self.alerts.replace_all(alerts)
        return alerts

    async def refresh_devices(self, farm_id: Optional[str] = None) -> Optional[List[Dict[str, Any]]]:
        """Pull the device listing into the device-status sink."""
        try:
            devices = await self.api.get_devices(farm_id)
        except ApiError as e:
            self.connection.record_error(f"Failed to fetch devices: {e}")
            return None
        self.devices.load(devices)
        return devices

    async def poll_once(self) -> bool:
        """One bulk pull of devices and latest readings."""
        devices = await self.refresh_devices()
        if devices is not None and self.subscribe_known:
            await self.subscribe_known_devices()
        latest = await self.refresh_latest()
        return devices is not None and latest is not None

    async def poll_forever(self, interval: Optional[float] = None) -> None:
        """Periodically pull devices and latest readings until cancelled."""
        interval = interval or self.poll_interval
        consecutive_errors = 0

        logger.info(f"🔄 Bulk pull task starting (every {interval}s)")
        while True:
            try:
                if await self.poll_once():
                    consecutive_errors = 0
                    await asyncio.sleep(interval)
                    continue
                consecutive_errors += 1
            except asyncio.CancelledError:
                logger.info("🛑 Bulk pull task cancelled")
                raise
            except Exception as e:
                consecutive_errors += 1
                logger.error(
                    f"❌ Unexpected error in bulk pull task (error #{consecutive_errors}): {e}",
                    exc_info=True
                )

            # Back off longer the more pulls fail in a row
            wait_time = ERROR_DELAY * min(consecutive_errors, MAX_ERROR_BACKOFF)
            logger.warning(f"⚠️  Bulk pull failed (error #{consecutive_errors}), retrying in {wait_time}s")
            await asyncio.sleep(wait_time)

    # Derived view

    def device_view(self, device_id: str, range_label: Optional[str] = None) -> DeviceView:
        """Latest reading, status, trend and statistics for a device."""
        range_label = range_label or self.store.default_range
        snapshot = self.store.snapshot()
        return DeviceView(
            device_id=device_id,
            range=range_label,
            latest=snapshot.latest.get(device_id),
            status=evaluator.sensor_status(snapshot, device_id, self.policy),
            trend=evaluator.trend(snapshot, device_id, range_label, self.policy),
            average=evaluator.average_reading(snapshot, device_id, range_label),
            statistics=evaluator.statistics(snapshot, device_id, range_label),
        )

    def all_device_views(self, range_label: Optional[str] = None) -> List[DeviceView]:
        device_ids = set(self.store.device_ids()) | set(self.devices.device_ids())
        return [self.device_view(device_id, range_label) for device_id in sorted(device_ids)]
