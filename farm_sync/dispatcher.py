"""Classifies inbound push messages and routes them to their sinks."""
import json
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional

from pydantic import TypeAdapter, ValidationError

from farm_sync.errors import MalformedMessage
from farm_sync.models import (
    AlertMessage,
    ConnectedMessage,
    ConnectionState,
    DeviceStatusMessage,
    DisconnectedMessage,
    ErrorMessage,
    InboundMessage,
    SensorReadingMessage,
    UnclassifiedMessage,
)
from farm_sync.sensor_store import TimeSeriesStore
from farm_sync.sinks import AlertSink, DeviceStatusSink

logger = logging.getLogger(__name__)

_INBOUND_ADAPTER = TypeAdapter(InboundMessage)

KNOWN_KINDS = {"connected", "disconnected", "error", "sensorReading", "alert", "deviceStatus"}

# Alternate spellings seen on the wire
KIND_ALIASES = {
    "sensor_reading": "sensorReading",
    "sensor_update": "sensorReading",
    "device_status": "deviceStatus",
}


def decode_message(raw: Any):
    """Decode a raw frame into a typed message.

    Args:
        raw: JSON text, UTF-8 bytes or an already parsed dict. The envelope
            may use `kind` or `type` for the tag and `payload` or `data` for
            the body.

    Returns:
        One of the InboundMessage variants, or UnclassifiedMessage for
        unknown kinds

    Raises:
        MalformedMessage: If the frame is not a valid envelope or its payload
            does not fit the declared kind
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedMessage(f"Frame is not UTF-8: {e}") from e

    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise MalformedMessage(f"Frame is not JSON: {e}") from e

    if not isinstance(raw, Mapping):
        raise MalformedMessage(f"Frame is not an object: {type(raw).__name__}")

    kind = raw.get("kind", raw.get("type"))
    if not isinstance(kind, str) or not kind:
        raise MalformedMessage("Frame has no message kind")
    kind = KIND_ALIASES.get(kind, kind)

    payload = raw.get("payload", raw.get("data"))

    if kind not in KNOWN_KINDS:
        return UnclassifiedMessage(kind=kind, payload=payload)

    envelope = {"kind": kind}
    if payload is not None:
        envelope["payload"] = payload
    try:
        return _INBOUND_ADAPTER.validate_python(envelope)
    except ValidationError as e:
        raise MalformedMessage(f"Invalid '{kind}' payload: {e}") from e


class EventDispatcher:
    """Single consumer of push-channel events.

    Readings go to the time-series store, alerts to the alert sink, status
    changes to the device-status sink and server errors to the error sink.
    Nothing raised while decoding or routing one message escapes `dispatch`.
    """

    def __init__(
        self,
        store: TimeSeriesStore,
        alerts: AlertSink,
        devices: DeviceStatusSink,
        error_sink: Optional[Callable[[str], None]] = None,
    ):
        """Initialize dispatcher.

        Args:
            store: Time-series store receiving readings
            alerts: Alert sink
            devices: Device-status sink
            error_sink: Called with the message of pushed `error` frames
        """
        self.store = store
        self.alerts = alerts
        self.devices = devices
        self.error_sink = error_sink
        self._routed_handlers: List[Callable[[Any], None]] = []
        self._stats: Dict[str, int] = {
            "received": 0,
            "readings": 0,
            "alerts": 0,
            "duplicate_alerts": 0,
            "device_status": 0,
            "lifecycle": 0,
            "unclassified": 0,
            "malformed": 0,
        }

    @property
    def stats(self) -> Dict[str, int]:
        return dict(self._stats)

    def on_routed(self, handler: Callable[[Any], None]) -> None:
        """Register a handler called with every successfully routed message."""
        self._routed_handlers.append(handler)

    def handle_lifecycle(self, state: ConnectionState, error: Optional[str] = None) -> None:
        """Mirror connection state into the store's realtime flag."""
        self.store.set_realtime_connection(state == ConnectionState.CONNECTED)

    def dispatch(self, raw: Any) -> bool:
        """Decode and route one inbound frame.

        Returns:
            True if the message was routed, False if it was dropped
        """
        self._stats["received"] += 1
        try:
            message = decode_message(raw)
        except MalformedMessage as e:
            self._stats["malformed"] += 1
            logger.warning(f"⚠️  Dropping malformed message: {e}")
            return False

        try:
            routed = self._route(message)
        except Exception as e:
            logger.error(f"❌ Error routing '{message.kind}' message: {e}", exc_info=True)
            return False

        if routed:
            for handler in list(self._routed_handlers):
                try:
                    handler(message)
                except Exception as e:
                    logger.error(f"❌ Routed-message handler failed: {e}", exc_info=True)
        return routed

    def _route(self, message: Any) -> bool:
        if isinstance(message, SensorReadingMessage):
            self._stats["readings"] += 1
            self.store.record_reading(message.payload)
            logger.debug(f"📊 Reading {message.payload.device_id}/{message.payload.sensor_type}={message.payload.value}")
            return True

        if isinstance(message, AlertMessage):
            if self.alerts.add(message.payload):
                self._stats["alerts"] += 1
                return True
            self._stats["duplicate_alerts"] += 1
            return False

        if isinstance(message, DeviceStatusMessage):
            self._stats["device_status"] += 1
            self.devices.apply(message.payload)
            return True

        if isinstance(message, ErrorMessage):
            self._stats["lifecycle"] += 1
            if self.error_sink is not None:
                self.error_sink(message.payload.message)
            else:
                logger.warning(f"⚠️  Server error: {message.payload.message}")
            return True

        if isinstance(message, (ConnectedMessage, DisconnectedMessage)):
            # Connection state is owned by the connection manager
            self._stats["lifecycle"] += 1
            logger.info(f"Server reported '{message.kind}'")
            return True

        self._stats["unclassified"] += 1
        logger.warning(f"⚠️  Dropping unclassified message kind '{message.kind}'")
        return False
