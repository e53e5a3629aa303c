"""Pydantic models for telemetry, alerts and push-channel messages."""
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def _as_utc(value: Any) -> Any:
    if value is None:
        return utc_now()
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class ConnectionState(str, Enum):
    """Push channel connection state."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


class TopicKind(str, Enum):
    """Kinds of subscribable real-time feeds."""
    DEVICE = "device"
    FARM = "farm"


class SensorStatus(str, Enum):
    """Health classification of a device's latest reading."""
    UNKNOWN = "unknown"
    NORMAL = "normal"
    WARNING = "warning"
    CRITICAL = "critical"


class Reading(BaseModel):
    """Single sensor reading for a device."""
    model_config = ConfigDict(frozen=True, populate_by_name=True, coerce_numbers_to_str=True)

    device_id: str = Field(
        validation_alias=AliasChoices("deviceId", "device_id", "device"),
        serialization_alias="deviceId",
    )
    sensor_type: str = Field(
        validation_alias=AliasChoices("sensorType", "sensor_type", "type"),
        serialization_alias="sensorType",
    )
    value: float
    timestamp: datetime = Field(default_factory=utc_now)
    status: Optional[str] = None

    @field_validator("timestamp", mode="before")
    @classmethod
    def _default_timestamp(cls, value: Any) -> Any:
        return _as_utc(value)

    @field_validator("timestamp")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        return _as_utc(value)


class Threshold(BaseModel):
    """Bounds used to classify readings of one sensor type."""
    model_config = ConfigDict(frozen=True)

    min: float
    max: float
    optimal: float


class Alert(BaseModel):
    """Alert raised for a device."""
    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    id: str
    device_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("deviceId", "device_id", "device"),
        serialization_alias="deviceId",
    )
    type: Literal["low", "medium", "high"]
    message: str = ""
    resolved: bool = False
    timestamp: datetime = Field(default_factory=utc_now)
    resolved_at: Optional[datetime] = Field(
        default=None,
        validation_alias=AliasChoices("resolvedAt", "resolved_at"),
        serialization_alias="resolvedAt",
    )

    @field_validator("timestamp", mode="before")
    @classmethod
    def _default_timestamp(cls, value: Any) -> Any:
        return _as_utc(value)

    @field_validator("timestamp", "resolved_at")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is None:
            return None
        return _as_utc(value)


class DeviceStatusUpdate(BaseModel):
    """Status change pushed for a device."""
    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    device_id: str = Field(
        validation_alias=AliasChoices("deviceId", "device_id", "device"),
        serialization_alias="deviceId",
    )
    status: str


class Subscription(BaseModel):
    """Desired real-time feed."""
    model_config = ConfigDict(frozen=True)

    kind: TopicKind
    id: str


class Statistics(BaseModel):
    """Aggregates over a cached series."""
    min: float = 0.0
    max: float = 0.0
    avg: float = 0.0
    count: int = 0


# Inbound push messages. The dispatcher matches on the concrete class.

class ErrorPayload(BaseModel):
    message: str = "WebSocket connection error"


class ConnectedMessage(BaseModel):
    kind: Literal["connected"]
    payload: Dict[str, Any] = Field(default_factory=dict)


class DisconnectedMessage(BaseModel):
    kind: Literal["disconnected"]
    payload: Dict[str, Any] = Field(default_factory=dict)


class ErrorMessage(BaseModel):
    kind: Literal["error"]
    payload: ErrorPayload = Field(default_factory=ErrorPayload)


class SensorReadingMessage(BaseModel):
    kind: Literal["sensorReading"]
    payload: Reading


class AlertMessage(BaseModel):
    kind: Literal["alert"]
    payload: Alert


class DeviceStatusMessage(BaseModel):
    kind: Literal["deviceStatus"]
    payload: DeviceStatusUpdate


class UnclassifiedMessage(BaseModel):
    """Message whose kind is not known; never routed."""
    kind: str
    payload: Any = None


InboundMessage = Annotated[
    Union[
        ConnectedMessage,
        DisconnectedMessage,
        ErrorMessage,
        SensorReadingMessage,
        AlertMessage,
        DeviceStatusMessage,
    ],
    Field(discriminator="kind"),
]


# API response models for the UI surface.

class DeviceView(BaseModel):
    """Derived view of one device."""
    device_id: str
    range: str
    latest: Optional[Reading] = None
    status: SensorStatus
    trend: float
    average: Optional[float] = None
    statistics: Statistics


class ConnectionResponse(BaseModel):
    """Connection state as seen by the UI."""
    state: ConnectionState
    realtime_connected: bool
    epoch: int
    last_error: Optional[str] = None
    subscriptions: List[Subscription]


class ThresholdUpdate(BaseModel):
    """Partial threshold bounds."""
    min: Optional[float] = None
    max: Optional[float] = None
    optimal: Optional[float] = None
