"""Shared fixtures: in-memory push transport and helpers."""
import asyncio
import json
from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional

import pytest

from farm_sync.errors import TransportError
from farm_sync.models import Reading

BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class FakeTransport:
    """Push transport backed by a queue."""

    def __init__(self):
        self.sent: List[dict] = []
        self.inbound: asyncio.Queue = asyncio.Queue()
        self.closed = False
        self.fail_sends = False

    async def send(self, text: str) -> None:
        if self.closed or self.fail_sends:
            raise TransportError("send on closed transport")
        self.sent.append(json.loads(text))

    async def recv(self) -> Any:
        item = await self.inbound.get()
        if isinstance(item, Exception):
            raise item
        return item

    async def close(self) -> None:
        self.closed = True
        self.inbound.put_nowait(TransportError("closed"))

    def push(self, kind: str, payload: Any) -> None:
        self.inbound.put_nowait(json.dumps({"type": kind, "data": payload}, default=str))

    def drop(self) -> None:
        self.inbound.put_nowait(TransportError("connection reset"))


class FakeTransportFactory:
    """Transport factory that can be told to refuse connections."""

    def __init__(self):
        self.transports: List[FakeTransport] = []
        self.credentials: List[Optional[str]] = []
        self.calls = 0
        self.fail_next = 0

    async def __call__(self, url: str, credential: Optional[str]) -> FakeTransport:
        self.calls += 1
        self.credentials.append(credential)
        if self.fail_next:
            self.fail_next -= 1
            raise TransportError("connection refused")
        transport = FakeTransport()
        self.transports.append(transport)
        return transport

    @property
    def last(self) -> FakeTransport:
        return self.transports[-1]


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Poll until predicate() is true or fail."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


def make_reading(device_id: str = "dev-1", value: float = 7.0, seconds: int = 0,
                 sensor_type: str = "pH") -> Reading:
    return Reading(
        device_id=device_id,
        sensor_type=sensor_type,
        value=value,
        timestamp=BASE_TIME + timedelta(seconds=seconds),
    )


@pytest.fixture
def transport_factory() -> FakeTransportFactory:
    return FakeTransportFactory()
