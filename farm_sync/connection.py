"""Connection manager for the real-time push channel.

State machine:

    disconnected -> connecting -> connected -> reconnecting -> connected
                                                            -> disconnected

Only `disconnect()` leads to the disconnected state; every other failure
moves to reconnecting and retries with capped exponential backoff.
"""
import asyncio
import json
import logging
from contextlib import suppress
from typing import Any, Awaitable, Callable, Dict, List, Optional

from farm_sync.errors import NotConnected, TransportError
from farm_sync.models import ConnectionState, Subscription, TopicKind
from farm_sync.subscriptions import SubscriptionRegistry
from farm_sync.transport import WebSocketTransport

logger = logging.getLogger(__name__)

# Retry configuration
BASE_DELAY = 1.0  # seconds
MAX_DELAY = 30.0  # seconds

SUBSCRIBE_TYPES = {
    TopicKind.DEVICE: "subscribeDevice",
    TopicKind.FARM: "subscribeFarm",
}
UNSUBSCRIBE_TYPES = {
    TopicKind.DEVICE: "unsubscribeDevice",
    TopicKind.FARM: "unsubscribeFarm",
}
ID_FIELDS = {
    TopicKind.DEVICE: "deviceId",
    TopicKind.FARM: "farmId",
}

LifecycleHandler = Callable[[ConnectionState, Optional[str]], None]
MessageHandler = Callable[[Any], None]
TransportFactory = Callable[[str, Optional[str]], Awaitable[Any]]


def encode_message(msg_type: str, data: Any = None) -> str:
    """Encode an outbound message as JSON text."""
    return json.dumps({"type": msg_type, "data": data if data is not None else {}}, default=str)


class ConnectionManager:
    """Owns the single logical connection to the push channel."""

    def __init__(
        self,
        registry: SubscriptionRegistry,
        url: str,
        transport_factory: Optional[TransportFactory] = None,
        base_delay: float = BASE_DELAY,
        max_delay: float = MAX_DELAY,
    ):
        """Initialize connection manager.

        Args:
            registry: Desired subscriptions, replayed on every connect
            url: Push channel URL
            transport_factory: Async callable (url, credential) -> transport;
                defaults to WebSocketTransport.open
            base_delay: First reconnect delay in seconds
            max_delay: Upper bound for the reconnect delay in seconds
        """
        self.registry = registry
        self.url = url
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._transport_factory = transport_factory or WebSocketTransport.open

        self._state = ConnectionState.DISCONNECTED
        self._transport: Any = None
        self._credential: Optional[str] = None
        self._epoch = 0
        self._last_error: Optional[str] = None
        self._closing = False

        self._lock = asyncio.Lock()
        self._reader_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None

        self._lifecycle_handlers: List[LifecycleHandler] = []
        self._message_handlers: List[MessageHandler] = []

    # Observable state

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    @property
    def epoch(self) -> int:
        """Number of successful connections so far."""
        return self._epoch

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    @property
    def subscriptions(self) -> List[Subscription]:
        return self.registry.replay_all()

    def record_error(self, message: str) -> None:
        """Set the observable last error."""
        self._last_error = message
        logger.warning(f"⚠️  Push channel error: {message}")

    def clear_error(self) -> None:
        self._last_error = None

    # Event surface

    def on_lifecycle(self, handler: LifecycleHandler) -> None:
        """Register a handler called with (state, error) on every transition."""
        self._lifecycle_handlers.append(handler)

    def on_message(self, handler: MessageHandler) -> None:
        """Register a handler called with each raw inbound frame."""
        self._message_handlers.append(handler)

    def clear_handlers(self) -> None:
        self._lifecycle_handlers.clear()
        self._message_handlers.clear()

    # Lifecycle

    async def connect(self, credential: Optional[str] = None) -> bool:
        """Connect to the push channel.

        Resolves after the first attempt. On failure a background retry is
        scheduled and False is returned; transport errors are never raised.

        Args:
            credential: Bearer token; kept for later reconnects

        Returns:
            True if connected
        """
        if credential is not None:
            self._credential = credential

        async with self._lock:
            if self._state == ConnectionState.CONNECTED:
                return True

            # An explicit connect while waiting to retry retries right away
            await self._cancel_reconnect()
            self._closing = False

            if self._state == ConnectionState.DISCONNECTED:
                self._transition(ConnectionState.CONNECTING)
            return await self._attempt()

    async def disconnect(self) -> None:
        """Close the connection and stop retrying. Idempotent."""
        self._closing = True
        await self._cancel_reconnect()

        async with self._lock:
            self._closing = True
            reader, self._reader_task = self._reader_task, None
            if reader is not None and not reader.done():
                reader.cancel()
                with suppress(asyncio.CancelledError):
                    await reader

            transport, self._transport = self._transport, None
            if transport is not None:
                await self._close_quietly(transport)

            if self._state != ConnectionState.DISCONNECTED:
                self._transition(ConnectionState.DISCONNECTED)
                logger.info("🛑 Push channel disconnected")

    # Outbound

    async def send(self, msg_type: str, data: Any = None) -> bool:
        """Send a message on the live connection.

        Returns:
            True if written, False if the write failed and a reconnect started

        Raises:
            NotConnected: If the connection is not in the connected state
        """
        transport = self._transport
        if self._state != ConnectionState.CONNECTED or transport is None:
            raise NotConnected(f"Cannot send '{msg_type}' while {self._state.value}")

        try:
            await transport.send(encode_message(msg_type, data))
            return True
        except TransportError as e:
            logger.warning(f"⚠️  Send of '{msg_type}' failed: {e}")
            self._handle_drop(transport, str(e))
            await self._close_quietly(transport)
            return False

    async def subscribe_device(self, device_id) -> bool:
        return await self._subscribe(TopicKind.DEVICE, device_id)

    async def unsubscribe_device(self, device_id) -> bool:
        return await self._unsubscribe(TopicKind.DEVICE, device_id)

    async def subscribe_farm(self, farm_id) -> bool:
        return await self._subscribe(TopicKind.FARM, farm_id)

    async def unsubscribe_farm(self, farm_id) -> bool:
        return await self._unsubscribe(TopicKind.FARM, farm_id)

    async def _subscribe(self, kind: TopicKind, topic_id) -> bool:
        """Add to the registry, forwarding only new topics while connected.

        Returns:
            True if a request was written to the transport
        """
        if not self.registry.add(kind, topic_id):
            return False
        return await self._forward(SUBSCRIBE_TYPES[kind], kind, topic_id)

    async def _unsubscribe(self, kind: TopicKind, topic_id) -> bool:
        if not self.registry.remove(kind, topic_id):
            return False
        return await self._forward(UNSUBSCRIBE_TYPES[kind], kind, topic_id)

    async def _forward(self, msg_type: str, kind: TopicKind, topic_id) -> bool:
        if self._state != ConnectionState.CONNECTED:
            logger.debug(f"Not connected, {msg_type} {topic_id} left for replay")
            return False
        return await self.send(msg_type, {ID_FIELDS[kind]: str(topic_id)})

    # Internals

    def _transition(self, new_state: ConnectionState, error: Optional[str] = None) -> None:
        """Change state and notify lifecycle handlers in the same call."""
        old_state = self._state
        if old_state == new_state:
            return
        self._state = new_state
        logger.info(f"Connection state {old_state.value} -> {new_state.value}")

        for handler in list(self._lifecycle_handlers):
            try:
                handler(new_state, error)
            except Exception as e:
                logger.error(f"❌ Lifecycle handler failed: {e}", exc_info=True)

    async def _attempt(self) -> bool:
        """Open the transport once. Caller holds the lock."""
        try:
            transport = await self._transport_factory(self.url, self._credential)
        except TransportError as e:
            self.record_error(str(e))
            self._transition(ConnectionState.RECONNECTING, str(e))
            self._schedule_reconnect()
            return False

        return await self._on_open(transport)

    async def _on_open(self, transport: Any) -> bool:
        """Enter connected state, replay subscriptions, then start reading."""
        self._transport = transport
        self._epoch += 1
        self._closing = False
        self._last_error = None
        epoch = self._epoch
        self._transition(ConnectionState.CONNECTED)
        logger.info(f"✅ Push channel connected (epoch {epoch})")

        # Resubscribe before any inbound frame of this epoch is read
        replay = self.registry.replay_all()
        for subscription in replay:
            message = encode_message(
                SUBSCRIBE_TYPES[subscription.kind],
                {ID_FIELDS[subscription.kind]: subscription.id},
            )
            try:
                await transport.send(message)
            except TransportError as e:
                logger.warning(f"⚠️  Subscription replay failed: {e}")
                self._handle_drop(transport, str(e))
                await self._close_quietly(transport)
                return False

        if replay:
            logger.info(f"Replayed {len(replay)} subscriptions")

        self._reader_task = asyncio.create_task(self._read_loop(transport, epoch))
        return True

    async def _read_loop(self, transport: Any, epoch: int) -> None:
        """Deliver inbound frames in arrival order until the connection drops."""
        try:
            while True:
                raw = await transport.recv()
                self._deliver(raw)
        except TransportError as e:
            if self._closing or epoch != self._epoch:
                return
            logger.warning(f"⚠️  Push channel dropped: {e}")
            self._handle_drop(transport, str(e))
            await self._close_quietly(transport)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if self._closing or epoch != self._epoch:
                return
            logger.error(f"❌ Push channel reader failed: {e}", exc_info=True)
            self._handle_drop(transport, str(e))
            await self._close_quietly(transport)

    def _deliver(self, raw: Any) -> None:
        for handler in list(self._message_handlers):
            try:
                handler(raw)
            except Exception as e:
                logger.error(f"❌ Message handler failed: {e}", exc_info=True)

    def _handle_drop(self, transport: Any, message: str) -> None:
        """Move connected -> reconnecting synchronously and schedule a retry."""
        if transport is not self._transport or self._state != ConnectionState.CONNECTED:
            return
        self._transport = None
        self.record_error(message)
        self._transition(ConnectionState.RECONNECTING, message)
        self._schedule_reconnect()

    def _backoff(self, attempt: int) -> float:
        return min(self.base_delay * (2 ** attempt), self.max_delay)

    def _schedule_reconnect(self) -> None:
        if self._closing:
            return
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        self._reconnect_task = asyncio.create_task(self._reconnect_loop())

    async def _reconnect_loop(self) -> None:
        attempt = 0
        while True:
            delay = self._backoff(attempt)
            logger.info(f"🔄 Reconnecting in {delay:.1f}s (attempt {attempt + 1})")
            await asyncio.sleep(delay)

            async with self._lock:
                if self._state != ConnectionState.RECONNECTING or self._closing:
                    return
                if await self._attempt():
                    return
            attempt += 1

    async def _cancel_reconnect(self) -> None:
        task, self._reconnect_task = self._reconnect_task, None
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task

    @staticmethod
    async def _close_quietly(transport: Any) -> None:
        try:
            await transport.close()
        except TransportError as e:
            logger.debug(f"Error closing transport: {e}")
