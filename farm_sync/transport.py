"""WebSocket transport for the push channel."""
import asyncio
import logging
from typing import Optional, Union
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from websockets.asyncio.client import ClientConnection, connect as ws_connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from farm_sync.errors import TransportError

logger = logging.getLogger(__name__)


def with_token(url: str, credential: Optional[str]) -> str:
    """Append the credential as a `token` query parameter."""
    if not credential:
        return url
    parts = urlsplit(url)
    query = [(k, v) for k, v in parse_qsl(parts.query) if k != "token"]
    query.append(("token", credential))
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))


class WebSocketTransport:
    """Thin wrapper over a websockets client connection.

    Every failure surfaces as TransportError so the connection manager only
    deals with one error type. Any object with async `send`, `recv` and
    `close` can stand in for this class.
    """

    def __init__(self, websocket: ClientConnection):
        self._websocket = websocket

    @classmethod
    async def open(
        cls,
        url: str,
        credential: Optional[str] = None,
        open_timeout: float = 10.0,
    ) -> "WebSocketTransport":
        """Open a connection.

        Args:
            url: Push channel URL (ws:// or wss://)
            credential: Optional bearer token
            open_timeout: Seconds to wait for the handshake

        Raises:
            TransportError: If the connection could not be established
        """
        headers = {"Authorization": f"Bearer {credential}"} if credential else None
        try:
            websocket = await ws_connect(
                with_token(url, credential),
                additional_headers=headers,
                open_timeout=open_timeout,
                ping_interval=20,
                ping_timeout=20,
                close_timeout=5,
            )
        except (OSError, WebSocketException, asyncio.TimeoutError) as e:
            raise TransportError(f"Failed to connect to {url}: {e}") from e

        logger.info(f"WebSocket opened to {url}")
        return cls(websocket)

    async def send(self, text: str) -> None:
        try:
            await self._websocket.send(text)
        except (ConnectionClosed, OSError) as e:
            raise TransportError(f"Send failed: {e}") from e

    async def recv(self) -> Union[str, bytes]:
        try:
            return await self._websocket.recv()
        except (ConnectionClosed, OSError) as e:
            raise TransportError(f"Connection lost: {e}") from e

    async def close(self) -> None:
        try:
            await self._websocket.close()
        except (ConnectionClosed, OSError) as e:
            logger.debug(f"Error closing WebSocket: {e}")
