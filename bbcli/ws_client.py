"""Realtime WebSocket client for Bybit v5 streams using aiohttp.

Subscribes to a topic and forwards every ``{topic, data}`` push message to a
callback. Private topics (wallet, position, order) authenticate first.
"""
import asyncio
import hashlib
import hmac
import json
import time
from typing import Any, Callable, Optional

from aiohttp import ClientError, ClientSession, ClientWebSocketResponse, WSMsgType

from .credentials import BybitCredentials
from .logging_setup import logger

MAINNET_WS = "wss://stream.bybit.com/v5"
TESTNET_WS = "wss://stream-testnet.bybit.com/v5"

UpdateHandler = Callable[[dict], None]
ErrorHandler = Callable[[Any], None]
CloseHandler = Callable[[], None]


def get_ws_url(testnet: bool, is_private: bool, category: str = "linear") -> str:
    base = TESTNET_WS if testnet else MAINNET_WS
    if is_private:
        return f"{base}/private"
    return f"{base}/public/{category}"


def auth_args(credentials: BybitCredentials, expires_ms: Optional[int] = None) -> list:
    """Arguments for the ``auth`` op: key, expiry, HMAC of ``GET/realtime{expires}``."""
    if expires_ms is None:
        expires_ms = int(time.time() * 1000) + 10_000
    signature = hmac.new(
        credentials.api_secret.encode("utf-8"),
        f"GET/realtime{expires_ms}".encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()
    return [credentials.api_key, expires_ms, signature]


class BybitWebSocketClient:
    def __init__(
        self,
        credentials: Optional[BybitCredentials] = None,
        *,
        testnet: bool = False,
        category: str = "linear",
        ping_interval: float = 20.0,
    ):
        self.credentials = credentials
        self.testnet = testnet
        self.category = category
        self.ping_interval = ping_interval
        self._session: Optional[ClientSession] = None
        self._ws: Optional[ClientWebSocketResponse] = None
        self._tasks: list = []
        self._closed = False

    async def subscribe(
        self,
        topic: str,
        is_private: bool,
        on_update: UpdateHandler,
        on_error: Optional[ErrorHandler] = None,
        on_close: Optional[CloseHandler] = None,
    ) -> None:
        """Connect, authenticate if needed, subscribe, and start delivering in the background.

        ``on_close`` runs once if the stream ends without ``close()`` being
        called, e.g. the server dropped the connection.
        """
        if is_private and self.credentials is None:
            raise ValueError("Private topics require credentials")

        url = get_ws_url(self.testnet, is_private, self.category)
        self._session = ClientSession()
        self._ws = await self._session.ws_connect(url)
        logger.debug(f"WebSocket connected | url={url}")

        if is_private:
            await self._ws.send_str(json.dumps({"op": "auth", "args": auth_args(self.credentials)}))
        await self._ws.send_str(json.dumps({"op": "subscribe", "args": [topic]}))
        logger.info(f"Subscribed | topic={topic}")

        loop = asyncio.get_running_loop()
        self._tasks = [
            loop.create_task(self._run_loop(on_update, on_error, on_close)),
            loop.create_task(self._ping_loop()),
        ]

    async def _run_loop(
        self,
        on_update: UpdateHandler,
        on_error: Optional[ErrorHandler],
        on_close: Optional[CloseHandler] = None,
    ) -> None:
        assert self._ws is not None
        try:
            async for msg in self._ws:
                if msg.type == WSMsgType.TEXT:
                    try:
                        data = json.loads(msg.data)
                    except ValueError:
                        logger.warning("Dropped non-JSON stream message")
                        continue
                    self._dispatch(data, on_update, on_error)
                elif msg.type == WSMsgType.ERROR:
                    if on_error is not None:
                        on_error(self._ws.exception())
                    break
                elif msg.type in (WSMsgType.CLOSE, WSMsgType.CLOSING, WSMsgType.CLOSED):
                    break
        except ClientError as e:
            logger.error(f"Stream transport error | error={e!r}")
            if on_error is not None:
                on_error(e)

        if self._closed:
            return
        logger.warning(f"Stream ended by peer | close_code={self._ws.close_code}")
        if on_close is not None:
            on_close()

    @staticmethod
    def _dispatch(data: Any, on_update: UpdateHandler, on_error: Optional[ErrorHandler]) -> None:
        if not isinstance(data, dict):
            return
        if "op" in data:
            # control frame: auth/subscribe acks and pongs
            if data.get("success") is False and on_error is not None:
                on_error(data.get("ret_msg") or data)
            return
        on_update(data)

    async def _ping_loop(self) -> None:
        while self._ws is not None and not self._ws.closed:
            await asyncio.sleep(self.ping_interval)
            if self._ws is not None and not self._ws.closed:
                await self._ws.send_str(json.dumps({"op": "ping"}))

    async def close(self) -> None:
        """Close the stream. Safe to call repeatedly or before ``subscribe``."""
        if self._closed:
            return
        self._closed = True
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.warning(f"Stream task ended with error | error={e!r}")
        self._tasks = []
        if self._ws is not None:
            await self._ws.close()
        if self._session is not None:
            await self._session.close()
        logger.debug("WebSocket closed")
