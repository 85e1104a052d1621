import asyncio
import hashlib
import hmac

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from bbcli import ws_client
from bbcli.credentials import BybitCredentials
from bbcli.reconcilers import PriceInfo, reconcile_ticker
from bbcli.watch import WatchSession
from bbcli.ws_client import BybitWebSocketClient, auth_args, get_ws_url


def test_ws_urls():
    assert get_ws_url(False, False) == "wss://stream.bybit.com/v5/public/linear"
    assert get_ws_url(False, False, "spot") == "wss://stream.bybit.com/v5/public/spot"
    assert get_ws_url(True, True) == "wss://stream-testnet.bybit.com/v5/private"


def test_auth_args_signature():
    creds = BybitCredentials(api_key="key", api_secret="secret")
    key, expires, signature = auth_args(creds, expires_ms=1700000000000)
    expected = hmac.new(b"secret", b"GET/realtime1700000000000", hashlib.sha256).hexdigest()
    assert key == "key"
    assert expires == 1700000000000
    assert signature == expected


def test_dispatch_routes_data_and_control_frames():
    updates, errors = [], []
    dispatch = BybitWebSocketClient._dispatch

    dispatch({"topic": "wallet", "data": []}, updates.append, errors.append)
    dispatch({"op": "subscribe", "success": True}, updates.append, errors.append)
    dispatch({"op": "auth", "success": False, "ret_msg": "invalid signature"}, updates.append, errors.append)
    dispatch(["not", "a", "dict"], updates.append, errors.append)

    assert updates == [{"topic": "wallet", "data": []}]
    assert errors == ["invalid signature"]


@pytest.mark.asyncio
async def test_close_before_subscribe_is_safe():
    client = BybitWebSocketClient()
    await client.close()
    await client.close()


@pytest.mark.asyncio
async def test_private_subscribe_requires_credentials():
    client = BybitWebSocketClient()
    with pytest.raises(ValueError):
        await client.subscribe("wallet", True, lambda msg: None)


@pytest.mark.asyncio
async def test_server_close_ends_watch_session(monkeypatch):
    async def handler(request):
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        await ws.receive()
        await ws.send_json({"topic": "tickers.BTCUSDT", "data": {"lastPrice": "86000"}})
        await ws.close()
        return ws

    app = web.Application()
    app.router.add_get("/v5/public/linear", handler)
    server = TestServer(app, host="127.0.0.1")
    await server.start_server()
    monkeypatch.setattr(ws_client, "MAINNET_WS", f"ws://127.0.0.1:{server.port}/v5")
    try:
        session = WatchSession(
            BybitWebSocketClient(), "tickers.BTCUSDT", reconcile_ticker, PriceInfo(symbol="BTCUSDT")
        )
        result = await asyncio.wait_for(session.run(), timeout=5.0)
    finally:
        await server.close()

    assert result.last_price == "86000"
    assert session.disconnected
