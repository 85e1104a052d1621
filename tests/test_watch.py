import asyncio

import pytest

from bbcli.reconcilers import PriceInfo, reconcile_ticker, reconcile_wallet
from bbcli.watch import WatchSession, build_ws_topic, install_shutdown_handler, once


class FakeStreamClient:
    """Stream client that records calls and lets tests push messages."""

    def __init__(self, fail_subscribe: bool = False):
        self.fail_subscribe = fail_subscribe
        self.subscribed = []
        self.close_calls = 0
        self.on_update = None
        self.on_error = None
        self.on_close = None

    async def subscribe(self, topic, is_private, on_update, on_error=None, on_close=None):
        if self.fail_subscribe:
            raise ConnectionError("handshake failed")
        self.subscribed.append((topic, is_private))
        self.on_update = on_update
        self.on_error = on_error
        self.on_close = on_close

    async def close(self):
        self.close_calls += 1


def test_build_ws_topic():
    assert build_ws_topic("orderbook", "BTCUSDT") == "orderbook.50.BTCUSDT"
    assert build_ws_topic("orderbook", "BTCUSDT", 200) == "orderbook.200.BTCUSDT"
    assert build_ws_topic("tickers", "ETHUSDT") == "tickers.ETHUSDT"
    assert build_ws_topic("position") == "position"
    assert build_ws_topic("order") == "order"
    assert build_ws_topic("wallet") == "wallet"
    with pytest.raises(ValueError):
        build_ws_topic("candles")


def test_session_routes_matching_topic_only():
    seen = []
    session = WatchSession(
        FakeStreamClient(), "tickers.BTCUSDT", reconcile_ticker, PriceInfo(symbol="BTCUSDT"), on_snapshot=seen.append
    )
    session.handle_message({"topic": "tickers.ETHUSDT", "data": {"lastPrice": "1"}})
    assert session.snapshot.last_price == ""
    assert not session.connected

    session.handle_message({"topic": "tickers.BTCUSDT", "data": {"lastPrice": "86000"}})
    session.handle_message({"topic": "tickers.BTCUSDT", "data": {"markPrice": "86001"}})
    assert session.connected
    assert session.snapshot == PriceInfo(symbol="BTCUSDT", last_price="86000", mark_price="86001")
    assert len(seen) == 2


def test_malformed_message_keeps_snapshot():
    initial = ()
    session = WatchSession(FakeStreamClient(), "wallet", reconcile_wallet, initial)
    session.handle_message({"topic": "wallet", "data": "nonsense"})
    assert session.snapshot is initial


def test_stop_is_idempotent_and_blocks_delivery():
    session = WatchSession(FakeStreamClient(), "wallet", reconcile_wallet, ())
    session.stop()
    session.stop()
    assert session.stopped
    session.handle_message({"topic": "wallet", "data": [{"coin": [{"coin": "BTC"}]}]})
    assert session.snapshot == ()


@pytest.mark.asyncio
async def test_run_until_stopped_then_closes_stream():
    client = FakeStreamClient()
    session = WatchSession(client, "wallet", reconcile_wallet, (), is_private=True)

    task = asyncio.create_task(session.run())
    await asyncio.sleep(0.01)
    assert client.subscribed == [("wallet", True)]

    client.on_update({"topic": "wallet", "data": [{"coin": [{"coin": "USDT", "equity": "5"}]}]})
    client.on_error("socket hiccup")
    assert session.last_error == "socket hiccup"

    session.stop()
    session.stop()
    result = await asyncio.wait_for(task, timeout=1.0)
    assert result[0].coin == "USDT"
    assert client.close_calls == 1


@pytest.mark.asyncio
async def test_stream_end_finishes_run():
    client = FakeStreamClient()
    session = WatchSession(client, "tickers.BTCUSDT", reconcile_ticker, PriceInfo(symbol="BTCUSDT"))

    task = asyncio.create_task(session.run())
    await asyncio.sleep(0.01)
    client.on_update({"topic": "tickers.BTCUSDT", "data": {"lastPrice": "86000"}})
    client.on_close()

    result = await asyncio.wait_for(task, timeout=1.0)
    assert result.last_price == "86000"
    assert session.disconnected
    assert client.close_calls == 1


def test_close_after_stop_is_not_a_disconnect():
    session = WatchSession(FakeStreamClient(), "wallet", reconcile_wallet, ())
    session.stop()
    session.handle_close()
    assert not session.disconnected


@pytest.mark.asyncio
async def test_stop_before_run_never_subscribes():
    client = FakeStreamClient()
    session = WatchSession(client, "order", reconcile_wallet, ())
    session.stop()
    await asyncio.wait_for(session.run(), timeout=1.0)
    assert client.subscribed == []
    assert client.close_calls == 1


@pytest.mark.asyncio
async def test_failed_subscribe_still_releases_stream():
    client = FakeStreamClient(fail_subscribe=True)
    session = WatchSession(client, "order", reconcile_wallet, ())
    with pytest.raises(ConnectionError):
        await session.run()
    assert client.close_calls == 1
    session.stop()


def test_once_runs_cleanup_a_single_time():
    calls = []
    handler = once(lambda: calls.append(1))
    handler()
    handler()
    assert calls == [1]


@pytest.mark.asyncio
async def test_shutdown_handler_on_event_loop():
    import signal

    loop = asyncio.get_running_loop()
    calls = []
    handler = install_shutdown_handler(lambda: calls.append("cleanup"), loop=loop)
    try:
        handler()
        handler()
        assert calls == ["cleanup"]
    finally:
        loop.remove_signal_handler(signal.SIGINT)
        loop.remove_signal_handler(signal.SIGTERM)
