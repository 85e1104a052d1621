from unittest.mock import MagicMock

import pytest

from bbcli import trade
from bbcli.bybit_client import BybitRestClient
from bbcli.errors import CliError, map_api_error


@pytest.fixture
def client():
    mock = MagicMock(spec=BybitRestClient)
    mock.place_order.return_value = {"orderId": "o-1", "orderLinkId": ""}
    return mock


def test_normalize_side():
    assert trade.normalize_side("buy") == "Buy"
    assert trade.normalize_side("SELL") == "Sell"
    with pytest.raises(ValueError):
        trade.normalize_side("long")


def test_limit_order_body(client):
    result = trade.place_limit_order(client, "linear", "buy", "0.01", "btc", "60000", time_in_force="PostOnly")

    assert result == trade.OrderResult(order_id="o-1")
    client.place_order.assert_called_once_with({
        "category": "linear",
        "symbol": "BTCUSDT",
        "side": "Buy",
        "orderType": "Limit",
        "qty": "0.01",
        "price": "60000",
        "timeInForce": "PostOnly",
        "reduceOnly": False,
    })


def test_limit_order_rejects_bad_input_before_sending(client):
    with pytest.raises(ValueError):
        trade.place_limit_order(client, "linear", "buy", "0", "BTC", "60000")
    with pytest.raises(ValueError):
        trade.place_limit_order(client, "linear", "buy", "1", "BTC", "60000", time_in_force="GTD")
    client.place_order.assert_not_called()


def test_market_order_body(client):
    trade.place_market_order(client, "linear", "sell", "2", "ETH", reduce_only=True)
    body = client.place_order.call_args[0][0]
    assert body["orderType"] == "Market"
    assert body["side"] == "Sell"
    assert body["symbol"] == "ETHUSDT"
    assert body["reduceOnly"] is True
    assert "price" not in body


@pytest.mark.parametrize("kind, side, direction", [
    ("stop-loss", "sell", trade.FALLS_TO_TRIGGER),
    ("stop-loss", "buy", trade.RISES_TO_TRIGGER),
    ("take-profit", "sell", trade.RISES_TO_TRIGGER),
    ("take-profit", "buy", trade.FALLS_TO_TRIGGER),
])
def test_conditional_order_trigger_direction(client, kind, side, direction):
    trade.place_conditional_order(client, kind, "linear", side, "1", "BTC", "59000", "59500")
    body = client.place_order.call_args[0][0]
    assert body["triggerDirection"] == direction
    assert body["triggerPrice"] == "59500"
    assert body["orderType"] == "Limit"


def test_cancel_all_scopes_linear_by_settle_coin(client):
    client.cancel_all_orders.return_value = {"list": [{"orderId": "a"}, {"orderId": "b"}]}
    result = trade.cancel_all_orders(client, "linear")
    client.cancel_all_orders.assert_called_once_with("linear", symbol=None, settle_coin="USDT")
    assert result.to_dict() == {"cancelled": 2, "orders": [{"orderId": "a"}, {"orderId": "b"}]}


def test_cancel_all_for_one_symbol(client):
    client.cancel_all_orders.return_value = {"list": []}
    result = trade.cancel_all_orders(client, "linear", "btc")
    client.cancel_all_orders.assert_called_once_with("linear", symbol="BTCUSDT", settle_coin=None)
    assert result.order_ids == ()


def test_amend_requires_price_or_qty(client):
    with pytest.raises(ValueError, match="--price or --qty"):
        trade.amend_order(client, "linear", "o-1", "BTC")
    client.amend_order.return_value = {"orderId": "o-1", "orderLinkId": "link"}
    result = trade.amend_order(client, "linear", "o-1", "BTC", qty="3")
    client.amend_order.assert_called_once_with("linear", "BTCUSDT", "o-1", price=None, qty="3")
    assert result.order_link_id == "link"


def test_set_leverage_not_modified_is_success(client):
    client.set_leverage.side_effect = map_api_error(110043, "leverage not modified")
    result = trade.set_leverage(client, "linear", "BTC", "10")
    assert result == trade.LeverageResult(symbol="BTCUSDT", leverage="10", changed=False)


def test_set_leverage_other_errors_propagate(client):
    client.set_leverage.side_effect = map_api_error(10001, "params error")
    with pytest.raises(CliError) as exc_info:
        trade.set_leverage(client, "linear", "BTC", "10")
    assert exc_info.value.ret_code == 10001
