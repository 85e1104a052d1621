"""Order placement and management on top of ``BybitRestClient``.

Functions here validate user input, build the v5 request bodies and return
small result records; printing is left to the CLI. Exchange rejections
surface as ``CliError`` from the client.
"""
from dataclasses import dataclass
from typing import Optional, Tuple

from .bybit_client import BybitRestClient
from .errors import CliError
from .validation import to_symbol, validate_positive_number

SIDES = ("Buy", "Sell")
TIME_IN_FORCE = ("GTC", "IOC", "FOK", "PostOnly")

# triggerDirection: 1 fires when price rises to the trigger, 2 when it falls
RISES_TO_TRIGGER = 1
FALLS_TO_TRIGGER = 2

LEVERAGE_NOT_MODIFIED = 110043


@dataclass(frozen=True)
class OrderResult:
    order_id: str
    order_link_id: str = ""

    def to_dict(self) -> dict:
        return {"orderId": self.order_id, "orderLinkId": self.order_link_id}


@dataclass(frozen=True)
class CancelAllResult:
    order_ids: Tuple[str, ...]

    def to_dict(self) -> dict:
        return {"cancelled": len(self.order_ids), "orders": [{"orderId": i} for i in self.order_ids]}


@dataclass(frozen=True)
class LeverageResult:
    symbol: str
    leverage: str
    changed: bool = True

    def to_dict(self) -> dict:
        return {"symbol": self.symbol, "leverage": self.leverage, "changed": self.changed}


def normalize_side(side: str) -> str:
    """``buy``/``BUY``/``Buy`` -> ``Buy``."""
    normalized = side.strip().capitalize()
    if normalized not in SIDES:
        raise ValueError('Side must be "buy" or "sell".')
    return normalized


def _order_result(result: Optional[dict]) -> OrderResult:
    result = result or {}
    return OrderResult(order_id=result.get("orderId", ""), order_link_id=result.get("orderLinkId") or "")


def place_limit_order(
    client: BybitRestClient,
    category: str,
    side: str,
    qty: str,
    coin: str,
    price: str,
    time_in_force: str = "GTC",
    reduce_only: bool = False,
) -> OrderResult:
    if time_in_force not in TIME_IN_FORCE:
        raise ValueError(f"Time in force must be one of: {', '.join(TIME_IN_FORCE)}")
    body = {
        "category": category,
        "symbol": to_symbol(coin, category),
        "side": normalize_side(side),
        "orderType": "Limit",
        "qty": validate_positive_number(qty, "size"),
        "price": validate_positive_number(price, "price"),
        "timeInForce": time_in_force,
        "reduceOnly": reduce_only,
    }
    return _order_result(client.place_order(body))


def place_market_order(
    client: BybitRestClient,
    category: str,
    side: str,
    qty: str,
    coin: str,
    reduce_only: bool = False,
) -> OrderResult:
    body = {
        "category": category,
        "symbol": to_symbol(coin, category),
        "side": normalize_side(side),
        "orderType": "Market",
        "qty": validate_positive_number(qty, "size"),
        "timeInForce": "GTC",
        "reduceOnly": reduce_only,
    }
    return _order_result(client.place_order(body))


def trigger_direction(kind: str, side: str) -> int:
    """Direction for a conditional exit order.

    A stop-loss sell fires on a fall, a take-profit sell on a rise; buys
    mirror that.
    """
    if kind == "stop-loss":
        return FALLS_TO_TRIGGER if side == "Sell" else RISES_TO_TRIGGER
    if kind == "take-profit":
        return RISES_TO_TRIGGER if side == "Sell" else FALLS_TO_TRIGGER
    raise ValueError(f"Unknown conditional order kind: {kind}")


def place_conditional_order(
    client: BybitRestClient,
    kind: str,
    category: str,
    side: str,
    qty: str,
    coin: str,
    price: str,
    trigger_price: str,
    reduce_only: bool = False,
) -> OrderResult:
    """Place a stop-loss or take-profit limit order that arms at ``trigger_price``."""
    side = normalize_side(side)
    body = {
        "category": category,
        "symbol": to_symbol(coin, category),
        "side": side,
        "orderType": "Limit",
        "qty": validate_positive_number(qty, "size"),
        "price": validate_positive_number(price, "price"),
        "triggerPrice": validate_positive_number(trigger_price, "trigger price"),
        "triggerDirection": trigger_direction(kind, side),
        "timeInForce": "GTC",
        "reduceOnly": reduce_only,
    }
    return _order_result(client.place_order(body))


def cancel_order(client: BybitRestClient, category: str, order_id: str, coin: str) -> OrderResult:
    return _order_result(client.cancel_order(category, to_symbol(coin, category), order_id))


def cancel_all_orders(client: BybitRestClient, category: str, coin: Optional[str] = None) -> CancelAllResult:
    """Cancel every open order, optionally for one symbol.

    Without a symbol, linear contracts are scoped by settle coin (USDT), which
    the exchange requires.
    """
    symbol = to_symbol(coin, category) if coin else None
    settle_coin = "USDT" if symbol is None and category == "linear" else None
    result = client.cancel_all_orders(category, symbol=symbol, settle_coin=settle_coin) or {}
    return CancelAllResult(order_ids=tuple(o.get("orderId", "") for o in result.get("list") or []))


def amend_order(
    client: BybitRestClient,
    category: str,
    order_id: str,
    coin: str,
    price: Optional[str] = None,
    qty: Optional[str] = None,
) -> OrderResult:
    if not price and not qty:
        raise ValueError("At least one of --price or --qty must be specified.")
    if price:
        validate_positive_number(price, "price")
    if qty:
        validate_positive_number(qty, "qty")
    result = client.amend_order(category, to_symbol(coin, category), order_id, price=price or None, qty=qty or None)
    return _order_result(result)


def set_leverage(client: BybitRestClient, category: str, coin: str, leverage: str) -> LeverageResult:
    """Set buy and sell leverage; an unchanged leverage is not an error."""
    symbol = to_symbol(coin, category)
    validate_positive_number(leverage, "leverage")
    try:
        client.set_leverage(category, symbol, leverage)
    except CliError as e:
        if e.ret_code != LEVERAGE_NOT_MODIFIED:
            raise
        return LeverageResult(symbol=symbol, leverage=leverage, changed=False)
    return LeverageResult(symbol=symbol, leverage=leverage)
