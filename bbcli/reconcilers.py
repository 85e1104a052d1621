"""Live-update reconcilers.

One pure function per subscription topic folds an inbound push payload into
the previous snapshot:

    wallet     replace
    position   replace, dropping zero/empty sizes
    order      upsert by orderId, then evict terminal statuses
    ticker     field-level patch
    orderbook  replace both sides; a payload with both sides empty is ignored

Inbound payloads are validated structurally against pydantic shapes. A
payload that does not fit returns ``previous`` unchanged (same object); the
functions never raise for bad input, so one malformed message cannot end a
long-running watch.

Numeric fields stay strings end to end. The zero-size filter compares
against the literal ``"0"`` and ``""``, since exchange payloads vary their
decimal formatting.
"""
from dataclasses import dataclass, field, replace
from typing import Any, FrozenSet, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

TERMINAL_ORDER_STATUSES = frozenset(["Filled", "Cancelled", "Rejected", "Deactivated"])

_ZERO_SIZES = ("0", "")


def _default(value: Optional[str], fallback: str) -> str:
    # only a missing field takes the fallback; "" is a value
    return fallback if value is None else value


# --- Snapshots ---
@dataclass(frozen=True)
class WalletBalance:
    coin: str
    equity: str
    available_to_withdraw: str
    unrealised_pnl: str


@dataclass(frozen=True)
class PositionInfo:
    symbol: str
    side: str
    size: str
    entry_price: str
    mark_price: str
    unrealised_pnl: str
    leverage: str


@dataclass(frozen=True)
class OrderInfo:
    order_id: str
    symbol: str
    side: str
    order_type: str
    price: str
    qty: str
    order_status: str
    created_time: str

    @property
    def is_terminal(self) -> bool:
        return self.order_status in TERMINAL_ORDER_STATUSES


@dataclass(frozen=True)
class OrderSnapshot:
    """Live orders plus the ids already evicted.

    ``evicted`` makes eviction permanent: once an order reached a terminal
    status, later updates for the same id are ignored.
    """

    orders: Tuple[OrderInfo, ...] = ()
    evicted: FrozenSet[str] = field(default_factory=frozenset)


@dataclass(frozen=True)
class PriceInfo:
    symbol: str = ""
    last_price: str = ""
    index_price: str = ""
    mark_price: str = ""
    price_24h_pcnt: str = ""


@dataclass(frozen=True)
class BookLevel:
    price: str
    size: str


@dataclass(frozen=True)
class OrderbookSnapshot:
    bids: Tuple[BookLevel, ...] = ()
    asks: Tuple[BookLevel, ...] = ()


WalletSnapshot = Tuple[WalletBalance, ...]
PositionSnapshot = Tuple[PositionInfo, ...]


# --- Inbound shapes ---
class _Shape(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class RawCoin(_Shape):
    coin: Optional[str] = None
    equity: Optional[str] = None
    available_to_withdraw: Optional[str] = Field(None, alias="availableToWithdraw")
    unrealised_pnl: Optional[str] = Field(None, alias="unrealisedPnl")


class RawWalletAccount(_Shape):
    coin: Optional[List[RawCoin]] = None


class RawPosition(_Shape):
    symbol: Optional[str] = None
    side: Optional[str] = None
    size: Optional[str] = None
    avg_price: Optional[str] = Field(None, alias="avgPrice")
    mark_price: Optional[str] = Field(None, alias="markPrice")
    unrealised_pnl: Optional[str] = Field(None, alias="unrealisedPnl")
    leverage: Optional[str] = None


class RawOrder(_Shape):
    order_id: Optional[str] = Field(None, alias="orderId")
    symbol: Optional[str] = None
    side: Optional[str] = None
    order_type: Optional[str] = Field(None, alias="orderType")
    price: Optional[str] = None
    qty: Optional[str] = None
    order_status: Optional[str] = Field(None, alias="orderStatus")
    created_time: Optional[str] = Field(None, alias="createdTime")


class RawTicker(_Shape):
    symbol: Optional[str] = None
    last_price: Optional[str] = Field(None, alias="lastPrice")
    index_price: Optional[str] = Field(None, alias="indexPrice")
    mark_price: Optional[str] = Field(None, alias="markPrice")
    price_24h_pcnt: Optional[str] = Field(None, alias="price24hPcnt")

    @field_validator("*", mode="before")
    @classmethod
    def _ignore_non_strings(cls, value: Any) -> Optional[str]:
        # a non-string field keeps the previous value instead of failing the message
        return value if isinstance(value, str) else None


class RawOrderbook(_Shape):
    b: Any = None
    a: Any = None


_WALLET_ADAPTER = TypeAdapter(List[RawWalletAccount])
_POSITIONS_ADAPTER = TypeAdapter(List[RawPosition])
_ORDERS_ADAPTER = TypeAdapter(List[RawOrder])


# --- Reconcilers ---
def reconcile_wallet(raw: Any, previous: WalletSnapshot) -> WalletSnapshot:
    """Replace the wallet snapshot with every coin of every account in ``raw``."""
    try:
        accounts = _WALLET_ADAPTER.validate_python(raw)
    except ValidationError:
        return previous

    balances = []
    for account in accounts:
        for c in account.coin or []:
            balances.append(
                WalletBalance(
                    coin=_default(c.coin, ""),
                    equity=_default(c.equity, "0"),
                    available_to_withdraw=_default(c.available_to_withdraw, "0"),
                    unrealised_pnl=_default(c.unrealised_pnl, "0"),
                )
            )
    return tuple(balances)


def reconcile_positions(raw: Any, previous: PositionSnapshot) -> PositionSnapshot:
    """Replace the position snapshot, keeping only entries with a non-zero size."""
    try:
        positions = _POSITIONS_ADAPTER.validate_python(raw)
    except ValidationError:
        return previous

    return tuple(
        PositionInfo(
            symbol=_default(p.symbol, ""),
            side=_default(p.side, ""),
            size=p.size,
            entry_price=_default(p.avg_price, "0"),
            mark_price=_default(p.mark_price, "0"),
            unrealised_pnl=_default(p.unrealised_pnl, "0"),
            leverage=_default(p.leverage, "0"),
        )
        for p in positions
        if p.size is not None and p.size not in _ZERO_SIZES
    )


def reconcile_orders(raw: Any, previous: OrderSnapshot) -> OrderSnapshot:
    """Upsert incoming orders by id, then evict terminal ones for good."""
    try:
        updates = _ORDERS_ADAPTER.validate_python(raw)
    except ValidationError:
        return previous

    incoming = [
        OrderInfo(
            order_id=_default(o.order_id, ""),
            symbol=_default(o.symbol, ""),
            side=_default(o.side, ""),
            order_type=_default(o.order_type, ""),
            price=_default(o.price, ""),
            qty=_default(o.qty, "0"),
            order_status=_default(o.order_status, ""),
            created_time=_default(o.created_time, ""),
        )
        for o in updates
    ]
    incoming = [o for o in incoming if o.order_id not in previous.evicted]

    updated_ids = {o.order_id for o in incoming}
    merged = [o for o in previous.orders if o.order_id not in updated_ids] + incoming

    newly_evicted = {o.order_id for o in merged if o.is_terminal}
    return OrderSnapshot(
        orders=tuple(o for o in merged if not o.is_terminal),
        evicted=previous.evicted | newly_evicted,
    )


def reconcile_ticker(raw: Any, previous: PriceInfo) -> PriceInfo:
    """Overwrite only the ticker fields present in ``raw``."""
    try:
        update = RawTicker.model_validate(raw)
    except ValidationError:
        return previous

    patch = {k: v for k, v in update.model_dump().items() if v is not None}
    if not patch:
        return previous
    return replace(previous, **patch)


def _parse_book_levels(raw: Any) -> Tuple[BookLevel, ...]:
    if not isinstance(raw, (list, tuple)):
        return ()
    return tuple(
        BookLevel(price=entry[0], size=entry[1])
        for entry in raw
        if isinstance(entry, (list, tuple))
        and len(entry) >= 2
        and isinstance(entry[0], str)
        and isinstance(entry[1], str)
    )


def reconcile_orderbook(raw: Any, previous: OrderbookSnapshot) -> OrderbookSnapshot:
    """Replace both book sides; snapshot and delta messages are treated alike.

    A side that is missing or not a list counts as empty. When both sides end
    up empty the message is ignored.
    """
    try:
        update = RawOrderbook.model_validate(raw)
    except ValidationError:
        return previous

    bids = _parse_book_levels(update.b)
    asks = _parse_book_levels(update.a)
    if not bids and not asks:
        return previous
    return OrderbookSnapshot(bids=bids, asks=asks)
