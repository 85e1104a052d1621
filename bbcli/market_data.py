"""Read-only market and account views fetched over REST.

Instruments, price lists, detailed tickers, funding history and the
combined balances/positions portfolio. Response payloads are validated
with pydantic shapes the same way the live reconcilers do; values stay
strings.
"""
from dataclasses import dataclass
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from .bybit_client import BybitRestClient
from .reconcilers import PositionSnapshot, WalletSnapshot, reconcile_positions, reconcile_wallet

FUNDING_HISTORY_LIMIT = 10


@dataclass(frozen=True)
class InstrumentInfo:
    symbol: str
    base_coin: str
    quote_coin: str
    status: str
    max_leverage: str


@dataclass(frozen=True)
class TickerSummary:
    symbol: str
    last_price: str
    price_24h_pcnt: str
    volume_24h: str


@dataclass(frozen=True)
class TickerDetail:
    symbol: str
    last_price: str
    high_price_24h: str
    low_price_24h: str
    price_24h_pcnt: str
    volume_24h: str
    turnover_24h: str
    bid1_price: str
    ask1_price: str


@dataclass(frozen=True)
class FundingInfo:
    symbol: str
    funding_rate: str
    funding_rate_timestamp: str


@dataclass(frozen=True)
class Portfolio:
    balances: WalletSnapshot
    positions: PositionSnapshot


class _Shape(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class RawLeverageFilter(_Shape):
    max_leverage: Optional[str] = Field(None, alias="maxLeverage")


class RawInstrument(_Shape):
    symbol: str = ""
    base_coin: str = Field("", alias="baseCoin")
    quote_coin: str = Field("", alias="quoteCoin")
    status: str = ""
    leverage_filter: Optional[RawLeverageFilter] = Field(None, alias="leverageFilter")


class RawMarketTicker(_Shape):
    symbol: str = ""
    last_price: str = Field("", alias="lastPrice")
    high_price_24h: Optional[str] = Field(None, alias="highPrice24h")
    low_price_24h: Optional[str] = Field(None, alias="lowPrice24h")
    price_24h_pcnt: Optional[str] = Field(None, alias="price24hPcnt")
    volume_24h: Optional[str] = Field(None, alias="volume24h")
    turnover_24h: Optional[str] = Field(None, alias="turnover24h")
    bid1_price: Optional[str] = Field(None, alias="bid1Price")
    ask1_price: Optional[str] = Field(None, alias="ask1Price")


class RawFunding(_Shape):
    symbol: str = ""
    funding_rate: str = Field("", alias="fundingRate")
    funding_rate_timestamp: str = Field("", alias="fundingRateTimestamp")


_INSTRUMENTS = TypeAdapter(List[RawInstrument])
_TICKERS = TypeAdapter(List[RawMarketTicker])
_FUNDING = TypeAdapter(List[RawFunding])


def _result_list(result) -> list:
    return (result or {}).get("list") or []


def list_instruments(client: BybitRestClient, category: str) -> Tuple[InstrumentInfo, ...]:
    raw = _INSTRUMENTS.validate_python(_result_list(client.get_instruments_info(category)))
    return tuple(
        InstrumentInfo(
            symbol=i.symbol,
            base_coin=i.base_coin,
            quote_coin=i.quote_coin,
            status=i.status,
            max_leverage=(i.leverage_filter.max_leverage if i.leverage_filter else None) or "-",
        )
        for i in raw
    )


def list_prices(client: BybitRestClient, category: str) -> Tuple[TickerSummary, ...]:
    raw = _TICKERS.validate_python(_result_list(client.get_tickers(category)))
    return tuple(
        TickerSummary(
            symbol=t.symbol,
            last_price=t.last_price,
            price_24h_pcnt=t.price_24h_pcnt if t.price_24h_pcnt is not None else "0",
            volume_24h=t.volume_24h if t.volume_24h is not None else "0",
        )
        for t in raw
    )


def get_ticker_detail(client: BybitRestClient, category: str, symbol: str) -> Optional[TickerDetail]:
    """Detailed 24h ticker for one symbol, or None if the exchange has none."""
    raw = _TICKERS.validate_python(_result_list(client.get_tickers(category, symbol)))
    if not raw:
        return None
    t = raw[0]

    def dash(value: Optional[str]) -> str:
        return "-" if value is None else value

    def zero(value: Optional[str]) -> str:
        return "0" if value is None else value

    return TickerDetail(
        symbol=t.symbol,
        last_price=t.last_price,
        high_price_24h=dash(t.high_price_24h),
        low_price_24h=dash(t.low_price_24h),
        price_24h_pcnt=zero(t.price_24h_pcnt),
        volume_24h=zero(t.volume_24h),
        turnover_24h=zero(t.turnover_24h),
        bid1_price=dash(t.bid1_price),
        ask1_price=dash(t.ask1_price),
    )


def get_funding_history(client: BybitRestClient, category: str, symbol: str) -> Tuple[FundingInfo, ...]:
    result = client.get_funding_history(category, symbol, limit=FUNDING_HISTORY_LIMIT)
    return tuple(
        FundingInfo(symbol=f.symbol, funding_rate=f.funding_rate, funding_rate_timestamp=f.funding_rate_timestamp)
        for f in _FUNDING.validate_python(_result_list(result))
    )


def get_portfolio(client: BybitRestClient, category: str, account_type: str = "UNIFIED") -> Portfolio:
    """Balances and open positions, shaped like the live wallet/position views."""
    balances = reconcile_wallet(_result_list(client.get_wallet_balance(account_type)), ())
    positions = reconcile_positions(_result_list(client.get_positions(category)), ())
    return Portfolio(balances=balances, positions=positions)
