"""Command-line entry point: ``bb``.

Usage (examples):

bb account add main --api-key KEY --api-secret SECRET
bb --json account ls
bb account set-default main
bb account portfolio
bb show wallet
bb watch ticker BTCUSDT
bb --account main watch orders
bb markets prices
bb asset funding BTC
bb trade order limit buy 0.01 BTC 60000 --tif PostOnly
bb trade cancel-all --coin BTC --yes
bb server status
"""
import argparse
import asyncio
import os
import signal
import sqlite3
import subprocess
import sys
from functools import lru_cache
from typing import Any, Optional, Sequence

from aiohttp import ClientError

from . import market_data, trade
from .bybit_client import BybitRestClient
from .config import CATEGORIES, CliConfig
from .credentials import BybitCredentials, credentials_from_env, mask_api_key, resolve_credentials
from .crypto import CryptoEnvelope
from .errors import CliError, database_error, format_error, format_error_json, network_error
from .logging_setup import logger, setup_logging
from .output import format_json, format_percent, format_table, format_timestamp, format_volume, to_json_data
from .reconcilers import (
    OrderbookSnapshot,
    OrderSnapshot,
    PriceInfo,
    reconcile_orderbook,
    reconcile_orders,
    reconcile_positions,
    reconcile_ticker,
    reconcile_wallet,
)
from .server import get_server_status, is_process_running, read_pid, remove_pid, write_pid
from .validation import BOOK_DEPTHS, to_symbol, validate_symbol
from .vault import open_vault
from .watch import DEFAULT_BOOK_DEPTH, PRIVATE_KINDS, WatchSession, build_ws_topic, install_shutdown_handler
from .ws_client import BybitWebSocketClient

# watch target -> (topic kind, reconciler, initial snapshot)
WATCH_TARGETS = {
    "wallet": ("wallet", reconcile_wallet, ()),
    "positions": ("position", reconcile_positions, ()),
    "orders": ("order", reconcile_orders, OrderSnapshot()),
    "ticker": ("tickers", reconcile_ticker, None),
    "book": ("orderbook", reconcile_orderbook, OrderbookSnapshot()),
}

BALANCE_HEADERS = ["Coin", "Equity", "Available", "Unrealised PnL"]
POSITION_HEADERS = ["Symbol", "Side", "Size", "Entry", "Mark", "Unreal. PnL", "Leverage"]


def snapshot_to_json(snapshot: Any) -> Any:
    if isinstance(snapshot, OrderSnapshot):
        snapshot = snapshot.orders
    return to_json_data(snapshot)


@lru_cache(maxsize=None)
def _envelope_for(passphrase: Optional[str]) -> CryptoEnvelope:
    return CryptoEnvelope(passphrase)


def make_envelope(config: CliConfig) -> CryptoEnvelope:
    """The process-wide envelope for the configured key; scrypt runs once."""
    return _envelope_for(config.vault.encryption_key)


def confirm(prompt: str) -> bool:
    try:
        answer = input(f"{prompt} [y/N]: ")
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")


# --- account ---
def cmd_account_add(config: CliConfig, args) -> None:
    with open_vault(config.vault.path, make_envelope(config)) as vault:
        vault.add(args.name, args.api_key, args.api_secret)
    print(f'Account "{args.name}" added successfully.')


def cmd_account_ls(config: CliConfig, args) -> None:
    with open_vault(config.vault.path, make_envelope(config)) as vault:
        accounts = vault.list_accounts()

    if config.json_output:
        print(format_json(accounts))
        return
    if not accounts:
        print("No accounts configured. Run 'bb account add' to add one.")
        return
    rows = [[a.name, mask_api_key(a.api_key), "*" if a.is_default else ""] for a in accounts]
    print(format_table(["Name", "API Key", "Default"], rows))


def cmd_account_remove(config: CliConfig, args) -> None:
    with open_vault(config.vault.path, make_envelope(config)) as vault:
        vault.remove(args.name)
    print(f'Account "{args.name}" removed.')


def cmd_account_set_default(config: CliConfig, args) -> None:
    with open_vault(config.vault.path, make_envelope(config)) as vault:
        vault.set_default(args.name)
    print(f'Account "{args.name}" set as default.')


def load_credentials(config: CliConfig) -> BybitCredentials:
    """Environment override first, then the named or default vault account."""
    creds = credentials_from_env(os.environ)
    if creds is not None and not config.account:
        return creds
    with open_vault(config.vault.path, make_envelope(config)) as vault:
        return resolve_credentials(vault, config.account)


def make_rest_client(config: CliConfig, credentials: Optional[BybitCredentials] = None) -> BybitRestClient:
    return BybitRestClient(
        credentials,
        testnet=config.exchange.testnet,
        timeout=config.exchange.timeout,
        recv_window=config.exchange.recv_window,
        max_retries=config.exchange.max_retries,
    )


def private_client(config: CliConfig) -> BybitRestClient:
    return make_rest_client(config, load_credentials(config))


def cmd_account_portfolio(config: CliConfig, args) -> None:
    portfolio = market_data.get_portfolio(private_client(config), config.exchange.category)
    if config.json_output:
        print(format_json(portfolio))
        return

    print("\n  Balances")
    if portfolio.balances:
        rows = [[b.coin, b.equity, b.available_to_withdraw, b.unrealised_pnl] for b in portfolio.balances]
        print(format_table(BALANCE_HEADERS, rows))
    else:
        print("  No balances found.")

    print("\n  Positions")
    if portfolio.positions:
        rows = [
            [p.symbol, p.side, p.size, p.entry_price, p.mark_price, p.unrealised_pnl, f"{p.leverage}x"]
            for p in portfolio.positions
        ]
        print(format_table(POSITION_HEADERS, rows))
    else:
        print("  No open positions.")


# --- REST snapshots ---
def fetch_snapshot(
    config: CliConfig,
    target: str,
    symbol: Optional[str] = None,
    depth: int = DEFAULT_BOOK_DEPTH,
    credentials: Optional[BybitCredentials] = None,
) -> Any:
    """Fetch the current state over REST, shaped by the matching reconciler."""
    kind, reconcile, initial = WATCH_TARGETS[target]
    category = config.exchange.category
    if kind in PRIVATE_KINDS:
        client = make_rest_client(config, credentials or load_credentials(config))
        if kind == "wallet":
            result = client.get_wallet_balance()
        elif kind == "position":
            result = client.get_positions(category)
        else:
            result = client.get_open_orders(category)
        return reconcile((result or {}).get("list"), initial)

    symbol = validate_symbol(symbol or "")
    client = make_rest_client(config)
    if kind == "tickers":
        result = client.get_tickers(category, symbol)
        tickers = (result or {}).get("list") or [None]
        return reconcile(tickers[0], PriceInfo(symbol=symbol))
    return reconcile(client.get_orderbook(category, symbol, limit=depth), initial)


def cmd_snapshot(config: CliConfig, args) -> None:
    snapshot = fetch_snapshot(
        config, args.target, getattr(args, "symbol", None), getattr(args, "depth", DEFAULT_BOOK_DEPTH)
    )
    print(format_json(snapshot_to_json(snapshot)))


# --- watch ---
def cmd_watch(config: CliConfig, args) -> None:
    kind, reconcile, _ = WATCH_TARGETS[args.target]
    symbol = getattr(args, "symbol", None)
    depth = getattr(args, "depth", None)
    topic = build_ws_topic(kind, symbol, depth)
    if symbol is not None:
        symbol = validate_symbol(symbol)
    is_private = kind in PRIVATE_KINDS
    credentials = load_credentials(config) if is_private else None
    initial = fetch_snapshot(config, args.target, symbol, depth or DEFAULT_BOOK_DEPTH, credentials=credentials)

    client = BybitWebSocketClient(
        credentials,
        testnet=config.exchange.testnet,
        category=config.exchange.category,
    )

    def show(snapshot: Any) -> None:
        print(format_json(snapshot_to_json(snapshot)), flush=True)

    session = WatchSession(client, topic, reconcile, initial, on_snapshot=show, is_private=is_private)

    async def run() -> None:
        install_shutdown_handler(session.stop, loop=asyncio.get_running_loop())
        await session.run()

    asyncio.run(run())
    if session.disconnected:
        raise network_error("Stream closed by the server; the last snapshot may be stale.")


# --- markets / asset ---
def cmd_markets_ls(config: CliConfig, args) -> None:
    instruments = market_data.list_instruments(make_rest_client(config), config.exchange.category)
    if config.json_output:
        print(format_json(instruments))
    elif not instruments:
        print("No instruments found.")
    else:
        rows = [[i.symbol, i.base_coin, i.quote_coin, i.status, f"{i.max_leverage}x"] for i in instruments]
        print(format_table(["Symbol", "Base", "Quote", "Status", "Max Leverage"], rows))


def cmd_markets_prices(config: CliConfig, args) -> None:
    tickers = market_data.list_prices(make_rest_client(config), config.exchange.category)
    if config.json_output:
        print(format_json(tickers))
    elif not tickers:
        print("No price data found.")
    else:
        rows = [[t.symbol, t.last_price, format_percent(t.price_24h_pcnt), format_volume(t.volume_24h)] for t in tickers]
        print(format_table(["Symbol", "Last Price", "24h Change", "24h Volume"], rows))


def cmd_markets_ticker(config: CliConfig, args) -> None:
    category = config.exchange.category
    symbol = to_symbol(args.symbol, category)
    ticker = market_data.get_ticker_detail(make_rest_client(config), category, symbol)
    if ticker is None:
        raise ValueError(f'Ticker for "{symbol}" not found.')
    if config.json_output:
        print(format_json(ticker))
        return
    row = [
        ticker.symbol,
        ticker.last_price,
        ticker.high_price_24h,
        ticker.low_price_24h,
        format_percent(ticker.price_24h_pcnt),
        format_volume(ticker.volume_24h),
        ticker.bid1_price,
        ticker.ask1_price,
    ]
    print(format_table(["Symbol", "Last", "High 24h", "Low 24h", "24h %", "Volume", "Bid", "Ask"], [row]))


def cmd_asset_funding(config: CliConfig, args) -> None:
    category = config.exchange.category
    symbol = to_symbol(args.symbol, category)
    rates = market_data.get_funding_history(make_rest_client(config), category, symbol)
    if config.json_output:
        print(format_json(rates))
    elif not rates:
        print(f'No funding rate data for "{symbol}".')
    else:
        rows = [[r.symbol, format_percent(r.funding_rate, 4), format_timestamp(r.funding_rate_timestamp)] for r in rates]
        print(format_table(["Symbol", "Funding Rate", "Timestamp"], rows))


# --- trade ---
def show_order_result(config: CliConfig, result: trade.OrderResult, label: str) -> None:
    if config.json_output:
        print(format_json(result))
        return
    print(f"{label}:")
    print(format_table(["Field", "Value"], [["Order ID", result.order_id], ["Order Link ID", result.order_link_id or "-"]]))


def cmd_trade_limit(config: CliConfig, args) -> None:
    result = trade.place_limit_order(
        private_client(config),
        config.exchange.category,
        args.side,
        args.size,
        args.coin,
        args.price,
        time_in_force=args.tif,
        reduce_only=args.reduce_only,
    )
    show_order_result(config, result, f"Limit {trade.normalize_side(args.side)} order placed successfully")


def cmd_trade_market(config: CliConfig, args) -> None:
    result = trade.place_market_order(
        private_client(config),
        config.exchange.category,
        args.side,
        args.size,
        args.coin,
        reduce_only=args.reduce_only,
    )
    show_order_result(config, result, f"Market {trade.normalize_side(args.side)} order placed successfully")


def cmd_trade_conditional(config: CliConfig, args) -> None:
    result = trade.place_conditional_order(
        private_client(config),
        args.kind,
        config.exchange.category,
        args.side,
        args.size,
        args.coin,
        args.price,
        args.trigger,
        reduce_only=args.reduce_only,
    )
    label = "Stop-loss" if args.kind == "stop-loss" else "Take-profit"
    show_order_result(config, result, f"{label} {trade.normalize_side(args.side)} order placed successfully")


def cmd_trade_cancel(config: CliConfig, args) -> None:
    result = trade.cancel_order(private_client(config), config.exchange.category, args.order_id, args.coin)
    show_order_result(config, result, "Order cancelled successfully")


def cmd_trade_cancel_all(config: CliConfig, args) -> None:
    scope = to_symbol(args.coin, config.exchange.category) if args.coin else f"all {config.exchange.category}"
    if not args.yes and not confirm(f"Cancel every open order for {scope}?"):
        print("Aborted.")
        return
    result = trade.cancel_all_orders(private_client(config), config.exchange.category, args.coin)
    if config.json_output:
        print(format_json(result))
    elif not result.order_ids:
        print("No orders to cancel.")
    else:
        print(f"Cancelled {len(result.order_ids)} order(s) successfully.")


def cmd_trade_amend(config: CliConfig, args) -> None:
    result = trade.amend_order(
        private_client(config),
        config.exchange.category,
        args.order_id,
        args.coin,
        price=args.price,
        qty=args.qty,
    )
    show_order_result(config, result, "Order amended successfully")


def cmd_trade_set_leverage(config: CliConfig, args) -> None:
    result = trade.set_leverage(private_client(config), config.exchange.category, args.coin, args.leverage)
    if config.json_output:
        print(format_json(result))
    elif result.changed:
        print(f"Leverage set to {result.leverage}x for {result.symbol}.")
    else:
        print(f"Leverage already set to {result.leverage}x for {result.symbol}.")


# --- server ---
def cmd_server_start(config: CliConfig, args) -> None:
    status = get_server_status(config.vault.path)
    if status.running:
        print(f"Server already running (PID {status.pid}).")
        return
    env = dict(os.environ)
    env["BB_DATA_DIR"] = str(config.vault.path)
    env["BB_TESTNET"] = "1" if config.exchange.testnet else "0"
    child = subprocess.Popen(
        [sys.executable, "-m", "bbcli.daemon"],
        env=env,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        start_new_session=True,
    )
    write_pid(config.vault.path, child.pid)
    logger.info(f"Daemon spawned | pid={child.pid}")
    print(f"Server started (PID {child.pid}).")


def cmd_server_stop(config: CliConfig, args) -> None:
    pid = read_pid(config.vault.path)
    if pid is None:
        print("Server is not running.")
        return
    if not is_process_running(pid):
        remove_pid(config.vault.path)
        print("Server was not running (stale PID removed).")
        return
    os.kill(pid, signal.SIGTERM)
    remove_pid(config.vault.path)
    print(f"Server stopped (PID {pid}).")


def cmd_server_status(config: CliConfig, args) -> None:
    status = get_server_status(config.vault.path)
    if config.json_output:
        print(format_json(status._asdict()))
    elif status.running:
        print(f"Server running (PID {status.pid}).")
    else:
        print("Server is not running.")


def add_order_arguments(parser: argparse.ArgumentParser, *, price: bool = True, trigger: bool = False) -> None:
    parser.add_argument("side", help="buy or sell")
    parser.add_argument("size", help="Order quantity")
    parser.add_argument("coin", help="Coin or symbol (e.g. BTC, BTCUSDT)")
    if price:
        parser.add_argument("price", help="Limit price")
    if trigger:
        parser.add_argument("trigger", help="Trigger price")
    parser.add_argument("--reduce-only", action="store_true", help="Reduce-only order")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="bb", description="Bybit command-line client")
    parser.add_argument("--config", help="Path to YAML config file")
    parser.add_argument("--account", help="Use specific account")
    parser.add_argument("--testnet", action="store_true", help="Use the testnet endpoints")
    parser.add_argument("--category", choices=CATEGORIES, help="Product category")
    parser.add_argument("--json", action="store_true", help="JSON output")
    parser.add_argument("--log-level", help="Log level (DEBUG, INFO, WARNING, ...)")
    sub = parser.add_subparsers(dest="cmd")

    account = sub.add_parser("account", help="Manage stored accounts").add_subparsers(dest="account_cmd")
    add_p = account.add_parser("add")
    add_p.add_argument("name")
    add_p.add_argument("--api-key", required=True)
    add_p.add_argument("--api-secret", required=True)
    add_p.set_defaults(func=cmd_account_add)
    account.add_parser("ls").set_defaults(func=cmd_account_ls)
    rm_p = account.add_parser("remove")
    rm_p.add_argument("name")
    rm_p.set_defaults(func=cmd_account_remove)
    sd_p = account.add_parser("set-default")
    sd_p.add_argument("name")
    sd_p.set_defaults(func=cmd_account_set_default)
    account.add_parser("portfolio", help="Balances and open positions").set_defaults(func=cmd_account_portfolio)

    for name, func, help_text in (("show", cmd_snapshot, "Print current state"), ("watch", cmd_watch, "Stream live updates")):
        group = sub.add_parser(name, help=help_text).add_subparsers(dest="target")
        for target in ("wallet", "positions", "orders"):
            group.add_parser(target).set_defaults(func=func)
        ticker_p = group.add_parser("ticker")
        ticker_p.add_argument("symbol")
        ticker_p.set_defaults(func=func)
        book_p = group.add_parser("book")
        book_p.add_argument("symbol")
        book_p.add_argument("--depth", type=int, choices=BOOK_DEPTHS, default=DEFAULT_BOOK_DEPTH)
        book_p.set_defaults(func=func)

    markets = sub.add_parser("markets", help="Market data and instruments").add_subparsers(dest="markets_cmd")
    markets.add_parser("ls", help="List instruments").set_defaults(func=cmd_markets_ls)
    markets.add_parser("prices", help="Last price and 24h change for every symbol").set_defaults(func=cmd_markets_prices)
    tickers_p = markets.add_parser("tickers", help="Detailed ticker for one symbol")
    tickers_p.add_argument("symbol")
    tickers_p.set_defaults(func=cmd_markets_ticker)

    asset = sub.add_parser("asset", help="Per-asset data").add_subparsers(dest="asset_cmd")
    funding_p = asset.add_parser("funding", help="Funding rate history")
    funding_p.add_argument("symbol")
    funding_p.set_defaults(func=cmd_asset_funding)

    trade_p = sub.add_parser("trade", help="Place and manage orders").add_subparsers(dest="trade_cmd")
    order = trade_p.add_parser("order", help="Place orders").add_subparsers(dest="order_type")
    limit_p = order.add_parser("limit", help="Place a limit order")
    add_order_arguments(limit_p)
    limit_p.add_argument("--tif", choices=trade.TIME_IN_FORCE, default="GTC", help="Time in force")
    limit_p.set_defaults(func=cmd_trade_limit)
    market_p = order.add_parser("market", help="Place a market order")
    add_order_arguments(market_p, price=False)
    market_p.set_defaults(func=cmd_trade_market)
    for kind in ("stop-loss", "take-profit"):
        cond_p = order.add_parser(kind, help=f"Place a {kind} order")
        add_order_arguments(cond_p, trigger=True)
        cond_p.set_defaults(func=cmd_trade_conditional, kind=kind)

    cancel_p = trade_p.add_parser("cancel", help="Cancel an order")
    cancel_p.add_argument("order_id")
    cancel_p.add_argument("--coin", required=True)
    cancel_p.set_defaults(func=cmd_trade_cancel)
    cancel_all_p = trade_p.add_parser("cancel-all", help="Cancel all open orders")
    cancel_all_p.add_argument("--coin")
    cancel_all_p.add_argument("-y", "--yes", action="store_true", help="Skip confirmation")
    cancel_all_p.set_defaults(func=cmd_trade_cancel_all)
    amend_p = trade_p.add_parser("amend", help="Amend an open order")
    amend_p.add_argument("order_id")
    amend_p.add_argument("--coin", required=True)
    amend_p.add_argument("--price")
    amend_p.add_argument("--qty")
    amend_p.set_defaults(func=cmd_trade_amend)
    lev_p = trade_p.add_parser("set-leverage", help="Set leverage for a symbol")
    lev_p.add_argument("coin")
    lev_p.add_argument("leverage")
    lev_p.set_defaults(func=cmd_trade_set_leverage)

    server = sub.add_parser("server", help="Background server").add_subparsers(dest="server_cmd")
    server.add_parser("start").set_defaults(func=cmd_server_start)
    server.add_parser("stop").set_defaults(func=cmd_server_stop)
    server.add_parser("status").set_defaults(func=cmd_server_status)

    return parser


def load_config(args) -> CliConfig:
    config = CliConfig.from_yaml(args.config) if args.config else CliConfig.from_env()
    if args.account:
        config.account = args.account
    if args.testnet:
        config.exchange.testnet = True
    if args.category:
        config.exchange.category = args.category
    if args.json:
        config.json_output = True
    if args.log_level:
        config.logging.level = args.log_level.upper()
    return config


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return 2

    json_output = args.json
    try:
        config = load_config(args)
        setup_logging(log_file=config.logging.log_file, level=config.logging.level)
        args.func(config, args)
    except (CliError, ValueError, OSError) as e:
        err = e
    except sqlite3.DatabaseError as e:
        err = database_error(e)
    except ClientError as e:
        err = network_error(f"Stream connection failed: {e}")
    else:
        return 0
    print(format_error_json(err) if json_output else format_error(err), file=sys.stderr)
    return 1


if __name__ == "__main__":
    sys.exit(main())
