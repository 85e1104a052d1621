"""Minimal Bybit v5 REST client with request signing and retries.

Every response is the ``{retCode, retMsg, result}`` envelope; ``retCode == 0``
means success and ``result`` is returned. Anything else is raised as a
``CliError`` through ``map_api_error`` / ``to_cli_error``.
"""
import hashlib
import hmac
import json
import time
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .credentials import BybitCredentials
from .errors import map_api_error, network_error, to_cli_error

MAINNET_URL = "https://api.bybit.com"
TESTNET_URL = "https://api-testnet.bybit.com"


def get_base_url(testnet: bool) -> str:
    return TESTNET_URL if testnet else MAINNET_URL


class BybitRestClient:
    """Request/response side of the exchange.

    Public market endpoints work without credentials; account endpoints
    require them.
    """

    def __init__(
        self,
        credentials: Optional[BybitCredentials] = None,
        *,
        testnet: bool = False,
        timeout: int = 10,
        recv_window: int = 5000,
        max_retries: int = 3,
    ):
        self.credentials = credentials
        self.base_url = get_base_url(testnet)
        self.timeout = timeout
        self.recv_window = recv_window

        self.session = requests.Session()
        retries = Retry(total=max_retries, backoff_factor=0.5, status_forcelist=(500, 502, 503, 504), allowed_methods=frozenset(["GET", "POST"]))
        self.session.mount("https://", HTTPAdapter(max_retries=retries))
        self.session.mount("http://", HTTPAdapter(max_retries=retries))

    def _sign(self, payload: str) -> Dict[str, str]:
        if self.credentials is None:
            return {}
        timestamp = str(int(time.time() * 1000))
        recv_window = str(self.recv_window)
        message = timestamp + self.credentials.api_key + recv_window + payload
        signature = hmac.new(
            self.credentials.api_secret.encode("utf-8"),
            message.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()
        return {
            "X-BAPI-API-KEY": self.credentials.api_key,
            "X-BAPI-SIGN": signature,
            "X-BAPI-SIGN-TYPE": "2",
            "X-BAPI-TIMESTAMP": timestamp,
            "X-BAPI-RECV-WINDOW": recv_window,
        }

    def request(self, method: str, path: str, params: Optional[dict] = None, body: Optional[dict] = None) -> Any:
        """Send a request and unwrap the response envelope."""
        method = method.upper()
        query = urlencode({k: v for k, v in (params or {}).items() if v is not None})
        body_str = json.dumps(body) if body is not None else ""
        headers = {"Content-Type": "application/json"}
        headers.update(self._sign(body_str if method == "POST" else query))

        url = f"{self.base_url}{path}"
        if query:
            url = f"{url}?{query}"

        try:
            resp = self.session.request(method, url, headers=headers, data=body_str or None, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise network_error(f"Network error: {e}")

        if not resp.ok:
            raise to_cli_error({"code": resp.status_code, "message": resp.text})

        envelope = resp.json()
        ret_code = envelope.get("retCode", -1)
        if ret_code != 0:
            raise map_api_error(ret_code, envelope.get("retMsg", ""))
        return envelope.get("result")

    # --- Account ---
    def get_wallet_balance(self, account_type: str = "UNIFIED") -> Any:
        return self.request("GET", "/v5/account/wallet-balance", params={"accountType": account_type})

    def get_positions(self, category: str, symbol: Optional[str] = None, settle_coin: str = "USDT") -> Any:
        params = {"category": category, "symbol": symbol, "settleCoin": None if symbol else settle_coin}
        return self.request("GET", "/v5/position/list", params=params)

    def get_open_orders(self, category: str, symbol: Optional[str] = None, settle_coin: str = "USDT") -> Any:
        params = {"category": category, "symbol": symbol, "settleCoin": None if symbol else settle_coin}
        return self.request("GET", "/v5/order/realtime", params=params)

    # --- Market ---
    def get_tickers(self, category: str, symbol: Optional[str] = None) -> Any:
        return self.request("GET", "/v5/market/tickers", params={"category": category, "symbol": symbol})

    def get_orderbook(self, category: str, symbol: str, limit: int = 25) -> Any:
        return self.request("GET", "/v5/market/orderbook", params={"category": category, "symbol": symbol, "limit": limit})

    def get_instruments_info(self, category: str) -> Any:
        return self.request("GET", "/v5/market/instruments-info", params={"category": category})

    def get_funding_history(self, category: str, symbol: str, limit: int = 10) -> Any:
        params = {"category": category, "symbol": symbol, "limit": limit}
        return self.request("GET", "/v5/market/funding/history", params=params)

    # --- Trade ---
    def _post(self, path: str, body: dict) -> Any:
        return self.request("POST", path, body={k: v for k, v in body.items() if v is not None})

    def place_order(self, order: dict) -> Any:
        """Submit an order body (``category``, ``symbol``, ``side``, ``orderType``, ``qty``, ...)."""
        return self._post("/v5/order/create", order)

    def amend_order(self, category: str, symbol: str, order_id: str, price: Optional[str] = None, qty: Optional[str] = None) -> Any:
        body = {"category": category, "symbol": symbol, "orderId": order_id, "price": price, "qty": qty}
        return self._post("/v5/order/amend", body)

    def cancel_order(self, category: str, symbol: str, order_id: str) -> Any:
        return self._post("/v5/order/cancel", {"category": category, "symbol": symbol, "orderId": order_id})

    def cancel_all_orders(self, category: str, symbol: Optional[str] = None, settle_coin: Optional[str] = None) -> Any:
        body = {"category": category, "symbol": symbol, "settleCoin": settle_coin}
        return self._post("/v5/order/cancel-all", body)

    def set_leverage(self, category: str, symbol: str, leverage: str) -> Any:
        body = {"category": category, "symbol": symbol, "buyLeverage": leverage, "sellLeverage": leverage}
        return self._post("/v5/position/set-leverage", body)
