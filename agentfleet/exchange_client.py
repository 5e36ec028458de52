# agentfleet/exchange_client.py
import asyncio
import hashlib
import hmac
import json
import logging
import math
import time
from decimal import Decimal
from typing import AsyncIterator, Callable, Dict, List, Optional, Tuple
from urllib.parse import quote

import aiohttp
from yarl import URL

from agentfleet.datastructures import (
    Account,
    Credentials,
    FeeRates,
    OrderAck,
    OrderRequest,
    Position,
    SymbolFilters,
    Trade,
    parse_positions,
    to_float,
)
from agentfleet.errors import AuthFault, TransportFault, classify_error_response

DEFAULT_BASE_URL = "https://fapi.asterdex.com"
DEFAULT_RECV_WINDOW_MS = 10000
DEFAULT_TIMEOUT_SECONDS = 8.0
MAX_TRADES_PER_PAGE = 1000


def format_param(value) -> str:
    """Renders a parameter value the way the exchange expects it: no exponents, lowercase booleans."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValueError(f"Refusing to send non-finite parameter value {value!r}")
        value = Decimal(repr(value))
    if isinstance(value, Decimal):
        if not value.is_finite():
            raise ValueError(f"Refusing to send non-finite parameter value {value!r}")
        return format(value.normalize(), 'f')
    return str(value)


def canonical_query(params: Dict[str, object]) -> str:
    """key=value pairs sorted by key, None values dropped, values URL-encoded."""
    pairs = []
    for key in sorted(params):
        value = params[key]
        if value is None:
            continue
        pairs.append(f"{key}={quote(format_param(value), safe='')}")
    return "&".join(pairs)


def sign(query: str, secret: str) -> str:
    return hmac.new(secret.encode(), query.encode(), hashlib.sha256).hexdigest()


class ExchangeClient:
    """
    Authenticated REST client for the futures API.
    - Signs every private request (HMAC-SHA256 over the sorted query string).
    - Classifies failures into TransportFault / AuthFault / ApplicationFault.
    - Never retries; callers decide what a failure means for them.
    One instance per agent; safe to share between that agent's runners.
    """
    def __init__(
        self,
        credentials: Credentials,
        base_url: str = DEFAULT_BASE_URL,
        recv_window: int = DEFAULT_RECV_WINDOW_MS,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        session: Optional[aiohttp.ClientSession] = None,
        fee_rates: FeeRates = FeeRates(),
        clock: Callable[[], float] = time.time,
    ):
        self.credentials = credentials
        self.base_url = base_url.rstrip("/")
        self.recv_window = recv_window
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.fee_rates = fee_rates
        self._clock = clock
        self._session = session
        self._owns_session = session is None
        self.time_offset_ms = 0

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    async def close(self):
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    def _timestamp(self) -> int:
        return int(self._clock() * 1000) + self.time_offset_ms

    def build_query(self, params: Optional[Dict[str, object]] = None, signed: bool = True) -> str:
        """Returns the exact query string that goes on the wire, signature last."""
        params = dict(params or {})
        if not signed:
            return canonical_query(params)
        params["timestamp"] = self._timestamp()
        params["recvWindow"] = self.recv_window
        query = canonical_query(params)
        return f"{query}&signature={sign(query, self.credentials.api_secret)}"

    async def request(self, method: str, endpoint: str, params: Optional[Dict[str, object]] = None, signed: bool = True):
        if signed and not self.credentials.is_complete():
            raise AuthFault(f"Missing API credentials for {self.credentials.agent_id}", kind="missing_credentials")

        query = self.build_query(params, signed=signed)
        url = f"{self.base_url}{endpoint}"
        if query:
            url = f"{url}?{query}"
        headers = {}
        if self.credentials.api_key:
            headers["X-MBX-APIKEY"] = self.credentials.api_key

        session = self._get_session()
        try:
            async with session.request(method, URL(url, encoded=True), headers=headers, timeout=self.timeout) as response:
                status = response.status
                content_type = response.content_type or ""
                body = await response.text()
        except asyncio.TimeoutError:
            raise TransportFault(f"{method} {endpoint} timed out after {self.timeout.total}s", kind="timeout")
        except aiohttp.ClientError as e:
            raise TransportFault(f"{method} {endpoint} failed: {e}", kind="connection")

        if "json" not in content_type.lower():
            excerpt = body[:200].replace("\n", " ")
            raise TransportFault(f"{method} {endpoint} returned non-JSON ({content_type or 'no content type'}): {excerpt}", status=status, kind="non_json")

        try:
            payload = json.loads(body) if body.strip() else {}
        except ValueError:
            raise TransportFault(f"{method} {endpoint} returned malformed JSON", status=status, kind="bad_json")

        if not 200 <= status < 300:
            error = classify_error_response(status, payload)
            logging.warning(f"[{self.credentials.agent_id}] {method} {endpoint} rejected: {error}")
            raise error
        return payload

    # --- Account ---

    async def get_account_info(self) -> Account:
        raw = await self.request("GET", "/fapi/v1/account")
        return Account.from_exchange(raw)

    async def get_positions(self) -> Tuple[Position, ...]:
        account = await self.get_account_info()
        return account.positions

    async def get_position_risk(self, symbol: Optional[str] = None) -> Tuple[Position, ...]:
        raw = await self.request("GET", "/fapi/v1/positionRisk", {"symbol": symbol})
        return parse_positions(raw if isinstance(raw, list) else [])

    async def change_leverage(self, symbol: str, leverage: int) -> dict:
        return await self.request("POST", "/fapi/v1/leverage", {"symbol": symbol, "leverage": int(leverage)})

    # --- Trades ---

    async def get_trades(
        self,
        symbol: str,
        limit: int = 500,
        from_id: Optional[int] = None,
        start_time: Optional[int] = None,
        end_time: Optional[int] = None,
    ) -> List[Trade]:
        params = {
            "symbol": symbol,
            "limit": min(int(limit), MAX_TRADES_PER_PAGE),
            "fromId": from_id,
            "startTime": start_time,
            "endTime": end_time,
        }
        raw = await self.request("GET", "/fapi/v1/userTrades", params)
        return [Trade.from_exchange(item, self.fee_rates) for item in raw or []]

    async def iter_trades(self, symbol: str, from_id: int = 0, page_size: int = MAX_TRADES_PER_PAGE) -> AsyncIterator[Trade]:
        """Walks the full trade history forward by trade id."""
        next_id = from_id
        while True:
            page = await self.get_trades(symbol, limit=page_size, from_id=next_id)
            for trade in page:
                yield trade
            if len(page) < page_size:
                return
            next_id = page[-1].trade_id + 1

    # --- Orders ---

    async def place_order(self, order: OrderRequest) -> OrderAck:
        logging.info(f"[{self.credentials.agent_id}] Placing order: {order}")
        raw = await self.request("POST", "/fapi/v1/order", order.to_params())
        ack = OrderAck.from_exchange(raw)
        logging.info(f"[{self.credentials.agent_id}] Order accepted for {order.symbol}. Order ID: {ack.order_id} status={ack.status}")
        return ack

    async def cancel_order(self, symbol: str, order_id: Optional[int] = None, client_order_id: Optional[str] = None) -> OrderAck:
        if order_id is None and client_order_id is None:
            raise ValueError("cancel_order needs order_id or client_order_id")
        raw = await self.request("DELETE", "/fapi/v1/order", {"symbol": symbol, "orderId": order_id, "origClientOrderId": client_order_id})
        return OrderAck.from_exchange(raw)

    async def get_order(self, symbol: str, order_id: int) -> OrderAck:
        raw = await self.request("GET", "/fapi/v1/order", {"symbol": symbol, "orderId": order_id})
        return OrderAck.from_exchange(raw)

    async def get_open_orders(self, symbol: Optional[str] = None) -> List[OrderAck]:
        raw = await self.request("GET", "/fapi/v1/openOrders", {"symbol": symbol})
        return [OrderAck.from_exchange(item) for item in raw or []]

    async def get_all_orders(self, symbol: str, limit: int = 500, start_time: Optional[int] = None, end_time: Optional[int] = None) -> List[OrderAck]:
        raw = await self.request("GET", "/fapi/v1/allOrders", {"symbol": symbol, "limit": limit, "startTime": start_time, "endTime": end_time})
        return [OrderAck.from_exchange(item) for item in raw or []]

    # --- Market data & metadata (public) ---

    async def get_server_time(self) -> int:
        raw = await self.request("GET", "/fapi/v1/time", signed=False)
        return int(to_float(raw.get("serverTime")))

    async def sync_server_time(self) -> int:
        """Stores the server-minus-local clock offset applied to every signed timestamp."""
        before = self._clock()
        server_time = await self.get_server_time()
        after = self._clock()
        local_ms = int((before + after) / 2 * 1000)
        self.time_offset_ms = server_time - local_ms
        logging.info(f"[{self.credentials.agent_id}] Server time offset set to {self.time_offset_ms} ms")
        return self.time_offset_ms

    async def get_exchange_info(self) -> dict:
        return await self.request("GET", "/fapi/v1/exchangeInfo", signed=False)

    async def get_supported_symbols(self, quote_asset: str = "USDT") -> List[str]:
        info = await self.get_exchange_info()
        return [
            item["symbol"]
            for item in info.get("symbols", [])
            if item.get("status") == "TRADING" and item.get("quoteAsset") == quote_asset
        ]

    async def get_symbol_filters(self, symbol: str) -> Optional[SymbolFilters]:
        info = await self.get_exchange_info()
        for item in info.get("symbols", []):
            if item.get("symbol") == symbol:
                return SymbolFilters.from_exchange(item)
        return None

    async def get_ticker_price(self, symbol: str) -> float:
        raw = await self.request("GET", "/fapi/v1/ticker/price", {"symbol": symbol}, signed=False)
        return to_float(raw.get("price"), default=float("nan"))

    async def get_mark_price(self, symbol: str) -> dict:
        raw = await self.request("GET", "/fapi/v1/premiumIndex", {"symbol": symbol}, signed=False)
        return {
            "symbol": raw.get("symbol", symbol),
            "mark_price": to_float(raw.get("markPrice"), default=float("nan")),
            "index_price": to_float(raw.get("indexPrice"), default=float("nan")),
            "funding_rate": to_float(raw.get("lastFundingRate")),
            "next_funding_time": int(to_float(raw.get("nextFundingTime"))),
        }

    # --- User data stream ---

    async def new_listen_key(self) -> str:
        raw = await self.request("POST", "/fapi/v1/listenKey")
        return raw["listenKey"]

    async def keepalive_listen_key(self, listen_key: str):
        await self.request("PUT", "/fapi/v1/listenKey", {"listenKey": listen_key})

    async def close_listen_key(self, listen_key: str):
        await self.request("DELETE", "/fapi/v1/listenKey", {"listenKey": listen_key})
