# agentfleet/price_feed.py
import asyncio
import logging
from typing import Optional

import aiohttp

from agentfleet.datastructures import to_float
from agentfleet.exchange_client import ExchangeClient

BINANCE_PRICE_URL = "https://api.binance.com/api/v3/ticker/price"


class PriceFeed:
    """Latest price for a symbol. NaN means 'no usable price this tick'."""
    async def get_price(self, symbol: str) -> float:
        raise NotImplementedError

    async def close(self):
        pass


class BinancePriceFeed(PriceFeed):
    """
    Public spot ticker. Failures are logged and reported as NaN so the
    strategy holds instead of the runner failing the tick.
    """
    def __init__(self, url: str = BINANCE_PRICE_URL, timeout: float = 5.0, session: Optional[aiohttp.ClientSession] = None):
        self.url = url
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    async def get_price(self, symbol: str) -> float:
        try:
            async with self._get_session().get(self.url, params={"symbol": symbol}, timeout=self.timeout) as response:
                if response.status != 200:
                    logging.warning(f"Price feed returned HTTP {response.status} for {symbol}")
                    return float("nan")
                payload = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logging.warning(f"Price feed request for {symbol} failed: {e}")
            return float("nan")
        return to_float(payload.get("price") if isinstance(payload, dict) else None, default=float("nan"))

    async def close(self):
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None


class ExchangePriceFeed(PriceFeed):
    """The exchange's own last-trade ticker, through the agent's client."""
    def __init__(self, client: ExchangeClient):
        self.client = client

    async def get_price(self, symbol: str) -> float:
        return await self.client.get_ticker_price(symbol)
