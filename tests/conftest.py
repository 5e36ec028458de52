"""
Shared fakes for the test suite.

FakeSession mimics the slice of aiohttp.ClientSession the package uses:
`request()` and `get()` returning async context managers. Each call pops the
next scripted outcome, either a FakeResponse or an exception to raise.
"""
import json
from collections import deque
from unittest.mock import AsyncMock, MagicMock

import pytest

from agentfleet.datastructures import Account, Credentials, OrderAck


class FakeResponse:
    def __init__(self, status=200, body=None, content_type="application/json"):
        self.status = status
        self.content_type = content_type
        if body is None:
            body = {}
        self._text = body if isinstance(body, str) else json.dumps(body)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def text(self):
        return self._text

    async def json(self, content_type="application/json"):
        return json.loads(self._text)


class FakeSession:
    def __init__(self, *outcomes):
        self.outcomes = deque(outcomes)
        self.calls = []
        self.closed = False

    def _next(self, call):
        self.calls.append(call)
        outcome = self.outcomes.popleft()
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    def request(self, method, url, headers=None, timeout=None):
        return self._next({"method": method, "url": str(url), "headers": headers or {}})

    def get(self, url, params=None, timeout=None):
        return self._next({"method": "GET", "url": str(url), "params": params or {}})

    async def close(self):
        self.closed = True


@pytest.fixture
def credentials():
    return Credentials(agent_id="agent-1", signer="0xsigner", api_key="test-api-key-1234", api_secret="test-secret")


def make_account(equity=1000.0, positions=()):
    return Account(equity=equity, available_balance=equity, wallet_balance=equity, positions=tuple(positions))


def make_client(credentials, account=None, order_id=42):
    """AsyncMock-backed stand-in for ExchangeClient with the calls a runner makes."""
    client = MagicMock()
    client.credentials = credentials
    client.sync_server_time = AsyncMock(return_value=0)
    client.get_account_info = AsyncMock(return_value=account or make_account())
    client.get_trades = AsyncMock(return_value=[])
    client.get_symbol_filters = AsyncMock(return_value=None)
    client.place_order = AsyncMock(return_value=OrderAck(order_id=order_id, symbol="ASTERUSDT", status="NEW", side="BUY"))
    client.close = AsyncMock()
    return client


def make_price_feed(*prices):
    feed = MagicMock()
    if len(prices) == 1:
        feed.get_price = AsyncMock(return_value=prices[0])
    else:
        feed.get_price = AsyncMock(side_effect=list(prices))
    feed.close = AsyncMock()
    return feed
