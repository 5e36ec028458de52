"""
Tests for the signed REST client.

Tests cover:
- Query canonicalization and HMAC signing
- Fault classification (transport / auth / application)
- Typed parsing at the client boundary
"""
import asyncio
import hashlib
import hmac
import math

import aiohttp
import pytest

from agentfleet.datastructures import Credentials, OrderRequest
from agentfleet.errors import ApplicationFault, AuthFault, ErrorKind, TransportFault
from agentfleet.exchange_client import ExchangeClient, canonical_query, format_param, sign

from conftest import FakeResponse, FakeSession

FIXED_NOW = 1_700_000_000.0


def make_exchange_client(credentials, *outcomes):
    session = FakeSession(*outcomes)
    client = ExchangeClient(credentials, base_url="https://fapi.test", session=session, clock=lambda: FIXED_NOW)
    return client, session


# =============================================================
# TEST: Signing
# =============================================================

class TestSigning:
    """Canonical query and signature."""

    def test_signature_is_hmac_sha256_hex(self):
        expected = hmac.new(b"secret", b"a=1&b=2", hashlib.sha256).hexdigest()
        assert sign("a=1&b=2", "secret") == expected

    def test_signature_is_deterministic(self):
        assert sign("symbol=BTCUSDT", "k") == sign("symbol=BTCUSDT", "k")

    def test_query_is_independent_of_key_order(self):
        first = canonical_query({"symbol": "BTCUSDT", "limit": 5, "fromId": 7})
        second = canonical_query({"fromId": 7, "limit": 5, "symbol": "BTCUSDT"})
        assert first == second == "fromId=7&limit=5&symbol=BTCUSDT"

    def test_none_values_are_dropped(self):
        assert canonical_query({"symbol": "X", "startTime": None}) == "symbol=X"

    def test_values_are_url_encoded(self):
        assert canonical_query({"id": "a b/c"}) == "id=a%20b%2Fc"

    def test_signed_query_ends_with_signature(self, credentials):
        client, _ = make_exchange_client(credentials)
        query = client.build_query({"symbol": "ASTERUSDT"})
        unsigned, signature = query.rsplit("&signature=", 1)
        assert unsigned == "recvWindow=10000&symbol=ASTERUSDT&timestamp=1700000000000"
        assert signature == sign(unsigned, credentials.api_secret)

    def test_server_time_offset_applies_to_timestamp(self, credentials):
        client, _ = make_exchange_client(credentials)
        client.time_offset_ms = 250
        assert "timestamp=1700000000250" in client.build_query({})


class TestFormatParam:
    """Parameter rendering."""

    def test_booleans_are_lowercase(self):
        assert format_param(True) == "true"
        assert format_param(False) == "false"

    def test_small_floats_have_no_exponent(self):
        assert format_param(1e-7) == "0.0000001"

    def test_whole_floats_drop_trailing_zero(self):
        assert format_param(12.0) == "12"
        assert format_param(0.1) == "0.1"

    def test_non_finite_values_are_refused(self):
        with pytest.raises(ValueError):
            format_param(math.nan)


# =============================================================
# TEST: Fault classification
# =============================================================

class TestErrorClassification:
    """Every failure maps onto exactly one fault class."""

    @pytest.mark.asyncio
    async def test_non_json_response_is_transport_fault(self, credentials):
        client, _ = make_exchange_client(credentials, FakeResponse(502, "<html>Bad gateway</html>", content_type="text/html"))
        with pytest.raises(TransportFault) as exc_info:
            await client.get_account_info()
        assert exc_info.value.kind == "non_json"
        assert exc_info.value.error_kind == ErrorKind.TRANSPORT

    @pytest.mark.asyncio
    async def test_malformed_json_is_transport_fault(self, credentials):
        client, _ = make_exchange_client(credentials, FakeResponse(200, "{not json"))
        with pytest.raises(TransportFault):
            await client.get_account_info()

    @pytest.mark.asyncio
    async def test_timeout_is_transport_fault(self, credentials):
        client, _ = make_exchange_client(credentials, asyncio.TimeoutError())
        with pytest.raises(TransportFault) as exc_info:
            await client.get_account_info()
        assert exc_info.value.kind == "timeout"

    @pytest.mark.asyncio
    async def test_connection_error_is_transport_fault(self, credentials):
        client, _ = make_exchange_client(credentials, aiohttp.ClientConnectionError("refused"))
        with pytest.raises(TransportFault):
            await client.get_account_info()

    @pytest.mark.asyncio
    async def test_http_401_is_auth_fault(self, credentials):
        client, _ = make_exchange_client(credentials, FakeResponse(401, {"code": -1000, "msg": "Unauthorized"}))
        with pytest.raises(AuthFault):
            await client.get_account_info()

    @pytest.mark.asyncio
    async def test_invalid_api_key_code_is_auth_fault(self, credentials):
        client, _ = make_exchange_client(credentials, FakeResponse(400, {"code": -2015, "msg": "Invalid API-key"}))
        with pytest.raises(AuthFault) as exc_info:
            await client.get_account_info()
        assert exc_info.value.code == -2015

    @pytest.mark.asyncio
    async def test_exchange_rejection_is_application_fault(self, credentials):
        client, _ = make_exchange_client(credentials, FakeResponse(400, {"code": -2019, "msg": "Margin is insufficient."}))
        order = OrderRequest(symbol="ASTERUSDT", side="BUY", order_type="MARKET", quantity=1)
        with pytest.raises(ApplicationFault) as exc_info:
            await client.place_order(order)
        assert exc_info.value.code == -2019
        assert "Margin is insufficient." in str(exc_info.value)
        assert not exc_info.value.is_timestamp_error

    @pytest.mark.asyncio
    async def test_timestamp_error_is_flagged(self, credentials):
        client, _ = make_exchange_client(credentials, FakeResponse(400, {"code": -1021, "msg": "Timestamp outside recvWindow"}))
        with pytest.raises(ApplicationFault) as exc_info:
            await client.get_account_info()
        assert exc_info.value.is_timestamp_error

    @pytest.mark.asyncio
    async def test_missing_credentials_fail_before_any_request(self):
        creds = Credentials(agent_id="agent-9", signer="", api_key="", api_secret="")
        client, session = make_exchange_client(creds)
        with pytest.raises(AuthFault):
            await client.get_account_info()
        assert session.calls == []


# =============================================================
# TEST: Typed responses
# =============================================================

class TestResponses:
    """Parsing and request shape."""

    @pytest.mark.asyncio
    async def test_account_is_parsed_and_request_is_signed(self, credentials):
        body = {
            "totalWalletBalance": "1000",
            "totalUnrealizedProfit": "-12.5",
            "availableBalance": "800",
            "positions": [
                {"symbol": "ASTERUSDT", "positionAmt": "3", "entryPrice": "1.2", "unrealizedProfit": "0.3"},
                {"symbol": "BTCUSDT", "positionAmt": "0", "entryPrice": "0"},
            ],
        }
        client, session = make_exchange_client(credentials, FakeResponse(200, body))
        account = await client.get_account_info()

        assert account.equity == pytest.approx(987.5)
        assert account.available_balance == 800
        assert [p.symbol for p in account.positions] == ["ASTERUSDT"]
        call = session.calls[0]
        assert call["method"] == "GET"
        assert call["url"].startswith("https://fapi.test/fapi/v1/account?recvWindow=10000&timestamp=")
        assert "&signature=" in call["url"]
        assert call["headers"]["X-MBX-APIKEY"] == credentials.api_key

    @pytest.mark.asyncio
    async def test_trade_commission_is_computed_when_missing(self, credentials):
        body = [{"symbol": "ASTERUSDT", "id": 1, "orderId": 9, "side": "BUY", "price": "1.0953", "qty": "77.86", "realizedPnl": "0", "maker": False}]
        client, _ = make_exchange_client(credentials, FakeResponse(200, body))
        trades = await client.get_trades("ASTERUSDT", limit=10)
        assert trades[0].commission == pytest.approx(0.029848)
        assert trades[0].maker is False

    @pytest.mark.asyncio
    async def test_place_order_sends_order_fields(self, credentials):
        ack_body = {"orderId": 123, "symbol": "ASTERUSDT", "status": "NEW", "side": "SELL"}
        client, session = make_exchange_client(credentials, FakeResponse(200, ack_body))
        order = OrderRequest(symbol="ASTERUSDT", side="SELL", order_type="MARKET", quantity=2.5, reduce_only=True)
        ack = await client.place_order(order)

        assert ack.order_id == 123
        url = session.calls[0]["url"]
        assert session.calls[0]["method"] == "POST"
        assert "quantity=2.5" in url
        assert "reduceOnly=true" in url
        assert "type=MARKET" in url

    @pytest.mark.asyncio
    async def test_sync_server_time_stores_offset(self, credentials):
        client, session = make_exchange_client(credentials, FakeResponse(200, {"serverTime": 1_700_000_000_500}))
        offset = await client.sync_server_time()
        assert offset == 500
        assert client.time_offset_ms == 500
        assert "signature" not in session.calls[0]["url"]

    @pytest.mark.asyncio
    async def test_symbol_filters_from_exchange_info(self, credentials):
        info = {"symbols": [{
            "symbol": "ASTERUSDT",
            "status": "TRADING",
            "filters": [
                {"filterType": "LOT_SIZE", "stepSize": "0.01", "minQty": "0.01"},
                {"filterType": "PRICE_FILTER", "tickSize": "0.0001"},
                {"filterType": "MIN_NOTIONAL", "notional": "5"},
            ],
        }]}
        client, _ = make_exchange_client(credentials, FakeResponse(200, info))
        filters = await client.get_symbol_filters("ASTERUSDT")
        assert filters.step_size == 0.01
        assert filters.min_notional == 5

    @pytest.mark.asyncio
    async def test_owned_session_is_not_closed_when_injected(self, credentials):
        client, session = make_exchange_client(credentials)
        await client.close()
        assert session.closed is False


# =============================================================
# TEST: Orders, positions and market data
# =============================================================

def trade_row(trade_id):
    return {"symbol": "ASTERUSDT", "id": trade_id, "orderId": 9, "side": "BUY", "price": "1.0", "qty": "10", "maker": True}


class TestEndpoints:
    """Remaining private and public calls."""

    @pytest.mark.asyncio
    async def test_iter_trades_follows_trade_ids_across_pages(self, credentials):
        client, session = make_exchange_client(
            credentials,
            FakeResponse(200, [trade_row(1), trade_row(2)]),
            FakeResponse(200, [trade_row(3)]),
        )

        trades = [trade async for trade in client.iter_trades("ASTERUSDT", page_size=2)]

        assert [t.trade_id for t in trades] == [1, 2, 3]
        assert len(session.calls) == 2
        assert "fromId=0" in session.calls[0]["url"]
        assert "fromId=3" in session.calls[1]["url"]
        assert "limit=2" in session.calls[1]["url"]

    @pytest.mark.asyncio
    async def test_cancel_order_needs_an_id(self, credentials):
        client, session = make_exchange_client(credentials)
        with pytest.raises(ValueError):
            await client.cancel_order("ASTERUSDT")
        assert session.calls == []

    @pytest.mark.asyncio
    async def test_cancel_order_by_order_id(self, credentials):
        body = {"orderId": 77, "symbol": "ASTERUSDT", "status": "CANCELED", "side": "BUY"}
        client, session = make_exchange_client(credentials, FakeResponse(200, body))

        ack = await client.cancel_order("ASTERUSDT", order_id=77)

        assert ack.status == "CANCELED"
        call = session.calls[0]
        assert call["method"] == "DELETE"
        assert "/fapi/v1/order?" in call["url"]
        assert "orderId=77" in call["url"]
        assert "origClientOrderId" not in call["url"]

    @pytest.mark.asyncio
    async def test_change_leverage_sends_whole_number(self, credentials):
        client, session = make_exchange_client(credentials, FakeResponse(200, {"leverage": 5, "symbol": "ASTERUSDT"}))

        result = await client.change_leverage("ASTERUSDT", 5.0)

        assert result["leverage"] == 5
        assert session.calls[0]["method"] == "POST"
        assert "leverage=5&" in session.calls[0]["url"]

    @pytest.mark.asyncio
    async def test_position_risk_skips_flat_symbols(self, credentials):
        body = [
            {"symbol": "ASTERUSDT", "positionAmt": "-4", "entryPrice": "1.5", "markPrice": "1.4", "leverage": "3"},
            {"symbol": "BTCUSDT", "positionAmt": "0", "entryPrice": "0"},
        ]
        client, session = make_exchange_client(credentials, FakeResponse(200, body))

        positions = await client.get_position_risk()

        assert [p.symbol for p in positions] == ["ASTERUSDT"]
        assert positions[0].side == "SHORT"
        assert positions[0].leverage == 3
        assert "symbol=" not in session.calls[0]["url"]

    @pytest.mark.asyncio
    async def test_open_and_all_orders(self, credentials):
        orders = [
            {"orderId": 1, "symbol": "ASTERUSDT", "status": "NEW", "side": "BUY"},
            {"orderId": 2, "symbol": "ASTERUSDT", "status": "FILLED", "side": "SELL", "executedQty": "3"},
        ]
        client, session = make_exchange_client(credentials, FakeResponse(200, orders[:1]), FakeResponse(200, orders))

        open_orders = await client.get_open_orders("ASTERUSDT")
        all_orders = await client.get_all_orders("ASTERUSDT", limit=50)

        assert [o.order_id for o in open_orders] == [1]
        assert [o.status for o in all_orders] == ["NEW", "FILLED"]
        assert all_orders[1].executed_quantity == 3
        assert "/fapi/v1/openOrders?" in session.calls[0]["url"]
        assert "/fapi/v1/allOrders?" in session.calls[1]["url"]
        assert "limit=50" in session.calls[1]["url"]

    @pytest.mark.asyncio
    async def test_supported_symbols_are_trading_usdt_pairs(self, credentials):
        info = {"symbols": [
            {"symbol": "ASTERUSDT", "status": "TRADING", "quoteAsset": "USDT"},
            {"symbol": "OLDUSDT", "status": "BREAK", "quoteAsset": "USDT"},
            {"symbol": "ETHBTC", "status": "TRADING", "quoteAsset": "BTC"},
        ]}
        client, _ = make_exchange_client(credentials, FakeResponse(200, info))
        assert await client.get_supported_symbols() == ["ASTERUSDT"]

    @pytest.mark.asyncio
    async def test_mark_price_is_public(self, credentials):
        body = {
            "symbol": "ASTERUSDT",
            "markPrice": "1.2345",
            "indexPrice": "1.2340",
            "lastFundingRate": "0.0001",
            "nextFundingTime": 1_700_003_600_000,
        }
        client, session = make_exchange_client(credentials, FakeResponse(200, body))

        mark = await client.get_mark_price("ASTERUSDT")

        assert mark["mark_price"] == pytest.approx(1.2345)
        assert mark["funding_rate"] == pytest.approx(0.0001)
        assert mark["next_funding_time"] == 1_700_003_600_000
        assert "signature" not in session.calls[0]["url"]
