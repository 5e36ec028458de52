"""Tests for the typed data model."""
import math

import pytest

from agentfleet.datastructures import (
    Account,
    FeeRates,
    OrderRequest,
    Position,
    SymbolFilters,
    TickRecord,
    Trade,
    TradeSignal,
    compute_commission,
    floor_to_step,
    summarize_trades,
    to_float,
)


class TestCommission:
    """Fee computation."""

    def test_taker_commission(self):
        assert compute_commission(1.0953, 77.86, maker=False) == pytest.approx(0.029848, abs=1e-9)

    def test_maker_commission(self):
        assert compute_commission(1.0953, 77.86, maker=True) == pytest.approx(0.008528, abs=1e-9)

    def test_custom_fee_rates(self):
        assert compute_commission(100, 2, maker=False, fee_rates=FeeRates(maker=0, taker=0.001)) == pytest.approx(0.2)


class TestCoercion:
    """Lenient numeric parsing of exchange payloads."""

    @pytest.mark.parametrize("raw", [None, "", "abc", "nan", "inf", True])
    def test_junk_becomes_default(self, raw):
        assert to_float(raw) == 0.0

    def test_numeric_strings_parse(self):
        assert to_float("1.25") == 1.25

    def test_floor_to_step_has_no_float_drift(self):
        assert floor_to_step(0.3, 0.1) == pytest.approx(0.3)
        assert floor_to_step(1.2345, 0.01) == pytest.approx(1.23)
        assert floor_to_step(1.66, 1) == 1


class TestAccountParsing:
    """Account and Position snapshots."""

    def test_flat_position_is_dropped(self):
        assert Position.from_exchange({"symbol": "X", "positionAmt": "0.000"}) is None

    def test_short_position_side_from_sign(self):
        position = Position.from_exchange({"symbol": "X", "positionAmt": "-2", "entryPrice": "10"})
        assert position.side == "SHORT"
        assert position.size == 2

    def test_equity_includes_unrealized(self):
        account = Account.from_exchange({
            "totalWalletBalance": "500",
            "totalUnrealizedProfit": "25",
            "totalCrossCollateral": "5",
            "positions": [{"symbol": "ASTERUSDT", "positionAmt": "10", "entryPrice": "1.1"}],
        })
        assert account.equity == 525
        assert account.available_balance == 500
        assert account.total_pnl == 30
        assert account.roi == pytest.approx(5.0)
        assert account.position_for("ASTERUSDT").quantity == 10
        assert account.position_for("BTCUSDT") is None

    def test_missing_fields_default_to_zero(self):
        account = Account.from_exchange({})
        assert account.equity == 0
        assert account.positions == ()


class TestTrades:
    """Trade parsing and summaries."""

    def test_buyer_maker_flag_sets_maker(self):
        trade = Trade.from_exchange({"price": "2", "qty": "10", "isBuyerMaker": True})
        assert trade.maker is True
        assert trade.commission == pytest.approx(0.002)

    def test_reported_commission_wins(self):
        trade = Trade.from_exchange({"price": "2", "qty": "10", "commission": "-0.5"})
        assert trade.commission == 0.5

    def test_summary_counts_only_closing_fills(self):
        trades = [
            Trade.from_exchange({"price": "1", "qty": "1", "realizedPnl": "0"}),
            Trade.from_exchange({"price": "1", "qty": "1", "realizedPnl": "2"}),
            Trade.from_exchange({"price": "1", "qty": "1", "realizedPnl": "-1"}),
            Trade.from_exchange({"price": "1", "qty": "1", "realizedPnl": "3"}),
        ]
        summary = summarize_trades(trades)
        assert summary.total_trades == 3
        assert summary.winning_trades == 2
        assert summary.win_rate == pytest.approx(2 / 3)
        assert summary.net_realized_pnl == 4

    def test_empty_summary_has_zero_win_rate(self):
        assert summarize_trades([]).win_rate == 0.0


class TestTradeSignal:
    """Signal validation."""

    def test_hold_is_not_actionable(self):
        signal = TradeSignal.hold("waiting")
        assert signal.action == "HOLD"
        assert signal.quantity == 0
        assert not signal.is_actionable

    def test_buy_needs_positive_quantity(self):
        with pytest.raises(ValueError):
            TradeSignal(action="BUY", quantity=0)

    def test_confidence_must_be_in_unit_range(self):
        with pytest.raises(ValueError):
            TradeSignal(action="HOLD", confidence=1.5)

    def test_quantity_must_be_finite(self):
        with pytest.raises(ValueError):
            TradeSignal(action="SELL", quantity=math.inf)

    def test_unknown_action_rejected(self):
        with pytest.raises(ValueError):
            TradeSignal(action="SHORT", quantity=1)


class TestOrderRequest:
    """Order parameter building."""

    def test_market_order_params(self):
        params = OrderRequest(symbol="X", side="BUY", order_type="MARKET", quantity=3).to_params()
        assert params == {"symbol": "X", "side": "BUY", "type": "MARKET", "quantity": 3}

    def test_limit_order_defaults_to_gtc(self):
        params = OrderRequest(symbol="X", side="BUY", order_type="LIMIT", quantity=3, price=1.5).to_params()
        assert params["timeInForce"] == "GTC"
        assert params["price"] == 1.5

    def test_limit_order_requires_price(self):
        with pytest.raises(ValueError):
            OrderRequest(symbol="X", side="BUY", order_type="LIMIT", quantity=3).to_params()

    def test_stop_order_requires_stop_price(self):
        with pytest.raises(ValueError):
            OrderRequest(symbol="X", side="SELL", order_type="STOP_MARKET", quantity=3).to_params()


class TestSymbolFilters:
    """Lot size and tick size rounding."""

    def test_rounding(self):
        filters = SymbolFilters(symbol="X", step_size=0.1, tick_size=0.01)
        assert filters.round_quantity(2.37) == pytest.approx(2.3)
        assert filters.round_price(1.2345) == pytest.approx(1.23)

    def test_missing_lot_size_defaults_to_whole_units(self):
        filters = SymbolFilters.from_exchange({"symbol": "X", "filters": []})
        assert filters.step_size == 1.0


def test_tick_record_drops_empty_fields():
    record = TickRecord(agent_id="a", symbol="X", action="HOLD", quantity=0, confidence=0, reason="r", timestamp=1)
    data = record.to_dict()
    assert "order_id" not in data
    assert "error" not in data
    assert data["dry_run"] is False
