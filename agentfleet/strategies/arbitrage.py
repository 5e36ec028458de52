# agentfleet/strategies/arbitrage.py
from dataclasses import dataclass
from typing import Optional

from agentfleet.datastructures import Position, TradeSignal
from agentfleet.strategies import indicators
from agentfleet.strategies.base import Strategy, StrategyKind, StrategyParams


@dataclass(frozen=True)
class ArbitrageParams(StrategyParams):
    position_size_ratio: float = 0.12
    leverage: float = 2.0
    min_spread_percent: float = 0.15
    min_ema_distance_percent: float = 0.3
    min_trade_interval: float = 45.0
    indicator_history: int = 20
    initial_entry: bool = True
    rsi_oversold: float = 30.0
    rsi_overbought: float = 70.0


class ArbitrageStrategy(Strategy):
    """
    Mean reversion on the spread between the live price and its rolling fair
    value (history average, EMA20 and SMA50), confirmed by RSI extremes.
    """
    kind = StrategyKind.ARBITRAGE

    def __init__(self, symbol: str, params: Optional[ArbitrageParams] = None, **kwargs):
        super().__init__(symbol, params or ArbitrageParams(), **kwargs)

    def _decide(self, price: float, equity: float, position: Optional[Position]) -> TradeSignal:
        params = self.params
        state = self.state

        if position is None and params.initial_entry and not state.cycles_completed and len(self.prior_prices) >= params.min_history:
            quantity, budget = self._entry_quantity(equity, price)
            if quantity > 0:
                return self._buy(quantity, price, 0.9, f"Initial buy: starting spread trading with {quantity} units (~${budget:.2f})", tag='entry')

        cooldown = self._cooldown_remaining(params.min_trade_interval)
        if cooldown > 0:
            return TradeSignal.hold(f"Cooldown between trades ({cooldown:.0f}s left)")

        prices = list(state.prices)
        if len(prices) < params.indicator_history:
            return TradeSignal.hold(f"Building price history ({len(prices)}/{params.indicator_history})")

        rsi = indicators.rsi(prices, 14)
        scale_out = self._scale_out(price, position, extra_trigger=rsi > params.rsi_overbought, trigger_note=f", RSI {rsi:.0f}")
        if scale_out is not None:
            return scale_out

        volatility = indicators.volatility(prices)
        fair_value = indicators.window_mean(prices, len(prices))
        ema20 = indicators.ema(prices, 20)
        sma50 = indicators.sma(prices, 50)
        spread = abs(price - fair_value) / fair_value * 100
        ema_distance = abs(price - ema20) / ema20 * 100

        units = self._round_quantity(self.risk.position_size_units(equity, volatility, params.leverage, price))
        if units <= 0:
            return TradeSignal.hold(f"Risk sizing gives no tradable quantity at ${price}")

        wide_enough = spread > params.min_spread_percent and ema_distance > params.min_ema_distance_percent
        summary = f"spread {spread:.2f}%, {ema_distance:.2f}% from EMA20, RSI {rsi:.0f}"

        if position is None and wide_enough and price < ema20 and price < sma50 and rsi < params.rsi_oversold:
            targets = indicators.adaptive_targets(price, volatility, "BUY")
            confidence = min(0.9, 0.6 + spread * 0.1 + 0.15)
            return self._buy(units, price, confidence, f"Mean reversion BUY below fair value: {summary}",
                             take_profit=targets.take_profit, stop_loss=targets.stop_loss)

        if position is not None and wide_enough and price > ema20 and price > sma50 and rsi > params.rsi_overbought:
            targets = indicators.adaptive_targets(price, volatility, "SELL")
            confidence = min(0.9, 0.6 + spread * 0.1 + 0.15)
            return self._sell(units, position, price, confidence, f"Mean reversion SELL above fair value: {summary}",
                              take_profit=targets.take_profit, stop_loss=targets.stop_loss)

        return TradeSignal.hold(f"No setup: {summary}. {self._position_note(position)}")
