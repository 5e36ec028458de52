# agentfleet/strategies/momentum.py
from dataclasses import dataclass
from typing import Optional

from agentfleet.datastructures import Position, TradeSignal
from agentfleet.strategies import indicators
from agentfleet.strategies.base import Strategy, StrategyKind, StrategyParams


@dataclass(frozen=True)
class MomentumParams(StrategyParams):
    position_size_ratio: float = 0.12
    leverage: float = 2.5
    min_trade_interval: float = 15.0
    indicator_history: int = 20
    initial_entry: bool = True
    rsi_period: int = 14
    rsi_overbought: float = 70.0
    momentum_period: int = 10
    macd_confirmation: float = 10.0


class MomentumStrategy(Strategy):
    """RSI / MACD / Bollinger confirmation with volatility-adaptive RSI bands."""
    kind = StrategyKind.MOMENTUM

    def __init__(self, symbol: str, params: Optional[MomentumParams] = None, **kwargs):
        super().__init__(symbol, params or MomentumParams(), **kwargs)

    def _decide(self, price: float, equity: float, position: Optional[Position]) -> TradeSignal:
        params = self.params
        state = self.state
        history = len(self.prior_prices)

        if position is None and params.initial_entry and not state.cycles_completed and history >= params.min_history:
            quantity, budget = self._entry_quantity(equity, price)
            if quantity > 0:
                return self._buy(quantity, price, 0.9, f"Initial buy: starting momentum trading with {quantity} units (~${budget:.2f})", tag='entry')

        cooldown = self._cooldown_remaining(params.min_trade_interval)
        if cooldown > 0:
            return TradeSignal.hold(f"Cooldown between trades ({cooldown:.0f}s left)")

        prices = list(state.prices)
        if len(prices) < params.indicator_history:
            return TradeSignal.hold(f"Building history ({len(prices)}/{params.indicator_history})")

        rsi = indicators.rsi(prices, params.rsi_period)
        scale_out = self._scale_out(price, position, extra_trigger=rsi > params.rsi_overbought, trigger_note=f", RSI {rsi:.0f}")
        if scale_out is not None:
            return scale_out

        volatility = indicators.volatility(prices)
        macd = indicators.macd(prices)
        bands = indicators.bollinger_bands(prices, 20, 2)
        momentum = indicators.momentum(prices, params.momentum_period)

        units = self._round_quantity(self.risk.position_size_units(equity, volatility, params.leverage, price))
        if units <= 0:
            return TradeSignal.hold(f"Risk sizing gives no tradable quantity at ${price}")

        rsi_low = max(20.0, 35 - volatility * 200)
        rsi_high = min(80.0, 65 + volatility * 200)
        summary = f"RSI {rsi:.0f} (bands {rsi_low:.0f}/{rsi_high:.0f}), MACD {macd.strength:.0f}, momentum {momentum:.2f}"

        if position is None and rsi < rsi_low and momentum > 0 and macd.strength > params.macd_confirmation and price < bands.middle:
            targets = indicators.adaptive_targets(price, volatility, "BUY")
            confidence = min(0.9, 0.6 + macd.strength / 100 * 0.2)
            return self._buy(units, price, confidence, f"Momentum BUY: {summary}",
                             take_profit=targets.take_profit, stop_loss=targets.stop_loss)

        if position is not None and rsi > rsi_high and momentum < 0 and macd.strength < -params.macd_confirmation and price > bands.middle:
            targets = indicators.adaptive_targets(price, volatility, "SELL")
            confidence = min(0.9, 0.6 + abs(macd.strength) / 100 * 0.2)
            return self._sell(units, position, price, confidence, f"Momentum SELL: {summary}",
                              take_profit=targets.take_profit, stop_loss=targets.stop_loss)

        return TradeSignal.hold(f"Waiting for setup: {summary}. {self._position_note(position)}")
