# agentfleet/strategies/grid.py
import math
import logging
from dataclasses import dataclass
from typing import Optional

from agentfleet.datastructures import Position, TradeSignal
from agentfleet.strategies import indicators
from agentfleet.strategies.base import Strategy, StrategyKind, StrategyParams


@dataclass(frozen=True)
class GridParams(StrategyParams):
    position_size_ratio: float = 0.15
    buy_threshold: float = -0.03  # price LOW when this far below the SMA
    sell_threshold: float = 0.05  # price HIGH when this far above the SMA
    ma_window: int = 20
    check_interval: float = 60.0


class GridStrategy(Strategy):
    """
    Accumulation grid: buy on dips against a moving average, scale out
    on gains and exit when price runs well above the average.
    """
    kind = StrategyKind.GRID

    def __init__(self, symbol: str, params: Optional[GridParams] = None, **kwargs):
        super().__init__(symbol, params or GridParams(), **kwargs)

    def price_level(self, price: float):
        """Deviation from the SMA of the samples preceding `price`, and its label."""
        prior = self.prior_prices
        reference = indicators.window_mean(prior, self.params.ma_window) if prior else price
        deviation = (price - reference) / reference
        if deviation < self.params.buy_threshold:
            return deviation, "LOW"
        if deviation > self.params.sell_threshold:
            return deviation, "HIGH"
        return deviation, "NEUTRAL"

    def _decide(self, price: float, equity: float, position: Optional[Position]) -> TradeSignal:
        params = self.params
        state = self.state
        deviation, level = self.price_level(price)
        history = len(self.prior_prices)

        if position is None:
            if history < params.min_history:
                return TradeSignal.hold(f"Building history ({history}/{params.min_history})")
            if state.cycles_completed and level != "LOW":
                return TradeSignal.hold(
                    f"Waiting for dip: price {deviation:+.1%} vs MA (buy < {params.buy_threshold:.0%})", confidence=0.5
                )
            quantity, budget = self._entry_quantity(equity, price)
            if quantity <= 0:
                return TradeSignal.hold(f"Entry budget ${budget:.2f} buys no whole step at ${price:.2f} (minimum ${params.min_order_notional:.2f})")
            if state.cycles_completed:
                return self._buy(quantity, price, 0.8, f"Accumulate: price {deviation:+.1%} vs MA. Adding {quantity} (~${budget:.2f})", tag='accumulate')
            return self._buy(quantity, price, 0.9, f"Initial buy: {quantity} units (~${budget:.2f}), price {deviation:+.1%} vs MA", tag='entry')

        now = self._clock()
        remaining = params.check_interval - (now - state.last_check_time)
        if remaining > 0:
            return TradeSignal.hold(f"Next check in {math.ceil(remaining)}s")
        state.last_check_time = now

        scale_out = self._scale_out(price, position)
        if scale_out is not None:
            return scale_out

        if level == "HIGH" and position.quantity > 0:
            logging.info(f"[{self.name}] Price {deviation:+.1%} above MA, exiting position")
            return self._sell(position.size, position, price, 0.8, f"Sell high: price {deviation:+.1%} vs MA. Exiting {position.size}", tag='exit')

        return TradeSignal.hold(
            f"Holding. Price {deviation:+.1%} vs MA (buy < {params.buy_threshold:.0%}, sell > {params.sell_threshold:.0%}). {self._position_note(position)}",
            confidence=0.5,
        )
