# agentfleet/strategies/buy_and_hold.py
import math
from dataclasses import dataclass
from typing import Optional

from agentfleet.datastructures import Position, TradeSignal
from agentfleet.strategies.base import Strategy, StrategyKind, StrategyParams


@dataclass(frozen=True)
class BuyAndHoldParams(StrategyParams):
    buy_amount: float = 100.0
    # Expensive assets: raise the budget to afford one unit, up to this cap
    max_buy_amount: float = 250.0
    min_history: int = 0


class BuyAndHoldStrategy(Strategy):
    """Benchmark agent: one fixed-dollar buy, then hold forever. Never sells."""
    kind = StrategyKind.BUY_AND_HOLD

    def __init__(self, symbol: str, params: Optional[BuyAndHoldParams] = None, **kwargs):
        super().__init__(symbol, params or BuyAndHoldParams(), **kwargs)

    def _decide(self, price: float, equity: float, position: Optional[Position]) -> TradeSignal:
        if position is not None:
            return TradeSignal.hold(f"Holding {position.quantity} units. Buy and hold active.", confidence=1.0)

        cap = min(equity, self.risk.max_order_notional(equity))
        budget = min(self.params.buy_amount, cap)
        quantity = budget / price
        if quantity < 1 and price > 50:
            budget = min(price * 1.2, self.params.max_buy_amount, cap)
            quantity = budget / price
        quantity = self._round_quantity(quantity)

        if not math.isfinite(quantity) or quantity <= 0:
            return TradeSignal.hold(f"Price ${price:.2f} too high for a ${budget:.2f} budget")
        return self._buy(
            quantity, price, 1.0,
            f"Buy and hold: purchasing {quantity} units (~${budget:.2f}) at ${price:.2f}. Holding indefinitely.",
            tag='entry',
        )
