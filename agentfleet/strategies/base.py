# agentfleet/strategies/base.py
import logging
import math
import time
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Deque, Iterable, List, Optional

from agentfleet.datastructures import Account, Position, RiskLimits, TradeSignal, floor_to_step
from agentfleet.risk_manager import RiskManager


class StrategyKind(str, Enum):
    GRID = "grid"
    MOMENTUM = "momentum"
    ML_SIGNAL = "ml_signal"
    ARBITRAGE = "arbitrage"
    BUY_AND_HOLD = "buy_and_hold"


@dataclass(frozen=True)
class StrategyParams:
    """Settings shared by every strategy. Variants extend this with their own fields."""
    position_size_ratio: float = 0.15  # share of equity per entry
    min_history: int = 5  # samples needed before the first entry
    history_size: int = 100
    min_order_notional: float = 5.0
    quantity_step: float = 1.0
    at_least_one_unit: bool = True
    scale_out_threshold: float = 0.02  # fractional gain since entry
    scale_out_fraction: float = 0.5
    leverage: float = 1.0
    use_limit_orders: bool = False


@dataclass
class StrategyState:
    """Mutable per-(agent, symbol) memory. Only its own strategy touches it."""
    prices: Deque[float] = field(default_factory=lambda: deque(maxlen=100))
    position_opened: bool = False
    # True once the exchange has actually reported the position we opened
    observed_position: bool = False
    entry_price: Optional[float] = None
    scaled_out: bool = False
    last_check_time: float = 0.0
    last_trade_time: float = 0.0
    trade_times: Deque[float] = field(default_factory=lambda: deque(maxlen=500))
    cycles_completed: int = 0

    def reset_position(self):
        self.position_opened = False
        self.observed_position = False
        self.entry_price = None
        self.scaled_out = False


def _valid_positive(value) -> bool:
    try:
        return math.isfinite(value) and value > 0
    except TypeError:
        return False


class Strategy(ABC):
    """
    One trading decision function for one symbol.

    generate_signal() validates inputs, reconciles local state against the
    exchange-reported position, records the price and delegates to _decide().
    on_order_result() is the only place that commits effects of an order.
    """
    kind: StrategyKind

    def __init__(self, symbol: str, params: StrategyParams, risk_manager: Optional[RiskManager] = None, clock: Callable[[], float] = time.time):
        self.symbol = symbol
        self.params = params
        self.risk = risk_manager or RiskManager(RiskLimits())
        self._clock = clock
        self.state = StrategyState(prices=deque(maxlen=params.history_size))

    @property
    def name(self) -> str:
        return f"{self.kind.value}:{self.symbol}"

    def generate_signal(self, current_price: float, account: Optional[Account], positions: Iterable[Position] = ()) -> TradeSignal:
        if not _valid_positive(current_price):
            return TradeSignal.hold(f"Invalid price: {current_price}")
        equity = account.equity if account is not None else float('nan')
        if not _valid_positive(equity):
            return TradeSignal.hold(f"Invalid equity: {equity}")

        position = self._find_position(positions)
        self._reconcile(position)
        self.state.prices.append(float(current_price))

        try:
            return self._decide(float(current_price), float(equity), position)
        except Exception as e:
            logging.error(f"[{self.name}] Error while generating signal", exc_info=True)
            return TradeSignal.hold(f"Strategy error: {e}")

    @abstractmethod
    def _decide(self, price: float, equity: float, position: Optional[Position]) -> TradeSignal:
        ...

    def on_order_result(self, signal: TradeSignal, success: bool):
        """Commits the local effects of an order. A failed order changes nothing."""
        if not success or not signal.is_actionable:
            return
        now = self._clock()
        state = self.state
        state.last_trade_time = now
        state.last_check_time = now
        state.trade_times.append(now)
        if signal.action == 'BUY':
            if not state.position_opened or state.entry_price is None:
                state.entry_price = signal.price or (state.prices[-1] if state.prices else None)
            state.position_opened = True
            state.scaled_out = False
        elif signal.tag == 'scale_out':
            state.scaled_out = True

    # --- Helpers shared by the variants ---

    def _find_position(self, positions: Iterable[Position]) -> Optional[Position]:
        for position in positions or ():
            if position.symbol == self.symbol and position.quantity != 0:
                return position
        return None

    def _reconcile(self, position: Optional[Position]):
        state = self.state
        if position is None:
            if state.position_opened:
                if state.observed_position:
                    state.cycles_completed += 1
                    logging.info(f"[{self.name}] Position fully closed. Resetting state for re-entry.")
                else:
                    logging.warning(f"[{self.name}] Exchange reports no position after a local entry. Resetting state.")
                state.reset_position()
            return

        state.observed_position = True
        if not state.position_opened:
            state.position_opened = True
            state.entry_price = position.entry_price or None
            logging.info(f"[{self.name}] Adopting exchange position {position.quantity} @ {position.entry_price}")
        elif state.entry_price is None and position.entry_price > 0:
            state.entry_price = position.entry_price

    @property
    def prior_prices(self) -> List[float]:
        """History before the current tick's price."""
        return list(self.state.prices)[:-1]

    def _round_quantity(self, quantity: float) -> float:
        return floor_to_step(quantity, self.params.quantity_step)

    def _entry_quantity(self, equity: float, price: float, ratio: Optional[float] = None):
        """
        Quantity for a new entry worth `ratio` of equity, never above the
        risk manager's per-order cap. When that buys less than one step, fall
        back to one unit if it fits under the cap.
        Returns (quantity, notional_budget).
        """
        ratio = self.params.position_size_ratio if ratio is None else ratio
        cap = self.risk.max_order_notional(equity)
        budget = min(equity * ratio, cap)
        if budget < self.params.min_order_notional:
            return 0.0, budget
        quantity = self._round_quantity(budget / price)
        if (quantity < self.params.quantity_step and self.params.at_least_one_unit
                and equity > self.params.min_order_notional * 2 and price <= cap):
            budget = min(price * 1.2, cap)
            quantity = self._round_quantity(budget / price)
        return quantity, budget

    def _cooldown_remaining(self, interval: float) -> float:
        return interval - (self._clock() - self.state.last_trade_time)

    def _buy(self, quantity: float, price: float, confidence: float, reason: str, tag: str = 'signal', **targets) -> TradeSignal:
        if quantity <= 0:
            return TradeSignal.hold(f"Computed quantity {quantity} is not tradable")
        return TradeSignal(action='BUY', quantity=quantity, price=price, confidence=confidence, reason=reason, tag=tag, **targets)

    def _sell(self, quantity: float, position: Optional[Position], price: float, confidence: float, reason: str, tag: str = 'signal', **targets) -> TradeSignal:
        """SELL that only ever reduces an existing long."""
        if position is None or position.quantity <= 0:
            return TradeSignal.hold(f"No long position to sell. {reason}")
        quantity = self._round_quantity(min(quantity, position.size))
        if quantity <= 0:
            return TradeSignal.hold(f"Position {position.size} is below one tradable step")
        return TradeSignal(action='SELL', quantity=quantity, price=price, confidence=confidence, reason=reason, tag=tag, **targets)

    def _scale_out(self, price: float, position: Optional[Position], extra_trigger: bool = False, trigger_note: str = "") -> Optional[TradeSignal]:
        """Sells a fraction of the long once per position after the configured gain."""
        state = self.state
        if position is None or position.quantity <= 0 or not state.entry_price or state.scaled_out:
            return None
        gain = (price - state.entry_price) / state.entry_price
        if gain < self.params.scale_out_threshold and not extra_trigger:
            return None
        quantity = max(self.params.quantity_step, self._round_quantity(position.size * self.params.scale_out_fraction))
        return self._sell(
            quantity, position, price, 0.85,
            f"Scale out ({gain:.2%} gain{trigger_note}): selling {quantity} of {position.size}",
            tag='scale_out',
        )

    def _position_note(self, position: Optional[Position]) -> str:
        if position is None:
            return "No position"
        return f"Position: {position.quantity} (unrealized ${position.unrealized_pnl:.2f})"
