# agentfleet/risk_manager.py
import math
from dataclasses import dataclass
from typing import Optional

from agentfleet.datastructures import RiskLimits, TradeSignal, TradeSummary

# Win-rate floor only applies once this many closed trades exist.
MIN_WIN_RATE_SAMPLE = 10
# Hard stop on total loss against starting equity, independent of the peak.
MAX_TOTAL_LOSS_PERCENT = 50.0
MIN_RISK_REWARD = 1.5
HIGH_VOLATILITY = 0.05
MAX_LEVERAGE = 3.0


@dataclass(frozen=True)
class CircuitBreakerStatus:
    should_stop: bool
    reason: str
    drawdown_percent: float = 0.0


@dataclass(frozen=True)
class RiskDecision:
    approved: bool
    reason: str


@dataclass(frozen=True)
class PositionRisk:
    max_loss_amount: float
    position_size: float
    adjusted_leverage: float
    slippage_adjusted_take_profit: float
    slippage_adjusted_stop_loss: float
    recommended_action: str  # BUY or REDUCE
    assessment: str


class RiskManager:
    """
    Stateless risk checks for one agent. Everything is a function of the
    arguments and the read-only RiskLimits; the runner owns peak equity,
    trade counters and the decision to halt.
    """
    def __init__(self, limits: RiskLimits):
        self.limits = limits

    def check_circuit_breaker(self, current_equity: float, peak_equity: float, starting_equity: Optional[float] = None) -> CircuitBreakerStatus:
        if not (math.isfinite(current_equity) and math.isfinite(peak_equity)) or peak_equity <= 0:
            return CircuitBreakerStatus(False, "No peak equity recorded yet", 0.0)

        drawdown = (peak_equity - current_equity) / peak_equity * 100
        if drawdown > self.limits.max_drawdown_percent:
            return CircuitBreakerStatus(
                True,
                f"Drawdown {drawdown:.1f}% exceeds limit {self.limits.max_drawdown_percent}%",
                drawdown,
            )

        if starting_equity and starting_equity > 0:
            total_loss = (starting_equity - current_equity) / starting_equity * 100
            if total_loss > MAX_TOTAL_LOSS_PERCENT:
                return CircuitBreakerStatus(True, f"Total loss {total_loss:.1f}% exceeds {MAX_TOTAL_LOSS_PERCENT:.0f}%", drawdown)

        return CircuitBreakerStatus(False, "Within risk limits", drawdown)

    def max_order_notional(self, equity: float) -> float:
        return equity * self.limits.max_position_size_percent / 100

    def validate_order_size(self, notional: float, equity: float) -> RiskDecision:
        if not math.isfinite(equity) or equity <= 0:
            return RiskDecision(False, f"Equity {equity} is not positive")
        if not math.isfinite(notional) or notional <= 0:
            return RiskDecision(False, f"Order notional {notional} is not positive")
        cap = self.max_order_notional(equity)
        if notional > cap:
            return RiskDecision(
                False,
                f"Notional ${notional:.2f} exceeds {self.limits.max_position_size_percent}% of equity (${cap:.2f})",
            )
        if notional < self.limits.min_order_notional:
            return RiskDecision(False, f"Notional ${notional:.2f} below minimum ${self.limits.min_order_notional:.2f}")
        return RiskDecision(True, "Order size within limits")

    def check_daily_trade_limit(self, trades_today: int) -> RiskDecision:
        if trades_today >= self.limits.max_trades_per_day:
            return RiskDecision(False, f"Daily trade limit ({self.limits.max_trades_per_day}) reached")
        return RiskDecision(True, f"{self.limits.max_trades_per_day - trades_today} trades remaining today")

    def check_win_rate(self, summary: Optional[TradeSummary], min_sample: int = MIN_WIN_RATE_SAMPLE) -> RiskDecision:
        if summary is None or summary.total_trades < min_sample:
            return RiskDecision(True, "Not enough closed trades to judge win rate")
        if summary.win_rate < self.limits.min_win_rate:
            return RiskDecision(False, f"Win rate {summary.win_rate:.0%} below floor {self.limits.min_win_rate:.0%}")
        return RiskDecision(True, f"Win rate {summary.win_rate:.0%} acceptable")

    def evaluate(
        self,
        signal: TradeSignal,
        price: float,
        equity: float,
        peak_equity: float,
        trades_today: int = 0,
        summary: Optional[TradeSummary] = None,
        starting_equity: Optional[float] = None,
    ) -> RiskDecision:
        """Runs every check that applies to an order the strategy wants to send."""
        breaker = self.check_circuit_breaker(equity, peak_equity, starting_equity)
        if breaker.should_stop:
            return RiskDecision(False, f"Circuit breaker: {breaker.reason}")
        if not signal.is_actionable:
            return RiskDecision(True, "Nothing to submit")

        size = self.validate_order_size(signal.quantity * price, equity)
        if not size.approved:
            return size

        daily = self.check_daily_trade_limit(trades_today)
        if not daily.approved:
            return daily

        if signal.action == 'BUY':
            win_rate = self.check_win_rate(summary)
            if not win_rate.approved:
                return win_rate

        return RiskDecision(True, "Approved")

    # --- Sizing helpers used by strategies ---

    def position_size_units(self, equity: float, volatility: float, leverage: float, price: float) -> int:
        """
        Whole units to buy: max-position share of equity, shrunk by volatility
        and leverage. Expensive assets get one unit when equity comfortably covers
        it and one unit still fits under the position cap.
        """
        if price <= 0 or equity <= 0:
            return 0
        base = self.max_order_notional(equity)
        volatility_factor = max(0.5, 1 - volatility * 2)
        final_size = base * volatility_factor / max(1.0, leverage)
        quantity = math.floor(final_size / price)
        if quantity < 1 and price > 50 and equity > price * 2 and price <= base:
            final_size = min(price * 1.5, equity * 0.25, base)
            quantity = math.floor(final_size / price)
        return quantity

    def adjust_for_slippage(self, price: float, kind: str) -> float:
        """Moves a target against us by the configured slippage."""
        slippage = price * self.limits.slippage_percent / 100
        if kind == 'take_profit':
            return price - slippage
        return price + slippage

    def assess_position_risk(
        self,
        entry_price: float,
        stop_loss: float,
        take_profit: float,
        quantity: float,
        equity: float,
        leverage: float,
        volatility: float,
    ) -> PositionRisk:
        max_loss = abs(entry_price - stop_loss) * quantity
        max_gain = abs(take_profit - entry_price) * quantity
        risk_percent = max_loss / equity * 100 if equity > 0 else math.inf
        risk_reward = max_gain / max_loss if max_loss > 0 else math.inf

        action, assessment = 'BUY', 'OK'
        # Later checks override earlier ones; the last failing reason is reported
        if risk_percent > self.limits.max_position_size_percent:
            action, assessment = 'REDUCE', f"Risk {risk_percent:.1f}% exceeds limit {self.limits.max_position_size_percent}%"
        if risk_reward < MIN_RISK_REWARD:
            action, assessment = 'REDUCE', f"Risk:Reward {risk_reward:.2f} below {MIN_RISK_REWARD}"
        if volatility > HIGH_VOLATILITY:
            action, assessment = 'REDUCE', f"High volatility {volatility * 100:.2f}% - reduce position"
        if leverage > MAX_LEVERAGE:
            action, assessment = 'REDUCE', f"Leverage {leverage}x too high"

        return PositionRisk(
            max_loss_amount=max_loss,
            position_size=quantity,
            adjusted_leverage=leverage * (1 - volatility),
            slippage_adjusted_take_profit=self.adjust_for_slippage(take_profit, 'take_profit'),
            slippage_adjusted_stop_loss=self.adjust_for_slippage(stop_loss, 'stop_loss'),
            recommended_action=action,
            assessment=assessment,
        )
