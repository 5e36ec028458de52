# agentfleet/strategies/ml_signal.py
from collections import namedtuple
from dataclasses import dataclass
from typing import Optional, Sequence

from agentfleet.datastructures import Position, TradeSignal
from agentfleet.strategies import indicators
from agentfleet.strategies.base import Strategy, StrategyKind, StrategyParams

Prediction = namedtuple("Prediction", ["predicted_price", "confidence", "direction"])


@dataclass(frozen=True)
class MLSignalParams(StrategyParams):
    position_size_ratio: float = 0.15
    leverage: float = 2.0
    history_size: int = 300
    base_confidence_threshold: float = 0.65
    min_trade_interval: float = 10.0
    max_trades_per_hour: int = 10
    indicator_history: int = 15
    initial_entry: bool = True


def predict(prices: Sequence[float], volatility: float, rsi: float, macd_strength: float) -> Prediction:
    """
    Scores trend, RSI, MACD and short patterns into a price forecast.
    Each agreeing indicator adds to the confidence; high volatility discounts it.
    """
    current = prices[-1]
    predicted = current
    confidence = 0.5
    bullish = bearish = 0

    short_trend = indicators.trend_slope(prices[-15:])
    medium_trend = indicators.trend_slope(prices[-50:])

    if short_trend > 0.01:
        bullish += 1
        confidence += 0.1
    elif short_trend < -0.01:
        bearish += 1
        confidence += 0.1

    if medium_trend > 0 and short_trend > 0:
        bullish += 1
        confidence += 0.08
    elif medium_trend < 0 and short_trend < 0:
        bearish += 1
        confidence += 0.08

    if rsi < 30:
        bullish += 1
        confidence += 0.12
        predicted += current * 0.005
    elif rsi > 70:
        bearish += 1
        confidence += 0.12
        predicted -= current * 0.005

    if macd_strength > 20:
        bullish += 1
        confidence += 0.12
    elif macd_strength < -20:
        bearish += 1
        confidence += 0.12

    reversal = indicators.detect_reversal(prices)
    trend = indicators.detect_trend(prices)
    if reversal == "UP" and trend == "UP":
        bullish += 1
        confidence += 0.08
        predicted += current * 0.008
    elif reversal == "DOWN" and trend == "DOWN":
        bearish += 1
        confidence += 0.08
        predicted -= current * 0.008

    if volatility > 0.08:
        confidence *= 0.8
    elif volatility < 0.01:
        confidence *= 1.1

    direction = "UP" if bullish > bearish else "DOWN"
    confidence = max(0.4, min(confidence, 0.95))
    return Prediction(predicted, confidence, direction)


def dynamic_threshold(base: float, volatility: float, rsi: float) -> float:
    threshold = base
    if volatility > 0.05:
        threshold += 0.05
    elif volatility < 0.01:
        threshold -= 0.03
    if rsi < 25 or rsi > 75:
        threshold -= 0.05
    elif 40 < rsi < 60:
        threshold += 0.05
    return max(0.55, min(0.85, threshold))


class MLSignalStrategy(Strategy):
    kind = StrategyKind.ML_SIGNAL

    def __init__(self, symbol: str, params: Optional[MLSignalParams] = None, **kwargs):
        super().__init__(symbol, params or MLSignalParams(), **kwargs)

    def trades_last_hour(self) -> int:
        cutoff = self._clock() - 3600
        return sum(1 for t in self.state.trade_times if t > cutoff)

    def _decide(self, price: float, equity: float, position: Optional[Position]) -> TradeSignal:
        params = self.params
        state = self.state

        if position is None and params.initial_entry and not state.cycles_completed and len(self.prior_prices) >= params.min_history:
            quantity, budget = self._entry_quantity(equity, price)
            if quantity > 0:
                return self._buy(quantity, price, 0.9, f"Initial buy: starting model trading with {quantity} units (~${budget:.2f})", tag='entry')

        cooldown = self._cooldown_remaining(params.min_trade_interval)
        if cooldown > 0:
            return TradeSignal.hold(f"Minimum interval between trades ({cooldown:.0f}s left)")
        if self.trades_last_hour() >= params.max_trades_per_hour:
            return TradeSignal.hold(f"Hourly trade limit ({params.max_trades_per_hour}) reached")

        prices = list(state.prices)
        if len(prices) < params.indicator_history:
            return TradeSignal.hold(f"Building prediction model ({len(prices)}/{params.indicator_history})")

        scale_out = self._scale_out(price, position)
        if scale_out is not None:
            return scale_out

        volatility = indicators.volatility(prices, 20)
        rsi = indicators.rsi(prices, 14)
        macd = indicators.macd(prices)
        prediction = predict(prices, volatility, rsi, macd.strength)
        threshold = dynamic_threshold(params.base_confidence_threshold, volatility, rsi)

        if prediction.confidence < threshold:
            return TradeSignal.hold(
                f"Model confidence {prediction.confidence:.1%} below dynamic threshold {threshold:.1%} (vol {volatility:.2%})"
            )

        units = self._round_quantity(self.risk.position_size_units(equity, volatility, params.leverage, price))
        if units <= 0:
            return TradeSignal.hold(f"Risk sizing gives no tradable quantity at ${price}")

        change_percent = (prediction.predicted_price - price) / price * 100
        movement_threshold = max(0.3, volatility * 10)
        summary = f"{change_percent:+.2f}% move expected (vol {volatility:.1%}, RSI {rsi:.0f}, MACD {macd.strength:.0f})"

        wants_buy = change_percent > movement_threshold and prediction.direction == "UP" and position is None
        wants_sell = change_percent < -movement_threshold and prediction.direction == "DOWN" and position is not None
        if not (wants_buy or wants_sell):
            return TradeSignal.hold(f"Minimal movement ({change_percent:+.2f}%), threshold ±{movement_threshold:.2f}%. {self._position_note(position)}")

        direction = "BUY" if wants_buy else "SELL"
        targets = indicators.adaptive_targets(price, volatility, direction)
        take_profit = self.risk.adjust_for_slippage(targets.take_profit, 'take_profit')
        stop_loss = self.risk.adjust_for_slippage(targets.stop_loss, 'stop_loss')
        assessment = self.risk.assess_position_risk(
            entry_price=price,
            stop_loss=stop_loss,
            take_profit=take_profit,
            quantity=units,
            equity=equity,
            leverage=params.leverage,
            volatility=volatility,
        )
        if assessment.recommended_action == 'REDUCE':
            return TradeSignal.hold(f"Risk check failed: {assessment.assessment}")

        confidence = min(prediction.confidence, 0.95)
        if wants_buy:
            return self._buy(units, price, confidence, f"Model BUY: {summary}", take_profit=take_profit, stop_loss=stop_loss)
        return self._sell(units, position, price, confidence, f"Model SELL: {summary}", take_profit=take_profit, stop_loss=stop_loss)
