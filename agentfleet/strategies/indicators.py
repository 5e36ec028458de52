# agentfleet/strategies/indicators.py
"""
Technical indicators over a plain price history (oldest first).

Every function returns a scalar for the latest sample and degrades to a
neutral value when the history is too short, so strategies can call them
from the first tick.
"""
from collections import namedtuple
from typing import Sequence

import numpy as np
import pandas as pd

Macd = namedtuple("Macd", ["macd", "signal", "histogram", "strength"])
Bands = namedtuple("Bands", ["upper", "middle", "lower", "width"])
Targets = namedtuple("Targets", ["take_profit", "stop_loss", "risk_amount"])


def _series(prices: Sequence[float]) -> pd.Series:
    return pd.Series(list(prices), dtype=float)


def sma(prices: Sequence[float], period: int) -> float:
    """Mean of the last `period` samples; the latest price while history is shorter."""
    series = _series(prices)
    if series.empty:
        return 0.0
    if len(series) < period:
        return float(series.iloc[-1])
    return float(series.tail(period).mean())


def window_mean(prices: Sequence[float], window: int) -> float:
    """Mean of up to the last `window` samples."""
    series = _series(prices).tail(window)
    if series.empty:
        return 0.0
    return float(series.mean())


def ema(prices: Sequence[float], period: int) -> float:
    series = _series(prices)
    if series.empty:
        return 0.0
    return float(series.ewm(span=period, adjust=False).mean().iloc[-1])


def rsi(prices: Sequence[float], period: int = 14) -> float:
    """Cutler's RSI: plain averages of gains and losses over the last `period` moves."""
    series = _series(prices)
    if len(series) < period + 1:
        return 50.0
    delta = series.diff().tail(period)
    avg_gain = delta.clip(lower=0).sum() / period
    avg_loss = -delta.clip(upper=0).sum() / period
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return float(100 - 100 / (1 + rs))


def macd(prices: Sequence[float], fast: int = 12, slow: int = 26, signal_period: int = 9) -> Macd:
    """
    MACD line, its signal line and histogram. `strength` is the histogram in
    basis points of the latest price, clamped to [-100, 100].
    """
    series = _series(prices)
    if len(series) < 2:
        return Macd(0.0, 0.0, 0.0, 0.0)
    macd_line = series.ewm(span=fast, adjust=False).mean() - series.ewm(span=slow, adjust=False).mean()
    signal_line = macd_line.ewm(span=signal_period, adjust=False).mean()
    histogram = float(macd_line.iloc[-1] - signal_line.iloc[-1])
    last_price = float(series.iloc[-1])
    strength = histogram / last_price * 10000 if last_price else 0.0
    strength = max(-100.0, min(100.0, strength))
    return Macd(float(macd_line.iloc[-1]), float(signal_line.iloc[-1]), histogram, strength)


def bollinger_bands(prices: Sequence[float], period: int = 20, num_std: float = 2.0) -> Bands:
    series = _series(prices)
    if series.empty:
        return Bands(0.0, 0.0, 0.0, 0.0)
    middle = sma(prices, period)
    std = float(series.tail(period).std(ddof=0))
    upper = middle + std * num_std
    lower = middle - std * num_std
    width = (upper - lower) / middle if middle else 0.0
    return Bands(upper, middle, lower, width)


def volatility(prices: Sequence[float], lookback: int = 20) -> float:
    """Population standard deviation over the lookback, as a fraction of the mean."""
    series = _series(prices).tail(lookback)
    if series.empty:
        return 0.0
    mean = float(series.mean())
    if mean == 0:
        return 0.0
    return float(series.std(ddof=0)) / mean


def momentum(prices: Sequence[float], period: int = 10) -> float:
    """Percent change against the sample `period` steps back."""
    if len(prices) <= period:
        return 0.0
    past = prices[-period - 1]
    if past == 0:
        return 0.0
    return (prices[-1] - past) / past * 100


def trend_slope(prices: Sequence[float]) -> float:
    """Least-squares slope normalized by the latest price (fraction per sample)."""
    if len(prices) < 2:
        return 0.0
    y = np.asarray(prices, dtype=float)
    x = np.arange(len(y), dtype=float)
    slope = np.polyfit(x, y, 1)[0]
    return float(slope / y[-1]) if y[-1] else 0.0


def detect_reversal(prices: Sequence[float]) -> str:
    """'UP' for a V-shaped valley, 'DOWN' for an inverted V, else 'NONE'."""
    if len(prices) < 5:
        return "NONE"
    p = list(prices)[-5:]
    if p[1] < p[0] and p[2] < p[1] and p[3] > p[2] and p[3] > p[2] * 1.005:
        return "UP"
    if p[1] > p[0] and p[2] > p[1] and p[3] < p[2] and p[3] < p[2] * 0.995:
        return "DOWN"
    return "NONE"


def detect_trend(prices: Sequence[float], window: int = 8) -> str:
    """'UP'/'DOWN' when at least 60% of the last moves agree, else 'FLAT'."""
    if len(prices) < window:
        return "FLAT"
    moves = np.diff(np.asarray(list(prices)[-window:], dtype=float))
    threshold = window * 0.6
    if (moves > 0).sum() >= threshold:
        return "UP"
    if (moves < 0).sum() >= threshold:
        return "DOWN"
    return "FLAT"


def adaptive_targets(entry_price: float, vol: float, direction: str) -> Targets:
    """Take-profit and stop-loss widened with volatility; stop sits at half the risk distance."""
    risk_amount = entry_price * vol
    multiplier = max(1.0, min(3.0, 1 + vol * 5))
    if direction == "BUY":
        return Targets(entry_price + risk_amount * multiplier, entry_price - risk_amount * 0.5, risk_amount)
    return Targets(entry_price - risk_amount * multiplier, entry_price + risk_amount * 0.5, risk_amount)
