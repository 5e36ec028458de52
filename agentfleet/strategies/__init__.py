# agentfleet/strategies/__init__.py
from typing import Optional, Union

from agentfleet.errors import ConfigurationError
from agentfleet.risk_manager import RiskManager
from agentfleet.strategies.arbitrage import ArbitrageParams, ArbitrageStrategy
from agentfleet.strategies.base import Strategy, StrategyKind, StrategyParams, StrategyState
from agentfleet.strategies.buy_and_hold import BuyAndHoldParams, BuyAndHoldStrategy
from agentfleet.strategies.grid import GridParams, GridStrategy
from agentfleet.strategies.ml_signal import MLSignalParams, MLSignalStrategy
from agentfleet.strategies.momentum import MomentumParams, MomentumStrategy

STRATEGY_CLASSES = {
    StrategyKind.GRID: GridStrategy,
    StrategyKind.MOMENTUM: MomentumStrategy,
    StrategyKind.ML_SIGNAL: MLSignalStrategy,
    StrategyKind.ARBITRAGE: ArbitrageStrategy,
    StrategyKind.BUY_AND_HOLD: BuyAndHoldStrategy,
}


def build_strategy(
    kind: Union[StrategyKind, str],
    symbol: str,
    params: Optional[StrategyParams] = None,
    risk_manager: Optional[RiskManager] = None,
    **kwargs,
) -> Strategy:
    """The only place a strategy kind is turned into an instance."""
    try:
        kind = StrategyKind(kind)
    except ValueError:
        choices = ", ".join(k.value for k in StrategyKind)
        raise ConfigurationError(f"Unknown strategy kind {kind!r}. Expected one of: {choices}")
    return STRATEGY_CLASSES[kind](symbol, params, risk_manager=risk_manager, **kwargs)


__all__ = [
    "ArbitrageParams", "ArbitrageStrategy", "BuyAndHoldParams", "BuyAndHoldStrategy",
    "GridParams", "GridStrategy", "MLSignalParams", "MLSignalStrategy",
    "MomentumParams", "MomentumStrategy", "Strategy", "StrategyKind",
    "StrategyParams", "StrategyState", "build_strategy",
]
