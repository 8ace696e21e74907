"""Strategies: posture evaluation, strategy derivation, indicator strategy."""

from autotrader.strategies.base import BaseStrategy, StrategySignal
from autotrader.strategies.ma_rsi_adx import MaRsiAdxStrategy
from autotrader.strategies.posture import (
    compute_slope_percent,
    evaluate_market_posture,
    derive_strategy_from_posture,
)

__all__ = [
    "BaseStrategy",
    "StrategySignal",
    "MaRsiAdxStrategy",
    "compute_slope_percent",
    "evaluate_market_posture",
    "derive_strategy_from_posture",
]
