"""Abstract strategy: indicators + posture-derived decision."""

from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import pandas as pd

from autotrader.core.types import MarketSnapshot, Posture, StrategyDecision


@dataclass(frozen=True)
class StrategySignal:
    """What a strategy concluded from the last closed bar."""
    posture: Posture
    decision: StrategyDecision
    snapshot: MarketSnapshot


class BaseStrategy(ABC):
    """Strategy computes indicators and classifies the last closed bar."""

    @abstractmethod
    def compute_indicators(self, df: pd.DataFrame) -> pd.DataFrame:
        """Add indicator columns to OHLCV DataFrame. No lookahead."""
        pass

    @abstractmethod
    def get_signal(self, df: pd.DataFrame) -> Optional[StrategySignal]:
        """Signal for the last closed bar (iloc[-2]) or None when history is too short."""
        pass
