"""
SMA fast/slow + RSI + ADX posture strategy.
Uses closed candle only (iloc[-2]) to avoid repainting.
"""

from __future__ import annotations
from typing import Optional

import numpy as np
import pandas as pd

from autotrader.core.config import IndicatorConfig, PostureConfig, StrategyConfig
from autotrader.core.types import MarketSnapshot, to_finite
from autotrader.strategies.base import BaseStrategy, StrategySignal
from autotrader.strategies.posture import derive_strategy_from_posture, evaluate_market_posture


def _true_range(df: pd.DataFrame) -> pd.Series:
    high_low = df["high"] - df["low"]
    high_close = (df["high"] - df["close"].shift()).abs()
    low_close = (df["low"] - df["close"].shift()).abs()
    return pd.concat([high_low, high_close, low_close], axis=1).max(axis=1)


class MaRsiAdxStrategy(BaseStrategy):
    """
    Feeds MA ratio, momentum, RSI and ADX into the posture evaluator and
    derives long / short / flat from the result.
    """

    def __init__(
        self,
        indicators: Optional[IndicatorConfig] = None,
        posture: Optional[PostureConfig] = None,
        strategy: Optional[StrategyConfig] = None,
    ):
        self.indicators = indicators or IndicatorConfig()
        self.posture_config = posture or PostureConfig()
        self.strategy_config = strategy or StrategyConfig()

    @property
    def min_bars(self) -> int:
        return max(self.indicators.ma_slow, self.indicators.adx_len * 2, self.indicators.rsi_len) + 2

    def compute_indicators(self, df: pd.DataFrame) -> pd.DataFrame:
        ind = self.indicators
        df = df.copy()
        df["ma_fast"] = df["close"].rolling(ind.ma_fast).mean()
        df["ma_slow"] = df["close"].rolling(ind.ma_slow).mean()
        # RSI
        delta = df["close"].diff()
        up = delta.clip(lower=0)
        down = (-delta).clip(lower=0)
        rs = up.rolling(ind.rsi_len).mean() / down.rolling(ind.rsi_len).mean().replace(0, np.nan)
        df["rsi"] = 100 - (100 / (1 + rs))
        # Monotonic gains leave rs undefined; treat as fully overbought
        df.loc[rs.isna() & up.rolling(ind.rsi_len).mean().gt(0), "rsi"] = 100.0
        # ATR
        tr = _true_range(df)
        df["atr"] = tr.rolling(ind.atr_len).mean()
        # ADX
        up_move = df["high"].diff()
        down_move = -df["low"].diff()
        plus_dm = up_move.where((up_move > down_move) & (up_move > 0), 0.0)
        minus_dm = down_move.where((down_move > up_move) & (down_move > 0), 0.0)
        atr_n = tr.rolling(ind.adx_len).mean().replace(0, np.nan)
        plus_di = 100 * plus_dm.rolling(ind.adx_len).mean() / atr_n
        minus_di = 100 * minus_dm.rolling(ind.adx_len).mean() / atr_n
        di_sum = (plus_di + minus_di).replace(0, np.nan)
        dx = 100 * (plus_di - minus_di).abs() / di_sum
        df["adx"] = dx.rolling(ind.adx_len).mean()
        # Momentum / realized volatility for risk triggers
        returns = df["close"].pct_change()
        df["change_pct"] = returns
        df["volatility_pct"] = returns.rolling(ind.atr_len).std()
        return df

    def get_signal(self, df: pd.DataFrame) -> Optional[StrategySignal]:
        """
        Uses bars up to the last closed one (iloc[:-1]); the forming bar is ignored.
        Expects compute_indicators to have run on df.
        """
        if len(df) < self.min_bars:
            return None
        closed = df.iloc[:-1]
        posture = evaluate_market_posture(
            closes=closed["close"],
            ma_fast=closed["ma_fast"],
            ma_slow=closed["ma_slow"],
            rsi=closed["rsi"],
            adx=closed["adx"],
            config=self.posture_config,
        )
        decision = derive_strategy_from_posture(posture, self.strategy_config)
        last = closed.iloc[-1]
        timestamp = last["time"] if "time" in closed.columns else None
        snapshot = MarketSnapshot(
            price=to_finite(last["close"]),
            atr=to_finite(last.get("atr")),
            change_pct=to_finite(last.get("change_pct")),
            volatility_pct=to_finite(last.get("volatility_pct")),
            timestamp=pd.Timestamp(timestamp).to_pydatetime() if timestamp is not None else None,
        )
        return StrategySignal(posture=posture, decision=decision, snapshot=snapshot)
