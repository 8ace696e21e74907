"""
Growth metrics: total return, CAGR, Sharpe, annualized volatility, max drawdown,
and progress toward a capital target. Crypto trades every day, so a year is 365 periods.
"""

from __future__ import annotations
import math
from typing import List, Optional, Sequence

import numpy as np

from autotrader.core.types import GrowthMetrics, GrowthProgress, HistoryEntry


DAYS_PER_YEAR = 365.0


def sharpe_ratio(returns: Sequence[float], risk_free_rate: float = 0.0, periods_per_year: float = DAYS_PER_YEAR) -> float:
    """Annualized Sharpe from period returns. risk_free_rate is annual, compounded down to one period."""
    if len(returns) < 2:
        return 0.0
    arr = np.asarray(returns, dtype=float)
    rf_period = (1.0 + risk_free_rate) ** (1.0 / periods_per_year) - 1.0
    excess = arr - rf_period
    std = excess.std(ddof=1)
    if not np.isfinite(std) or std <= 1e-12:
        return 0.0
    return float(np.sqrt(periods_per_year) * excess.mean() / std)


def annualized_volatility(returns: Sequence[float], periods_per_year: float = DAYS_PER_YEAR) -> float:
    """Sample stdev of period returns scaled by sqrt(periods_per_year)."""
    if len(returns) < 2:
        return 0.0
    std = np.asarray(returns, dtype=float).std(ddof=1)
    return float(std * np.sqrt(periods_per_year)) if np.isfinite(std) else 0.0


def cagr(start_value: float, end_value: float, years: float) -> float:
    """Compound annual growth rate; 0 when the period or start value is degenerate."""
    if years <= 0 or start_value <= 0:
        return 0.0
    if end_value <= 0:
        return -1.0
    return float((end_value / start_value) ** (1.0 / years) - 1.0)


def years_to_target(current: float, target: float, growth_rate: float) -> Optional[float]:
    """Years to reach target compounding at growth_rate. None when it never gets there."""
    if current >= target:
        return 0.0
    if growth_rate <= 0 or current <= 0:
        return None
    return math.log(target / current) / math.log(1.0 + growth_rate)


def compute_progress(final_value: float, target_capital: float, growth_rate: float) -> GrowthProgress:
    pct = final_value / target_capital if target_capital > 0 else 0.0
    return GrowthProgress(
        pct=pct,
        remaining_capital=max(0.0, target_capital - final_value),
        estimated_years_to_target=years_to_target(final_value, target_capital, growth_rate),
    )


def compute_growth_metrics(
    history: Sequence[HistoryEntry],
    daily_returns: Sequence[float],
    invested_capital: float,
    rebalances: int,
    risk_free_rate: float = 0.0,
) -> GrowthMetrics:
    """
    Summarize a simulation. daily_returns must already exclude contribution inflows;
    total return is measured against everything paid in (initial + contributions).
    """
    if not history:
        return GrowthMetrics(
            total_return_pct=0.0, cagr=0.0, max_drawdown_pct=0.0, annualized_volatility=0.0,
            sharpe_ratio=0.0, rebalances=rebalances, duration_days=0.0,
        )
    final_value = history[-1].total_value
    duration_days = (history[-1].timestamp - history[0].timestamp).total_seconds() / 86400.0
    duration_years = duration_days / DAYS_PER_YEAR
    total_return = (final_value - invested_capital) / invested_capital if invested_capital > 0 else 0.0
    returns: List[float] = [r for r in daily_returns if math.isfinite(r)]
    return GrowthMetrics(
        total_return_pct=total_return,
        cagr=cagr(invested_capital, final_value, duration_years),
        max_drawdown_pct=max(e.drawdown_pct for e in history),
        annualized_volatility=annualized_volatility(returns),
        sharpe_ratio=sharpe_ratio(returns, risk_free_rate),
        rebalances=rebalances,
        duration_days=duration_days,
        duration_years=duration_years,
        avg_daily_return=float(np.mean(returns)) if returns else 0.0,
    )
