"""Analytics: growth metrics (CAGR, Sharpe, volatility, progress) and JSON reports."""

from autotrader.analytics.metrics import (
    annualized_volatility,
    cagr,
    compute_growth_metrics,
    compute_progress,
    sharpe_ratio,
    years_to_target,
)
from autotrader.analytics.reports import write_growth_reports

__all__ = [
    "annualized_volatility",
    "cagr",
    "compute_growth_metrics",
    "compute_progress",
    "sharpe_ratio",
    "years_to_target",
    "write_growth_reports",
]
