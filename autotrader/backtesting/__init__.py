"""Backtesting: day-stepped portfolio growth simulation."""

from autotrader.backtesting.portfolio import PortfolioSimulator, run_portfolio_growth_simulation

__all__ = ["PortfolioSimulator", "run_portfolio_growth_simulation"]
