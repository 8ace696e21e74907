"""Risk management: blacklist, daily loss, volatility triggers, exposure scaling."""

from autotrader.risk.manager import RiskManager, compute_limit, merge_compliance

__all__ = ["RiskManager", "compute_limit", "merge_compliance"]
