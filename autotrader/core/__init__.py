"""Core: config, types, errors, logging."""

from autotrader.core.config import load_config, Config
from autotrader.core.errors import (
    AutotraderError,
    ValidationError,
    MarketDataError,
    ExecutionError,
    ReversalError,
    ConnectorNotFoundError,
)
from autotrader.core.types import (
    Direction,
    PostureBias,
    Posture,
    StrategyDecision,
    TradeIntent,
    RiskContext,
    RiskDecision,
    ComplianceResult,
    PositionSnapshot,
    AutomationResult,
    SimulationResult,
)
from autotrader.core.logger import setup_logging

__all__ = [
    "load_config",
    "Config",
    "AutotraderError",
    "ValidationError",
    "MarketDataError",
    "ExecutionError",
    "ReversalError",
    "ConnectorNotFoundError",
    "Direction",
    "PostureBias",
    "Posture",
    "StrategyDecision",
    "TradeIntent",
    "RiskContext",
    "RiskDecision",
    "ComplianceResult",
    "PositionSnapshot",
    "AutomationResult",
    "SimulationResult",
    "setup_logging",
]
