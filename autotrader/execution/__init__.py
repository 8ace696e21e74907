"""Execution: exchange abstraction, Binance Futures connector, registry, position executor."""

from autotrader.execution.base import ExchangeConnector, OrderResult, TradingNotifier
from autotrader.execution.binance_futures import BinanceFuturesConnector
from autotrader.execution.executor import PositionExecutor
from autotrader.execution.registry import ConnectorRegistry

__all__ = [
    "ExchangeConnector",
    "OrderResult",
    "TradingNotifier",
    "BinanceFuturesConnector",
    "PositionExecutor",
    "ConnectorRegistry",
]
