"""Abstract exchange and notifier interfaces consumed by the engine."""

from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

import pandas as pd


@dataclass(frozen=True)
class OrderResult:
    """Result of placing an order."""
    success: bool
    order_id: Optional[str] = None
    fill_price: Optional[float] = None
    quantity: Optional[float] = None
    message: str = ""


class ExchangeConnector(ABC):
    """Capability set the engine needs from an exchange."""

    @abstractmethod
    def fetch_candles(self, symbol: str, interval: str, limit: int = 300) -> pd.DataFrame:
        """Return OHLCV DataFrame with columns: time, open, high, low, close, volume."""
        pass

    @abstractmethod
    def fetch_daily_closes(self, symbol: str, days: int) -> pd.DataFrame:
        """Return daily closes ascending, columns: time, close. May be shorter than `days`."""
        pass

    @abstractmethod
    def get_margin_position_risk(self, symbol: Optional[str] = None) -> List[Dict[str, Any]]:
        """Position entries with signed `positionAmt`; all symbols when symbol is None."""
        pass

    @abstractmethod
    def place_order(
        self,
        symbol: str,
        side: str,
        quantity: float,
        reduce_only: bool = False,
        client_tag: Optional[str] = None,
    ) -> OrderResult:
        """Place a market order. Raise ExecutionError when the exchange rejects it."""
        pass


class TradingNotifier(ABC):
    """Fire-and-forget sink for trading decisions and executions."""

    @abstractmethod
    def report_trading_decision(self, payload: Mapping[str, Any]) -> None:
        pass

    @abstractmethod
    def report_trading_execution(self, payload: Mapping[str, Any]) -> None:
        pass
