"""Exception types shared across the engine. Compliance outcomes are data, not exceptions."""

from __future__ import annotations
from typing import Optional, Sequence


class AutotraderError(Exception):
    """Base class for engine errors."""


class ValidationError(AutotraderError, ValueError):
    """Malformed config or trade intent. Raised before anything reaches the risk manager."""


class MarketDataError(AutotraderError):
    """Required market data could not be fetched or is unusable."""

    def __init__(self, message: str, asset: Optional[str] = None, original: Optional[BaseException] = None):
        super().__init__(message)
        self.asset = asset
        self.original = original


class ExecutionError(AutotraderError):
    """Order placement failed at the exchange."""

    def __init__(self, message: str, symbol: Optional[str] = None, original: Optional[BaseException] = None):
        super().__init__(message)
        self.symbol = symbol
        self.original = original


class ReversalError(ExecutionError):
    """Close leg of a reversal succeeded but the open leg failed."""

    def __init__(self, message: str, symbol: Optional[str], state: str, completed_steps: Sequence = (),
                 original: Optional[BaseException] = None):
        super().__init__(message, symbol=symbol, original=original)
        self.state = state
        self.completed_steps = tuple(completed_steps)


class ConnectorNotFoundError(AutotraderError, LookupError):
    """No exchange connector registered under the requested name."""

    def __init__(self, name: str):
        super().__init__(f"No exchange connector registered for '{name}'")
        self.name = name
