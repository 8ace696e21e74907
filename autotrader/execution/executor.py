"""
Position executor: turns open/close requests into market orders on a connector.
Close orders are reduce-only. Failures raise ExecutionError; nothing is retried here.
"""

from __future__ import annotations
import logging
from typing import Any, Mapping, Optional

from autotrader.core.errors import ExecutionError, ValidationError
from autotrader.core.types import Direction, to_finite
from autotrader.execution.base import ExchangeConnector, OrderResult

logger = logging.getLogger("autotrader.execution")


def _open_side(direction: Direction) -> str:
    return "SELL" if direction == Direction.SHORT else "BUY"


def _close_side(direction: Direction) -> str:
    return "BUY" if direction == Direction.SHORT else "SELL"


class PositionExecutor:
    """Open / close positions through one exchange connector."""

    def __init__(self, connector: ExchangeConnector, min_notional: float = 0.0):
        self.connector = connector
        self.min_notional = min_notional

    def _validate(self, symbol: str, direction: Direction, quantity: float) -> float:
        if not symbol:
            raise ValidationError("order requires a symbol")
        if direction not in (Direction.LONG, Direction.SHORT):
            raise ValidationError(f"cannot trade direction {direction!r}")
        qty = to_finite(quantity)
        if qty is None or qty <= 0:
            raise ValidationError(f"invalid quantity {quantity!r} for {symbol}")
        return qty

    def open_position(
        self,
        symbol: str,
        direction: Direction,
        quantity: float,
        price: Optional[float] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> OrderResult:
        qty = self._validate(symbol, direction, quantity)
        ref = to_finite(price)
        if ref is not None and self.min_notional > 0 and qty * ref < self.min_notional:
            raise ExecutionError(
                f"notional {qty * ref:.2f} below min {self.min_notional} for {symbol}", symbol=symbol
            )
        side = _open_side(direction)
        result = self.connector.place_order(
            symbol, side, qty, reduce_only=False, client_tag=(metadata or {}).get("client_tag"),
        )
        if not result.success:
            raise ExecutionError(result.message or f"open {direction.value} {symbol} failed", symbol=symbol)
        logger.info(
            "Opened %s %s qty=%s fill=%s order=%s", direction.value, symbol, qty,
            result.fill_price if result.fill_price is not None else ref, result.order_id,
        )
        return result

    def close_position(
        self,
        symbol: str,
        direction: Direction,
        quantity: float,
        price: Optional[float] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> OrderResult:
        qty = self._validate(symbol, direction, quantity)
        side = _close_side(direction)
        result = self.connector.place_order(
            symbol, side, qty, reduce_only=True, client_tag=(metadata or {}).get("client_tag"),
        )
        if not result.success:
            raise ExecutionError(result.message or f"close {direction.value} {symbol} failed", symbol=symbol)
        logger.info(
            "Closed %s %s qty=%s fill=%s order=%s", direction.value, symbol, qty,
            result.fill_price if result.fill_price is not None else price, result.order_id,
        )
        return result
