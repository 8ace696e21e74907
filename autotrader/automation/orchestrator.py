"""
Automation orchestrator: maps a strategy decision and the exchange-reported position
to an open / close / reverse / no-op transition. Every leg is risk-gated and reported.
"""

from __future__ import annotations
import logging
import time
from typing import Any, Dict, List, Optional, Sequence, Union

from autotrader.core.config import TradingConfig
from autotrader.core.errors import ExecutionError, ReversalError, ValidationError
from autotrader.core.types import (
    AutomationResult,
    Direction,
    MarketSnapshot,
    Posture,
    PositionSnapshot,
    ReversalState,
    RiskContext,
    StepOutcome,
    StepStatus,
    StrategyDecision,
    TradeAction,
    TradeIntent,
    to_finite,
)
from autotrader.execution.base import ExchangeConnector, TradingNotifier
from autotrader.execution.executor import PositionExecutor
from autotrader.risk.manager import RiskManager
from autotrader.utils.timeframes import same_timeframe

logger = logging.getLogger("autotrader.automation")

_ACTION_ALIASES = {
    "buy": Direction.LONG,
    "long": Direction.LONG,
    "sell": Direction.SHORT,
    "short": Direction.SHORT,
    "hold": Direction.FLAT,
    "flat": Direction.FLAT,
}

DecisionLike = Union[StrategyDecision, Direction, str]


def resolve_direction(decision: Any) -> Optional[Direction]:
    """buy/long -> LONG, sell/short -> SHORT, hold/flat -> FLAT; None if unrecognised."""
    if isinstance(decision, StrategyDecision):
        decision = decision.action
    if isinstance(decision, Direction):
        return decision
    if isinstance(decision, str):
        return _ACTION_ALIASES.get(decision.strip().lower())
    return None


def resolve_confidence(*sources: Any) -> float:
    """First finite confidence among decision / strategy / posture; 0 when none carry one."""
    for source in sources:
        value = to_finite(getattr(source, "confidence", None))
        if value is not None:
            return value
    return 0.0


def _snapshot_price(snapshot: Any) -> Optional[float]:
    if isinstance(snapshot, MarketSnapshot):
        return to_finite(snapshot.price)
    return to_finite(snapshot)


def _client_tag(symbol: str, action: TradeAction) -> str:
    # Binance caps newClientOrderId at 36 chars
    return f"at-{symbol.lower()}-{action.value}-{int(time.time() * 1000)}"[:36]


class AutomationOrchestrator:
    """Runs one automation tick per asset. Same-symbol calls must be serialized by the caller."""

    def __init__(
        self,
        config: TradingConfig,
        connector: ExchangeConnector,
        executor: PositionExecutor,
        risk_manager: RiskManager,
        notifier: Optional[TradingNotifier] = None,
    ):
        self.config = config
        self.connector = connector
        self.executor = executor
        self.risk_manager = risk_manager
        self.notifier = notifier

    # ------------------------------------------------------------------
    # notifier (fire-and-forget)
    # ------------------------------------------------------------------
    def _notify_decision(self, payload: Dict[str, Any]) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.report_trading_decision(payload)
        except Exception as e:
            logger.debug("Decision notification failed: %s", e)

    def _notify_step(self, base: Dict[str, Any], step: StepOutcome, order_id: Any = None) -> None:
        if self.notifier is None:
            return
        payload = dict(base)
        payload.update(
            action=step.action.value,
            direction=step.direction.value,
            status=step.status.value,
            quantity=step.quantity,
            price=step.price,
            reason=step.reason,
            compliance=step.compliance.to_dict() if step.compliance is not None else None,
            order_id=order_id,
        )
        try:
            self.notifier.report_trading_execution(payload)
        except Exception as e:
            logger.debug("Execution notification failed: %s", e)

    # ------------------------------------------------------------------
    def _load_positions(self) -> List[PositionSnapshot]:
        epsilon = self.config.automation.position_epsilon
        positions = []
        for entry in self.connector.get_margin_position_risk() or []:
            snap = PositionSnapshot.from_position_risk(entry, epsilon)
            if snap is not None:
                positions.append(snap)
        return positions

    @staticmethod
    def _validate_intent(intent: TradeIntent) -> None:
        qty = to_finite(intent.quantity)
        price = to_finite(intent.price)
        if qty is None or qty <= 0:
            raise ValidationError(f"{intent.action.value} {intent.symbol}: invalid quantity {intent.quantity!r}")
        if price is None or price <= 0:
            raise ValidationError(f"{intent.action.value} {intent.symbol}: invalid price {intent.price!r}")

    def _run_step(
        self,
        action: TradeAction,
        direction: Direction,
        symbol: str,
        quantity: float,
        price: float,
        exposure: float,
        daily_loss: float,
        snapshot: Optional[MarketSnapshot],
        base_payload: Dict[str, Any],
        notional: Optional[float] = None,
    ) -> StepOutcome:
        intent = TradeIntent(
            action=action,
            symbol=symbol,
            quantity=quantity,
            price=price,
            notional=notional,
            direction=direction,
            source="automation",
            volatility=snapshot.volatility() if snapshot is not None else None,
        )
        self._validate_intent(intent)
        context = RiskContext(
            account_equity=self.config.account_equity,
            total_exposure=exposure,
            daily_loss=daily_loss,
        )
        verdict = self.risk_manager.evaluate_trade_intent(intent, context)
        if verdict.blocked:
            step = StepOutcome(
                action=action,
                direction=direction,
                status=StepStatus.SKIPPED,
                quantity=quantity,
                price=price,
                reason=f"risk:{verdict.reason}",
                compliance=verdict.compliance,
            )
            self._notify_step(base_payload, step)
            return step

        qty = verdict.quantity if verdict.scaled else quantity
        metadata = {
            "client_tag": _client_tag(symbol, action),
            "asset_key": base_payload.get("asset_key"),
            "compliance": verdict.compliance.to_dict(),
        }
        try:
            if action == TradeAction.OPEN:
                order = self.executor.open_position(symbol, direction, qty, price=price, metadata=metadata)
            else:
                order = self.executor.close_position(symbol, direction, qty, price=price, metadata=metadata)
        except ExecutionError as e:
            self._notify_step(
                base_payload,
                StepOutcome(action, direction, StepStatus.FAILED, qty, price, str(e), verdict.compliance),
            )
            raise
        step = StepOutcome(
            action=action,
            direction=direction,
            status=StepStatus.EXECUTED,
            quantity=qty,
            price=order.fill_price if order.fill_price is not None else price,
            reason=verdict.reason,
            compliance=verdict.compliance,
            order=order,
        )
        self._notify_step(base_payload, step, order_id=order.order_id)
        return step

    def automate_trading(
        self,
        asset_key: str,
        symbol: str,
        timeframe: Optional[str],
        decision: DecisionLike,
        posture: Optional[Posture] = None,
        strategy: Optional[StrategyDecision] = None,
        snapshot: Union[MarketSnapshot, float, None] = None,
        daily_loss: float = 0.0,
    ) -> AutomationResult:
        """
        Gate order: disabled, missingSymbol, timeframeMismatch, lowConfidence, maxPositions,
        invalidSizing, alreadyAligned, noPosition. Then close and/or open, each risk-gated.

        ExecutionError propagates to the caller. A failed open after a completed close
        raises ReversalError with state CLOSED so the caller knows the book is flat.
        """
        auto = self.config.automation
        if not (self.config.enabled and auto.enabled):
            return AutomationResult.skip("disabled")
        symbol = (symbol or "").strip().upper()
        if not symbol:
            return AutomationResult.skip("missingSymbol")
        if auto.timeframe and not (timeframe and same_timeframe(timeframe, auto.timeframe)):
            logger.debug("%s: timeframe %s != automation timeframe %s", asset_key, timeframe, auto.timeframe)
            return AutomationResult.skip("timeframeMismatch")

        target = resolve_direction(decision)
        if target is None:
            raise ValidationError(f"{asset_key}: unrecognised decision {decision!r}")
        confidence = resolve_confidence(decision, strategy, posture)
        if confidence < auto.min_confidence:
            return AutomationResult.skip("lowConfidence", direction=target, confidence=confidence)

        market = snapshot if isinstance(snapshot, MarketSnapshot) else None
        price = _snapshot_price(snapshot)
        base_payload: Dict[str, Any] = {"asset_key": asset_key, "symbol": symbol, "timeframe": timeframe}
        reasons: Sequence[str] = ()
        for source in (decision, strategy, posture):
            if getattr(source, "reasons", None):
                reasons = source.reasons
                break
        self._notify_decision({
            **base_payload,
            "action": target.value,
            "confidence": confidence,
            "posture": posture.posture.value if posture is not None else None,
            "price": price,
            "reasons": list(reasons),
        })

        positions = self._load_positions()
        existing = next((p for p in positions if p.symbol == symbol), None)
        others = [p for p in positions if p.symbol != symbol]

        if existing is None and target != Direction.FLAT and len(others) >= auto.max_positions:
            return AutomationResult.skip("maxPositions", direction=target, confidence=confidence)

        open_qty = 0.0
        if target != Direction.FLAT and (existing is None or existing.direction != target):
            equity = to_finite(self.config.account_equity)
            if equity is None or equity <= 0 or price is None or price <= 0:
                return AutomationResult.skip("invalidSizing", direction=target, confidence=confidence)
            open_qty = equity * auto.position_pct / price
            if open_qty <= 0:
                return AutomationResult.skip("invalidSizing", direction=target, confidence=confidence)

        if existing is not None and existing.direction == target:
            return AutomationResult.skip("alreadyAligned", direction=target, confidence=confidence)
        if existing is None and target == Direction.FLAT:
            return AutomationResult.skip("noPosition", direction=target, confidence=confidence)

        total_exposure = sum(p.notional for p in positions)
        reversal = existing is not None and target != Direction.FLAT
        steps: List[StepOutcome] = []
        state: Optional[ReversalState] = ReversalState.PENDING if reversal else None

        if existing is not None:
            close_price = price if price is not None and price > 0 else existing.entry_price
            close = self._run_step(
                TradeAction.CLOSE, existing.direction, symbol, existing.quantity, close_price,
                total_exposure, daily_loss, market, base_payload,
                notional=existing.notional or None,
            )
            steps.append(close)
            if close.status != StepStatus.EXECUTED:
                return AutomationResult.skip(
                    close.reason, direction=existing.direction, action=TradeAction.CLOSE,
                    confidence=confidence, steps=tuple(steps), reversal=state,
                )
            total_exposure = sum(p.notional for p in others)
            if reversal:
                state = ReversalState.CLOSED
            else:
                return AutomationResult(
                    executed=True, direction=existing.direction, action=TradeAction.CLOSE,
                    quantity=close.quantity, confidence=confidence, steps=tuple(steps),
                )

        try:
            opened = self._run_step(
                TradeAction.OPEN, target, symbol, open_qty, price,
                total_exposure, daily_loss, market, base_payload,
            )
        except ExecutionError as e:
            if state == ReversalState.CLOSED:
                logger.error("%s: reversal open %s failed after close: %s", symbol, target.value, e)
                raise ReversalError(
                    f"reversal of {symbol} to {target.value} failed after close: {e}",
                    symbol=symbol, state=state.value, completed_steps=steps, original=e,
                ) from e
            raise
        steps.append(opened)
        if opened.status != StepStatus.EXECUTED:
            # close leg (if any) already went through; report it but flag the skipped open
            return AutomationResult(
                skipped=True, reason=opened.reason, executed=state == ReversalState.CLOSED,
                direction=target, action=TradeAction.OPEN, confidence=confidence,
                steps=tuple(steps), reversal=state,
            )
        if state is not None:
            state = ReversalState.OPENED
        logger.info("%s: %s %s qty=%s (confidence %.2f)", asset_key, "reversed to" if reversal else "opened",
                    target.value, opened.quantity, confidence)
        return AutomationResult(
            executed=True, direction=target, action=TradeAction.OPEN, quantity=opened.quantity,
            confidence=confidence, steps=tuple(steps), reversal=state,
        )
