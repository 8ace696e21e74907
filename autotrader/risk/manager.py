"""
Risk manager: judges trade intents against blacklist, daily loss,
volatility triggers and exposure caps.
Outcomes (cleared / flagged / scaled / blocked) are returned as data, never raised.
"""

from __future__ import annotations
import logging
from typing import Iterable, List, Optional

from autotrader.core.config import RiskPolicy
from autotrader.core.types import (
    Breach,
    ComplianceResult,
    ComplianceStatus,
    RiskContext,
    RiskDecision,
    RiskVerdict,
    TradeAction,
    TradeIntent,
    to_finite,
)

logger = logging.getLogger("autotrader.risk")

EPSILON = 1e-9

_STATUS_PRIORITY = {
    ComplianceStatus.CLEARED: 0,
    ComplianceStatus.FLAGGED: 1,
    ComplianceStatus.SCALED: 2,
    ComplianceStatus.BLOCKED: 3,
}


def compute_limit(value: Optional[float], pct: Optional[float], equity: Optional[float]) -> Optional[float]:
    """Absolute cap if finite and positive, else pct x equity, else no cap (None)."""
    value = to_finite(value)
    if value is not None and value > 0:
        return value
    pct = to_finite(pct)
    equity = to_finite(equity)
    if pct is not None and pct > 0 and equity is not None and equity > 0:
        return pct * equity
    return None


def _unique(values: Iterable) -> tuple:
    seen = []
    for v in values:
        if v not in seen:
            seen.append(v)
    return tuple(seen)


def merge_compliance(*results: Optional[ComplianceResult]) -> ComplianceResult:
    """Combine compliance records: most severe status wins, breaches/messages de-duplicated."""
    merged = ComplianceResult()
    for result in results:
        if result is None:
            continue
        status = merged.status
        if _STATUS_PRIORITY[result.status] > _STATUS_PRIORITY[status]:
            status = result.status
        merged = ComplianceResult(
            status=status,
            reason=result.reason or merged.reason,
            breaches=_unique(merged.breaches + result.breaches),
            messages=_unique(merged.messages + result.messages),
            action=result.action or merged.action,
            symbol=result.symbol or merged.symbol,
            sources=_unique(merged.sources + result.sources),
        )
    return merged


class RiskManager:
    """
    Enforces, in order: blacklist, daily loss cap, volatility triggers, exposure cap.
    Each check short-circuits. Pure and synchronous; safe to share across threads.
    """

    def __init__(self, policy: Optional[RiskPolicy] = None):
        self.policy = policy or RiskPolicy()

    def evaluate_trade_intent(self, intent: TradeIntent, context: Optional[RiskContext] = None) -> RiskDecision:
        context = context or RiskContext()
        policy = self.policy
        action = intent.action if isinstance(intent.action, TradeAction) else TradeAction(str(intent.action).lower())
        symbol = (intent.symbol or "").strip().upper() or None
        qty = to_finite(intent.quantity)
        quantity = qty if qty is not None and qty > 0 else 0.0
        notional = intent.resolved_notional()
        equity = to_finite(context.account_equity)
        total_exposure = max(to_finite(context.total_exposure) or 0.0, 0.0)
        daily_loss = abs(to_finite(context.daily_loss) or 0.0)
        source = (intent.source or "").strip() or "unknown"

        breaches: List[Breach] = []

        def decide(verdict: RiskVerdict, reason: Optional[str], qty_out: float, notional_out: float) -> RiskDecision:
            if verdict == RiskVerdict.BLOCK:
                status = ComplianceStatus.BLOCKED
            elif verdict == RiskVerdict.SCALE:
                status = ComplianceStatus.SCALED
            elif breaches:
                status = ComplianceStatus.FLAGGED
            else:
                status = ComplianceStatus.CLEARED
            compliance = ComplianceResult(
                status=status,
                reason=reason,
                breaches=tuple(breaches),
                messages=_unique(b.message for b in breaches if b.message),
                action=action,
                symbol=symbol,
                sources=(source,),
            )
            if verdict != RiskVerdict.ALLOW:
                logger.info("Risk %s %s %s: %s", verdict.value, action.value, symbol, reason)
            return RiskDecision(
                decision=verdict,
                reason=reason,
                quantity=qty_out,
                notional=notional_out,
                compliance=compliance,
            )

        # 1. Blacklist. Closes only get flagged so an exit is never trapped.
        if symbol and symbol in policy.blacklist.symbols:
            message = policy.blacklist.reasons.get(symbol) or f"Trading {symbol} is blacklisted"
            if action == TradeAction.CLOSE:
                breaches.append(Breach(type="blacklist", message=message, severity="warning", symbol=symbol))
            else:
                breaches.append(Breach(type="blacklist", message=message, severity="critical", symbol=symbol))
                return decide(RiskVerdict.BLOCK, "blacklist", quantity, notional)

        if action == TradeAction.CLOSE:
            return decide(RiskVerdict.ALLOW, None, quantity, notional)

        # 2. Daily loss
        loss_cap = compute_limit(policy.max_daily_loss_value, policy.max_daily_loss_pct, equity)
        if loss_cap is not None and daily_loss + EPSILON >= loss_cap:
            breaches.append(Breach(
                type="dailyLoss",
                message=f"Daily loss {daily_loss:.2f} exceeds limit {loss_cap:.2f}",
                limit=loss_cap,
                value=daily_loss,
            ))
            return decide(RiskVerdict.BLOCK, "dailyLoss", quantity, notional)

        # 3. Volatility triggers
        blocked = self._check_volatility(intent, breaches)
        if blocked:
            return decide(RiskVerdict.BLOCK, blocked, quantity, notional)

        # 4. Exposure
        exposure_cap = compute_limit(policy.max_exposure_value, policy.max_exposure_pct, equity)
        if exposure_cap is None or notional <= 0:
            return decide(RiskVerdict.ALLOW, None, quantity, notional)
        projected = total_exposure + notional
        if projected <= exposure_cap + EPSILON:
            return decide(RiskVerdict.ALLOW, None, quantity, notional)

        remaining = max(0.0, exposure_cap - total_exposure)
        if remaining <= EPSILON:
            breaches.append(Breach(
                type="maxExposure",
                message=f"Projected exposure {projected:.2f} exceeds limit {exposure_cap:.2f}",
                limit=exposure_cap,
                value=projected,
            ))
            return decide(RiskVerdict.BLOCK, "maxExposure", quantity, notional)

        price = to_finite(intent.price)
        scaled_qty = remaining / price if price is not None and price > 0 else quantity * (remaining / notional)
        if scaled_qty <= 0:
            breaches.append(Breach(
                type="maxExposure",
                message=f"Projected exposure {projected:.2f} exceeds limit {exposure_cap:.2f}",
                limit=exposure_cap,
                value=projected,
            ))
            return decide(RiskVerdict.BLOCK, "maxExposure", quantity, notional)
        breaches.append(Breach(
            type="maxExposure",
            message=f"Scaled order to {remaining:.2f} notional to respect exposure limit {exposure_cap:.2f}",
            severity="warning",
            limit=exposure_cap,
            value=projected,
        ))
        return decide(RiskVerdict.SCALE, "maxExposure", scaled_qty, remaining)

    def _check_volatility(self, intent: TradeIntent, breaches: List[Breach]) -> Optional[str]:
        """Return a block reason when a configured volatility limit is exceeded."""
        triggers = self.policy.volatility_triggers
        reading = intent.volatility
        if not triggers.enabled or reading is None:
            return None
        checks = (
            ("atr", "atrPct", "ATR ratio", triggers.max_atr_pct, reading.atr_pct),
            ("change", "changePct", "Price change", triggers.max_change_pct, reading.change_pct),
            ("realized", "volatilityPct", "Realized volatility", triggers.max_volatility_pct, reading.volatility_pct),
        )
        for suffix, metric, label, limit, value in checks:
            value = to_finite(value)
            if limit is None or value is None:
                continue
            value = abs(value)
            if value > limit + EPSILON:
                breaches.append(Breach(
                    type="volatility",
                    metric=metric,
                    message=f"{label} {value:.4f} exceeds {limit}",
                    limit=limit,
                    value=value,
                ))
                return f"volatility:{suffix}"
        return None
