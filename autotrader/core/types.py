"""
Core data types: postures, decisions, trade intents, compliance records,
positions, and portfolio simulation records.
"""

from __future__ import annotations
import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional, Tuple

if TYPE_CHECKING:
    from autotrader.execution.base import OrderResult


class Direction(str, Enum):
    LONG = "long"
    SHORT = "short"
    FLAT = "flat"


class PostureBias(str, Enum):
    BULLISH = "bullish"
    BEARISH = "bearish"
    NEUTRAL = "neutral"


class TradeAction(str, Enum):
    OPEN = "open"
    CLOSE = "close"


class RiskVerdict(str, Enum):
    ALLOW = "allow"
    SCALE = "scale"
    BLOCK = "block"


class ComplianceStatus(str, Enum):
    CLEARED = "cleared"
    FLAGGED = "flagged"
    SCALED = "scaled"
    BLOCKED = "blocked"


class StepStatus(str, Enum):
    EXECUTED = "executed"
    SKIPPED = "skipped"
    FAILED = "failed"


class ReversalState(str, Enum):
    PENDING = "reversal_pending"
    CLOSED = "closed"
    OPENED = "opened"


def to_finite(value: Any) -> Optional[float]:
    """Parse value as float; None for anything missing, non-numeric or non-finite."""
    if value is None or isinstance(value, bool):
        return None
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    return parsed if math.isfinite(parsed) else None


@dataclass(frozen=True)
class Posture:
    """Classified market trend state with the readings that produced it."""
    posture: PostureBias
    confidence: float
    slope: float = 0.0
    trend_strength: Optional[float] = None
    ma_ratio: Optional[float] = None
    price: Optional[float] = None
    ma_fast: Optional[float] = None
    ma_slow: Optional[float] = None
    rsi: Optional[float] = None
    trend_strong: bool = False
    reasons: Tuple[str, ...] = ()


@dataclass(frozen=True)
class StrategyDecision:
    """Discrete action derived from a posture."""
    action: Direction
    confidence: float
    posture: PostureBias = PostureBias.NEUTRAL
    reasons: Tuple[str, ...] = ()


@dataclass(frozen=True)
class VolatilityReading:
    atr_pct: Optional[float] = None
    change_pct: Optional[float] = None
    volatility_pct: Optional[float] = None


@dataclass(frozen=True)
class MarketSnapshot:
    """Latest market readings for one asset at decision time."""
    price: Optional[float]
    atr: Optional[float] = None
    change_pct: Optional[float] = None
    volatility_pct: Optional[float] = None
    timestamp: Optional[datetime] = None

    @property
    def atr_pct(self) -> Optional[float]:
        if self.atr is None or not self.price or self.price <= 0:
            return None
        return self.atr / self.price

    def volatility(self) -> VolatilityReading:
        return VolatilityReading(
            atr_pct=self.atr_pct,
            change_pct=self.change_pct,
            volatility_pct=self.volatility_pct,
        )


@dataclass(frozen=True)
class TradeIntent:
    """Proposed open or close, evaluated by the risk manager before execution."""
    action: TradeAction
    symbol: str
    quantity: float
    price: float
    notional: Optional[float] = None
    direction: Optional[Direction] = None
    source: str = "unknown"
    volatility: Optional[VolatilityReading] = None

    def resolved_notional(self) -> float:
        """Supplied notional, else quantity x price. Malformed inputs resolve to 0."""
        supplied = to_finite(self.notional)
        if supplied is not None and supplied >= 0:
            return supplied
        qty = to_finite(self.quantity)
        price = to_finite(self.price)
        if qty is None or price is None or qty <= 0 or price <= 0:
            return 0.0
        return qty * price


@dataclass(frozen=True)
class RiskContext:
    """Account state the intent is judged against."""
    account_equity: Optional[float] = None
    total_exposure: float = 0.0
    daily_loss: float = 0.0


@dataclass(frozen=True)
class Breach:
    type: str
    message: str
    severity: str = "critical"
    limit: Optional[float] = None
    value: Optional[float] = None
    symbol: Optional[str] = None
    metric: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in self.__dict__.items() if v is not None}


@dataclass(frozen=True)
class ComplianceResult:
    """Outcome record of a risk-policy evaluation. Never mutated after creation."""
    status: ComplianceStatus = ComplianceStatus.CLEARED
    reason: Optional[str] = None
    breaches: Tuple[Breach, ...] = ()
    messages: Tuple[str, ...] = ()
    action: Optional[TradeAction] = None
    symbol: Optional[str] = None
    sources: Tuple[str, ...] = ()

    @property
    def decision(self) -> RiskVerdict:
        if self.status == ComplianceStatus.BLOCKED:
            return RiskVerdict.BLOCK
        if self.status == ComplianceStatus.SCALED:
            return RiskVerdict.SCALE
        return RiskVerdict.ALLOW

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "decision": self.decision.value,
            "reason": self.reason,
            "breaches": [b.to_dict() for b in self.breaches],
            "messages": list(self.messages),
            "sources": list(self.sources),
        }


@dataclass(frozen=True)
class RiskDecision:
    """Risk manager verdict with the (possibly scaled) quantity."""
    decision: RiskVerdict
    reason: Optional[str]
    quantity: float
    notional: float
    compliance: ComplianceResult

    @property
    def blocked(self) -> bool:
        return self.decision == RiskVerdict.BLOCK

    @property
    def scaled(self) -> bool:
        return self.decision == RiskVerdict.SCALE


@dataclass(frozen=True)
class PositionSnapshot:
    """Exchange-reported position for one symbol, read once per tick."""
    symbol: str
    direction: Direction
    quantity: float
    notional: float = 0.0
    entry_price: Optional[float] = None

    @classmethod
    def from_position_risk(cls, entry: Mapping[str, Any], epsilon: float = 0.0) -> Optional["PositionSnapshot"]:
        """Build from a signed `positionAmt` entry; None when flat or malformed."""
        amount = to_finite(entry.get("positionAmt"))
        symbol = entry.get("symbol")
        if amount is None or abs(amount) <= epsilon or not isinstance(symbol, str):
            return None
        entry_price = to_finite(entry.get("entryPrice"))
        notional = to_finite(entry.get("notional"))
        if notional is None:
            mark = to_finite(entry.get("markPrice")) or entry_price or 0.0
            notional = abs(amount) * mark
        return cls(
            symbol=symbol.upper(),
            direction=Direction.LONG if amount > 0 else Direction.SHORT,
            quantity=abs(amount),
            notional=abs(notional),
            entry_price=entry_price,
        )


@dataclass(frozen=True)
class Asset:
    """Tradeable asset and the connector that serves it."""
    key: str
    symbol: str
    exchange: str = "binance"


@dataclass(frozen=True)
class StepOutcome:
    """One open or close leg of an automation run."""
    action: TradeAction
    direction: Direction
    status: StepStatus
    quantity: float
    price: Optional[float] = None
    reason: Optional[str] = None
    compliance: Optional[ComplianceResult] = None
    order: Optional["OrderResult"] = None


@dataclass(frozen=True)
class AutomationResult:
    """Result of one automation tick for an asset."""
    skipped: bool = False
    reason: Optional[str] = None
    executed: bool = False
    direction: Optional[Direction] = None
    action: Optional[TradeAction] = None
    quantity: Optional[float] = None
    confidence: Optional[float] = None
    steps: Tuple[StepOutcome, ...] = ()
    reversal: Optional[ReversalState] = None

    @classmethod
    def skip(cls, reason: str, **kwargs: Any) -> "AutomationResult":
        return cls(skipped=True, reason=reason, **kwargs)


@dataclass(frozen=True)
class HistoryEntry:
    timestamp: datetime
    total_value: float
    cash: float
    invested: float
    drawdown_pct: float
    contributions_total: float = 0.0


@dataclass(frozen=True)
class TradeLogEntry:
    timestamp: datetime
    asset: str
    action: str  # "BUY" | "SELL"
    quantity: float
    price: float
    value: float
    reason: str


@dataclass(frozen=True)
class RebalanceEvent:
    timestamp: datetime
    reason: str  # "initial" | "interval" | "drift" | "drawdown"
    total_value: float
    weights: Dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class GrowthMetrics:
    total_return_pct: float
    cagr: float
    max_drawdown_pct: float
    annualized_volatility: float
    sharpe_ratio: float
    rebalances: int
    duration_days: float
    duration_years: float = 0.0
    avg_daily_return: float = 0.0


@dataclass(frozen=True)
class GrowthProgress:
    pct: float
    remaining_capital: float
    estimated_years_to_target: Optional[float]


@dataclass(frozen=True)
class SimulationResult:
    """Terminal output of one portfolio growth run."""
    strategy: str
    assets: Tuple[str, ...]
    initial_capital: float
    target_capital: float
    contributions_total: float
    contributions_count: int
    invested_capital: float
    final_value: float
    target_reached_at: Optional[datetime]
    history: Tuple[HistoryEntry, ...]
    trades: Tuple[TradeLogEntry, ...]
    rebalance_events: Tuple[RebalanceEvent, ...]
    metrics: GrowthMetrics
    progress: GrowthProgress
    reports: Dict[str, str] = field(default_factory=dict)
