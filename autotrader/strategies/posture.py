"""
Market posture classification from MA / RSI / ADX series and the mapping
from posture to a discrete long / short / flat action.

Both functions are pure: they read only the series and config they are given
and never raise on missing or warm-up (None / NaN) samples.
"""

from __future__ import annotations
from typing import Optional, Sequence

from autotrader.core.config import PostureConfig, StrategyConfig
from autotrader.core.types import Direction, Posture, PostureBias, StrategyDecision, to_finite

_ACTION_BY_POSTURE = {
    PostureBias.BULLISH: Direction.LONG,
    PostureBias.BEARISH: Direction.SHORT,
    PostureBias.NEUTRAL: Direction.FLAT,
}


def _as_list(series: Optional[Sequence]) -> list:
    if series is None:
        return []
    try:
        return list(series)
    except TypeError:
        return []


def _last(series: Optional[Sequence]) -> Optional[float]:
    values = _as_list(series)
    return to_finite(values[-1]) if values else None


def compute_slope_percent(series: Optional[Sequence], lookback: int = 5) -> float:
    """
    Fractional change between the last sample and the one `lookback` steps earlier.
    The window shrinks to what is available; returns 0.0 when fewer than two
    samples exist or either end is missing.
    """
    values = _as_list(series)
    if len(values) < 2:
        return 0.0
    period = int(lookback) if lookback and lookback >= 1 else 5
    window = values[-1 - period:]
    if len(window) < 2:
        return 0.0
    first = to_finite(window[0])
    last = to_finite(window[-1])
    if first is None or last is None:
        return 0.0
    if first == 0:
        return 1.0 if last > 0 else -1.0 if last < 0 else 0.0
    return (last - first) / abs(first)


def _finite_count(series: Optional[Sequence]) -> int:
    return sum(1 for v in _as_list(series) if to_finite(v) is not None)


def evaluate_market_posture(
    closes: Optional[Sequence],
    ma_fast: Optional[Sequence],
    ma_slow: Optional[Sequence],
    rsi: Optional[Sequence] = None,
    adx: Optional[Sequence] = None,
    config: Optional[PostureConfig] = None,
) -> Posture:
    """
    Classify the latest bar as bullish / bearish / neutral.

    Direction requires the MA ratio and the slope to agree (ratio >= bullish_ma_ratio
    and slope >= min_slope, or the bearish mirror). RSI and ADX never flip the
    posture; they only add to or subtract from confidence, which is the share of
    available checks that support the chosen direction.
    """
    cfg = config or PostureConfig()
    price = _last(closes)
    fast = _last(ma_fast)
    slow = _last(ma_slow)
    rsi_value = _last(rsi)
    adx_value = _last(adx)
    slope = compute_slope_percent(closes, cfg.lookback)
    ratio = fast / slow if fast is not None and slow is not None and slow != 0 else None
    trend_strong = adx_value is not None and adx_value >= cfg.min_trend_strength

    readings = dict(
        slope=slope,
        trend_strength=adx_value,
        ma_ratio=ratio,
        price=price,
        ma_fast=fast,
        ma_slow=slow,
        rsi=rsi_value,
        trend_strong=trend_strong,
    )

    if ratio is None or _finite_count(closes) < 2:
        return Posture(
            posture=PostureBias.NEUTRAL,
            confidence=0.0,
            reasons=("insufficient data",),
            **readings,
        )

    if ratio >= cfg.bullish_ma_ratio and slope >= cfg.min_slope:
        bias = PostureBias.BULLISH
        reasons = ["fast MA above slow MA threshold", "positive momentum"]
    elif ratio <= cfg.bearish_ma_ratio and slope <= -cfg.min_slope:
        bias = PostureBias.BEARISH
        reasons = ["fast MA below slow MA threshold", "negative momentum"]
    else:
        reasons = []
        if abs(ratio - 1.0) <= cfg.neutral_buffer:
            reasons.append("moving averages converging")
        else:
            reasons.append("MA ratio and momentum disagree")
        if cfg.neutral_buffer > 0:
            confidence = 1.0 - abs(ratio - 1.0) / cfg.neutral_buffer
        else:
            confidence = 1.0 if ratio == 1.0 else 0.0
        return Posture(
            posture=PostureBias.NEUTRAL,
            confidence=min(1.0, max(0.0, confidence)),
            reasons=tuple(reasons),
            **readings,
        )

    # MA ratio and slope both agree with the bias
    score, checks = 2, 2
    if rsi_value is not None:
        checks += 1
        if bias == PostureBias.BULLISH and rsi_value >= cfg.rsi_bullish:
            score += 1
            reasons.append("RSI in bullish zone")
        elif bias == PostureBias.BEARISH and rsi_value <= cfg.rsi_bearish:
            score += 1
            reasons.append("RSI in bearish zone")
        else:
            reasons.append("RSI not confirming")
    if adx_value is not None:
        checks += 1
        if trend_strong:
            score += 1
            reasons.append("trend strength confirmed")
        else:
            reasons.append("trend strength below threshold")

    return Posture(
        posture=bias,
        confidence=min(1.0, max(0.0, score / checks)),
        reasons=tuple(reasons),
        **readings,
    )


def derive_strategy_from_posture(
    posture: Optional[Posture],
    config: Optional[StrategyConfig] = None,
) -> StrategyDecision:
    """Map posture to long / short / flat, forcing flat below the confidence gate."""
    cfg = config or StrategyConfig()
    bias = posture.posture if posture is not None else PostureBias.NEUTRAL
    confidence = to_finite(posture.confidence) if posture is not None else None
    confidence = confidence if confidence is not None else 0.0
    reasons = list(posture.reasons) if posture is not None else []

    if confidence < cfg.minimum_confidence:
        # Callers display this as the final reason
        reasons.append(f"confidence {confidence:.2f} below {cfg.minimum_confidence}")
        return StrategyDecision(
            action=Direction.FLAT,
            confidence=confidence,
            posture=bias,
            reasons=tuple(reasons),
        )

    return StrategyDecision(
        action=_ACTION_BY_POSTURE[bias],
        confidence=confidence,
        posture=bias,
        reasons=tuple(reasons),
    )
