"""
Portfolio growth simulator: steps day by day over aligned daily closes, applying
contributions, stop-loss / take-profit exits, drawdown de-risking, scheduled and drift
rebalancing with volatility-targeted weights, and slippage. Deterministic: the same
prices and config always produce the same trades and metrics.
"""

from __future__ import annotations
import logging
import math
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Set, Tuple

import numpy as np
import pandas as pd

from autotrader.analytics.metrics import DAYS_PER_YEAR, compute_growth_metrics, compute_progress
from autotrader.analytics.reports import write_growth_reports
from autotrader.core.config import PortfolioGrowthConfig
from autotrader.core.errors import MarketDataError
from autotrader.core.types import (
    Asset,
    HistoryEntry,
    RebalanceEvent,
    SimulationResult,
    TradeLogEntry,
)
from autotrader.execution.registry import ConnectorRegistry

logger = logging.getLogger("autotrader.portfolio")

# Trades smaller than this fraction of portfolio value are not worth the slippage
MIN_TRADE_FRACTION = 0.001
EPSILON = 1e-12

Reporter = Callable[[SimulationResult, object], Dict[str, str]]


@dataclass
class SimulationState:
    """Mutable state owned by one run. Never shared between runs."""
    cash: float
    peak_value: float
    holdings: Dict[str, float] = field(default_factory=dict)
    entry_prices: Dict[str, float] = field(default_factory=dict)
    last_rebalance_day: Optional[int] = None
    last_contribution_day: Optional[int] = None
    contributions_total: float = 0.0
    contributions_count: int = 0

    def holdings_value(self, prices: Mapping[str, float]) -> float:
        return sum(qty * prices[key] for key, qty in self.holdings.items())

    def total_value(self, prices: Mapping[str, float]) -> float:
        return self.cash + self.holdings_value(prices)


def _to_daily_series(frame: pd.DataFrame, key: str) -> pd.Series:
    if frame is None or len(frame) == 0 or "close" not in frame:
        raise MarketDataError(f"no daily closes for {key}", asset=key)
    times = frame["time"]
    if pd.api.types.is_numeric_dtype(times):
        index = pd.to_datetime(times, unit="ms", utc=True)
    else:
        index = pd.to_datetime(times, utc=True)
    closes = pd.to_numeric(frame["close"], errors="coerce").to_numpy()
    series = pd.Series(closes, index=pd.DatetimeIndex(index).normalize(), name=key)
    series = series[~series.index.duplicated(keep="last")].sort_index()
    series = series[(series > 0) & np.isfinite(series)]
    if len(series) < 2:
        raise MarketDataError(f"daily closes for {key} too short ({len(series)} bars)", asset=key)
    return series


def align_daily_closes(series: Mapping[str, pd.Series], history_days: int) -> pd.DataFrame:
    """Common daily index from the latest series start, forward-filled, trimmed to history_days."""
    frame = pd.concat(list(series.values()), axis=1, join="outer").sort_index()
    start = max(s.index[0] for s in series.values())
    frame = frame[frame.index >= start].ffill().dropna()
    frame = frame.tail(history_days)
    if len(frame) < 2:
        raise MarketDataError(f"aligned history too short ({len(frame)} days)")
    return frame


def clamp_weights(weights: Mapping[str, float], floor: float, cap: float) -> Dict[str, float]:
    """Clamp each weight into [floor, cap]; if they then exceed 1, shave the excess above floor pro rata."""
    clamped = {k: min(max(w, floor), cap) for k, w in weights.items()}
    overflow = sum(clamped.values()) - 1.0
    if overflow > EPSILON:
        excess = {k: w - floor for k, w in clamped.items()}
        total_excess = sum(excess.values())
        if total_excess > EPSILON:
            clamped = {k: w - overflow * excess[k] / total_excess for k, w in clamped.items()}
    return clamped


class PortfolioSimulator:
    """One simulator per config; each run() owns a fresh SimulationState."""

    def __init__(
        self,
        config: PortfolioGrowthConfig,
        registry: ConnectorRegistry,
        reporter: Optional[Reporter] = None,
    ):
        self.config = config
        self.registry = registry
        self.reporter = reporter or write_growth_reports

    # ------------------------------------------------------------------
    # data
    # ------------------------------------------------------------------
    def _fetch(self, assets: Sequence[Asset]) -> pd.DataFrame:
        days = self.config.simulation.history_days
        series: Dict[str, pd.Series] = {}
        for asset in assets:
            connector = self.registry.resolve(asset.exchange)
            try:
                frame = connector.fetch_daily_closes(asset.symbol, days)
            except MarketDataError:
                raise
            except Exception as e:
                raise MarketDataError(f"fetch daily closes {asset.symbol}: {e}", asset=asset.key, original=e) from e
            series[asset.key] = _to_daily_series(frame, asset.key)
        return align_daily_closes(series, days)

    # ------------------------------------------------------------------
    # weights
    # ------------------------------------------------------------------
    def _base_weights(self, keys: Sequence[str]) -> Dict[str, float]:
        raw = {k: max(self.config.strategy.allocation.get(k, 0.0), 0.0) for k in keys}
        total = sum(raw.values())
        if total <= 0:
            return {k: 1.0 / len(keys) for k in keys}
        return {k: w / total for k, w in raw.items()}

    def _weight_bounds(self) -> Tuple[float, float]:
        strategy = self.config.strategy
        cap = strategy.max_allocation_pct
        if self.config.risk.max_position_pct > 0:
            cap = min(cap, self.config.risk.max_position_pct)
        return strategy.min_allocation_pct, max(cap, strategy.min_allocation_pct)

    def _realized_vol(self, closes: pd.Series, day: int) -> Optional[float]:
        lookback = self.config.risk.volatility_lookback
        if lookback <= 1 or day < 2:
            return None
        window = closes.iloc[max(0, day - lookback): day + 1].to_numpy(dtype=float)
        returns = np.diff(window) / window[:-1]
        if len(returns) < 2:
            return None
        return float(returns.std(ddof=1) * math.sqrt(DAYS_PER_YEAR))

    def effective_weights(self, prices: pd.DataFrame, day: int, base: Mapping[str, float]) -> Dict[str, float]:
        """Base allocation scaled down by volatility targeting, then clamped to allocation bounds."""
        target_vol = self.config.risk.volatility_target_pct
        weights = dict(base)
        if target_vol > 0:
            for key in weights:
                vol = self._realized_vol(prices[key], day)
                if vol is not None and vol > target_vol:
                    weights[key] *= target_vol / vol
        floor, cap = self._weight_bounds()
        return clamp_weights(weights, floor, cap)

    # ------------------------------------------------------------------
    # trading
    # ------------------------------------------------------------------
    def _sell(self, state: SimulationState, ts: datetime, key: str, qty: float, price: float,
              reason: str, trades: List[TradeLogEntry]) -> None:
        slip = self.config.simulation.slippage_pct
        qty = min(qty, state.holdings.get(key, 0.0))
        if qty <= EPSILON:
            return
        fill = price * (1.0 - slip)
        proceeds = qty * fill
        remaining = state.holdings[key] - qty
        if remaining <= EPSILON:
            state.holdings.pop(key, None)
            state.entry_prices.pop(key, None)
        else:
            state.holdings[key] = remaining
        state.cash += proceeds
        trades.append(TradeLogEntry(ts, key, "SELL", qty, fill, proceeds, reason))

    def _buy(self, state: SimulationState, ts: datetime, key: str, value: float, price: float,
             reason: str, trades: List[TradeLogEntry]) -> None:
        slip = self.config.simulation.slippage_pct
        fill = price * (1.0 + slip)
        cost = min(value * (1.0 + slip), state.cash)
        if cost <= EPSILON:
            return
        qty = cost / fill
        held = state.holdings.get(key, 0.0)
        prev_entry = state.entry_prices.get(key, fill)
        state.entry_prices[key] = (held * prev_entry + qty * fill) / (held + qty)
        state.holdings[key] = held + qty
        state.cash = max(state.cash - cost, 0.0)
        trades.append(TradeLogEntry(ts, key, "BUY", qty, fill, cost, reason))

    def _rebalance(self, state: SimulationState, ts: datetime, prices: Mapping[str, float],
                   weights: Mapping[str, float], reason: str, skip: Set[str],
                   trades: List[TradeLogEntry], sell_only: bool = False) -> bool:
        total = state.total_value(prices)
        if total <= 0:
            return False
        threshold = total * MIN_TRADE_FRACTION
        deltas = {}
        for key, weight in weights.items():
            if key in skip:
                continue
            diff = weight * total - state.holdings.get(key, 0.0) * prices[key]
            if abs(diff) > threshold:
                deltas[key] = diff
        before = len(trades)
        for key, diff in deltas.items():
            if diff < 0:
                self._sell(state, ts, key, -diff / prices[key], prices[key], reason, trades)
        for key, diff in deltas.items():
            if diff > 0 and not sell_only:
                self._buy(state, ts, key, diff, prices[key], reason, trades)
        return len(trades) > before

    def _drifted(self, state: SimulationState, prices: Mapping[str, float],
                 weights: Mapping[str, float], skip: Set[str]) -> bool:
        total = state.total_value(prices)
        if total <= 0 or not state.holdings:
            return False
        tolerance = self.config.rebalance.tolerance_pct
        return any(
            abs(state.holdings.get(key, 0.0) * prices[key] / total - weight) > tolerance
            for key, weight in weights.items()
            if key not in skip
        )

    # ------------------------------------------------------------------
    def run(self, assets: Sequence[Asset]) -> Optional[SimulationResult]:
        cfg = self.config
        if not cfg.enabled:
            logger.info("Portfolio growth simulation disabled")
            return None
        if not assets:
            raise MarketDataError("no assets to simulate")

        prices = self._fetch(assets)
        keys = [a.key for a in assets]
        base = self._base_weights(keys)
        contribution = cfg.simulation.contribution
        rebalance_every = cfg.rebalance.interval_days
        risk = cfg.risk

        state = SimulationState(cash=cfg.initial_capital, peak_value=cfg.initial_capital)
        history: List[HistoryEntry] = []
        trades: List[TradeLogEntry] = []
        events: List[RebalanceEvent] = []
        daily_returns: List[float] = []
        target_reached_at: Optional[datetime] = None
        prev_total: Optional[float] = None
        rebalances = 0

        for day, (stamp, row) in enumerate(prices.iterrows()):
            ts = stamp.to_pydatetime()
            px = {k: float(row[k]) for k in keys}

            # a. contributions
            flow = 0.0
            if day > 0 and contribution.interval_days > 0 and contribution.amount > 0 \
                    and day % contribution.interval_days == 0:
                flow = contribution.amount
                state.cash += flow
                state.contributions_total += flow
                state.contributions_count += 1
                state.last_contribution_day = day

            # b. drawdown before trading
            total = state.total_value(px)
            peak = max(state.peak_value, total)
            drawdown = max(0.0, (peak - total) / peak) if peak > 0 else 0.0

            # c. per-asset exits
            exited: Set[str] = set()
            for key in keys:
                qty = state.holdings.get(key, 0.0)
                entry = state.entry_prices.get(key)
                if qty <= EPSILON or not entry:
                    continue
                change = px[key] / entry - 1.0
                if risk.stop_loss_pct > 0 and change <= -risk.stop_loss_pct:
                    self._sell(state, ts, key, qty, px[key], "stop_loss", trades)
                    exited.add(key)
                elif risk.take_profit_pct > 0 and change >= risk.take_profit_pct:
                    self._sell(state, ts, key, qty, px[key], "take_profit", trades)
                    exited.add(key)

            # d. drawdown de-risking, e. scheduled / drift rebalance
            weights = self.effective_weights(prices, day, base)
            reason = None
            trade_reason = None
            if risk.max_drawdown_pct > 0 and drawdown > risk.max_drawdown_pct and state.holdings:
                floor, _ = self._weight_bounds()
                keep = 1.0 - risk.derisk_fraction
                weights = {k: max(w * keep, floor) for k, w in weights.items()}
                reason, trade_reason = "drawdown", "max_drawdown"
            elif day == 0:
                reason, trade_reason = "initial", "initial_allocation"
            elif rebalance_every > 0 and state.last_rebalance_day is not None \
                    and day - state.last_rebalance_day >= rebalance_every:
                reason, trade_reason = "interval", "rebalance"
            elif self._drifted(state, px, weights, exited):
                reason, trade_reason = "drift", "drift_rebalance"

            if reason is not None:
                if reason != "drawdown":
                    state.last_rebalance_day = day
                if self._rebalance(state, ts, px, weights, trade_reason, exited, trades,
                                   sell_only=reason == "drawdown"):
                    rebalances += 1
                    events.append(RebalanceEvent(ts, reason, state.total_value(px), dict(weights)))

            # f. history
            holdings_value = state.holdings_value(px)
            total = state.cash + holdings_value
            state.peak_value = max(state.peak_value, total)
            drawdown = (state.peak_value - total) / state.peak_value if state.peak_value > 0 else 0.0
            history.append(HistoryEntry(
                timestamp=ts,
                total_value=total,
                cash=state.cash,
                invested=holdings_value,
                drawdown_pct=max(drawdown, 0.0),
                contributions_total=state.contributions_total,
            ))
            if prev_total is not None and prev_total > 0:
                daily_returns.append((total - flow) / prev_total - 1.0)
            prev_total = total
            if target_reached_at is None and total >= cfg.target_capital:
                target_reached_at = ts

        invested_capital = cfg.initial_capital + state.contributions_total
        metrics = compute_growth_metrics(
            history, daily_returns, invested_capital, rebalances, cfg.simulation.risk_free_rate,
        )
        final_value = history[-1].total_value
        result = SimulationResult(
            strategy=cfg.strategy.name,
            assets=tuple(keys),
            initial_capital=cfg.initial_capital,
            target_capital=cfg.target_capital,
            contributions_total=state.contributions_total,
            contributions_count=state.contributions_count,
            invested_capital=invested_capital,
            final_value=final_value,
            target_reached_at=target_reached_at,
            history=tuple(history),
            trades=tuple(trades),
            rebalance_events=tuple(events),
            metrics=metrics,
            progress=compute_progress(final_value, cfg.target_capital, metrics.cagr),
        )
        logger.info(
            "Growth sim %s: %d days, final=%.2f invested=%.2f cagr=%.4f max_dd=%.4f rebalances=%d",
            result.strategy, len(history), final_value, invested_capital,
            metrics.cagr, metrics.max_drawdown_pct, rebalances,
        )
        if cfg.reporting.enabled:
            result = replace(result, reports=self.reporter(result, cfg.reporting.directory))
        return result


def run_portfolio_growth_simulation(
    assets: Sequence[Asset],
    config: PortfolioGrowthConfig,
    registry: ConnectorRegistry,
    reporter: Optional[Reporter] = None,
) -> Optional[SimulationResult]:
    """Run one growth simulation; None when portfolio growth is disabled."""
    return PortfolioSimulator(config, registry, reporter).run(assets)
