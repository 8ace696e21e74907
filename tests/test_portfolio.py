"""Tests for backtesting.portfolio (growth simulation) against fake daily closes."""

import json
from collections import defaultdict

import pandas as pd
import pytest
from autotrader.backtesting.portfolio import (
    PortfolioSimulator,
    clamp_weights,
    run_portfolio_growth_simulation,
)
from autotrader.core.config import (
    AllocationStrategy,
    ContributionConfig,
    PortfolioGrowthConfig,
    PortfolioRiskConfig,
    RebalanceConfig,
    ReportingConfig,
    SimulationConfig,
)
from autotrader.core.errors import ConnectorNotFoundError, MarketDataError
from autotrader.core.types import Asset
from autotrader.execution.registry import ConnectorRegistry

ASSETS = [Asset("BTC", "BTCUSDT"), Asset("ETH", "ETHUSDT")]


def build_series(start_price, step, length=40, pct=None):
    times = pd.date_range("2024-01-01", periods=length, freq="D", tz="UTC")
    if pct is None:
        closes = [start_price + i * step for i in range(length)]
    else:
        closes = [start_price * (1 + pct) ** i for i in range(length)]
    return pd.DataFrame({"time": times, "close": closes})


class FakeDataConnector:
    def __init__(self, series):
        self.series = series
        self.calls = []

    def fetch_daily_closes(self, symbol, days):
        self.calls.append((symbol, days))
        data = self.series[symbol]
        if isinstance(data, Exception):
            raise data
        return data.copy()


def growth_config(**overrides):
    base = dict(
        enabled=True,
        initial_capital=100.0,
        target_capital=5_000.0,
        simulation=SimulationConfig(
            history_days=60,
            risk_free_rate=0.02,
            contribution=ContributionConfig(amount=20.0, interval_days=7),
            slippage_pct=0.001,
        ),
        rebalance=RebalanceConfig(interval_days=7, tolerance_pct=0.02),
        risk=PortfolioRiskConfig(
            max_drawdown_pct=0.6,
            stop_loss_pct=0.25,
            take_profit_pct=0.4,
            max_position_pct=0.7,
            volatility_lookback=10,
            volatility_target_pct=0.12,
        ),
        strategy=AllocationStrategy(
            name="Balanced", allocation={"BTC": 0.6, "ETH": 0.4}, min_allocation_pct=0.0, max_allocation_pct=0.7,
        ),
    )
    base.update(overrides)
    return PortfolioGrowthConfig(**base)


def registry_for(series):
    connector = FakeDataConnector(series)
    return ConnectorRegistry({"binance": connector}), connector


def default_series():
    return {"BTCUSDT": build_series(20_000, 150), "ETHUSDT": build_series(1_000, 10)}


def test_end_to_end_two_assets():
    registry, _ = registry_for(default_series())
    result = run_portfolio_growth_simulation(ASSETS, growth_config(), registry)
    assert result is not None
    assert len(result.history) > 10
    assert result.metrics.rebalances > 0
    assert len(result.trades) > 0
    for trade in result.trades:
        assert trade.asset in ("BTC", "ETH")
        assert trade.action in ("BUY", "SELL")
        assert trade.quantity > 0
        assert trade.price > 0
        assert trade.reason
    assert result.trades[0].reason == "initial_allocation"
    assert result.rebalance_events[0].reason == "initial"


def test_contributions_counted():
    registry, _ = registry_for(default_series())
    result = run_portfolio_growth_simulation(ASSETS, growth_config(), registry)
    # days 7, 14, 21, 28, 35 of a 40-day history
    assert result.contributions_count == 5
    assert result.contributions_total == pytest.approx(100.0)
    assert result.invested_capital == pytest.approx(200.0)
    assert result.history[-1].contributions_total == pytest.approx(100.0)


def test_accounting_identity_holds_every_day():
    series = default_series()
    registry, _ = registry_for(series)
    result = run_portfolio_growth_simulation(ASSETS, growth_config(), registry)
    closes = {
        "BTC": dict(zip(series["BTCUSDT"]["time"], series["BTCUSDT"]["close"])),
        "ETH": dict(zip(series["ETHUSDT"]["time"], series["ETHUSDT"]["close"])),
    }
    holdings = defaultdict(float)
    trades = list(result.trades)
    for entry in result.history:
        while trades and trades[0].timestamp <= entry.timestamp:
            t = trades.pop(0)
            holdings[t.asset] += t.quantity if t.action == "BUY" else -t.quantity
        stamp = pd.Timestamp(entry.timestamp)
        marked = sum(qty * closes[asset][stamp] for asset, qty in holdings.items())
        assert entry.cash + marked == pytest.approx(entry.total_value, rel=1e-6)
        assert entry.cash + entry.invested == pytest.approx(entry.total_value, rel=1e-6)
        assert entry.cash >= 0


def test_simulation_is_deterministic():
    r1 = run_portfolio_growth_simulation(ASSETS, growth_config(), registry_for(default_series())[0])
    r2 = run_portfolio_growth_simulation(ASSETS, growth_config(), registry_for(default_series())[0])
    assert r1.trades == r2.trades
    assert r1.metrics == r2.metrics
    assert r1.history == r2.history


def test_drawdown_non_negative_and_zero_at_peak():
    registry, _ = registry_for(default_series())
    cfg = growth_config()
    result = run_portfolio_growth_simulation(ASSETS, cfg, registry)
    peak = cfg.initial_capital
    for entry in result.history:
        assert entry.drawdown_pct >= 0
        peak = max(peak, entry.total_value)
        if entry.total_value == peak:
            assert entry.drawdown_pct == 0.0
    assert result.metrics.max_drawdown_pct == max(e.drawdown_pct for e in result.history)


def test_rebalance_weights_within_bounds():
    strategy = AllocationStrategy(
        name="Tilted", allocation={"BTC": 0.9, "ETH": 0.1}, min_allocation_pct=0.2, max_allocation_pct=0.6,
    )
    registry, _ = registry_for(default_series())
    result = run_portfolio_growth_simulation(ASSETS, growth_config(strategy=strategy), registry)
    assert result.rebalance_events
    for event in result.rebalance_events:
        for weight in event.weights.values():
            assert 0.2 - 1e-9 <= weight <= 0.6 + 1e-9


def test_clamp_weights_respects_bounds_and_total():
    w = clamp_weights({"A": 0.9, "B": 0.05, "C": 0.05}, floor=0.1, cap=0.6)
    assert w["A"] == pytest.approx(0.6)
    assert w["B"] == pytest.approx(0.1)
    w = clamp_weights({"A": 0.5, "B": 0.5, "C": 0.5}, floor=0.2, cap=0.5)
    assert sum(w.values()) == pytest.approx(1.0)
    assert all(0.2 - 1e-12 <= v <= 0.5 for v in w.values())


def test_stop_loss_exit_logged():
    series = {"BTCUSDT": build_series(100, 0, pct=-0.02), "ETHUSDT": build_series(1_000, 10)}
    risk = PortfolioRiskConfig(
        max_drawdown_pct=0.0, stop_loss_pct=0.1, take_profit_pct=0.0, max_position_pct=0.7,
        volatility_lookback=10, volatility_target_pct=5.0,
    )
    registry, _ = registry_for(series)
    result = run_portfolio_growth_simulation(ASSETS, growth_config(risk=risk), registry)
    exits = [t for t in result.trades if t.reason == "stop_loss"]
    assert exits
    assert all(t.asset == "BTC" and t.action == "SELL" for t in exits)


def test_drawdown_derisks_toward_cash():
    series = {"BTCUSDT": build_series(100, 0, pct=-0.03), "ETHUSDT": build_series(100, 0, pct=-0.03)}
    risk = PortfolioRiskConfig(
        max_drawdown_pct=0.1, stop_loss_pct=0.0, take_profit_pct=0.0, max_position_pct=0.7,
        volatility_lookback=10, volatility_target_pct=5.0, derisk_fraction=0.5,
    )
    registry, _ = registry_for(series)
    result = run_portfolio_growth_simulation(ASSETS, growth_config(risk=risk), registry)
    derisk = [t for t in result.trades if t.reason == "max_drawdown"]
    assert derisk and all(t.action == "SELL" for t in derisk)
    assert any(e.reason == "drawdown" for e in result.rebalance_events)


def test_volatility_targeting_shrinks_noisy_asset():
    closes = pd.DataFrame({
        "BTC": [100.0 if i % 2 == 0 else 110.0 for i in range(20)],
        "ETH": [1_000.0 + 10 * i for i in range(20)],
    })
    registry, _ = registry_for(default_series())
    risk = PortfolioRiskConfig(
        max_drawdown_pct=0.0, stop_loss_pct=0.0, take_profit_pct=0.0, max_position_pct=0.7,
        volatility_lookback=10, volatility_target_pct=0.3,
    )
    sim = PortfolioSimulator(growth_config(risk=risk), registry)
    base = {"BTC": 0.6, "ETH": 0.4}
    weights = sim.effective_weights(closes, 15, base)
    assert weights["BTC"] < 0.6
    assert weights["ETH"] == pytest.approx(0.4)
    # not enough history yet
    assert sim.effective_weights(closes, 1, base) == pytest.approx(base)


def test_take_profit_exit_logged():
    series = {"BTCUSDT": build_series(100, 0, pct=0.03), "ETHUSDT": build_series(1_000, 0)}
    risk = PortfolioRiskConfig(
        max_drawdown_pct=0.0, stop_loss_pct=0.0, take_profit_pct=0.1, max_position_pct=0.7,
        volatility_lookback=10, volatility_target_pct=5.0,
    )
    registry, _ = registry_for(series)
    result = run_portfolio_growth_simulation(ASSETS, growth_config(risk=risk), registry)
    exits = [t for t in result.trades if t.reason == "take_profit"]
    assert exits
    assert all(t.asset == "BTC" and t.action == "SELL" for t in exits)
    assert exits[0].price > result.trades[0].price


def test_drift_rebalance_between_intervals():
    series = {"BTCUSDT": build_series(100, 0, pct=0.03), "ETHUSDT": build_series(100, 0, pct=-0.03)}
    risk = PortfolioRiskConfig(
        max_drawdown_pct=0.0, stop_loss_pct=0.0, take_profit_pct=0.0, max_position_pct=0.7,
        volatility_lookback=10, volatility_target_pct=5.0,
    )
    cfg = growth_config(risk=risk, rebalance=RebalanceConfig(interval_days=1_000, tolerance_pct=0.02))
    registry, _ = registry_for(series)
    result = run_portfolio_growth_simulation(ASSETS, cfg, registry)
    reasons = [e.reason for e in result.rebalance_events]
    assert reasons[0] == "initial"
    assert "drift" in reasons
    assert "interval" not in reasons
    assert any(t.reason == "drift_rebalance" for t in result.trades)


def test_progress_toward_target():
    registry, _ = registry_for(default_series())
    result = run_portfolio_growth_simulation(ASSETS, growth_config(), registry)
    p = result.progress
    assert p.pct == pytest.approx(result.final_value / 5_000.0)
    assert p.remaining_capital == pytest.approx(5_000.0 - result.final_value)
    if result.metrics.cagr > 0:
        assert p.estimated_years_to_target > 0
    else:
        assert p.estimated_years_to_target is None


def test_disabled_returns_none_without_fetching():
    registry, connector = registry_for(default_series())
    assert run_portfolio_growth_simulation(ASSETS, growth_config(enabled=False), registry) is None
    assert connector.calls == []


def test_short_series_raises_market_data_error():
    series = {"BTCUSDT": build_series(20_000, 150), "ETHUSDT": build_series(1_000, 10, length=1)}
    registry, _ = registry_for(series)
    with pytest.raises(MarketDataError):
        run_portfolio_growth_simulation(ASSETS, growth_config(), registry)


def test_fetch_failure_wrapped_in_market_data_error():
    series = {"BTCUSDT": build_series(20_000, 150), "ETHUSDT": RuntimeError("timeout")}
    registry, _ = registry_for(series)
    with pytest.raises(MarketDataError) as exc:
        run_portfolio_growth_simulation(ASSETS, growth_config(), registry)
    assert exc.value.asset == "ETH"


def test_unknown_exchange_raises():
    registry, _ = registry_for(default_series())
    with pytest.raises(ConnectorNotFoundError):
        run_portfolio_growth_simulation([Asset("BTC", "BTCUSDT", exchange="kraken")], growth_config(), registry)


def test_reports_written(tmp_path):
    cfg = growth_config(reporting=ReportingConfig(enabled=True, directory=tmp_path / "growth"))
    registry, _ = registry_for(default_series())
    sim = PortfolioSimulator(cfg, registry)
    first = sim.run(ASSETS)
    sim.run(ASSETS)
    assert (tmp_path / "growth" / "latest.json").exists()
    assert first.reports["progression_path"].endswith("progression.json")
    archive = json.loads((tmp_path / "growth" / "runs.json").read_text())
    assert len(archive) == 2
    latest = json.loads((tmp_path / "growth" / "latest.json").read_text())
    assert latest["strategy"] == "Balanced"
    assert len(latest["history"]) == len(first.history)
