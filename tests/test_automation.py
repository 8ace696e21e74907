"""Unit tests for automation.orchestrator with in-memory fakes."""

import pytest
from autotrader.automation.orchestrator import AutomationOrchestrator, resolve_direction
from autotrader.core.config import AutomationConfig, BlacklistPolicy, RiskPolicy, TradingConfig
from autotrader.core.errors import ExecutionError, ReversalError
from autotrader.core.types import (
    Direction,
    MarketSnapshot,
    ReversalState,
    StepStatus,
    StrategyDecision,
    TradeAction,
)
from autotrader.execution.base import OrderResult
from autotrader.risk.manager import RiskManager


class FakeConnector:
    def __init__(self, positions=None):
        self.positions = positions or []
        self.calls = []

    def get_margin_position_risk(self, symbol=None):
        self.calls.append(("get_margin_position_risk", symbol))
        return list(self.positions)


class FakeExecutor:
    def __init__(self, fail_open=False):
        self.calls = []
        self.fail_open = fail_open

    def open_position(self, symbol, direction, quantity, price=None, metadata=None):
        self.calls.append(("open", symbol, direction, quantity))
        if self.fail_open:
            raise ExecutionError("insufficient margin", symbol=symbol)
        return OrderResult(True, order_id="o-open", fill_price=price, quantity=quantity)

    def close_position(self, symbol, direction, quantity, price=None, metadata=None):
        self.calls.append(("close", symbol, direction, quantity))
        return OrderResult(True, order_id="o-close", fill_price=price, quantity=quantity)


class FakeNotifier:
    def __init__(self, explode=False):
        self.decisions = []
        self.executions = []
        self.explode = explode

    def report_trading_decision(self, payload):
        self.decisions.append(payload)
        if self.explode:
            raise RuntimeError("telegram down")

    def report_trading_execution(self, payload):
        self.executions.append(payload)
        if self.explode:
            raise RuntimeError("telegram down")


def _config(enabled=True, max_positions=3, equity=10_000.0):
    return TradingConfig(
        enabled=enabled,
        account_equity=equity,
        automation=AutomationConfig(
            enabled=enabled, timeframe="4h", min_confidence=0.55, position_pct=0.05, max_positions=max_positions,
        ),
    )


def _position(symbol, amt, price=100.0):
    return {"symbol": symbol, "positionAmt": str(amt), "entryPrice": str(price), "markPrice": str(price)}


def _build(config=None, positions=None, policy=None, executor=None, notifier=None):
    connector = FakeConnector(positions)
    executor = executor or FakeExecutor()
    notifier = notifier if notifier is not None else FakeNotifier()
    orch = AutomationOrchestrator(config or _config(), connector, executor, RiskManager(policy), notifier)
    return orch, connector, executor, notifier


def _decision(action, confidence=0.8):
    return StrategyDecision(action=action, confidence=confidence)


def test_resolve_direction_aliases():
    assert resolve_direction("buy") == Direction.LONG
    assert resolve_direction("SELL") == Direction.SHORT
    assert resolve_direction("hold") == Direction.FLAT
    assert resolve_direction(_decision(Direction.SHORT)) == Direction.SHORT
    assert resolve_direction("moon") is None


def test_disabled_makes_no_calls():
    orch, connector, executor, notifier = _build(config=_config(enabled=False))
    r = orch.automate_trading("BTC", "BTCUSDT", "4h", _decision(Direction.LONG), snapshot=100.0)
    assert r.skipped and r.reason == "disabled"
    assert connector.calls == [] and executor.calls == [] and notifier.decisions == []


def test_low_confidence_makes_no_calls():
    orch, connector, executor, notifier = _build()
    r = orch.automate_trading("BTC", "BTCUSDT", "4h", _decision(Direction.LONG, 0.3), snapshot=100.0)
    assert r.skipped and r.reason == "lowConfidence"
    assert connector.calls == []
    assert executor.calls == []
    assert notifier.decisions == [] and notifier.executions == []


def test_missing_symbol_and_timeframe_mismatch():
    orch, connector, _, _ = _build()
    assert orch.automate_trading("BTC", "", "4h", _decision(Direction.LONG)).reason == "missingSymbol"
    assert orch.automate_trading("BTC", "BTCUSDT", "1h", _decision(Direction.LONG)).reason == "timeframeMismatch"
    assert orch.automate_trading("BTC", "BTCUSDT", None, _decision(Direction.LONG)).reason == "timeframeMismatch"
    assert orch.automate_trading("BTC", "BTCUSDT", "", _decision(Direction.LONG)).reason == "timeframeMismatch"
    assert orch.automate_trading("BTC", "BTCUSDT", "240m", _decision(Direction.LONG, 0.1)).reason == "lowConfidence"
    assert connector.calls == []


def test_open_long_from_flat():
    orch, connector, executor, notifier = _build()
    r = orch.automate_trading("BTC", "BTCUSDT", "4h", "buy", strategy=_decision(Direction.LONG), snapshot=100.0)
    assert r.executed and not r.skipped
    assert r.direction == Direction.LONG and r.action == TradeAction.OPEN
    # 10_000 * 0.05 / 100
    assert executor.calls == [("open", "BTCUSDT", Direction.LONG, pytest.approx(5.0))]
    assert len(notifier.decisions) == 1
    assert [p["status"] for p in notifier.executions] == ["executed"]


def test_reversal_closes_short_then_opens_long():
    orch, _, executor, notifier = _build(positions=[_position("BTCUSDT", -2.0)])
    snap = MarketSnapshot(price=100.0)
    r = orch.automate_trading("BTC", "BTCUSDT", "4h", _decision(Direction.LONG), snapshot=snap)
    assert [(c[0], c[2]) for c in executor.calls] == [("close", Direction.SHORT), ("open", Direction.LONG)]
    assert executor.calls[0][3] == pytest.approx(2.0)
    assert r.executed and r.reversal == ReversalState.OPENED
    assert [s.action for s in r.steps] == [TradeAction.CLOSE, TradeAction.OPEN]
    assert len(notifier.executions) == 2


def test_flat_closes_existing_long():
    orch, _, executor, _ = _build(positions=[_position("ETHUSDT", 1.5)])
    r = orch.automate_trading("ETH", "ETHUSDT", "4h", _decision(Direction.FLAT), snapshot=2000.0)
    assert executor.calls == [("close", "ETHUSDT", Direction.LONG, pytest.approx(1.5))]
    assert r.executed and r.action == TradeAction.CLOSE
    assert r.reversal is None


def test_flat_without_position_is_noop():
    orch, _, executor, _ = _build()
    r = orch.automate_trading("ETH", "ETHUSDT", "4h", _decision(Direction.FLAT), snapshot=2000.0)
    assert r.skipped and r.reason == "noPosition"
    assert executor.calls == []


def test_already_aligned_is_noop():
    orch, _, executor, _ = _build(positions=[_position("BTCUSDT", 1.0)])
    r = orch.automate_trading("BTC", "BTCUSDT", "4h", _decision(Direction.LONG), snapshot=100.0)
    assert r.skipped and r.reason == "alreadyAligned"
    assert executor.calls == []


def test_max_positions_blocks_new_asset():
    positions = [_position("ETHUSDT", 1.0), _position("SOLUSDT", -3.0)]
    orch, _, executor, _ = _build(config=_config(max_positions=2), positions=positions)
    r = orch.automate_trading("BTC", "BTCUSDT", "4h", _decision(Direction.LONG), snapshot=100.0)
    assert r.skipped and r.reason == "maxPositions"
    assert executor.calls == []


def test_max_positions_exempts_held_asset():
    positions = [_position("ETHUSDT", 1.0), _position("BTCUSDT", -1.0)]
    orch, _, executor, _ = _build(config=_config(max_positions=1), positions=positions)
    r = orch.automate_trading("BTC", "BTCUSDT", "4h", _decision(Direction.LONG), snapshot=100.0)
    assert r.executed
    assert [c[0] for c in executor.calls] == ["close", "open"]


def test_invalid_sizing():
    orch, _, executor, _ = _build(config=_config(equity=None))
    r = orch.automate_trading("BTC", "BTCUSDT", "4h", _decision(Direction.LONG), snapshot=100.0)
    assert r.skipped and r.reason == "invalidSizing"
    orch, _, executor, _ = _build()
    r = orch.automate_trading("BTC", "BTCUSDT", "4h", _decision(Direction.LONG), snapshot=None)
    assert r.reason == "invalidSizing"
    assert executor.calls == []


def test_risk_block_skips_execution_and_notifies():
    policy = RiskPolicy(blacklist=BlacklistPolicy(symbols=("BTCUSDT",)))
    orch, _, executor, notifier = _build(policy=policy)
    r = orch.automate_trading("BTC", "BTCUSDT", "4h", _decision(Direction.LONG), snapshot=100.0)
    assert r.skipped and r.reason == "risk:blacklist"
    assert executor.calls == []
    assert notifier.executions[0]["status"] == "skipped"
    assert notifier.executions[0]["compliance"]["status"] == "blocked"


def test_risk_scale_uses_adjusted_quantity():
    # cap 200 notional, order wants 500
    orch, _, executor, notifier = _build(policy=RiskPolicy(max_exposure_value=200.0))
    r = orch.automate_trading("BTC", "BTCUSDT", "4h", _decision(Direction.LONG), snapshot=100.0)
    assert r.executed
    assert executor.calls[0][3] == pytest.approx(2.0)
    assert notifier.executions[0]["compliance"]["status"] == "scaled"


def test_reversal_exposure_excludes_closed_position():
    # short worth 300 counts before the close but not for the open leg
    policy = RiskPolicy(max_exposure_value=500.0)
    orch, _, executor, _ = _build(positions=[_position("BTCUSDT", -3.0)], policy=policy)
    r = orch.automate_trading("BTC", "BTCUSDT", "4h", _decision(Direction.LONG), snapshot=100.0)
    assert r.executed
    assert executor.calls[1] == ("open", "BTCUSDT", Direction.LONG, pytest.approx(5.0))


def test_failed_open_after_close_raises_reversal_error():
    executor = FakeExecutor(fail_open=True)
    orch, _, _, notifier = _build(positions=[_position("BTCUSDT", -2.0)], executor=executor)
    with pytest.raises(ReversalError) as exc:
        orch.automate_trading("BTC", "BTCUSDT", "4h", _decision(Direction.LONG), snapshot=100.0)
    assert exc.value.state == ReversalState.CLOSED.value
    assert exc.value.completed_steps[0].status == StepStatus.EXECUTED
    assert [p["status"] for p in notifier.executions] == ["executed", "failed"]


def test_failed_plain_open_propagates_execution_error():
    orch, _, _, _ = _build(executor=FakeExecutor(fail_open=True))
    with pytest.raises(ExecutionError) as exc:
        orch.automate_trading("BTC", "BTCUSDT", "4h", _decision(Direction.LONG), snapshot=100.0)
    assert not isinstance(exc.value, ReversalError)


def test_notifier_failures_are_swallowed():
    orch, _, executor, _ = _build(notifier=FakeNotifier(explode=True))
    r = orch.automate_trading("BTC", "BTCUSDT", "4h", _decision(Direction.LONG), snapshot=100.0)
    assert r.executed
    assert len(executor.calls) == 1
