#!/usr/bin/env python3
"""
Autotrader CLI: simulate | automate
Usage:
  python main.py simulate [--config config.yaml]
  python main.py automate [--config config.yaml]

Scheduling (cron, systemd timers) lives outside this repo; each `automate` run is one tick.
"""

from __future__ import annotations
import argparse
import logging
import sys
from pathlib import Path

# Project root
ROOT = Path(__file__).resolve().parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from autotrader.automation import AutomationOrchestrator
from autotrader.backtesting import run_portfolio_growth_simulation
from autotrader.core.config import Config, load_config
from autotrader.core.errors import AutotraderError, ReversalError
from autotrader.core.logger import setup_logging
from autotrader.execution import BinanceFuturesConnector, ConnectorRegistry, PositionExecutor
from autotrader.risk import RiskManager
from autotrader.strategies import MaRsiAdxStrategy
from autotrader.utils.telegram import TelegramNotifier, send_telegram

logger = logging.getLogger("autotrader.cli")


def build_registry(config: Config) -> ConnectorRegistry:
    registry = ConnectorRegistry()
    registry.register(
        "binance",
        BinanceFuturesConnector(config.binance_api_key, config.binance_api_secret, testnet=config.use_testnet),
    )
    return registry


def run_simulation(config_path: Path | None) -> int:
    """Run one portfolio growth simulation and print its metrics."""
    config = load_config(config_path, ROOT)
    setup_logging(config.log_level, config.log_dir, config.log_file)
    if not config.portfolio_growth.enabled:
        logger.warning("portfolio_growth.enabled is false, nothing to simulate")
        return 0
    try:
        result = run_portfolio_growth_simulation(config.assets, config.portfolio_growth, build_registry(config))
    except AutotraderError as e:
        logger.error("Simulation failed: %s", e)
        return 1
    if result is None:
        return 0
    m, p = result.metrics, result.progress
    print("\n--- Portfolio Growth ---")
    print(f"Strategy: {result.strategy} | assets: {', '.join(result.assets)}")
    print(f"Days: {m.duration_days:.0f} | trades: {len(result.trades)} | rebalances: {m.rebalances}")
    print(f"Invested: {result.invested_capital:,.2f} | final: {result.final_value:,.2f}")
    print(f"Total return: {m.total_return_pct * 100:.2f}% | CAGR: {m.cagr * 100:.2f}%")
    print(f"Max drawdown: {m.max_drawdown_pct * 100:.2f}% | volatility: {m.annualized_volatility * 100:.2f}%")
    print(f"Sharpe ratio: {m.sharpe_ratio:.2f}")
    eta = f"{p.estimated_years_to_target:.1f}y" if p.estimated_years_to_target is not None else "n/a"
    print(f"Target progress: {p.pct * 100:.4f}% | remaining: {p.remaining_capital:,.2f} | ETA: {eta}")
    for name, path in result.reports.items():
        print(f"{name}: {path}")
    return 0


def run_automation(config_path: Path | None) -> int:
    """One automation tick per configured asset. One asset's failure never blocks the others."""
    config = load_config(config_path, ROOT)
    setup_logging(config.log_level, config.log_dir, config.log_file)
    if not config.binance_api_key or not config.binance_api_secret:
        logger.error("Missing BINANCE_API_KEY or BINANCE_API_SECRET in .env")
        return 1
    registry = build_registry(config)
    notifier = TelegramNotifier(config.telegram_bot_token, config.telegram_chat_id)
    risk_manager = RiskManager(config.trading.risk_policy)
    strategy = MaRsiAdxStrategy(config.indicators, config.market_posture, config.trading.strategy)
    timeframe = config.trading.automation.timeframe
    failures = 0
    for asset in config.assets:
        try:
            connector = registry.resolve(asset.exchange)
            executor = PositionExecutor(connector, min_notional=config.trading.min_notional)
            if isinstance(connector, BinanceFuturesConnector) and config.trading.enabled:
                connector.set_leverage(asset.symbol, config.trading.leverage)
            orchestrator = AutomationOrchestrator(config.trading, connector, executor, risk_manager, notifier)
            candles = connector.fetch_candles(asset.symbol, timeframe, config.indicators.candle_limit)
            signal = strategy.get_signal(strategy.compute_indicators(candles))
            if signal is None:
                logger.info("%s: not enough closed bars for a signal", asset.key)
                continue
            result = orchestrator.automate_trading(
                asset.key,
                asset.symbol,
                timeframe,
                signal.decision,
                posture=signal.posture,
                strategy=signal.decision,
                snapshot=signal.snapshot,
            )
            logger.info(
                "%s: %s", asset.key,
                f"skipped ({result.reason})" if result.skipped else f"{result.action.value} {result.direction.value}",
            )
        except ReversalError as e:
            failures += 1
            logger.error("%s: reversal left position %s: %s", asset.key, e.state, e)
            send_telegram(f"{asset.key}: reversal failed after close, position is flat. {e}",
                          config.telegram_bot_token, config.telegram_chat_id)
        except AutotraderError as e:
            failures += 1
            logger.error("%s: automation failed: %s", asset.key, e)
        except Exception as e:
            failures += 1
            logger.exception("%s: unexpected automation error: %s", asset.key, e)
    notifier.flush()
    return 1 if failures else 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Autotrader CLI")
    parser.add_argument("mode", choices=["simulate", "automate"], help="Run growth simulation or one automation tick")
    parser.add_argument("--config", type=Path, default=None, help="Path to config.yaml")
    args = parser.parse_args()
    if args.mode == "simulate":
        return run_simulation(args.config)
    return run_automation(args.config)


if __name__ == "__main__":
    sys.exit(main())
