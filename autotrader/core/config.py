"""
Load configuration from config.yaml and .env. API keys only from env.
Every section is a frozen dataclass; reloading builds a new Config.
"""

from __future__ import annotations
import math
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml
from dotenv import load_dotenv

from autotrader.core.errors import ValidationError
from autotrader.core.types import Asset


def _env_path(project_root: Optional[Path] = None) -> Path:
    root = project_root or Path(__file__).resolve().parents[2]
    return root / ".env"


def load_dotenv_if_exists(project_root: Optional[Path] = None) -> None:
    """Load .env from project root if present."""
    path = _env_path(project_root)
    if path.exists():
        load_dotenv(path)


def _env(key: str, default: str = "") -> str:
    return os.getenv(key, default).strip()


def _env_bool(key: str, default: bool = False) -> bool:
    return os.getenv(key, str(default)).lower() in ("true", "1", "yes")


def _env_float(key: str, default: Optional[float]) -> Optional[float]:
    raw = os.getenv(key)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _section(data: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = data.get(key) if isinstance(data, Mapping) else None
    return value if isinstance(value, Mapping) else {}


def _opt_float(value: Any) -> Optional[float]:
    """Finite float or None (missing, null, non-numeric)."""
    if value is None or isinstance(value, bool):
        return None
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    return parsed if math.isfinite(parsed) else None


def _float(value: Any, default: float) -> float:
    parsed = _opt_float(value)
    return default if parsed is None else parsed


def _int(value: Any, default: int) -> int:
    parsed = _opt_float(value)
    return default if parsed is None else int(parsed)


@dataclass(frozen=True)
class PostureConfig:
    bullish_ma_ratio: float = 1.01
    bearish_ma_ratio: float = 0.99
    neutral_buffer: float = 0.003
    min_slope: float = 0.0005
    lookback: int = 5
    min_trend_strength: float = 18.0
    rsi_bullish: float = 55.0
    rsi_bearish: float = 45.0


@dataclass(frozen=True)
class IndicatorConfig:
    ma_fast: int = 20
    ma_slow: int = 50
    rsi_len: int = 14
    atr_len: int = 14
    adx_len: int = 14
    candle_limit: int = 300


@dataclass(frozen=True)
class StrategyConfig:
    minimum_confidence: float = 0.35


@dataclass(frozen=True)
class AutomationConfig:
    enabled: bool = False
    timeframe: str = "4h"
    min_confidence: float = 0.55
    position_pct: float = 0.05
    max_positions: int = 3
    position_epsilon: float = 0.0001


@dataclass(frozen=True)
class VolatilityTriggers:
    enabled: bool = False
    max_atr_pct: Optional[float] = None
    max_change_pct: Optional[float] = None
    max_volatility_pct: Optional[float] = None


@dataclass(frozen=True)
class BlacklistPolicy:
    symbols: Tuple[str, ...] = ()
    reasons: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class RiskPolicy:
    """Exposure / daily-loss caps. A finite value cap takes precedence over its pct twin."""
    max_exposure_pct: Optional[float] = None
    max_exposure_value: Optional[float] = None
    max_daily_loss_pct: Optional[float] = None
    max_daily_loss_value: Optional[float] = None
    volatility_triggers: VolatilityTriggers = field(default_factory=VolatilityTriggers)
    blacklist: BlacklistPolicy = field(default_factory=BlacklistPolicy)


@dataclass(frozen=True)
class TradingConfig:
    enabled: bool = False
    account_equity: Optional[float] = None
    min_notional: float = 0.0
    leverage: int = 1
    automation: AutomationConfig = field(default_factory=AutomationConfig)
    risk_policy: RiskPolicy = field(default_factory=RiskPolicy)
    strategy: StrategyConfig = field(default_factory=StrategyConfig)


@dataclass(frozen=True)
class ContributionConfig:
    amount: float = 100.0
    interval_days: int = 30


@dataclass(frozen=True)
class SimulationConfig:
    history_days: int = 1095
    risk_free_rate: float = 0.02
    contribution: ContributionConfig = field(default_factory=ContributionConfig)
    slippage_pct: float = 0.001


@dataclass(frozen=True)
class RebalanceConfig:
    interval_days: int = 30
    tolerance_pct: float = 0.05


@dataclass(frozen=True)
class PortfolioRiskConfig:
    max_drawdown_pct: float = 0.35
    stop_loss_pct: float = 0.12
    take_profit_pct: float = 0.25
    max_position_pct: float = 0.4
    volatility_lookback: int = 30
    volatility_target_pct: float = 0.15
    derisk_fraction: float = 0.5


@dataclass(frozen=True)
class AllocationStrategy:
    name: str = "Base Rebalance"
    allocation: Dict[str, float] = field(default_factory=dict)
    min_allocation_pct: float = 0.0
    max_allocation_pct: float = 0.6


@dataclass(frozen=True)
class ReportingConfig:
    enabled: bool = False
    directory: Path = Path("reports/growth")


@dataclass(frozen=True)
class PortfolioGrowthConfig:
    enabled: bool = False
    initial_capital: float = 100.0
    target_capital: float = 10_000_000.0
    simulation: SimulationConfig = field(default_factory=SimulationConfig)
    rebalance: RebalanceConfig = field(default_factory=RebalanceConfig)
    risk: PortfolioRiskConfig = field(default_factory=PortfolioRiskConfig)
    strategy: AllocationStrategy = field(default_factory=AllocationStrategy)
    reporting: ReportingConfig = field(default_factory=ReportingConfig)


@dataclass(frozen=True)
class Config:
    """Unified configuration. Immutable after load."""
    binance_api_key: str = ""
    binance_api_secret: str = ""
    use_testnet: bool = True
    assets: Tuple[Asset, ...] = ()
    trading: TradingConfig = field(default_factory=TradingConfig)
    market_posture: PostureConfig = field(default_factory=PostureConfig)
    indicators: IndicatorConfig = field(default_factory=IndicatorConfig)
    portfolio_growth: PortfolioGrowthConfig = field(default_factory=PortfolioGrowthConfig)
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""
    log_level: str = "INFO"
    log_dir: Path = Path("logs")
    log_file: str = "autotrader.log"


def build_posture_config(data: Mapping[str, Any]) -> PostureConfig:
    base = PostureConfig()
    cfg = PostureConfig(
        bullish_ma_ratio=_float(data.get("bullish_ma_ratio"), base.bullish_ma_ratio),
        bearish_ma_ratio=_float(data.get("bearish_ma_ratio"), base.bearish_ma_ratio),
        neutral_buffer=max(0.0, _float(data.get("neutral_buffer"), base.neutral_buffer)),
        min_slope=abs(_float(data.get("min_slope"), base.min_slope)),
        lookback=max(1, _int(data.get("lookback"), base.lookback)),
        min_trend_strength=_float(data.get("min_trend_strength"), base.min_trend_strength),
        rsi_bullish=_float(data.get("rsi_bullish"), base.rsi_bullish),
        rsi_bearish=_float(data.get("rsi_bearish"), base.rsi_bearish),
    )
    if cfg.bullish_ma_ratio <= cfg.bearish_ma_ratio:
        raise ValidationError(
            f"market_posture.bullish_ma_ratio ({cfg.bullish_ma_ratio}) must exceed "
            f"bearish_ma_ratio ({cfg.bearish_ma_ratio})"
        )
    return cfg


def build_risk_policy(data: Mapping[str, Any]) -> RiskPolicy:
    vol = _section(data, "volatility_triggers")
    blacklist = _section(data, "blacklist")
    symbols = tuple(
        str(s).strip().upper() for s in (blacklist.get("symbols") or []) if str(s).strip()
    )
    reasons = {
        str(k).strip().upper(): str(v) for k, v in (blacklist.get("reasons") or {}).items()
    }
    policy = RiskPolicy(
        max_exposure_pct=_opt_float(data.get("max_exposure_pct")),
        max_exposure_value=_opt_float(data.get("max_exposure_value")),
        max_daily_loss_pct=_opt_float(data.get("max_daily_loss_pct")),
        max_daily_loss_value=_opt_float(data.get("max_daily_loss_value")),
        volatility_triggers=VolatilityTriggers(
            enabled=bool(vol.get("enabled", False)),
            max_atr_pct=_opt_float(vol.get("max_atr_pct")),
            max_change_pct=_opt_float(vol.get("max_change_pct")),
            max_volatility_pct=_opt_float(vol.get("max_volatility_pct")),
        ),
        blacklist=BlacklistPolicy(symbols=symbols, reasons=reasons),
    )
    for name in ("max_exposure_pct", "max_exposure_value", "max_daily_loss_pct", "max_daily_loss_value"):
        value = getattr(policy, name)
        if value is not None and value < 0:
            raise ValidationError(f"trading.risk_policy.{name} must be >= 0, got {value}")
    return policy


def build_trading_config(data: Mapping[str, Any]) -> TradingConfig:
    automation = _section(data, "automation")
    base = AutomationConfig()
    auto = AutomationConfig(
        enabled=_env_bool("AUTOMATION_ENABLED", bool(automation.get("enabled", base.enabled))),
        timeframe=str(automation.get("timeframe") or base.timeframe),
        min_confidence=_float(automation.get("min_confidence"), base.min_confidence),
        position_pct=_float(automation.get("position_pct"), base.position_pct),
        max_positions=_int(automation.get("max_positions"), base.max_positions),
        position_epsilon=abs(_float(automation.get("position_epsilon"), base.position_epsilon)),
    )
    if not 0 < auto.position_pct <= 1:
        raise ValidationError(f"trading.automation.position_pct must be in (0, 1], got {auto.position_pct}")
    if auto.max_positions < 1:
        raise ValidationError(f"trading.automation.max_positions must be >= 1, got {auto.max_positions}")
    if not 0 <= auto.min_confidence <= 1:
        raise ValidationError(f"trading.automation.min_confidence must be in [0, 1], got {auto.min_confidence}")
    strategy = _section(data, "strategy")
    equity = _env_float("ACCOUNT_EQUITY", _opt_float(data.get("account_equity")))
    return TradingConfig(
        enabled=_env_bool("TRADING_ENABLED", bool(data.get("enabled", False))),
        account_equity=equity,
        min_notional=_float(data.get("min_notional"), 0.0),
        leverage=max(1, _int(data.get("leverage"), 1)),
        automation=auto,
        risk_policy=build_risk_policy(_section(data, "risk_policy")),
        strategy=StrategyConfig(
            minimum_confidence=_float(strategy.get("minimum_confidence"), StrategyConfig().minimum_confidence),
        ),
    )


def build_portfolio_growth_config(data: Mapping[str, Any]) -> PortfolioGrowthConfig:
    sim = _section(data, "simulation")
    contribution = _section(sim, "contribution")
    rebalance = _section(data, "rebalance")
    risk = _section(data, "risk")
    strategy = _section(_section(data, "strategies"), "default")
    reporting = _section(data, "reporting")
    d_sim, d_contrib, d_reb = SimulationConfig(), ContributionConfig(), RebalanceConfig()
    d_risk, d_strat = PortfolioRiskConfig(), AllocationStrategy()

    allocation: Dict[str, float] = {}
    for key, weight in (strategy.get("allocation") or {}).items():
        parsed = _opt_float(weight)
        if parsed is not None and parsed > 0:
            allocation[str(key).strip().upper()] = parsed

    min_alloc = max(0.0, _float(strategy.get("min_allocation_pct"), d_strat.min_allocation_pct))
    max_alloc = min(1.0, _float(strategy.get("max_allocation_pct"), d_strat.max_allocation_pct))
    if max_alloc < min_alloc:
        raise ValidationError(
            f"portfolio_growth.strategies.default.max_allocation_pct ({max_alloc}) "
            f"is below min_allocation_pct ({min_alloc})"
        )
    if allocation and min_alloc * len(allocation) > 1.0:
        raise ValidationError(
            f"portfolio_growth min_allocation_pct {min_alloc} x {len(allocation)} assets exceeds 100%"
        )

    cfg = PortfolioGrowthConfig(
        enabled=bool(data.get("enabled", False)),
        initial_capital=max(0.0, _float(data.get("initial_capital"), PortfolioGrowthConfig().initial_capital)),
        target_capital=max(0.0, _float(data.get("target_capital"), PortfolioGrowthConfig().target_capital)),
        simulation=SimulationConfig(
            history_days=max(30, min(_int(sim.get("history_days"), d_sim.history_days), 3650)),
            risk_free_rate=_float(sim.get("risk_free_rate"), d_sim.risk_free_rate),
            contribution=ContributionConfig(
                amount=max(0.0, _float(contribution.get("amount"), d_contrib.amount)),
                interval_days=max(1, _int(contribution.get("interval_days"), d_contrib.interval_days)),
            ),
            slippage_pct=max(0.0, min(_float(sim.get("slippage_pct"), d_sim.slippage_pct), 0.05)),
        ),
        rebalance=RebalanceConfig(
            interval_days=max(1, _int(rebalance.get("interval_days"), d_reb.interval_days)),
            tolerance_pct=max(0.0, _float(rebalance.get("tolerance_pct"), d_reb.tolerance_pct)),
        ),
        risk=PortfolioRiskConfig(
            max_drawdown_pct=max(0.0, _float(risk.get("max_drawdown_pct"), d_risk.max_drawdown_pct)),
            stop_loss_pct=max(0.0, _float(risk.get("stop_loss_pct"), d_risk.stop_loss_pct)),
            take_profit_pct=max(0.0, _float(risk.get("take_profit_pct"), d_risk.take_profit_pct)),
            max_position_pct=max(0.0, _float(risk.get("max_position_pct"), d_risk.max_position_pct)),
            volatility_lookback=max(2, _int(risk.get("volatility_lookback"), d_risk.volatility_lookback)),
            volatility_target_pct=max(0.0001, _float(risk.get("volatility_target_pct"), d_risk.volatility_target_pct)),
            derisk_fraction=max(0.0, min(_float(risk.get("derisk_fraction"), d_risk.derisk_fraction), 1.0)),
        ),
        strategy=AllocationStrategy(
            name=str(strategy.get("name") or d_strat.name),
            allocation=allocation,
            min_allocation_pct=min_alloc,
            max_allocation_pct=max_alloc,
        ),
        reporting=ReportingConfig(
            enabled=bool(reporting.get("enabled", False)),
            directory=Path(reporting.get("directory") or ReportingConfig().directory),
        ),
    )
    return cfg


def build_assets(entries: Any) -> Tuple[Asset, ...]:
    assets = []
    for entry in entries or []:
        if not isinstance(entry, Mapping) or not entry.get("key"):
            continue
        key = str(entry["key"]).strip().upper()
        assets.append(Asset(
            key=key,
            symbol=str(entry.get("symbol") or f"{key}USDT").strip().upper(),
            exchange=str(entry.get("exchange") or "binance").strip().lower(),
        ))
    return tuple(assets)


def load_config(config_path: Optional[Path] = None, project_root: Optional[Path] = None) -> Config:
    """Load config.yaml and overlay with env. Returns a frozen Config."""
    load_dotenv_if_exists(project_root)
    root = project_root or Path(__file__).resolve().parents[2]
    path = config_path or root / "config.yaml"
    data: dict[str, Any] = {}
    if path.exists():
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    return build_config(data)


def build_config(data: Mapping[str, Any]) -> Config:
    """Build Config from an already-parsed mapping plus the current environment."""
    api = _section(data, "api")
    telegram = _section(data, "telegram")
    logging_cfg = _section(data, "logging")
    indicators = _section(data, "indicators")
    d_ind = IndicatorConfig()

    use_testnet = _env_bool("USE_TESTNET", api.get("use_testnet", True))
    # Prefer dedicated testnet/mainnet keys so both can live in .env
    if use_testnet:
        api_key = _env("BINANCE_TESTNET_API_KEY") or _env("BINANCE_API_KEY")
        api_secret = _env("BINANCE_TESTNET_API_SECRET") or _env("BINANCE_API_SECRET")
    else:
        api_key = _env("BINANCE_MAINNET_API_KEY") or _env("BINANCE_API_KEY")
        api_secret = _env("BINANCE_MAINNET_API_SECRET") or _env("BINANCE_API_SECRET")

    ind = IndicatorConfig(
        ma_fast=max(1, _int(indicators.get("ma_fast"), d_ind.ma_fast)),
        ma_slow=max(1, _int(indicators.get("ma_slow"), d_ind.ma_slow)),
        rsi_len=max(2, _int(indicators.get("rsi_len"), d_ind.rsi_len)),
        atr_len=max(1, _int(indicators.get("atr_len"), d_ind.atr_len)),
        adx_len=max(2, _int(indicators.get("adx_len"), d_ind.adx_len)),
        candle_limit=max(50, _int(indicators.get("candle_limit"), d_ind.candle_limit)),
    )
    if ind.ma_fast >= ind.ma_slow:
        raise ValidationError(f"indicators.ma_fast ({ind.ma_fast}) must be shorter than ma_slow ({ind.ma_slow})")

    return Config(
        binance_api_key=api_key,
        binance_api_secret=api_secret,
        use_testnet=use_testnet,
        assets=build_assets(data.get("assets")),
        trading=build_trading_config(_section(data, "trading")),
        market_posture=build_posture_config(_section(data, "market_posture")),
        indicators=ind,
        portfolio_growth=build_portfolio_growth_config(_section(data, "portfolio_growth")),
        telegram_bot_token=_env("TELEGRAM_BOT_TOKEN", str(telegram.get("bot_token", ""))),
        telegram_chat_id=_env("TELEGRAM_CHAT_ID", str(telegram.get("chat_id", ""))),
        log_level=_env("LOG_LEVEL", str(logging_cfg.get("level", "INFO"))),
        log_dir=Path(logging_cfg.get("log_dir", "logs")),
        log_file=str(logging_cfg.get("log_file", "autotrader.log")),
    )
