"""
Load configuration from config.yaml and .env. API keys only from env.

Every tunable lives in one section of config.yaml and can be overridden by the
upper-cased environment variable of the same name (e.g. ANCHOR_LEVERAGE=8).
"""

from __future__ import annotations
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv

from hedge_bot.core.errors import ConfigError
from hedge_bot.core.types import Role


def _env_path(project_root: Optional[Path] = None) -> Path:
    root = project_root or Path(__file__).resolve().parents[2]
    return root / ".env"


def load_dotenv_if_exists(project_root: Optional[Path] = None) -> None:
    """Load .env from project root if present."""
    path = _env_path(project_root)
    if path.exists():
        load_dotenv(path)


@dataclass(frozen=True)
class Config:
    """Unified configuration. Immutable after load."""

    # API (env only)
    binance_api_key: str = field(default="", repr=False)
    binance_api_secret: str = field(default="", repr=False)
    use_testnet: bool = True
    # Trading
    symbol: str = "ADAUSDT"
    base_balance: float = 1000.0
    tick_interval_seconds: int = 300
    trend_timeframe: str = "4h"
    signal_timeframe: str = "1h"
    scalp_timeframe: str = "15m"
    trend_bars: int = 1080
    signal_bars: int = 168
    scalp_bars: int = 96
    balance_cache_ttl: float = 30.0
    # Sizing: fraction of balance committed as margin per role
    anchor_fraction: float = 0.20
    anchor_hedge_fraction: float = 0.30
    opportunity_fraction: float = 0.20
    opportunity_hedge_fraction: float = 0.30
    scalp_fraction: float = 0.10
    scalp_hedge_fraction: float = 0.10
    # Leverage per role
    anchor_leverage: int = 10
    anchor_hedge_leverage: int = 15
    opportunity_leverage: int = 10
    opportunity_hedge_leverage: int = 15
    scalp_leverage: int = 15
    scalp_hedge_leverage: int = 18
    # Technical
    rsi_period: int = 14
    ema_fast: int = 9
    ema_slow: int = 18
    volume_period: int = 20
    volume_multiplier: float = 0.1
    rsi_min: float = 30.0
    rsi_max: float = 70.0
    sideways_threshold: float = 0.01
    # Levels
    level_tolerance: float = 0.005
    max_levels: int = 10
    min_touches: int = 2
    level_min_bars: int = 20
    max_level_age_hours: float = 0.0
    # Hedge cycle
    entry_tolerance: float = 0.02
    reentry_tolerance: float = 0.005
    liquidation_buffer: float = 0.01
    hedge_tp_buffer: float = 0.02
    price_return_tolerance: float = 0.001
    double_profit_pct: float = 0.02
    allow_opportunity_overlap: bool = False
    # Profit taking
    exit_tolerance: float = 0.005
    anchor_profit_pct: float = 0.02
    opportunity_profit_pct: float = 0.015
    scalp_profit_pct: float = 0.0027
    anchor_exit_min_strength: float = 0.6
    opportunity_exit_min_strength: float = 0.4
    anchor_rsi_overbought: float = 70.0
    anchor_rsi_oversold: float = 30.0
    opportunity_rsi_overbought: float = 75.0
    opportunity_rsi_oversold: float = 25.0
    low_volume_ratio: float = 0.1
    peak_window: int = 10
    peak_decline_pct: float = 0.003
    # Scalp
    scalp_enabled: bool = True
    scalp_entry_tolerance: float = 0.005
    scalp_max_hedge_levels: int = 3
    # Telegram
    telegram_bot_token: str = field(default="", repr=False)
    telegram_chat_id: str = field(default="", repr=False)
    # Logging
    log_level: str = "INFO"
    log_dir: Path = Path("logs")
    log_file: str = "hedge_bot.log"
    # Backtest
    backtest_initial_capital: float = 1000.0
    backtest_bars: int = 500

    def fraction_for(self, role: Role) -> float:
        return getattr(self, f"{role.value.lower()}_fraction")

    def leverage_for(self, role: Role) -> int:
        return getattr(self, f"{role.value.lower()}_leverage")

    def validate(self) -> "Config":
        """Raise ConfigError on the first invalid setting. Returns self for chaining."""
        if self.base_balance <= 0:
            raise ConfigError("base_balance must be greater than 0")
        total = (
            self.anchor_fraction + self.anchor_hedge_fraction
            + self.opportunity_fraction + self.opportunity_hedge_fraction
        )
        if abs(total - 1.0) > 0.01:
            raise ConfigError(f"anchor/opportunity fractions must sum to 1.0, got {total:.3f}")
        for role in Role:
            if not 0 < self.fraction_for(role) <= 1:
                raise ConfigError(f"{role.value.lower()}_fraction must be in (0, 1]")
            if self.leverage_for(role) <= 0:
                raise ConfigError(f"{role.value.lower()}_leverage must be > 0")
        for name in ("rsi_period", "ema_fast", "ema_slow", "volume_period", "max_levels",
                     "min_touches", "peak_window", "scalp_max_hedge_levels"):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be > 0")
        if self.ema_fast >= self.ema_slow:
            raise ConfigError("ema_fast must be shorter than ema_slow")
        if self.peak_window < 3:
            raise ConfigError("peak_window must hold at least 3 samples")
        for name in ("level_tolerance", "entry_tolerance", "reentry_tolerance", "liquidation_buffer",
                     "hedge_tp_buffer", "price_return_tolerance", "double_profit_pct", "exit_tolerance",
                     "anchor_profit_pct", "opportunity_profit_pct", "scalp_profit_pct",
                     "peak_decline_pct", "scalp_entry_tolerance"):
            value = getattr(self, name)
            if not 0 < value < 1:
                raise ConfigError(f"{name} must be in (0, 1), got {value}")
        if not 0 <= self.rsi_min < self.rsi_max <= 100:
            raise ConfigError("rsi_min/rsi_max must satisfy 0 <= min < max <= 100")
        if self.max_level_age_hours < 0:
            raise ConfigError("max_level_age_hours must be >= 0")
        return self


# config.yaml section -> keys read from it
_SECTIONS = {
    "trading": (
        "symbol", "base_balance", "tick_interval_seconds", "trend_timeframe", "signal_timeframe",
        "scalp_timeframe", "trend_bars", "signal_bars", "scalp_bars", "balance_cache_ttl",
    ),
    "sizing": (
        "anchor_fraction", "anchor_hedge_fraction", "opportunity_fraction",
        "opportunity_hedge_fraction", "scalp_fraction", "scalp_hedge_fraction",
    ),
    "leverage": (
        "anchor_leverage", "anchor_hedge_leverage", "opportunity_leverage",
        "opportunity_hedge_leverage", "scalp_leverage", "scalp_hedge_leverage",
    ),
    "technical": (
        "rsi_period", "ema_fast", "ema_slow", "volume_period", "volume_multiplier",
        "rsi_min", "rsi_max", "sideways_threshold",
    ),
    "levels": ("level_tolerance", "max_levels", "min_touches", "level_min_bars", "max_level_age_hours"),
    "hedge": (
        "entry_tolerance", "reentry_tolerance", "liquidation_buffer", "hedge_tp_buffer",
        "price_return_tolerance", "double_profit_pct", "allow_opportunity_overlap",
    ),
    "profit": (
        "exit_tolerance", "anchor_profit_pct", "opportunity_profit_pct", "scalp_profit_pct",
        "anchor_exit_min_strength", "opportunity_exit_min_strength", "anchor_rsi_overbought",
        "anchor_rsi_oversold", "opportunity_rsi_overbought", "opportunity_rsi_oversold",
        "low_volume_ratio", "peak_window", "peak_decline_pct",
    ),
    "scalp": ("scalp_enabled", "scalp_entry_tolerance", "scalp_max_hedge_levels"),
}


def load_config(config_path: Optional[Path] = None, project_root: Optional[Path] = None) -> Config:
    """Load config.yaml and overlay with env. Returns a validated Config."""
    load_dotenv_if_exists(project_root)
    root = project_root or Path(__file__).resolve().parents[2]
    path = config_path or root / "config.yaml"
    data: dict[str, Any] = {}
    if path.exists():
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

    def env(key: str, default: str = "") -> str:
        return os.getenv(key, default).strip()

    def env_bool(key: str, default: bool = False) -> bool:
        return os.getenv(key, str(default)).lower() in ("true", "1", "yes")

    def env_int(key: str, default: int = 0) -> int:
        try:
            return int(os.getenv(key, str(default)))
        except ValueError:
            return default

    def env_float(key: str, default: float = 0.0) -> float:
        try:
            return float(os.getenv(key, str(default)))
        except ValueError:
            return default

    defaults = {f.name: f.default for f in fields(Config)}
    values: dict[str, Any] = {}
    for section, keys in _SECTIONS.items():
        block = data.get(section) or {}
        for key in keys:
            default = defaults[key]
            raw = block.get(key, default)
            if isinstance(default, bool):
                values[key] = env_bool(key.upper(), bool(raw))
            elif isinstance(default, int):
                values[key] = env_int(key.upper(), int(raw))
            elif isinstance(default, float):
                values[key] = env_float(key.upper(), float(raw))
            else:
                values[key] = env(key.upper(), str(raw))
    values["symbol"] = values["symbol"].upper()

    api = data.get("api", {})
    use_testnet = env_bool("USE_TESTNET", api.get("use_testnet", True))
    # Dedicated testnet/mainnet keys so both can live in .env and USE_TESTNET switches
    if use_testnet:
        api_key = env("BINANCE_TESTNET_API_KEY") or env("BINANCE_API_KEY")
        api_secret = env("BINANCE_TESTNET_API_SECRET") or env("BINANCE_API_SECRET")
    else:
        api_key = env("BINANCE_MAINNET_API_KEY") or env("BINANCE_API_KEY")
        api_secret = env("BINANCE_MAINNET_API_SECRET") or env("BINANCE_API_SECRET")

    telegram = data.get("telegram", {})
    logging_cfg = data.get("logging", {})
    backtest = data.get("backtest", {})
    config = Config(
        binance_api_key=api_key,
        binance_api_secret=api_secret,
        use_testnet=use_testnet,
        telegram_bot_token=env("TELEGRAM_BOT_TOKEN", telegram.get("bot_token", "")),
        telegram_chat_id=env("TELEGRAM_CHAT_ID", str(telegram.get("chat_id", ""))),
        log_level=env("LOG_LEVEL", logging_cfg.get("level", "INFO")),
        log_dir=Path(logging_cfg.get("log_dir", "logs")),
        log_file=logging_cfg.get("log_file", "hedge_bot.log"),
        backtest_initial_capital=float(backtest.get("initial_capital", 1000.0)),
        backtest_bars=int(backtest.get("bars", 500)),
        **values,
    )
    return config.validate()
