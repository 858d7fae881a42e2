"""
Orchestration loop.

One tick: reconcile positions with the exchange, fetch bars, learn levels,
compute indicators, evaluate both engines and apply their signals. Ticks run
sequentially on one thread; a failing tick is logged and the loop carries on.
"""

from __future__ import annotations
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

import pandas as pd

from hedge_bot.analytics.metrics import TradingStats, compute_trading_stats
from hedge_bot.core.config import Config
from hedge_bot.core.errors import ExchangeError, TransientExchangeError
from hedge_bot.core.types import Position, SignalKind, TradingSignal
from hedge_bot.execution.base import ExchangeGateway
from hedge_bot.indicators.adapter import IndicatorAdapter
from hedge_bot.levels.learner import LevelLearner
from hedge_bot.positions.manager import PositionManager, missing_on_exchange, summarize_positions
from hedge_bot.positions.scalp import ScalpLifecycle
from hedge_bot.risk.manager import RiskManager
from hedge_bot.strategies.hedge import HedgeSignalEngine
from hedge_bot.strategies.scalp import ScalpSubEngine
from hedge_bot.utils.telegram import format_close, format_open, send_telegram

logger = logging.getLogger("hedge_bot.bot")


def build_learner(config: Config) -> LevelLearner:
    max_age = timedelta(hours=config.max_level_age_hours) if config.max_level_age_hours > 0 else None
    return LevelLearner(
        tolerance=config.level_tolerance,
        max_levels=config.max_levels,
        min_touches=config.min_touches,
        min_bars=config.level_min_bars,
        max_age=max_age,
    )


def build_adapter(config: Config) -> IndicatorAdapter:
    return IndicatorAdapter(
        rsi_period=config.rsi_period,
        ema_fast=config.ema_fast,
        ema_slow=config.ema_slow,
        volume_period=config.volume_period,
        volume_multiplier=config.volume_multiplier,
        rsi_min=config.rsi_min,
        rsi_max=config.rsi_max,
        sideways_threshold=config.sideways_threshold,
    )


class HedgeBot:
    """Wires learner, engines, lifecycle managers and gateway together for one symbol."""

    def __init__(
        self,
        config: Config,
        gateway: ExchangeGateway,
        clock: Optional[Callable[[], datetime]] = None,
        notify: Optional[Callable[[str], bool]] = None,
    ):
        self.config = config
        self.gateway = gateway
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self._notify = notify or (
            lambda text: send_telegram(text, config.telegram_bot_token, config.telegram_chat_id)
        )
        symbol_info = None
        try:
            symbol_info = gateway.get_symbol_info()
        except ExchangeError as e:
            logger.warning("Symbol info unavailable, using default lot filters: %s", e)
        self.risk = RiskManager(gateway, config.base_balance, config.balance_cache_ttl, symbol_info)
        self.adapter = build_adapter(config)
        self.learner = build_learner(config)
        self.scalp_learner = build_learner(config)
        self.positions = PositionManager(gateway, self.risk, config, clock=self.clock)
        self.scalp = ScalpLifecycle(gateway, self.risk, config, clock=self.clock)
        self.engine = HedgeSignalEngine(self.learner, self.adapter, config)
        self.scalp_engine = ScalpSubEngine(self.scalp_learner, self.adapter, config)
        self.running = False
        self.tick_count = 0
        self.last_tick: Optional[datetime] = None

    # ------------------------------------------------------------------ tick

    def _timeframes(self) -> Dict[str, int]:
        cfg = self.config
        frames = {cfg.trend_timeframe: cfg.trend_bars, cfg.signal_timeframe: cfg.signal_bars}
        if cfg.scalp_enabled:
            frames.setdefault(cfg.scalp_timeframe, cfg.scalp_bars)
        return frames

    def fetch_bars(self) -> Dict[str, pd.DataFrame]:
        return {tf: self.gateway.get_klines(tf, limit) for tf, limit in self._timeframes().items()}

    def tick(self) -> List[TradingSignal]:
        """
        Run one decision cycle and return the signals that were evaluated. Exchange
        errors propagate to the caller; `run` logs them and waits for the next tick.
        """
        cfg = self.config
        now = self.clock()
        # All reads first so a transient failure leaves state untouched
        price = self.gateway.get_current_price()
        exchange_positions = self.gateway.get_current_positions()
        bars = self.fetch_bars()

        # Both tracks share the per-side exchange exposure, so they reconcile as one
        tracked = self.positions.open_positions() + self.scalp.open_positions()
        gone = missing_on_exchange(tracked, exchange_positions, price)
        for manager in (self.positions, self.scalp):
            for position in manager.settle_closed_on_exchange(gone, price):
                self._announce_close(position)
        self.scalp.rearm(price)

        self.learner.learn_combined(bars[cfg.trend_timeframe], bars[cfg.signal_timeframe])
        indicators = self.adapter.compute_all(bars)

        signals = self.engine.evaluate(price, indicators, self.positions.snapshot(), now)
        for signal in signals:
            self._apply(self.positions, signal)

        if cfg.scalp_enabled:
            self.scalp_learner.update(bars[cfg.scalp_timeframe])
            scalp_signals = self.scalp_engine.evaluate(
                price, indicators, self.scalp.snapshot(), now, blocked_levels=self.scalp.blocked_levels(),
            )
            for signal in scalp_signals:
                self._apply(self.scalp, signal)
            signals = signals + scalp_signals

        self.tick_count += 1
        self.last_tick = now
        summary = self.get_position_summary()
        logger.info(
            "Tick %d | price=%.6f | levels=%d | signals=%d | open=%d (%d scalp) | pnl=%.4f",
            self.tick_count, price, len(self.learner), len(signals), summary["open_positions"],
            len(self.scalp.open_positions()), summary["total_pnl"],
        )
        return signals

    def _apply(self, manager: PositionManager, signal: TradingSignal) -> Optional[Position]:
        logger.info(
            "Signal %s %s %s @ %.6f (confidence %.2f): %s",
            signal.kind.value, signal.role.value, signal.side.value, signal.price, signal.confidence, signal.reason,
        )
        result = manager.apply(signal)
        if result is None:
            return None
        if signal.kind is SignalKind.EXIT:
            self._announce_close(result)
        else:
            self._notify(format_open(self.config.symbol, signal, result))
        return result

    def _announce_close(self, position: Position) -> None:
        self._notify(format_close(self.config.symbol, position))

    # ------------------------------------------------------------------ loop

    def run(self, max_ticks: Optional[int] = None) -> None:
        """Tick every `tick_interval_seconds` until stop() or emergency_stop()."""
        cfg = self.config
        self.running = True
        self._notify(f"Hedge bot starting | {cfg.symbol} | testnet={cfg.use_testnet}")
        logger.info("Hedge bot started for %s, tick every %ss", cfg.symbol, cfg.tick_interval_seconds)
        ticks = 0
        while self.running:
            started = time.monotonic()
            try:
                self.tick()
            except KeyboardInterrupt:
                logger.info("Shutdown by user")
                self.stop()
                break
            except TransientExchangeError as e:
                logger.warning("Tick aborted, exchange unavailable: %s", e)
            except Exception as e:
                logger.exception("Tick error: %s", e)
            ticks += 1
            if max_ticks is not None and ticks >= max_ticks:
                break
            if self.running:
                try:
                    time.sleep(max(0.0, cfg.tick_interval_seconds - (time.monotonic() - started)))
                except KeyboardInterrupt:
                    logger.info("Shutdown by user")
                    self.stop()
        self.running = False

    def stop(self) -> None:
        if self.running:
            self._notify(f"Hedge bot stopped | {self.config.symbol}")
        self.running = False
        logger.info("Hedge bot stopping")

    def emergency_stop(self) -> List[str]:
        """Close every open position (main and scalp) and halt. Returns ids that failed to close."""
        logger.warning("EMERGENCY STOP: closing all positions")
        failed = self.positions.emergency_stop() + self.scalp.emergency_stop()
        self.running = False
        if failed:
            logger.error("Emergency stop left %d positions open: %s", len(failed), ", ".join(failed))
        self._notify(
            f"EMERGENCY STOP {self.config.symbol}: all positions closed" if not failed
            else f"EMERGENCY STOP {self.config.symbol}: failed to close {', '.join(failed)}"
        )
        return failed

    # ------------------------------------------------------------------ reporting

    def get_position_summary(self) -> Dict:
        summary = summarize_positions(
            self.positions.all_positions() + self.scalp.all_positions(),
            self.positions.break_even_analysis() + self.scalp.break_even_analysis(),
        )
        summary["scalp"] = self.scalp.status()
        summary["levels"] = self.learner.stats()
        return summary

    def trading_stats(self) -> TradingStats:
        return compute_trading_stats(
            self.positions.all_positions() + self.scalp.all_positions(), self.config.base_balance,
        )
