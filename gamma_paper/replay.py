"""
Scenario Replay

Drives a PaperTradingEngine from a recorded scenario: an ordered list of
trade and tick steps, usually loaded from JSON. The engine clock follows
the scenario timestamps so time-based exits replay deterministically.

Scenario format:
    {
      "start": "2025-01-06T15:00:00+00:00",
      "steps": [
        {"type": "trade", "ticker": "SPY", "symbol": "SPY 250117C00600000",
         "entry_price": 2.5, "bid_ask_spread": 0.05, "liquidity": "GOOD",
         "confidence": 0.75, "position_size": 2, "signal_id": "sig-1"},
        {"type": "tick", "ticker": "SPY", "underlying_price": 601.2,
         "timestamp": "2025-01-06T15:01:00+00:00",
         "option_prices": {"SPY 250117C00600000": 3.1},
         "implied_volatilities": {"SPY 250117C00600000": 0.22}},
        {"type": "sweep", "timestamp": "2025-01-06T15:30:00+00:00"},
        {"type": "close", "position": 0, "reason": "MANUAL"}
      ]
    }
"""

import asyncio
import json
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from loguru import logger

from .config.settings import Settings
from .paper_trading.errors import PaperTradingError
from .paper_trading.models import (
    ExitReason,
    LiquidityMetrics,
    LiquidityRating,
    MarketTick,
    OptionsGreeks,
    OptionsRecommendation,
    TradeRequest,
)
from .paper_trading.realtime_monitor import RealTimeEngineMonitor
from .paper_trading.simulator import PaperTradingEngine
from .utils.helpers import ensure_utc, utc_now


class ReplayClock:
    """Settable clock handed to the engine"""

    def __init__(self, start: Optional[datetime] = None):
        self.now = ensure_utc(start or utc_now())

    def advance_to(self, moment: datetime) -> None:
        moment = ensure_utc(moment)
        if moment > self.now:
            self.now = moment

    def __call__(self) -> datetime:
        return self.now


@dataclass
class ReplayReport:
    """Outcome of a replay"""
    position_ids: List[str] = field(default_factory=list)
    rejected: List[Dict[str, Any]] = field(default_factory=list)
    ticks_applied: int = 0
    events: Dict[str, int] = field(default_factory=dict)
    open_at_end: List[Dict[str, Any]] = field(default_factory=list)
    summary: Dict[str, Any] = field(default_factory=dict)


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    return ensure_utc(datetime.fromisoformat(value)) if value else None


def build_trade_request(step: Dict[str, Any]) -> TradeRequest:
    """Turn a scenario trade step into a TradeRequest"""
    liquidity = LiquidityMetrics(
        bid_ask_spread=float(step.get("bid_ask_spread", 0.0)),
        liquidity_rating=LiquidityRating(step.get("liquidity", "GOOD")),
        volume=int(step.get("volume", 0)),
        open_interest=int(step.get("open_interest", 0)),
        liquidity_score=float(step.get("liquidity_score", 0.0)),
    )
    greeks = OptionsGreeks(**step["greeks"]) if "greeks" in step else None
    recommendation = OptionsRecommendation.from_occ_symbol(
        step["symbol"],
        entry_price=float(step["entry_price"]),
        liquidity=liquidity,
        greeks=greeks,
    )
    return TradeRequest(
        ticker=step["ticker"],
        recommendation=recommendation,
        confidence=float(step.get("confidence", 0.5)),
        position_size=int(step.get("position_size", 1)),
        signal_id=step.get("signal_id", "replay"),
        expected_move=float(step.get("expected_move", 0.0)),
    )


def build_tick(step: Dict[str, Any], default_time: datetime) -> MarketTick:
    return MarketTick(
        ticker=step["ticker"],
        underlying_price=float(step["underlying_price"]),
        option_prices={k: float(v) for k, v in step.get("option_prices", {}).items()},
        implied_volatilities={k: float(v) for k, v in step.get("implied_volatilities", {}).items()},
        timestamp=_parse_time(step.get("timestamp")) or default_time,
    )


async def replay_scenario(
    scenario: Dict[str, Any],
    settings: Optional[Settings] = None,
    force_close: bool = True,
) -> ReplayReport:
    """
    Replay a scenario through the engine and the real-time monitor

    Ticks go through the real-time monitor and are flushed one by one, so
    every recorded price is applied in order (no coalescing during a replay).

    Args:
        scenario: Parsed scenario dict
        settings: Engine settings (balance may be overridden by the scenario)
        force_close: Close what is still open at the end

    Returns:
        ReplayReport
    """
    settings = settings or Settings()
    if "balance" in scenario:
        settings = settings.model_copy(update={"initial_balance": float(scenario["balance"])})

    clock = ReplayClock(_parse_time(scenario.get("start")))
    engine = PaperTradingEngine(settings=settings, clock=clock)
    monitor = RealTimeEngineMonitor(engine)
    report = ReplayReport()

    counts: Dict[str, int] = {}

    def count_event(event):
        counts[event.name] = counts.get(event.name, 0) + 1

    engine.events.subscribe("*", count_event)

    await monitor.start()
    try:
        for step in scenario.get("steps", []):
            kind = step.get("type")

            if kind == "tick":
                tick = build_tick(step, clock.now)
                clock.advance_to(tick.timestamp)
                monitor.submit_tick(tick)
                await monitor.flush()
                continue

            if step.get("timestamp"):
                clock.advance_to(_parse_time(step["timestamp"]))

            if kind == "trade":
                try:
                    report.position_ids.append(engine.execute_trade(build_trade_request(step)))
                except PaperTradingError as e:
                    report.rejected.append({"signal_id": step.get("signal_id"), "reason": e.reason})
            elif kind == "sweep":
                engine.run_exit_sweep(clock.now)
            elif kind == "close":
                position_id = report.position_ids[int(step["position"])]
                engine.close_position(position_id, ExitReason(step.get("reason", "MANUAL")))
            else:
                logger.warning(f"Skipping unknown scenario step type: {kind!r}")
    finally:
        report.open_at_end = await monitor.stop(force_close=force_close)

    report.ticks_applied = monitor.ticks_processed
    report.events = counts
    report.summary = engine.get_account_summary()
    return report


def load_scenario(path: Union[str, Path]) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def run_replay(path: Union[str, Path], settings: Optional[Settings] = None, force_close: bool = True) -> ReplayReport:
    """Synchronous wrapper for scripts"""
    return asyncio.run(replay_scenario(load_scenario(path), settings, force_close))
