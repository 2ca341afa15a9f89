"""
Real-Time Engine Monitor

Async boundary between a market-data feed and the paper trading engine.

- Ticks are coalesced per ticker: only the latest pending tick for a
  ticker is applied, so a fast feed never builds an unbounded queue
- One consumer task applies ticks; a second task runs the periodic exit
  sweep. Both call the engine from the event loop thread, so they share
  the engine's single serialization point
- stop() force-closes or snapshots open positions before returning
"""

import asyncio
from typing import Any, Dict, List, Optional

from loguru import logger

from ..utils.helpers import ensure_utc
from .models import ExitReason, MarketTick
from .simulator import PaperTradingEngine


class RealTimeEngineMonitor:
    """
    Feeds market ticks and periodic sweeps into a PaperTradingEngine

    Usage:
        monitor = RealTimeEngineMonitor(engine)
        await monitor.start()
        monitor.submit_tick(tick)      # from the feed callback
        ...
        await monitor.stop()
    """

    def __init__(self, engine: PaperTradingEngine, sweep_interval: Optional[float] = None):
        """
        Initialize real-time monitor

        Args:
            engine: Engine to drive
            sweep_interval: Seconds between exit sweeps (defaults to settings)
        """
        self.engine = engine
        self.sweep_interval = sweep_interval or engine.settings.sweep_interval_seconds

        self._pending: Dict[str, MarketTick] = {}
        self._wakeup = asyncio.Event()

        # Monitoring state
        self.is_running = False
        self._tick_task: Optional[asyncio.Task] = None
        self._sweep_task: Optional[asyncio.Task] = None

        # Stats
        self.ticks_received = 0
        self.ticks_processed = 0
        self.ticks_coalesced = 0
        self.sweeps_run = 0

        logger.info(f"Real-time engine monitor initialized (sweep every {self.sweep_interval}s)")

    async def start(self) -> None:
        """Start the tick consumer and the sweep timer"""
        if self.is_running:
            return

        self.is_running = True
        self._tick_task = asyncio.create_task(self._tick_loop())
        self._sweep_task = asyncio.create_task(self._sweep_loop())
        logger.info("Real-time engine monitor started")

    async def stop(self, force_close: bool = True) -> List[Dict[str, Any]]:
        """
        Stop both tasks and settle open positions

        Pending ticks are applied first so the final state reflects the
        last prices received.

        Args:
            force_close: Close every open position (MANUAL); otherwise
                leave them open and only snapshot them

        Returns:
            Snapshot of the positions that were open at shutdown
        """
        self.is_running = False

        for task in (self._tick_task, self._sweep_task):
            if task is None:
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tick_task = None
        self._sweep_task = None

        await self.flush()

        snapshot = self.engine.snapshot()
        if force_close:
            closed = self.engine.force_close_all(ExitReason.MANUAL)
            logger.info(f"Real-time engine monitor stopped; force-closed {closed} position(s)")
        else:
            logger.info(f"Real-time engine monitor stopped; {len(snapshot)} position(s) left open")

        return snapshot

    def submit_tick(self, tick: MarketTick) -> None:
        """
        Queue a tick, replacing any pending tick for the same ticker

        Must be called from the event loop thread. An older tick never
        replaces a newer pending one.
        """
        self.ticks_received += 1

        pending = self._pending.get(tick.ticker)
        if pending is not None:
            self.ticks_coalesced += 1
            if ensure_utc(tick.timestamp) < ensure_utc(pending.timestamp):
                return

        self._pending[tick.ticker] = tick
        self._wakeup.set()

    async def flush(self) -> int:
        """Apply every pending tick now; returns how many were applied"""
        batch = self._pending
        self._pending = {}
        self._wakeup.clear()

        for tick in batch.values():
            try:
                self.engine.apply_market_tick(tick)
                self.ticks_processed += 1
            except Exception as e:
                logger.error(f"Failed to apply tick for {tick.ticker}: {e}")
            # Let other tasks (and other tickers' feeds) run between tickers
            await asyncio.sleep(0)

        return len(batch)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def _tick_loop(self) -> None:
        """Apply coalesced ticks as they arrive"""
        while self.is_running:
            try:
                await self._wakeup.wait()
                await self.flush()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Tick loop error: {e}")
                await asyncio.sleep(0.5)

    async def _sweep_loop(self) -> None:
        """Run time-based exit checks on a timer"""
        while self.is_running:
            try:
                await asyncio.sleep(self.sweep_interval)
                closed = self.engine.run_exit_sweep()
                self.sweeps_run += 1
                if closed:
                    logger.info(f"Sweep closed {len(closed)} position(s)")
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Exit sweep error: {e}")

    def get_stats(self) -> Dict[str, Any]:
        return {
            "is_running": self.is_running,
            "ticks_received": self.ticks_received,
            "ticks_processed": self.ticks_processed,
            "ticks_coalesced": self.ticks_coalesced,
            "pending_tickers": len(self._pending),
            "sweeps_run": self.sweeps_run,
        }
