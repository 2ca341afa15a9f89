"""
Shared test fixtures for the gamma paper engine test suite.

Provides:
- A fixed, advanceable clock (Monday 2025-01-06 15:00 UTC)
- Settings isolated from the environment and .env
- Trade request, market tick and position factories
- Engines with deterministic fills and seeded latency

Run tests with: pytest -v
"""

import random
import sys
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from gamma_paper.config.settings import Settings
from gamma_paper.paper_trading.models import (
    ExecutionDetails,
    ExecutionQuality,
    LiquidityMetrics,
    LiquidityRating,
    MarketTick,
    OptionsGreeks,
    OptionsRecommendation,
    OptionType,
    TradeRequest,
)
from gamma_paper.paper_trading.simulator import PaperTradingEngine
from gamma_paper.paper_trading.virtual_portfolio import Position

NOW = datetime(2025, 1, 6, 15, 0, tzinfo=timezone.utc)


class FixedClock:
    """Clock that only moves when told to"""

    def __init__(self, start: datetime = NOW):
        self.now = start

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def __call__(self) -> datetime:
        return self.now


def make_request(
    ticker: str = "SPY",
    entry_price: float = 2.50,
    position_size: int = 1,
    confidence: float = 0.7,
    option_type: OptionType = OptionType.CALL,
    strike: float = 600.0,
    expiration: datetime = None,
    spread: float = 0.05,
    rating: LiquidityRating = LiquidityRating.GOOD,
    signal_id: str = "sig-1",
    symbol: str = None,
    greeks: OptionsGreeks = None,
) -> TradeRequest:
    """Build a trade request; expiration defaults to 30 days after NOW"""
    recommendation = OptionsRecommendation(
        symbol=symbol or f"{ticker} 250205{option_type.value[0]}{int(strike * 1000):08d}",
        strike=strike,
        expiration=expiration or NOW + timedelta(days=30),
        option_type=option_type,
        entry_price=entry_price,
        liquidity=LiquidityMetrics(bid_ask_spread=spread, liquidity_rating=rating),
        greeks=greeks or OptionsGreeks(delta=0.5, gamma=0.02, theta=-0.05, vega=0.1, rho=0.01,
                                       implied_volatility=0.2),
    )
    return TradeRequest(
        ticker=ticker,
        recommendation=recommendation,
        confidence=confidence,
        position_size=position_size,
        signal_id=signal_id,
    )


def make_tick(
    ticker: str,
    prices: dict,
    underlying: float = 600.0,
    timestamp: datetime = NOW,
    ivs: dict = None,
) -> MarketTick:
    return MarketTick(
        ticker=ticker,
        underlying_price=underlying,
        option_prices=dict(prices),
        implied_volatilities=dict(ivs or {}),
        timestamp=timestamp,
    )


def make_settings(**overrides) -> Settings:
    """Settings that ignore the environment; fills at the requested price by default"""
    values = {"realistic_fills": False, "log_file": None}
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def engine(settings, clock):
    """Engine with deterministic fills and a fixed clock"""
    return PaperTradingEngine(settings=settings, clock=clock, rng=random.Random(42))


@pytest.fixture
def realistic_engine(clock):
    """Engine with slippage, market impact and seeded latency"""
    return PaperTradingEngine(
        settings=make_settings(realistic_fills=True),
        clock=clock,
        rng=random.Random(7),
    )


@pytest.fixture
def open_position(engine):
    """One SPY call bought at 2.50 x 4 contracts, events drained"""
    position_id = engine.execute_trade(make_request(position_size=4, confidence=0.7))
    engine.drain_events()
    return engine.account.get_position(position_id)


def make_position(
    position_id: str = "pos-1",
    ticker: str = "SPY",
    entry_price: float = 2.50,
    quantity: int = 1,
    option_type: OptionType = OptionType.CALL,
    strike: float = 600.0,
    expiration: datetime = None,
    entry_time: datetime = NOW,
    confidence: float = 0.7,
    greeks: OptionsGreeks = None,
) -> Position:
    """Open position built directly, bypassing the engine"""
    execution = ExecutionDetails(
        requested_price=entry_price,
        executed_price=entry_price,
        bid_ask_spread=0.05,
        slippage=0.0,
        market_impact=0.0,
        execution_time_ms=10.0,
        liquidity_score=0.0,
        execution_quality=ExecutionQuality.EXCELLENT,
    )
    return Position(
        position_id=position_id,
        ticker=ticker,
        symbol=f"{ticker} 250205{option_type.value[0]}{int(strike * 1000):08d}",
        option_type=option_type,
        strike=strike,
        expiration=expiration or NOW + timedelta(days=30),
        signal_id="sig-1",
        quantity=quantity,
        entry_price=entry_price,
        entry_time=entry_time,
        execution=execution,
        entry_greeks=replace(greeks) if greeks else OptionsGreeks(),
        current_greeks=replace(greeks) if greeks else OptionsGreeks(),
        confidence=confidence,
    )
