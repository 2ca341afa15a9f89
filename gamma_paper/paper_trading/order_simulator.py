"""
Order Execution Simulator

Turns a requested option purchase into a realistically-filled trade by
modeling liquidity-dependent slippage, market impact and fill latency.
"""

import random
from typing import Dict, Optional

from loguru import logger

from .models import (
    ExecutionDetails,
    ExecutionQuality,
    LiquidityRating,
    OptionsRecommendation,
)


class ExecutionSimulator:
    """
    Simulates order execution with realistic fill modeling

    Features:
    - Slippage as a liquidity-tiered fraction of the requested price
    - Market impact as a fixed share of the bid/ask spread
    - Liquidity-tiered fill latency with random jitter

    Price and cost figures are deterministic; only the latency uses the
    injected random source.
    """

    # Slippage as a fraction of requested price, by liquidity
    SLIPPAGE_MODEL: Dict[LiquidityRating, float] = {
        LiquidityRating.EXCELLENT: 0.001,
        LiquidityRating.GOOD: 0.002,
        LiquidityRating.FAIR: 0.005,
        LiquidityRating.POOR: 0.010,
    }

    # Simplification: every fill pays 30% of the quoted spread
    MARKET_IMPACT_SPREAD_SHARE = 0.3

    # Base fill latency in milliseconds, by liquidity
    BASE_EXECUTION_TIME_MS: Dict[LiquidityRating, float] = {
        LiquidityRating.EXCELLENT: 50.0,
        LiquidityRating.GOOD: 100.0,
        LiquidityRating.FAIR: 250.0,
        LiquidityRating.POOR: 500.0,
    }
    MIN_EXECUTION_TIME_MS = 10.0

    # Upper bounds of total cost / price for each quality class
    QUALITY_THRESHOLDS = (
        (0.002, ExecutionQuality.EXCELLENT),
        (0.005, ExecutionQuality.GOOD),
        (0.010, ExecutionQuality.FAIR),
    )

    def __init__(self, realistic_mode: bool = True, rng: Optional[random.Random] = None):
        """
        Initialize execution simulator

        Args:
            realistic_mode: If False, fill exactly at the requested price
            rng: Random source for latency jitter (seed it for repeatable runs)
        """
        self.realistic_mode = realistic_mode
        self.rng = rng or random.Random()
        self._fill_count = 0

        logger.info(f"Execution simulator initialized (realistic={realistic_mode})")

    def simulate_execution(self, recommendation: OptionsRecommendation) -> ExecutionDetails:
        """
        Simulate filling a buy order for the recommended contract

        Args:
            recommendation: Contract, requested price and liquidity

        Returns:
            ExecutionDetails describing the fill
        """
        self._fill_count += 1

        requested_price = recommendation.entry_price
        liquidity = recommendation.liquidity
        spread = liquidity.bid_ask_spread

        slippage, market_impact = self._calculate_costs(requested_price, spread, liquidity.liquidity_rating)
        executed_price = requested_price + slippage + market_impact

        execution_time = self._calculate_execution_time(liquidity.liquidity_rating)
        quality = self._assess_execution_quality(slippage + market_impact, requested_price)

        details = ExecutionDetails(
            requested_price=requested_price,
            executed_price=executed_price,
            bid_ask_spread=spread,
            slippage=slippage,
            market_impact=market_impact,
            execution_time_ms=execution_time,
            liquidity_score=liquidity.liquidity_score,
            execution_quality=quality,
        )

        logger.debug(
            f"Simulated fill #{self._fill_count} {recommendation.symbol}: "
            f"${requested_price:.4f} -> ${executed_price:.4f} "
            f"(slippage ${slippage:.4f}, impact ${market_impact:.4f}, "
            f"{execution_time:.0f}ms, {quality.value})"
        )

        return details

    def expected_fill_price(self, recommendation: OptionsRecommendation) -> float:
        """Deterministic fill price for planning; matches simulate_execution"""
        slippage, market_impact = self._calculate_costs(
            recommendation.entry_price,
            recommendation.liquidity.bid_ask_spread,
            recommendation.liquidity.liquidity_rating,
        )
        return recommendation.entry_price + slippage + market_impact

    def _calculate_costs(
        self,
        requested_price: float,
        spread: float,
        rating: LiquidityRating,
    ) -> tuple[float, float]:
        """
        Calculate slippage and market impact

        Returns:
            Tuple of (slippage, market_impact) in price units
        """
        if not self.realistic_mode:
            return 0.0, 0.0

        rate = self.SLIPPAGE_MODEL.get(rating, self.SLIPPAGE_MODEL[LiquidityRating.POOR])
        slippage = rate * requested_price
        market_impact = max(0.0, spread) * self.MARKET_IMPACT_SPREAD_SHARE

        return slippage, market_impact

    def _calculate_execution_time(self, rating: LiquidityRating) -> float:
        """Latency in ms: base time +-50% jitter, floored at the minimum"""
        if not self.realistic_mode:
            return self.MIN_EXECUTION_TIME_MS

        base_time = self.BASE_EXECUTION_TIME_MS.get(rating, self.BASE_EXECUTION_TIME_MS[LiquidityRating.POOR])
        variation = (self.rng.random() - 0.5) * base_time
        return max(self.MIN_EXECUTION_TIME_MS, base_time + variation)

    def _assess_execution_quality(self, total_cost: float, requested_price: float) -> ExecutionQuality:
        """Classify a fill by total cost as a fraction of price"""
        if requested_price <= 0:
            return ExecutionQuality.POOR

        cost_fraction = total_cost / requested_price
        for threshold, quality in self.QUALITY_THRESHOLDS:
            if cost_fraction < threshold:
                return quality
        return ExecutionQuality.POOR

    @property
    def fill_count(self) -> int:
        return self._fill_count
