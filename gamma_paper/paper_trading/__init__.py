"""
Paper Trading Engine

Simulates options trading against live market-data ticks - every fill is
internal, nothing is sent to a broker.

Features:
- Multi-ticker positions with a transactional ticker index
- Realistic fill simulation (slippage, market impact, latency)
- Heuristic Greeks, P&L attribution, time-decay and volatility history
- Priority-ordered exit rules (profit target, stop loss, trailing stop,
  time decay, expiration, breakeven)
- Portfolio heat / concentration gate with confidence-weighted sizing
- Consecutive-loss and drawdown circuit breakers
- Async monitor with per-ticker tick coalescing and periodic exit sweeps
"""

from .simulator import PaperTradingEngine, TickResult
from .virtual_portfolio import PaperAccount, PerformanceMetrics, Position, TickerPerformance
from .order_simulator import ExecutionSimulator
from .greeks import GreeksTracker, HeuristicPricingModel, PricingModel
from .exit_conditions import (
    ConditionState,
    ExitCondition,
    ExitConditionConfig,
    ExitConditionType,
    ExitEvaluation,
    ExitRuleEvaluator,
    ExitSignal,
)
from .position_sizing import SizingDecision, SizingGovernor
from .realtime_monitor import RealTimeEngineMonitor
from .events import DomainEvent, EventBus
from .errors import PaperTradingError, PositionClosedError, RiskLimitRejection, ValidationError
from .models import (
    ExecutionDetails,
    ExecutionQuality,
    ExitReason,
    LiquidityMetrics,
    LiquidityRating,
    MarketTick,
    OptionsGreeks,
    OptionsRecommendation,
    OptionType,
    PositionStatus,
    TradeRequest,
    Urgency,
)

__all__ = [
    "PaperTradingEngine",
    "TickResult",
    "PaperAccount",
    "PerformanceMetrics",
    "Position",
    "TickerPerformance",
    "ExecutionSimulator",
    "GreeksTracker",
    "HeuristicPricingModel",
    "PricingModel",
    "ConditionState",
    "ExitCondition",
    "ExitConditionConfig",
    "ExitConditionType",
    "ExitEvaluation",
    "ExitRuleEvaluator",
    "ExitSignal",
    "SizingDecision",
    "SizingGovernor",
    "RealTimeEngineMonitor",
    "DomainEvent",
    "EventBus",
    "PaperTradingError",
    "PositionClosedError",
    "RiskLimitRejection",
    "ValidationError",
    "ExecutionDetails",
    "ExecutionQuality",
    "ExitReason",
    "LiquidityMetrics",
    "LiquidityRating",
    "MarketTick",
    "OptionsGreeks",
    "OptionsRecommendation",
    "OptionType",
    "PositionStatus",
    "TradeRequest",
    "Urgency",
]
