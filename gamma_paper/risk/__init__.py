"""
Risk Management System

Portfolio-level risk aggregation and hard guardrails:
- Portfolio heat, concentration and correlation proxy
- Greeks exposure and VaR / Expected Shortfall estimates
- Heat, position-size, concentration and balance caps
- Consecutive-loss and drawdown circuit breakers
"""

from .guardrails import (
    CircuitBreakerAction,
    CircuitBreakerStatus,
    RiskCheckResult,
    RiskGuardrails,
    RiskViolation,
    RiskViolationType,
)
from .portfolio_risk import PortfolioGreeks, PortfolioRiskAggregator, RiskMetrics

__all__ = [
    "CircuitBreakerAction",
    "CircuitBreakerStatus",
    "RiskCheckResult",
    "RiskGuardrails",
    "RiskViolation",
    "RiskViolationType",
    "PortfolioGreeks",
    "PortfolioRiskAggregator",
    "RiskMetrics",
]
