"""
Automated Position Sizing & Portfolio-Heat Governor

Validates a trade request against the account's risk caps and turns the
requested contract count into an approved size:
- Maximum safe size from heat, position, concentration and balance room
- Confidence multiplier (higher confidence never sizes smaller)
- Circuit-breaker factor from consecutive losses and drawdown

Never raises: an internal error degrades to the minimum size.
"""

import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Optional

from loguru import logger

from ..config.settings import Settings, get_settings
from ..risk.guardrails import RiskGuardrails
from .models import CONTRACT_MULTIPLIER, TradeRequest
from .order_simulator import ExecutionSimulator

if TYPE_CHECKING:
    from .virtual_portfolio import PaperAccount

DEGRADED_REASON = "Error during validation - using minimum size"


@dataclass
class SizingDecision:
    """Result of validating and sizing a trade request"""
    approved: bool
    recommended_size: int
    original_size: int
    reason: str
    warnings: List[str] = field(default_factory=list)
    violations: List[str] = field(default_factory=list)
    max_safe_size: int = 0
    cost_per_contract: float = 0.0
    degraded: bool = False


class SizingGovernor:
    """
    Pre-trade gate and sizer

    Caps are checked against the expected fill price (including slippage
    and market impact) so the post-fill heat stays within the limit.
    """

    def __init__(
        self,
        guardrails: RiskGuardrails,
        execution_simulator: Optional[ExecutionSimulator] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.guardrails = guardrails
        self.execution_simulator = execution_simulator

    def confidence_multiplier(self, confidence: float) -> float:
        s = self.settings
        if confidence >= s.high_confidence_threshold:
            return s.high_confidence_multiplier
        if confidence >= s.medium_confidence_threshold:
            return s.medium_confidence_multiplier
        return s.low_confidence_multiplier

    def max_safe_size(self, account: "PaperAccount", ticker: str, cost_per_contract: float) -> int:
        """
        Largest contract count that satisfies every cap

        Returns:
            Contracts (>= 0)
        """
        balance = account.current_balance
        if balance <= 0 or cost_per_contract <= 0:
            return 0

        by_heat = (self.guardrails.max_portfolio_heat * balance - account.open_notional) / cost_per_contract
        by_position = self.guardrails.max_position_size * balance / cost_per_contract
        by_ticker = (
            self.guardrails.max_ticker_concentration * balance - account.ticker_notional(ticker)
        ) / cost_per_contract
        by_balance = account.available_balance / cost_per_contract

        return max(0, math.floor(min(by_heat, by_position, by_ticker, by_balance)))

    def validate_and_size(self, request: TradeRequest, account: "PaperAccount") -> SizingDecision:
        """
        Validate a request against the caps and compute the approved size

        Args:
            request: Shape-validated trade request
            account: Account the trade would be booked to

        Returns:
            SizingDecision; approved False carries the max safe size
        """
        try:
            return self._validate_and_size(request, account)
        except Exception as e:
            logger.error(f"Sizing failed for {request.ticker} ({request.signal_id}): {e}")
            return SizingDecision(
                approved=False,
                recommended_size=self.settings.min_position_size,
                original_size=request.position_size,
                reason=DEGRADED_REASON,
                degraded=True,
            )

    def _validate_and_size(self, request: TradeRequest, account: "PaperAccount") -> SizingDecision:
        recommendation = request.recommendation
        if self.execution_simulator is not None:
            fill_price = self.execution_simulator.expected_fill_price(recommendation)
        else:
            fill_price = recommendation.entry_price

        cost_per_contract = fill_price * CONTRACT_MULTIPLIER
        if not math.isfinite(cost_per_contract) or cost_per_contract <= 0:
            raise ValueError(f"invalid cost per contract {cost_per_contract}")

        requested = request.position_size
        max_safe = self.max_safe_size(account, request.ticker, cost_per_contract)

        check = self.guardrails.check_trade(
            request.ticker,
            requested * cost_per_contract,
            {
                "current_balance": account.current_balance,
                "available_balance": account.available_balance,
                "open_notional": account.open_notional,
                "ticker_notional": account.ticker_notional(request.ticker),
            },
        )

        if not check.passed:
            logger.info(
                f"Rejected {requested}x {recommendation.symbol}: {check.reason} "
                f"(max safe size {max_safe})"
            )
            return SizingDecision(
                approved=False,
                recommended_size=max_safe,
                original_size=requested,
                reason=check.reason,
                warnings=list(check.warnings),
                violations=[str(v) for v in check.violations],
                max_safe_size=max_safe,
                cost_per_contract=cost_per_contract,
            )

        warnings = list(check.warnings)
        multiplier = self.confidence_multiplier(request.confidence)
        breaker_factor = self.guardrails.size_factor(account.current_drawdown)
        if breaker_factor < 1.0:
            warnings.append(f"Circuit breakers scaling size by {breaker_factor:.2f}")

        sized = math.floor(requested * multiplier * breaker_factor)
        recommended = min(max(self.settings.min_position_size, sized), max_safe)
        if recommended < sized:
            warnings.append(f"Size capped at {max_safe} contracts by risk limits")

        logger.debug(
            f"Sized {request.ticker}: requested {requested}, confidence x{multiplier:.2f}, "
            f"breakers x{breaker_factor:.2f} -> {recommended} (max safe {max_safe})"
        )

        return SizingDecision(
            approved=True,
            recommended_size=recommended,
            original_size=requested,
            reason=f"Approved {recommended} contracts",
            warnings=warnings,
            max_safe_size=max_safe,
            cost_per_contract=cost_per_contract,
        )
