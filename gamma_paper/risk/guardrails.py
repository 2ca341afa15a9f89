"""
Risk Guardrails System

Hard limits that gate every new paper trade, plus the circuit breakers
that watch the account between trades:
- Portfolio heat, single-position and ticker-concentration caps
- Available balance check
- Consecutive-loss breaker (reduce size or halt)
- Drawdown-from-peak defensive mode (optionally closing deep losers)
- Emergency heat (force-close everything) and heat reduction
- Optional weekend exit
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from loguru import logger

from ..config.settings import Settings, get_settings
from ..utils.helpers import is_weekend, utc_now


class RiskViolationType(Enum):
    """Types of risk violations"""
    TRADING_HALTED = "TRADING_HALTED"
    PORTFOLIO_HEAT_EXCEEDED = "PORTFOLIO_HEAT_EXCEEDED"
    POSITION_SIZE_EXCEEDED = "POSITION_SIZE_EXCEEDED"
    CONCENTRATION_EXCEEDED = "CONCENTRATION_EXCEEDED"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"


class CircuitBreakerAction(Enum):
    """What the engine should do after a circuit-breaker check"""
    REDUCE_HEAT = "REDUCE_HEAT"
    FORCE_CLOSE_ALL = "FORCE_CLOSE_ALL"
    CLOSE_DEEP_LOSERS = "CLOSE_DEEP_LOSERS"
    WEEKEND_EXIT = "WEEKEND_EXIT"


@dataclass
class RiskViolation:
    """Details of a risk violation"""
    violation_type: RiskViolationType
    limit_value: float
    current_value: float
    message: str
    severity: str = "HIGH"  # HIGH, MEDIUM, LOW
    timestamp: str = field(default_factory=lambda: utc_now().isoformat())

    def __str__(self) -> str:
        return f"{self.violation_type.value}: {self.message}"


@dataclass
class RiskCheckResult:
    """Result of a risk check"""
    passed: bool
    violations: List[RiskViolation] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def add_violation(self, violation: RiskViolation) -> None:
        """Add a violation and mark as failed"""
        self.violations.append(violation)
        self.passed = False

    def add_warning(self, message: str) -> None:
        """Add a warning (doesn't fail the check)"""
        self.warnings.append(message)

    @property
    def reason(self) -> Optional[str]:
        """Message of the first violation, in check order"""
        return self.violations[0].message if self.violations else None


@dataclass
class CircuitBreakerStatus:
    """State of the circuit breakers after a check"""
    trading_halted: bool = False
    defensive_mode: bool = False
    size_factor: float = 1.0
    consecutive_losses: int = 0
    current_drawdown: float = 0.0
    portfolio_heat: float = 0.0
    actions: List[CircuitBreakerAction] = field(default_factory=list)
    alerts: List[str] = field(default_factory=list)


class RiskGuardrails:
    """
    Risk management guardrails

    Caps are fractions of the current account balance.
    """

    def __init__(self, settings: Optional[Settings] = None):
        """Initialize guardrails from settings"""
        self.settings = settings or get_settings()
        self._load_limits()
        self.consecutive_losses = 0
        self.defensive_mode = False

        logger.info("Risk guardrails initialized")

    def _load_limits(self) -> None:
        s = self.settings
        self.max_portfolio_heat = s.max_portfolio_heat
        self.max_position_size = s.max_position_size
        self.max_ticker_concentration = s.max_ticker_concentration
        self.heat_reduction_threshold = s.heat_reduction_threshold
        self.emergency_exit_threshold = s.emergency_exit_threshold
        self.consecutive_loss_limit = s.consecutive_loss_limit
        self.drawdown_protection_threshold = s.drawdown_protection_threshold

    # ------------------------------------------------------------------
    # Pre-trade caps
    # ------------------------------------------------------------------

    def check_trade(
        self,
        ticker: str,
        trade_notional: float,
        portfolio_state: Dict[str, float],
    ) -> RiskCheckResult:
        """
        Run all pre-trade checks against a proposed trade

        Checks run in a fixed order (halt, heat, position size,
        concentration, balance) so the first violation is the most
        important one.

        Args:
            ticker: Ticker of the proposed trade
            trade_notional: Cost of the proposed trade at its expected fill
            portfolio_state: current_balance, available_balance,
                open_notional and ticker_notional (for this ticker)

        Returns:
            RiskCheckResult with pass/fail and any violations
        """
        result = RiskCheckResult(passed=True)
        balance = portfolio_state.get("current_balance", 0.0)

        if self.is_trading_halted:
            result.add_violation(RiskViolation(
                violation_type=RiskViolationType.TRADING_HALTED,
                limit_value=self.consecutive_loss_limit,
                current_value=self.consecutive_losses,
                message=f"Trading halted after {self.consecutive_losses} consecutive losses",
            ))

        if balance <= 0:
            result.add_violation(RiskViolation(
                violation_type=RiskViolationType.INSUFFICIENT_BALANCE,
                limit_value=0.0,
                current_value=balance,
                message=f"Account balance ${balance:,.2f} leaves no room for new trades",
            ))
            return result

        self._check_portfolio_heat(result, trade_notional, balance, portfolio_state)
        self._check_position_size(result, trade_notional, balance)
        self._check_concentration(result, ticker, trade_notional, balance, portfolio_state)
        self._check_balance(result, trade_notional, portfolio_state)

        if not result.passed:
            for violation in result.violations:
                logger.warning(f"Risk violation: {violation}")

        return result

    def _check_portfolio_heat(
        self,
        result: RiskCheckResult,
        trade_notional: float,
        balance: float,
        portfolio_state: Dict[str, float],
    ) -> None:
        new_heat = (portfolio_state.get("open_notional", 0.0) + trade_notional) / balance
        result.metadata["post_trade_heat"] = new_heat

        if new_heat > self.max_portfolio_heat:
            result.add_violation(RiskViolation(
                violation_type=RiskViolationType.PORTFOLIO_HEAT_EXCEEDED,
                limit_value=self.max_portfolio_heat,
                current_value=new_heat,
                message=(
                    f"Post-trade portfolio heat {new_heat:.1%} would exceed "
                    f"limit {self.max_portfolio_heat:.1%}"
                ),
            ))
        elif new_heat > self.heat_reduction_threshold:
            result.add_warning(f"Portfolio heat {new_heat:.1%} above reduction threshold")

    def _check_position_size(self, result: RiskCheckResult, trade_notional: float, balance: float) -> None:
        share = trade_notional / balance
        if share > self.max_position_size:
            result.add_violation(RiskViolation(
                violation_type=RiskViolationType.POSITION_SIZE_EXCEEDED,
                limit_value=self.max_position_size,
                current_value=share,
                message=f"Single position size {share:.1%} of balance exceeds limit {self.max_position_size:.1%}",
            ))

    def _check_concentration(
        self,
        result: RiskCheckResult,
        ticker: str,
        trade_notional: float,
        balance: float,
        portfolio_state: Dict[str, float],
    ) -> None:
        concentration = (portfolio_state.get("ticker_notional", 0.0) + trade_notional) / balance
        if concentration > self.max_ticker_concentration:
            result.add_violation(RiskViolation(
                violation_type=RiskViolationType.CONCENTRATION_EXCEEDED,
                limit_value=self.max_ticker_concentration,
                current_value=concentration,
                message=(
                    f"{ticker} concentration {concentration:.1%} would exceed "
                    f"limit {self.max_ticker_concentration:.1%}"
                ),
                severity="MEDIUM",
            ))

    def _check_balance(
        self,
        result: RiskCheckResult,
        trade_notional: float,
        portfolio_state: Dict[str, float],
    ) -> None:
        available = portfolio_state.get("available_balance", 0.0)
        if trade_notional > available:
            result.add_violation(RiskViolation(
                violation_type=RiskViolationType.INSUFFICIENT_BALANCE,
                limit_value=available,
                current_value=trade_notional,
                message=f"Insufficient balance: need ${trade_notional:,.2f}, only ${available:,.2f} available",
            ))

    # ------------------------------------------------------------------
    # Circuit breakers
    # ------------------------------------------------------------------

    def record_trade_result(self, pnl: float) -> None:
        """Feed a closed trade's realized P&L to the consecutive-loss breaker"""
        if pnl < 0:
            self.consecutive_losses += 1
            if self.consecutive_losses == self.consecutive_loss_limit:
                action = "halting new trades" if self.settings.halt_on_consecutive_losses else "reducing size"
                logger.warning(f"{self.consecutive_losses} consecutive losses - {action}")
        else:
            if self.consecutive_losses >= self.consecutive_loss_limit:
                logger.info("Winning trade - consecutive-loss breaker reset")
            self.consecutive_losses = 0

    @property
    def loss_breaker_active(self) -> bool:
        return self.consecutive_losses >= self.consecutive_loss_limit

    @property
    def is_trading_halted(self) -> bool:
        return self.loss_breaker_active and self.settings.halt_on_consecutive_losses

    def size_factor(self, current_drawdown: float) -> float:
        """Multiplier applied to approved sizes by the active breakers"""
        factor = 1.0
        if self.loss_breaker_active:
            factor *= self.settings.consecutive_loss_size_factor
        if current_drawdown > self.drawdown_protection_threshold:
            factor *= self.settings.defensive_size_factor
        return factor

    def evaluate(
        self,
        portfolio_heat: float,
        current_drawdown: float,
        now: Optional[datetime] = None,
    ) -> CircuitBreakerStatus:
        """
        Check the circuit breakers against current account state

        Args:
            portfolio_heat: Open notional / current balance
            current_drawdown: Fractional drop of balance from its peak
            now: Clock time for the weekend check (skipped when None)

        Returns:
            CircuitBreakerStatus with the actions the engine should take
        """
        status = CircuitBreakerStatus(
            trading_halted=self.is_trading_halted,
            consecutive_losses=self.consecutive_losses,
            current_drawdown=current_drawdown,
            portfolio_heat=portfolio_heat,
        )

        was_defensive = self.defensive_mode
        self.defensive_mode = current_drawdown > self.drawdown_protection_threshold
        status.defensive_mode = self.defensive_mode
        if self.defensive_mode and not was_defensive:
            alert = (
                f"Drawdown {current_drawdown:.1%} exceeds "
                f"{self.drawdown_protection_threshold:.1%} - defensive mode on"
            )
            logger.warning(alert)
            status.alerts.append(alert)
        elif was_defensive and not self.defensive_mode:
            logger.info("Drawdown recovered - defensive mode off")

        status.size_factor = self.size_factor(current_drawdown)

        if self.defensive_mode and self.settings.drawdown_close_losers:
            status.actions.append(CircuitBreakerAction.CLOSE_DEEP_LOSERS)

        if portfolio_heat > self.emergency_exit_threshold:
            alert = (
                f"Emergency: portfolio heat {portfolio_heat:.1%} exceeds "
                f"{self.emergency_exit_threshold:.1%}"
            )
            logger.critical(alert)
            status.alerts.append(alert)
            status.actions.append(CircuitBreakerAction.FORCE_CLOSE_ALL)
        elif portfolio_heat > self.heat_reduction_threshold:
            alert = (
                f"Portfolio heat {portfolio_heat:.1%} above reduction "
                f"threshold {self.heat_reduction_threshold:.1%}"
            )
            logger.warning(alert)
            status.alerts.append(alert)
            status.actions.append(CircuitBreakerAction.REDUCE_HEAT)

        if now is not None and self.settings.weekend_exit_enabled and is_weekend(now):
            status.actions.append(CircuitBreakerAction.WEEKEND_EXIT)

        if status.trading_halted:
            status.alerts.append(f"Trading halted after {self.consecutive_losses} consecutive losses")

        return status

    def reset(self) -> None:
        """Clear breaker state (account reset)"""
        self.consecutive_losses = 0
        self.defensive_mode = False
        logger.info("Circuit breakers reset")

    def get_limits_summary(self) -> Dict[str, Any]:
        """Get summary of all limits"""
        return {
            "max_portfolio_heat": self.max_portfolio_heat,
            "max_position_size": self.max_position_size,
            "max_ticker_concentration": self.max_ticker_concentration,
            "heat_reduction_threshold": self.heat_reduction_threshold,
            "emergency_exit_threshold": self.emergency_exit_threshold,
            "consecutive_loss_limit": self.consecutive_loss_limit,
            "drawdown_protection_threshold": self.drawdown_protection_threshold,
            "consecutive_losses": self.consecutive_losses,
            "defensive_mode": self.defensive_mode,
        }
