"""
Configuration settings for the paper trading engine using Pydantic
"""

from typing import Literal, Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Engine settings loaded from environment variables and .env file

    Every field can be overridden with a ``PAPER_`` prefixed environment
    variable (e.g. ``PAPER_MAX_PORTFOLIO_HEAT=0.15``).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="PAPER_",
        case_sensitive=False,
        extra="ignore"
    )

    # Logging Configuration
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level"
    )
    log_file: Optional[str] = Field(
        default="gamma_paper.log",
        description="Log file path"
    )

    # Account Configuration
    account_id: str = Field(
        default="default-paper-account",
        description="Identifier of the simulated account"
    )
    initial_balance: float = Field(
        default=100000.0,
        gt=0,
        description="Starting balance for a fresh paper account"
    )

    # Portfolio Heat Limits (fractions of current balance)
    max_portfolio_heat: float = Field(
        default=0.20,
        description="Maximum open notional / balance after a new trade"
    )
    max_position_size: float = Field(
        default=0.05,
        description="Maximum notional of a single position / balance"
    )
    max_ticker_concentration: float = Field(
        default=0.30,
        description="Maximum notional in one ticker / balance"
    )
    heat_reduction_threshold: float = Field(
        default=0.15,
        description="Heat above which the worst losers are trimmed"
    )
    emergency_exit_threshold: float = Field(
        default=0.25,
        description="Heat above which every position is force-closed"
    )
    auto_emergency_exit: bool = Field(
        default=True,
        description="Force-close everything when emergency heat is breached"
    )
    auto_heat_reduction: bool = Field(
        default=False,
        description="Close the worst losing positions above the reduction threshold"
    )

    # Circuit Breakers
    consecutive_loss_limit: int = Field(
        default=3,
        ge=1,
        description="Consecutive losing trades before sizing is reduced"
    )
    halt_on_consecutive_losses: bool = Field(
        default=False,
        description="Reject new trades instead of reducing size at the loss limit"
    )
    consecutive_loss_size_factor: float = Field(
        default=0.5,
        description="Size multiplier while the consecutive-loss breaker is active"
    )
    drawdown_protection_threshold: float = Field(
        default=0.05,
        description="Drawdown from peak balance that switches to defensive mode"
    )
    defensive_size_factor: float = Field(
        default=0.5,
        description="Size multiplier while in defensive mode"
    )
    drawdown_close_losers: bool = Field(
        default=False,
        description="Close deep losers while in defensive mode"
    )
    drawdown_loser_percent: float = Field(
        default=30.0,
        gt=0,
        description="Loss % beyond which defensive mode closes a position"
    )

    # Position Sizing
    min_position_size: int = Field(
        default=1,
        ge=1,
        description="Minimum contracts for an approved or degraded trade"
    )
    high_confidence_threshold: float = Field(default=0.8)
    medium_confidence_threshold: float = Field(default=0.6)
    high_confidence_multiplier: float = Field(
        default=1.2,
        gt=0,
        description="Size multiplier for confidence >= high threshold"
    )
    medium_confidence_multiplier: float = Field(default=1.0, gt=0)
    low_confidence_multiplier: float = Field(default=0.8, gt=0)

    # Exit Rules (percent values, 50.0 = 50%)
    profit_target_percent: float = Field(default=50.0, gt=0)
    stop_loss_percent: float = Field(default=50.0, gt=0)
    trailing_stop_percent: float = Field(default=20.0, gt=0)
    breakeven_stop_enabled: bool = Field(default=True)
    time_decay_dte: float = Field(
        default=7.0,
        description="Days to expiration below which time-decay exits apply"
    )
    theta_decay_threshold: float = Field(
        default=0.30,
        description="Daily theta / option price that triggers a time-decay exit"
    )
    max_holding_period_hours: float = Field(default=72.0, gt=0)
    expiration_warning_days: float = Field(default=2.0)
    force_exit_before_expiration_hours: float = Field(default=4.0)
    weekend_exit_enabled: bool = Field(default=False)
    enable_auto_exit: bool = Field(default=True)
    auto_exit_min_confidence: float = Field(default=0.8)
    confidence_based_exits: bool = Field(
        default=False,
        description="Pick exit thresholds from the position's signal confidence"
    )

    # Execution Simulation
    realistic_fills: bool = Field(
        default=True,
        description="Apply slippage, market impact and latency to fills"
    )

    # Risk Model Constants
    var_daily_volatility: float = Field(default=0.02)
    var_z_score: float = Field(default=1.645)
    expected_shortfall_multiplier: float = Field(default=1.3)

    # Runtime
    history_limit: int = Field(
        default=100,
        ge=1,
        description="Capacity of per-position Greeks/decay/volatility histories"
    )
    event_log_limit: int = Field(default=1000, ge=1)
    sweep_interval_seconds: float = Field(default=30.0, gt=0)

    @field_validator(
        "max_portfolio_heat",
        "max_position_size",
        "max_ticker_concentration",
        "heat_reduction_threshold",
        "emergency_exit_threshold",
        "consecutive_loss_size_factor",
        "drawdown_protection_threshold",
        "defensive_size_factor",
        "high_confidence_threshold",
        "medium_confidence_threshold",
        "auto_exit_min_confidence",
        "theta_decay_threshold",
        "var_daily_volatility",
    )
    @classmethod
    def validate_fraction(cls, v: float) -> float:
        """Ensure fractional limits stay within [0, 1]"""
        if not 0.0 <= v <= 1.0:
            raise ValueError("value must be a fraction between 0 and 1")
        return v


# Global settings instance
_settings: Optional[Settings] = None


def get_settings(reload: bool = False) -> Settings:
    """
    Get or create the global settings instance

    Args:
        reload: Force reload settings from environment

    Returns:
        Settings instance
    """
    global _settings

    if _settings is None or reload:
        _settings = Settings()

    return _settings
