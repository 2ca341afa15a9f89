"""
Core value types for the paper trading engine

Enumerations, option contract descriptors, market ticks, execution records
and the per-tick snapshots kept in each position's history.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from ..utils.helpers import parse_option_symbol, utc_now

# Shares controlled by one option contract
CONTRACT_MULTIPLIER = 100


class OptionType(Enum):
    CALL = "CALL"
    PUT = "PUT"


class PositionStatus(Enum):
    """Lifecycle state of a position"""
    OPEN = "OPEN"
    CLOSED = "CLOSED"
    EXPIRED = "EXPIRED"


class ExitReason(Enum):
    """Why a position was closed"""
    PROFIT_TARGET = "PROFIT_TARGET"
    STOP_LOSS = "STOP_LOSS"
    TIME_DECAY = "TIME_DECAY"
    EXPIRATION = "EXPIRATION"
    RISK_MANAGEMENT = "RISK_MANAGEMENT"
    MANUAL = "MANUAL"
    PORTFOLIO_HEAT = "PORTFOLIO_HEAT"
    CORRELATION_LIMIT = "CORRELATION_LIMIT"


class LiquidityRating(Enum):
    EXCELLENT = "EXCELLENT"
    GOOD = "GOOD"
    FAIR = "FAIR"
    POOR = "POOR"


class ExecutionQuality(Enum):
    EXCELLENT = "EXCELLENT"
    GOOD = "GOOD"
    FAIR = "FAIR"
    POOR = "POOR"


class Urgency(Enum):
    """Urgency of an exit signal or risk alert"""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        """Higher rank = more urgent"""
        return _URGENCY_RANK[self]


_URGENCY_RANK = {
    Urgency.LOW: 0,
    Urgency.MEDIUM: 1,
    Urgency.HIGH: 2,
    Urgency.CRITICAL: 3,
}


@dataclass
class OptionsGreeks:
    """Option sensitivities plus the implied volatility they were derived from"""
    delta: float = 0.0
    gamma: float = 0.0
    theta: float = 0.0
    vega: float = 0.0
    rho: float = 0.0
    implied_volatility: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


@dataclass
class LiquidityMetrics:
    """Liquidity of a contract at recommendation time"""
    bid_ask_spread: float
    liquidity_rating: LiquidityRating = LiquidityRating.GOOD
    volume: int = 0
    open_interest: int = 0
    liquidity_score: float = 0.0


@dataclass
class OptionsRecommendation:
    """A specific contract the signal source wants to buy"""
    symbol: str
    strike: float
    expiration: datetime
    option_type: OptionType
    entry_price: float
    liquidity: LiquidityMetrics
    greeks: OptionsGreeks = field(default_factory=OptionsGreeks)

    @classmethod
    def from_occ_symbol(
        cls,
        symbol: str,
        entry_price: float,
        liquidity: LiquidityMetrics,
        greeks: Optional[OptionsGreeks] = None,
    ) -> "OptionsRecommendation":
        """Build a recommendation from an OCC symbol like 'SPY 250117P00600000'"""
        parsed = parse_option_symbol(symbol)
        if parsed is None:
            raise ValueError(f"Not an OCC option symbol: {symbol!r}")

        return cls(
            symbol=symbol,
            strike=parsed["strike"],
            expiration=parsed["expiration"],
            option_type=OptionType(parsed["type"]),
            entry_price=entry_price,
            liquidity=liquidity,
            greeks=greeks or OptionsGreeks(),
        )


@dataclass
class TradeRequest:
    """Trade request supplied by the signal/regime source"""
    ticker: str
    recommendation: Optional[OptionsRecommendation]
    confidence: float
    position_size: int
    signal_id: str
    expected_move: float = 0.0


@dataclass
class ExecutionDetails:
    """Record of how a simulated fill deviated from the requested price"""
    requested_price: float
    executed_price: float
    bid_ask_spread: float
    slippage: float
    market_impact: float
    execution_time_ms: float
    liquidity_score: float
    execution_quality: ExecutionQuality

    @property
    def total_cost(self) -> float:
        return self.slippage + self.market_impact

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["execution_quality"] = self.execution_quality.value
        return data


@dataclass
class GreeksPnLContribution:
    """
    Tick-over-tick P&L split by Greek

    ``total_contribution`` is the sum of the five Greek terms.
    ``actual_change`` is the observed dollar change; the gap between them is
    reported as ``unexplained``.
    """
    delta_contribution: float = 0.0
    gamma_contribution: float = 0.0
    theta_contribution: float = 0.0
    vega_contribution: float = 0.0
    rho_contribution: float = 0.0
    total_contribution: float = 0.0
    actual_change: float = 0.0

    @property
    def unexplained(self) -> float:
        return self.actual_change - self.total_contribution


@dataclass
class GreeksSnapshot:
    timestamp: datetime
    underlying_price: float
    greeks: OptionsGreeks
    pnl_contribution: GreeksPnLContribution


@dataclass
class TimeDecaySnapshot:
    timestamp: datetime
    days_to_expiration: float
    time_value: float
    intrinsic_value: float
    theta_decay: float           # Change in time value since the previous snapshot
    acceleration_factor: float   # exp(-dte / 10) inside 30 DTE, otherwise 1


@dataclass
class VolatilitySnapshot:
    timestamp: datetime
    implied_volatility: float
    historical_volatility: float
    volatility_rank: float
    vega_impact: float
    vol_expansion: bool


@dataclass
class MarketTick:
    """
    One market-data update for a ticker

    ``option_prices`` and ``implied_volatilities`` are keyed by option
    symbol. Contracts missing from ``option_prices`` are left untouched.
    """
    ticker: str
    underlying_price: float
    option_prices: Dict[str, float] = field(default_factory=dict)
    implied_volatilities: Dict[str, float] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utc_now)

    def same_content(self, other: "MarketTick") -> bool:
        return (
            self.ticker == other.ticker
            and self.timestamp == other.timestamp
            and self.underlying_price == other.underlying_price
            and self.option_prices == other.option_prices
            and self.implied_volatilities == other.implied_volatilities
        )
