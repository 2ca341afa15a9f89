"""
Portfolio Risk Aggregator

Recomputes cross-position risk from the open positions on every tick:
heat, ticker concentration, a correlation proxy, Greeks exposure and a
parametric VaR / Expected Shortfall estimate.

VaR and ES use a fixed daily volatility and z-score; they are rough
gauges for the account summary and risk alerts, not a tail model.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, Optional

from loguru import logger

from ..paper_trading.models import CONTRACT_MULTIPLIER
from ..paper_trading.virtual_portfolio import Position


@dataclass
class PortfolioGreeks:
    """Per-Greek exposure summed over positions (Greek x quantity x 100)"""
    delta: float = 0.0
    gamma: float = 0.0
    theta: float = 0.0
    vega: float = 0.0
    rho: float = 0.0
    net_exposure: float = 0.0


@dataclass
class RiskMetrics:
    portfolio_heat: float = 0.0
    concentration_risk: float = 0.0
    correlation_risk: float = 0.0
    value_at_risk: float = 0.0
    expected_shortfall: float = 0.0
    total_notional: float = 0.0
    position_count: int = 0
    ticker_count: int = 0
    risk_score: float = 0.0
    greeks: PortfolioGreeks = field(default_factory=PortfolioGreeks)
    heat_by_ticker: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class PortfolioRiskAggregator:
    """
    Portfolio-level risk calculator

    Correlation risk is the proxy 1 - tickers / positions. It only says
    how clustered positions are by ticker; it is not a covariance measure.
    """

    def __init__(
        self,
        max_portfolio_heat: float = 0.20,
        daily_volatility: float = 0.02,
        z_score: float = 1.645,
        expected_shortfall_multiplier: float = 1.3,
    ):
        self.max_portfolio_heat = max_portfolio_heat
        self.daily_volatility = daily_volatility
        self.z_score = z_score
        self.expected_shortfall_multiplier = expected_shortfall_multiplier

    @classmethod
    def from_settings(cls, settings) -> "PortfolioRiskAggregator":
        return cls(
            max_portfolio_heat=settings.max_portfolio_heat,
            daily_volatility=settings.var_daily_volatility,
            z_score=settings.var_z_score,
            expected_shortfall_multiplier=settings.expected_shortfall_multiplier,
        )

    def calculate(self, positions: Iterable[Position], current_balance: float) -> RiskMetrics:
        """
        Compute risk metrics for the given open positions

        Args:
            positions: Open positions
            current_balance: Account balance used as the heat denominator

        Returns:
            RiskMetrics snapshot
        """
        positions = [p for p in positions if p.is_open]
        if not positions:
            return RiskMetrics()

        notional_by_ticker: Dict[str, float] = {}
        greeks = PortfolioGreeks()

        for p in positions:
            notional = p.notional
            notional_by_ticker[p.ticker] = notional_by_ticker.get(p.ticker, 0.0) + notional

            scale = p.quantity * CONTRACT_MULTIPLIER
            greeks.delta += p.current_greeks.delta * scale
            greeks.gamma += p.current_greeks.gamma * scale
            greeks.theta += p.current_greeks.theta * scale
            greeks.vega += p.current_greeks.vega * scale
            greeks.rho += p.current_greeks.rho * scale
            greeks.net_exposure += notional

        total_notional = sum(notional_by_ticker.values())
        heat = self.portfolio_heat(total_notional, current_balance)

        value_at_risk = total_notional * self.daily_volatility * self.z_score

        return RiskMetrics(
            portfolio_heat=heat,
            concentration_risk=self.concentration(notional_by_ticker),
            correlation_risk=1 - len(notional_by_ticker) / len(positions),
            value_at_risk=value_at_risk,
            expected_shortfall=value_at_risk * self.expected_shortfall_multiplier,
            total_notional=total_notional,
            position_count=len(positions),
            ticker_count=len(notional_by_ticker),
            risk_score=self.risk_score(heat),
            greeks=greeks,
            heat_by_ticker={
                ticker: self.portfolio_heat(notional, current_balance)
                for ticker, notional in notional_by_ticker.items()
            },
        )

    @staticmethod
    def portfolio_heat(notional: float, balance: float) -> float:
        if balance <= 0:
            return 0.0 if notional <= 0 else float("inf")
        return notional / balance

    @staticmethod
    def concentration(notional_by_ticker: Dict[str, float]) -> float:
        """Herfindahl index of per-ticker notional share, in [1/N, 1]"""
        total = sum(notional_by_ticker.values())
        if total <= 0:
            # All positions marked at zero: treat as equally weighted
            count = len(notional_by_ticker)
            return 1 / count if count else 0.0
        return sum((n / total) ** 2 for n in notional_by_ticker.values())

    def risk_score(self, heat: float) -> float:
        """0-100 score of heat relative to the cap"""
        if self.max_portfolio_heat <= 0:
            return 100.0
        return min(100.0, max(0.0, heat / self.max_portfolio_heat * 100))

    def log_summary(self, metrics: RiskMetrics, label: Optional[str] = None) -> None:
        logger.debug(
            f"Risk{f' [{label}]' if label else ''}: heat {metrics.portfolio_heat:.1%}, "
            f"HHI {metrics.concentration_risk:.2f}, corr {metrics.correlation_risk:.2f}, "
            f"VaR ${metrics.value_at_risk:,.2f}, ES ${metrics.expected_shortfall:,.2f}"
        )
