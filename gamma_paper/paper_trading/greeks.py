"""
Greeks, Time Decay and Volatility Tracker

Derives per-position Greeks from each market tick, splits the tick-over-tick
option price change into per-Greek contributions, and keeps bounded
histories of Greeks, time-decay and volatility snapshots.

The bundled pricing model is a closed-form heuristic, NOT Black-Scholes.
It exists to give the risk and exit layers plausible sensitivities; swap in
a real model by implementing PricingModel.
"""

import math
from abc import ABC, abstractmethod
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from loguru import logger

from ..utils.helpers import ensure_utc
from .models import (
    CONTRACT_MULTIPLIER,
    GreeksPnLContribution,
    GreeksSnapshot,
    OptionsGreeks,
    OptionType,
    TimeDecaySnapshot,
    VolatilitySnapshot,
)

if TYPE_CHECKING:
    from .virtual_portfolio import Position

SECONDS_PER_DAY = 24 * 60 * 60
SECONDS_PER_YEAR = 365 * SECONDS_PER_DAY


def years_to_expiry(expiration: datetime, as_of: datetime) -> float:
    """Time to expiration in years, floored at zero"""
    seconds = (ensure_utc(expiration) - ensure_utc(as_of)).total_seconds()
    return max(0.0, seconds / SECONDS_PER_YEAR)


def days_to_expiry(expiration: datetime, as_of: datetime) -> float:
    """Fractional days to expiration (negative once expired)"""
    return (ensure_utc(expiration) - ensure_utc(as_of)).total_seconds() / SECONDS_PER_DAY


def intrinsic_value(option_type: OptionType, strike: float, underlying_price: float) -> float:
    if option_type == OptionType.CALL:
        return max(0.0, underlying_price - strike)
    return max(0.0, strike - underlying_price)


class PricingModel(ABC):
    """Produces option sensitivities for a contract at a point in time"""

    @abstractmethod
    def greeks(
        self,
        option_type: OptionType,
        strike: float,
        expiration: datetime,
        underlying_price: float,
        implied_volatility: float,
        as_of: datetime,
    ) -> OptionsGreeks:
        ...


class HeuristicPricingModel(PricingModel):
    """
    Moneyness/time heuristic for option Greeks

    Approximation only:
    - delta is a piecewise-linear function of moneyness (S/K), clamped to
      [0.05, 0.95] for calls and [-0.95, -0.05] for puts
    - gamma peaks at the money and scales with sqrt(T)
    - theta scales with IV and sqrt(T)
    - vega scales with sqrt(T) and the underlying price
    - rho is a small linear function of T, signed by option type
    """

    DELTA_FLOOR = 0.05
    DELTA_CEILING = 0.95

    def greeks(
        self,
        option_type: OptionType,
        strike: float,
        expiration: datetime,
        underlying_price: float,
        implied_volatility: float,
        as_of: datetime,
    ) -> OptionsGreeks:
        if underlying_price <= 0 or strike <= 0:
            return OptionsGreeks(implied_volatility=implied_volatility)

        t = years_to_expiry(expiration, as_of)
        sqrt_t = math.sqrt(t)
        moneyness = underlying_price / strike
        is_call = option_type == OptionType.CALL

        if is_call:
            if moneyness > 1:
                delta = 0.6 + (moneyness - 1) * 0.3
            else:
                delta = 0.3 + (moneyness - 0.8) * 1.5
            delta = max(self.DELTA_FLOOR, min(self.DELTA_CEILING, delta))
        else:
            if moneyness < 1:
                delta = -0.6 - (1 - moneyness) * 0.3
            else:
                delta = -0.3 - (moneyness - 1) * 1.5
            delta = max(-self.DELTA_CEILING, min(-self.DELTA_FLOOR, delta))

        gamma = 0.01 * math.exp(-(math.log(moneyness) ** 2) / 0.1) * sqrt_t
        theta = -0.02 * implied_volatility * sqrt_t / math.sqrt(365)
        vega = 0.1 * sqrt_t * underlying_price / 100
        rho = 0.01 * t if is_call else -0.01 * t

        return OptionsGreeks(
            delta=delta,
            gamma=gamma,
            theta=theta,
            vega=vega,
            rho=rho,
            implied_volatility=implied_volatility,
        )


class GreeksTracker:
    """
    Maintains derived Greeks state for open positions

    Called by the engine for every tick that carries a price for a
    position's contract.
    """

    # IV increase between snapshots that counts as volatility expansion
    VOL_EXPANSION_THRESHOLD = 0.02
    HISTORICAL_VOL_RATIO = 0.9
    ACCELERATION_WINDOW_DAYS = 30

    def __init__(self, pricing_model: Optional[PricingModel] = None):
        self.pricing_model = pricing_model or HeuristicPricingModel()

    def compute_greeks(
        self,
        position: "Position",
        underlying_price: float,
        implied_vol: float,
        as_of: datetime,
    ) -> OptionsGreeks:
        """Greeks for the position's contract at the given market state"""
        return self.pricing_model.greeks(
            position.option_type,
            position.strike,
            position.expiration,
            underlying_price,
            implied_vol,
            as_of,
        )

    def attribute_pnl(
        self,
        position: "Position",
        underlying_price: float,
        previous_option_price: float,
        current_option_price: float,
        vol_change: Optional[float] = None,
        rate_change: Optional[float] = None,
    ) -> GreeksPnLContribution:
        """
        Split a tick-over-tick option price change into Greek contributions

        Uses the Greeks held before this tick. The underlying move is measured
        from the last Greeks snapshot; the first tick has no move. Vega and
        rho terms stay zero unless the volatility or rate change is supplied.

        Returns:
            GreeksPnLContribution in dollars for the whole position
        """
        greeks = position.current_greeks
        scale = position.quantity * CONTRACT_MULTIPLIER

        if position.greeks_history:
            underlying_change = underlying_price - position.greeks_history[-1].underlying_price
        else:
            underlying_change = 0.0

        delta_contribution = greeks.delta * underlying_change * scale
        gamma_contribution = 0.5 * greeks.gamma * underlying_change ** 2 * scale
        theta_contribution = greeks.theta * (1 / 365) * scale
        vega_contribution = greeks.vega * vol_change * scale if vol_change is not None else 0.0
        rho_contribution = greeks.rho * rate_change * scale if rate_change is not None else 0.0

        total = (
            delta_contribution
            + gamma_contribution
            + theta_contribution
            + vega_contribution
            + rho_contribution
        )

        return GreeksPnLContribution(
            delta_contribution=delta_contribution,
            gamma_contribution=gamma_contribution,
            theta_contribution=theta_contribution,
            vega_contribution=vega_contribution,
            rho_contribution=rho_contribution,
            total_contribution=total,
            actual_change=(current_option_price - previous_option_price) * scale,
        )

    def record_tick(
        self,
        position: "Position",
        underlying_price: float,
        implied_vol: Optional[float],
        previous_price: float,
        as_of: datetime,
    ) -> GreeksSnapshot:
        """
        Refresh the position's Greeks and append history snapshots

        The position's current price must already reflect the tick.

        Args:
            position: Open position being updated
            underlying_price: Underlying price from the tick
            implied_vol: IV for the contract, or None if the tick had none
            previous_price: Option price before this tick
            as_of: Tick timestamp

        Returns:
            The Greeks snapshot that was recorded
        """
        vol_change = None
        if implied_vol is not None and position.volatility_history:
            vol_change = implied_vol - position.volatility_history[-1].implied_volatility

        contribution = self.attribute_pnl(
            position,
            underlying_price,
            previous_price,
            position.current_price,
            vol_change=vol_change,
        )

        iv = implied_vol if implied_vol is not None else position.current_greeks.implied_volatility
        greeks = self.compute_greeks(position, underlying_price, iv, as_of)

        snapshot = GreeksSnapshot(
            timestamp=as_of,
            underlying_price=underlying_price,
            greeks=greeks,
            pnl_contribution=contribution,
        )
        position.current_greeks = greeks
        position.last_underlying_price = underlying_price
        position.greeks_history.append(snapshot)

        position.time_decay_history.append(self._time_decay_snapshot(position, underlying_price, as_of))

        if implied_vol is not None:
            position.volatility_history.append(self._volatility_snapshot(position, implied_vol, as_of))

        if abs(contribution.unexplained) > abs(contribution.actual_change) and contribution.actual_change:
            logger.debug(
                f"Greeks explain little of {position.position_id} move: "
                f"actual ${contribution.actual_change:+.2f}, "
                f"attributed ${contribution.total_contribution:+.2f}"
            )

        return snapshot

    def _time_decay_snapshot(
        self,
        position: "Position",
        underlying_price: float,
        as_of: datetime,
    ) -> TimeDecaySnapshot:
        dte = days_to_expiry(position.expiration, as_of)
        intrinsic = intrinsic_value(position.option_type, position.strike, underlying_price)
        time_value = max(0.0, position.current_price - intrinsic)

        history = position.time_decay_history
        theta_decay = time_value - history[-1].time_value if history else 0.0

        if dte < self.ACCELERATION_WINDOW_DAYS:
            acceleration = math.exp(-(dte / 10))
        else:
            acceleration = 1.0

        return TimeDecaySnapshot(
            timestamp=as_of,
            days_to_expiration=dte,
            time_value=time_value,
            intrinsic_value=intrinsic,
            theta_decay=theta_decay,
            acceleration_factor=acceleration,
        )

    def _volatility_snapshot(
        self,
        position: "Position",
        implied_vol: float,
        as_of: datetime,
    ) -> VolatilitySnapshot:
        history = position.volatility_history
        vol_change = implied_vol - history[-1].implied_volatility if history else 0.0

        return VolatilitySnapshot(
            timestamp=as_of,
            implied_volatility=implied_vol,
            historical_volatility=implied_vol * self.HISTORICAL_VOL_RATIO,
            volatility_rank=min(100.0, max(0.0, implied_vol * 100)),
            vega_impact=position.current_greeks.vega * vol_change * position.quantity * CONTRACT_MULTIPLIER,
            vol_expansion=vol_change > self.VOL_EXPANSION_THRESHOLD,
        )
