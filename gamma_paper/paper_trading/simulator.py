"""
Paper Trading Engine

Position lifecycle manager for simulated options trading. Coordinates:
- Trade intake: governor (validate/size) -> execution simulator -> position
- Tick processing: price/P&L -> Greeks tracker -> risk -> exit rules
- Closing, force-closing and account resets
- Circuit breakers and periodic exit sweeps

Every public mutation runs under one re-entrant lock per engine (one
engine per account). Results go out as domain events on the EventBus.
"""

import math
import random
import threading
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from loguru import logger

from ..config.settings import Settings, get_settings
from ..risk.guardrails import CircuitBreakerAction, RiskGuardrails
from ..risk.portfolio_risk import PortfolioRiskAggregator, RiskMetrics
from ..utils.helpers import ensure_utc, format_currency, utc_now
from . import events
from .errors import RiskLimitRejection, ValidationError
from .events import DomainEvent, EventBus
from .exit_conditions import ExitConditionConfig, ExitEvaluation, ExitRuleEvaluator, ExitSignal
from .greeks import GreeksTracker, PricingModel, intrinsic_value
from .models import ExitReason, MarketTick, OptionType, TradeRequest, Urgency
from .order_simulator import ExecutionSimulator
from .position_sizing import SizingGovernor
from .virtual_portfolio import PaperAccount, Position


@dataclass
class TickResult:
    """What a market tick did"""
    ticker: str
    applied: bool = True
    updated_positions: List[str] = field(default_factory=list)
    closed_positions: List[str] = field(default_factory=list)
    exit_signals: List[ExitSignal] = field(default_factory=list)


class PaperTradingEngine:
    """
    Multi-ticker paper trading engine for long options

    Key features:
    - Realistic fills (slippage, market impact, latency)
    - Heuristic Greeks with P&L attribution and decay/volatility history
    - Priority-ordered exit rules with optional auto-exit
    - Heat/concentration/balance gate and circuit breakers
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        execution_simulator: Optional[ExecutionSimulator] = None,
        pricing_model: Optional[PricingModel] = None,
        event_bus: Optional[EventBus] = None,
        clock: Optional[Callable[[], datetime]] = None,
        rng: Optional[random.Random] = None,
    ):
        """
        Initialize the paper trading engine

        Args:
            settings: Engine settings (defaults to global settings)
            execution_simulator: Fill model (built from settings if omitted)
            pricing_model: Greeks model for the tracker (heuristic if omitted)
            event_bus: Bus for domain events (a private one if omitted)
            clock: Returns the current aware datetime; used for entries,
                manual closes and sweeps
            rng: Random source for fill latency
        """
        self.settings = settings or get_settings()
        self.clock = clock or utc_now

        self.execution_simulator = execution_simulator or ExecutionSimulator(
            realistic_mode=self.settings.realistic_fills,
            rng=rng,
        )
        self.tracker = GreeksTracker(pricing_model)
        self.exit_evaluator = ExitRuleEvaluator(ExitConditionConfig.from_settings(self.settings))
        self.risk_aggregator = PortfolioRiskAggregator.from_settings(self.settings)
        self.guardrails = RiskGuardrails(self.settings)
        self.governor = SizingGovernor(self.guardrails, self.execution_simulator, self.settings)
        self.events = event_bus or EventBus(log_limit=self.settings.event_log_limit)

        self.account = PaperAccount(self.settings.account_id, self.settings.initial_balance)
        self.risk_metrics = RiskMetrics()

        self._lock = threading.RLock()
        self._market_data: Dict[str, MarketTick] = {}

        logger.info(
            f"Paper trading engine initialized: account {self.account.account_id}, "
            f"capital {format_currency(self.account.initial_balance)}, "
            f"heat cap {self.settings.max_portfolio_heat:.0%}"
        )

    # ------------------------------------------------------------------
    # Trade intake
    # ------------------------------------------------------------------

    def execute_trade(self, request: TradeRequest) -> str:
        """
        Validate, size, fill and open a position

        Args:
            request: Trade request from the signal source

        Returns:
            Id of the new position

        Raises:
            ValidationError: Malformed request (nothing changed)
            RiskLimitRejection: Request breaches a risk cap (nothing changed)
        """
        with self._lock:
            now = self.clock()

            try:
                self._validate_request(request, now)
            except ValidationError as e:
                logger.warning(f"Trade validation failed: {e.reason}")
                self._publish_trade_failed(request, e.reason, field=e.field)
                raise

            decision = self.governor.validate_and_size(request, self.account)
            if not decision.approved:
                self._publish_trade_failed(
                    request,
                    decision.reason,
                    recommended_size=decision.recommended_size,
                    degraded=decision.degraded,
                )
                raise RiskLimitRejection(decision.reason, decision.recommended_size, decision.violations)

            recommendation = request.recommendation
            execution = self.execution_simulator.simulate_execution(recommendation)

            position = Position(
                position_id=f"paper_{uuid.uuid4().hex[:12]}",
                ticker=request.ticker,
                symbol=recommendation.symbol,
                option_type=recommendation.option_type,
                strike=recommendation.strike,
                expiration=recommendation.expiration,
                signal_id=request.signal_id,
                quantity=decision.recommended_size,
                entry_price=execution.executed_price,
                entry_time=now,
                execution=execution,
                entry_greeks=replace(recommendation.greeks),
                current_greeks=replace(recommendation.greeks),
                confidence=request.confidence,
                expected_move=request.expected_move,
                history_limit=self.settings.history_limit,
            )

            self.account.add_position(position)
            self.exit_evaluator.register_position(position)
            self._refresh_metrics()

            self.events.publish(events.TRADE_EXECUTED, {
                "position_id": position.position_id,
                "ticker": position.ticker,
                "symbol": position.symbol,
                "signal_id": position.signal_id,
                "quantity": position.quantity,
                "requested_size": request.position_size,
                "entry_price": position.entry_price,
                "execution": execution.to_dict(),
                "warnings": decision.warnings,
                "portfolio_heat": self.account.portfolio_heat,
            })

            logger.info(
                f"Opened {position.position_id}: {position.quantity}x {position.symbol} "
                f"@ ${position.entry_price:.2f} ({execution.execution_quality.value} fill, "
                f"heat {self.account.portfolio_heat:.1%})"
            )

            return position.position_id

    def _validate_request(self, request: TradeRequest, now: datetime) -> None:
        """Shape checks; raises ValidationError naming the first bad field"""
        if not isinstance(request.ticker, str) or not request.ticker.strip():
            raise ValidationError("ticker", "ticker is required")
        if not isinstance(request.signal_id, str) or not request.signal_id.strip():
            raise ValidationError("signal_id", "signal id is required")

        recommendation = request.recommendation
        if recommendation is None:
            raise ValidationError("recommendation", "an options recommendation is required")

        size = request.position_size
        if isinstance(size, bool) or not isinstance(size, int) or size <= 0:
            raise ValidationError("position_size", f"must be a positive integer, got {size!r}")

        confidence = request.confidence
        if not isinstance(confidence, (int, float)) or not 0.0 <= confidence <= 1.0:
            raise ValidationError("confidence", f"must be between 0 and 1, got {confidence!r}")

        if not isinstance(recommendation.option_type, OptionType):
            raise ValidationError("option_type", f"must be CALL or PUT, got {recommendation.option_type!r}")

        price = recommendation.entry_price
        if not isinstance(price, (int, float)) or not math.isfinite(price) or price <= 0:
            raise ValidationError("entry_price", f"must be a positive price, got {price!r}")

        if not isinstance(recommendation.strike, (int, float)) or recommendation.strike <= 0:
            raise ValidationError("strike", f"must be positive, got {recommendation.strike!r}")

        if recommendation.liquidity.bid_ask_spread < 0:
            raise ValidationError("bid_ask_spread", "spread cannot be negative")

        if ensure_utc(recommendation.expiration) <= ensure_utc(now):
            raise ValidationError("expiration", "expiration must be in the future")

    def _publish_trade_failed(self, request: TradeRequest, reason: str, **extra: Any) -> None:
        data = {
            "ticker": getattr(request, "ticker", None),
            "signal_id": getattr(request, "signal_id", None),
            "requested_size": getattr(request, "position_size", None),
            "reason": reason,
        }
        data.update(extra)
        self.events.publish(events.TRADE_FAILED, data)

    # ------------------------------------------------------------------
    # Market data
    # ------------------------------------------------------------------

    def apply_market_tick(self, tick: MarketTick) -> TickResult:
        """
        Apply one market update to every open position on its ticker

        A repeat of the last tick (same timestamp and prices) or a tick
        older than the last one for the ticker is ignored.

        Args:
            tick: Market update

        Returns:
            TickResult listing updated and closed positions and exit signals
        """
        with self._lock:
            result = TickResult(ticker=tick.ticker)
            as_of = ensure_utc(tick.timestamp)

            last = self._market_data.get(tick.ticker)
            if last is not None and (last.same_content(tick) or as_of < ensure_utc(last.timestamp)):
                logger.debug(f"Ignoring stale or duplicate tick for {tick.ticker} at {as_of.isoformat()}")
                result.applied = False
                return result
            self._market_data[tick.ticker] = tick

            for position in self.account.positions_for_ticker(tick.ticker):
                price = tick.option_prices.get(position.symbol)
                if price is None:
                    continue

                previous = position.update_price(price, as_of)
                snapshot = self.tracker.record_tick(
                    position,
                    tick.underlying_price,
                    tick.implied_volatilities.get(position.symbol),
                    previous,
                    as_of,
                )
                result.updated_positions.append(position.position_id)

                self.events.publish(events.POSITION_UPDATED, {
                    "position_id": position.position_id,
                    "ticker": position.ticker,
                    "current_price": position.current_price,
                    "pnl": position.unrealized_pnl,
                    "pnl_percent": position.pnl_percent,
                    "greeks": snapshot.greeks.to_dict(),
                    "timestamp": as_of.isoformat(),
                })

            if result.updated_positions:
                self._refresh_metrics()

            for position in self.account.positions_for_ticker(tick.ticker):
                evaluation = self.exit_evaluator.evaluate(position, as_of)
                result.exit_signals.extend(evaluation.signals)
                if self._act_on_evaluation(evaluation, as_of):
                    result.closed_positions.append(position.position_id)

            result.closed_positions.extend(self._run_circuit_breakers(as_of, check_weekend=False))
            self._publish_portfolio_updated()

            return result

    # ------------------------------------------------------------------
    # Exits
    # ------------------------------------------------------------------

    def run_exit_sweep(self, now: Optional[datetime] = None) -> List[str]:
        """
        Evaluate exit rules for every open position against the clock

        Time-based rules (DTE, holding period, expiration) can fire without
        a new tick; this is the periodic path for them.

        Returns:
            Ids of positions closed by the sweep
        """
        with self._lock:
            now = ensure_utc(now or self.clock())
            closed: List[str] = []

            for position in self.account.open_positions():
                if not position.is_open:
                    continue
                evaluation = self.exit_evaluator.evaluate(position, now)
                if self._act_on_evaluation(evaluation, now):
                    closed.append(position.position_id)

            closed.extend(self._run_circuit_breakers(now, check_weekend=True))
            self._publish_portfolio_updated()

            if closed:
                logger.info(f"Exit sweep closed {len(closed)} position(s)")
            return closed

    def _act_on_evaluation(self, evaluation: ExitEvaluation, as_of: datetime) -> bool:
        """Publish every signal as a risk alert and auto-close if warranted"""
        for signal in evaluation.signals:
            self.events.publish(events.RISK_ALERT, {
                "source": "exit_rules",
                "position_id": signal.position_id,
                "urgency": signal.urgency.value,
                "message": signal.message,
                "signal": signal.to_dict(),
                "selected": signal is evaluation.selected,
            })

        if not evaluation.should_exit or evaluation.selected is None:
            return False

        selected = evaluation.selected
        logger.info(f"Auto-exit {selected.position_id}: {selected.reason.value} ({selected.message})")
        return self._close_position(selected.position_id, selected.reason, selected.exit_price, as_of)

    def close_position(
        self,
        position_id: str,
        reason: ExitReason = ExitReason.MANUAL,
        exit_price: Optional[float] = None,
    ) -> bool:
        """
        Close an open position

        Idempotent: unknown or already-closed ids return False.

        Args:
            position_id: Position to close
            reason: Exit reason (EXPIRATION marks it EXPIRED)
            exit_price: Explicit exit price; defaults to the current price,
                or intrinsic value when closing an expired contract

        Returns:
            True if this call closed the position
        """
        with self._lock:
            return self._close_position(position_id, reason, exit_price, ensure_utc(self.clock()))

    def _close_position(
        self,
        position_id: str,
        reason: ExitReason,
        exit_price: Optional[float],
        as_of: datetime,
    ) -> bool:
        position = self.account.get_position(position_id)
        if position is None or not position.is_open:
            logger.debug(f"Close ignored for {position_id}: not an open position")
            return False

        if exit_price is None:
            exit_price = self._default_exit_price(position, reason, as_of)

        position.close(exit_price, reason, as_of)
        self.account.remove_position(position_id)
        self.account.record_closed(position)
        self.exit_evaluator.remove_position(position_id)
        self.guardrails.record_trade_result(position.realized_pnl)
        self._refresh_metrics()

        self.events.publish(events.POSITION_CLOSED, {
            "position_id": position.position_id,
            "ticker": position.ticker,
            "symbol": position.symbol,
            "status": position.status.value,
            "exit_reason": reason.value,
            "exit_price": position.exit_price,
            "realized_pnl": position.realized_pnl,
            "pnl_percent": position.pnl_percent,
            "holding_hours": position.holding_hours(as_of),
            "timestamp": as_of.isoformat(),
        })

        logger.info(
            f"Closed {position_id} ({reason.value}) @ ${position.exit_price:.2f}: "
            f"{format_currency(position.realized_pnl)} ({position.pnl_percent:+.1f}%)"
        )
        return True

    def _default_exit_price(self, position: Position, reason: ExitReason, as_of: datetime) -> float:
        # Expired contracts settle at intrinsic value
        if (
            reason == ExitReason.EXPIRATION
            and as_of >= position.expiration
            and position.last_underlying_price is not None
        ):
            return intrinsic_value(position.option_type, position.strike, position.last_underlying_price)
        return position.current_price

    def force_close_all(self, reason: ExitReason = ExitReason.MANUAL) -> int:
        """
        Close every open position

        Returns:
            Number of positions this call actually closed
        """
        with self._lock:
            as_of = ensure_utc(self.clock())
            closed = sum(
                1 for position_id in list(self.account.positions)
                if self._close_position(position_id, reason, None, as_of)
            )
            if closed:
                logger.warning(f"Force-closed {closed} position(s): {reason.value}")
            return closed

    def reset_account(self, new_balance: Optional[float] = None) -> None:
        """
        Close everything (MANUAL) and start a fresh account

        Clears closed history, cached market data, exit conditions and
        circuit-breaker state.
        """
        balance = self.settings.initial_balance if new_balance is None else new_balance
        if not isinstance(balance, (int, float)) or not math.isfinite(balance) or balance <= 0:
            raise ValidationError("new_balance", f"must be a positive amount, got {balance!r}")

        with self._lock:
            self.force_close_all(ExitReason.MANUAL)
            self.account.reset(float(balance))
            self._market_data.clear()
            self.exit_evaluator.clear()
            self.guardrails.reset()
            self.risk_metrics = RiskMetrics()
            self._publish_portfolio_updated()

    # ------------------------------------------------------------------
    # Circuit breakers
    # ------------------------------------------------------------------

    def _run_circuit_breakers(self, now: datetime, check_weekend: bool) -> List[str]:
        status = self.guardrails.evaluate(
            self.account.portfolio_heat,
            self.account.current_drawdown,
            now if check_weekend else None,
        )

        for alert in status.alerts:
            self.events.publish(events.RISK_ALERT, {
                "source": "circuit_breaker",
                "urgency": Urgency.CRITICAL.value
                if CircuitBreakerAction.FORCE_CLOSE_ALL in status.actions else Urgency.HIGH.value,
                "message": alert,
            })

        closed: List[str] = []
        actions = status.actions

        if CircuitBreakerAction.FORCE_CLOSE_ALL in actions and self.settings.auto_emergency_exit:
            closed.extend(self._close_many(self.account.open_positions(), ExitReason.PORTFOLIO_HEAT, now))
        elif CircuitBreakerAction.REDUCE_HEAT in actions and self.settings.auto_heat_reduction:
            losers = sorted(
                (p for p in self.account.open_positions() if p.unrealized_pnl < 0),
                key=lambda p: p.unrealized_pnl,
            )
            closed.extend(self._close_many(losers[:2], ExitReason.RISK_MANAGEMENT, now))

        if CircuitBreakerAction.CLOSE_DEEP_LOSERS in actions:
            limit = -self.settings.drawdown_loser_percent
            deep = [p for p in self.account.open_positions() if p.pnl_percent < limit]
            closed.extend(self._close_many(deep, ExitReason.RISK_MANAGEMENT, now))

        if CircuitBreakerAction.WEEKEND_EXIT in actions:
            closed.extend(self._close_many(self.account.open_positions(), ExitReason.RISK_MANAGEMENT, now))

        return closed

    def _close_many(self, positions: List[Position], reason: ExitReason, as_of: datetime) -> List[str]:
        return [
            p.position_id for p in positions
            if self._close_position(p.position_id, reason, None, as_of)
        ]

    # ------------------------------------------------------------------
    # Metrics and read side
    # ------------------------------------------------------------------

    def _refresh_metrics(self) -> None:
        self.account.refresh_balances()
        self.risk_metrics = self.risk_aggregator.calculate(
            self.account.open_positions(),
            self.account.current_balance,
        )
        self.risk_aggregator.log_summary(self.risk_metrics, self.account.account_id)

    def _publish_portfolio_updated(self) -> None:
        self.events.publish(events.PORTFOLIO_UPDATED, {
            "account_id": self.account.account_id,
            "current_balance": self.account.current_balance,
            "available_balance": self.account.available_balance,
            "total_pnl": self.account.total_pnl,
            "portfolio_heat": self.account.portfolio_heat,
            "open_positions": len(self.account.positions),
            "risk_metrics": self.risk_metrics.to_dict(),
        })

    def get_account_summary(self) -> Dict[str, Any]:
        with self._lock:
            summary = self.account.summary()
            summary["risk_metrics"] = self.risk_metrics.to_dict()
            summary["circuit_breakers"] = self.guardrails.get_limits_summary()
            summary["exit_rules"] = self.exit_evaluator.get_stats()
            return summary

    def get_open_positions(self) -> List[Position]:
        with self._lock:
            return self.account.open_positions()

    def get_positions_by_ticker(self, ticker: str) -> List[Position]:
        with self._lock:
            return self.account.positions_for_ticker(ticker)

    def get_closed_positions(self) -> List[Position]:
        with self._lock:
            return list(self.account.closed_positions)

    def get_position(self, position_id: str) -> Optional[Position]:
        """Open or closed position by id"""
        with self._lock:
            position = self.account.get_position(position_id)
            if position is not None:
                return position
            return next((p for p in self.account.closed_positions if p.position_id == position_id), None)

    def get_risk_metrics(self) -> RiskMetrics:
        with self._lock:
            return self.risk_metrics

    def get_market_data(self, ticker: str) -> Optional[MarketTick]:
        with self._lock:
            return self._market_data.get(ticker)

    def drain_events(self) -> List[DomainEvent]:
        """Events emitted since the last drain, oldest first"""
        return self.events.drain()

    def snapshot(self) -> List[Dict[str, Any]]:
        """Serializable view of open positions (used on shutdown)"""
        with self._lock:
            return [p.to_dict() for p in self.account.open_positions()]
