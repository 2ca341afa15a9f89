"""
Exit Rule Evaluator

Per-position, priority-ordered exit rules for long options:
- Profit target and hard stop loss on P&L %
- Trailing stop from a per-position high-water mark
- Time decay and expiration checks using DTE and holding time
- Breakeven stop that arms itself once the position has been profitable

Every evaluation reports all fired signals and selects one to act on:
highest urgency first, then the lowest static priority.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from loguru import logger

from .models import ExitReason, Urgency

if TYPE_CHECKING:
    from ..config.settings import Settings
    from .virtual_portfolio import Position


class ExitConditionType(Enum):
    PROFIT_TARGET = "PROFIT_TARGET"
    STOP_LOSS = "STOP_LOSS"
    TRAILING_STOP = "TRAILING_STOP"
    TIME_DECAY = "TIME_DECAY"
    EXPIRATION = "EXPIRATION"
    BREAKEVEN_STOP = "BREAKEVEN_STOP"


class ConditionState(Enum):
    """Data-driven state of a condition (only the breakeven stop starts DISABLED)"""
    DISABLED = "DISABLED"
    ARMED = "ARMED"
    FIRED = "FIRED"


# Lower number = more important when urgencies tie
CONDITION_PRIORITY: Dict[ExitConditionType, int] = {
    ExitConditionType.PROFIT_TARGET: 1,
    ExitConditionType.STOP_LOSS: 2,
    ExitConditionType.TRAILING_STOP: 3,
    ExitConditionType.TIME_DECAY: 4,
    ExitConditionType.EXPIRATION: 5,
    ExitConditionType.BREAKEVEN_STOP: 6,
}


@dataclass
class ExitCondition:
    """One exit rule bound to a position"""
    condition_type: ExitConditionType
    parameters: Dict[str, Any] = field(default_factory=dict)
    enabled: bool = True
    state: ConditionState = ConditionState.ARMED

    @property
    def priority(self) -> int:
        return CONDITION_PRIORITY[self.condition_type]


@dataclass
class ExitSignal:
    """A fired exit rule"""
    position_id: str
    condition_type: ExitConditionType
    reason: ExitReason
    exit_price: float
    confidence: float
    urgency: Urgency
    message: str

    @property
    def priority(self) -> int:
        return CONDITION_PRIORITY[self.condition_type]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "position_id": self.position_id,
            "condition_type": self.condition_type.value,
            "reason": self.reason.value,
            "exit_price": self.exit_price,
            "confidence": self.confidence,
            "urgency": self.urgency.value,
            "message": self.message,
        }


@dataclass
class ExitContext:
    """Position state the rules need, captured at one instant"""
    position_id: str
    entry_price: float
    current_price: float
    pnl: float
    pnl_percent: float
    days_to_expiration: float
    hours_to_expiration: float
    holding_hours: float
    theta: float

    @classmethod
    def from_position(cls, position: "Position", now: datetime) -> "ExitContext":
        return cls(
            position_id=position.position_id,
            entry_price=position.entry_price,
            current_price=position.current_price,
            pnl=position.unrealized_pnl,
            pnl_percent=position.pnl_percent,
            days_to_expiration=position.days_to_expiration(now),
            hours_to_expiration=position.hours_to_expiration(now),
            holding_hours=position.holding_hours(now),
            theta=position.current_greeks.theta,
        )


@dataclass
class ExitEvaluation:
    """Outcome of evaluating one position"""
    position_id: str
    signals: List[ExitSignal] = field(default_factory=list)
    selected: Optional[ExitSignal] = None
    should_exit: bool = False


@dataclass
class ExitProfile:
    """Thresholds picked by signal confidence when tiered exits are enabled"""
    profit_target_percent: float
    stop_loss_percent: float
    trailing_stop_percent: float
    time_decay_threshold: float


@dataclass
class ExitConditionConfig:
    profit_target_percent: float = 50.0
    stop_loss_percent: float = 50.0
    trailing_stop_percent: float = 20.0
    breakeven_stop_enabled: bool = True
    time_decay_dte: float = 7.0
    theta_decay_threshold: float = 0.30
    max_holding_period_hours: float = 72.0
    expiration_warning_days: float = 2.0
    force_exit_before_expiration_hours: float = 4.0
    enable_auto_exit: bool = True
    auto_exit_min_confidence: float = 0.8

    # Confidence tiers
    confidence_based_exits: bool = False
    high_confidence_threshold: float = 0.8
    medium_confidence_threshold: float = 0.6
    breakeven_min_confidence: float = 0.7
    high_confidence_profile: ExitProfile = field(default_factory=lambda: ExitProfile(75.0, 40.0, 25.0, 0.25))
    medium_confidence_profile: ExitProfile = field(default_factory=lambda: ExitProfile(50.0, 50.0, 30.0, 0.30))
    low_confidence_profile: ExitProfile = field(default_factory=lambda: ExitProfile(30.0, 60.0, 35.0, 0.35))

    @classmethod
    def from_settings(cls, settings: "Settings") -> "ExitConditionConfig":
        return cls(
            profit_target_percent=settings.profit_target_percent,
            stop_loss_percent=settings.stop_loss_percent,
            trailing_stop_percent=settings.trailing_stop_percent,
            breakeven_stop_enabled=settings.breakeven_stop_enabled,
            time_decay_dte=settings.time_decay_dte,
            theta_decay_threshold=settings.theta_decay_threshold,
            max_holding_period_hours=settings.max_holding_period_hours,
            expiration_warning_days=settings.expiration_warning_days,
            force_exit_before_expiration_hours=settings.force_exit_before_expiration_hours,
            enable_auto_exit=settings.enable_auto_exit,
            auto_exit_min_confidence=settings.auto_exit_min_confidence,
            confidence_based_exits=settings.confidence_based_exits,
            high_confidence_threshold=settings.high_confidence_threshold,
            medium_confidence_threshold=settings.medium_confidence_threshold,
        )

    def profile_for(self, confidence: float) -> ExitProfile:
        if not self.confidence_based_exits:
            return ExitProfile(
                self.profit_target_percent,
                self.stop_loss_percent,
                self.trailing_stop_percent,
                self.theta_decay_threshold,
            )
        if confidence >= self.high_confidence_threshold:
            return self.high_confidence_profile
        if confidence >= self.medium_confidence_threshold:
            return self.medium_confidence_profile
        return self.low_confidence_profile


class ExitRuleEvaluator:
    """
    Holds the exit conditions of every open position and evaluates them

    The evaluator never closes anything itself; the engine acts on
    ``ExitEvaluation.should_exit``.
    """

    def __init__(self, config: Optional[ExitConditionConfig] = None):
        self.config = config or ExitConditionConfig()
        self._conditions: Dict[str, Dict[ExitConditionType, ExitCondition]] = {}
        self._signals_generated = 0
        self._auto_exits_recommended = 0

    def register_position(self, position: "Position") -> List[ExitCondition]:
        """Create the condition set for a newly opened position"""
        profile = self.config.profile_for(position.confidence)

        breakeven_enabled = self.config.breakeven_stop_enabled
        if self.config.confidence_based_exits:
            breakeven_enabled = breakeven_enabled and position.confidence >= self.config.breakeven_min_confidence

        conditions = [
            ExitCondition(
                ExitConditionType.PROFIT_TARGET,
                {"target_percent": profile.profit_target_percent},
            ),
            ExitCondition(
                ExitConditionType.STOP_LOSS,
                {"stop_percent": profile.stop_loss_percent},
            ),
            ExitCondition(
                ExitConditionType.TRAILING_STOP,
                {
                    "trailing_percent": profile.trailing_stop_percent,
                    "high_water_mark": position.entry_price,
                },
            ),
            ExitCondition(
                ExitConditionType.TIME_DECAY,
                {
                    "dte_threshold": self.config.time_decay_dte,
                    "decay_threshold": profile.time_decay_threshold,
                    "max_holding_hours": self.config.max_holding_period_hours,
                    "force_exit_hours": self.config.force_exit_before_expiration_hours,
                },
            ),
            ExitCondition(
                ExitConditionType.EXPIRATION,
                {
                    "warning_days": self.config.expiration_warning_days,
                    "force_exit_hours": self.config.force_exit_before_expiration_hours,
                },
            ),
            ExitCondition(
                ExitConditionType.BREAKEVEN_STOP,
                enabled=breakeven_enabled,
                state=ConditionState.DISABLED,
            ),
        ]

        self._conditions[position.position_id] = {c.condition_type: c for c in conditions}
        logger.debug(
            f"Registered {len(conditions)} exit conditions for {position.position_id} "
            f"(target {profile.profit_target_percent}%, stop {profile.stop_loss_percent}%)"
        )
        return conditions

    def remove_position(self, position_id: str) -> None:
        self._conditions.pop(position_id, None)

    def clear(self) -> None:
        self._conditions.clear()
        self._signals_generated = 0
        self._auto_exits_recommended = 0

    def evaluate(self, position: "Position", now: datetime) -> ExitEvaluation:
        """
        Evaluate every enabled condition of a position

        Args:
            position: Open position, already marked to the latest price
            now: Time used for DTE and holding-period rules

        Returns:
            ExitEvaluation with all fired signals and the selected one
        """
        evaluation = ExitEvaluation(position_id=position.position_id)
        conditions = self._conditions.get(position.position_id)
        if not conditions:
            return evaluation

        ctx = ExitContext.from_position(position, now)

        for condition in conditions.values():
            if not condition.enabled:
                continue
            signal = self._evaluate_condition(condition, ctx)
            if signal is not None:
                evaluation.signals.append(signal)

        if not evaluation.signals:
            return evaluation

        self._signals_generated += len(evaluation.signals)
        evaluation.selected = min(evaluation.signals, key=lambda s: (-s.urgency.rank, s.priority))
        evaluation.should_exit = (
            self.config.enable_auto_exit
            and evaluation.selected.confidence >= self.config.auto_exit_min_confidence
        )
        if evaluation.should_exit:
            self._auto_exits_recommended += 1

        logger.info(f"Exit signal for {position.position_id}: {evaluation.selected.message}")
        return evaluation

    def _evaluate_condition(self, condition: ExitCondition, ctx: ExitContext) -> Optional[ExitSignal]:
        checks = {
            ExitConditionType.PROFIT_TARGET: self._check_profit_target,
            ExitConditionType.STOP_LOSS: self._check_stop_loss,
            ExitConditionType.TRAILING_STOP: self._check_trailing_stop,
            ExitConditionType.TIME_DECAY: self._check_time_decay,
            ExitConditionType.EXPIRATION: self._check_expiration,
            ExitConditionType.BREAKEVEN_STOP: self._check_breakeven_stop,
        }
        return checks[condition.condition_type](condition, ctx)

    def _signal(
        self,
        condition: ExitCondition,
        ctx: ExitContext,
        reason: ExitReason,
        confidence: float,
        urgency: Urgency,
        message: str,
    ) -> ExitSignal:
        return ExitSignal(
            position_id=ctx.position_id,
            condition_type=condition.condition_type,
            reason=reason,
            exit_price=ctx.current_price,
            confidence=confidence,
            urgency=urgency,
            message=message,
        )

    def _check_profit_target(self, condition: ExitCondition, ctx: ExitContext) -> Optional[ExitSignal]:
        target = condition.parameters["target_percent"]
        if ctx.pnl_percent >= target:
            return self._signal(
                condition, ctx, ExitReason.PROFIT_TARGET, 0.9, Urgency.HIGH,
                f"Profit target of {target}% reached (current: {ctx.pnl_percent:.1f}%)",
            )
        return None

    def _check_stop_loss(self, condition: ExitCondition, ctx: ExitContext) -> Optional[ExitSignal]:
        stop = abs(condition.parameters["stop_percent"])
        if ctx.pnl_percent <= -stop:
            return self._signal(
                condition, ctx, ExitReason.STOP_LOSS, 0.95, Urgency.CRITICAL,
                f"Stop loss of {stop}% hit (current: {abs(ctx.pnl_percent):.1f}% loss)",
            )
        return None

    def _check_trailing_stop(self, condition: ExitCondition, ctx: ExitContext) -> Optional[ExitSignal]:
        params = condition.parameters
        high_water_mark = params.get("high_water_mark") or ctx.entry_price

        if ctx.current_price > high_water_mark:
            params["high_water_mark"] = ctx.current_price
            return None

        drop_percent = (high_water_mark - ctx.current_price) / high_water_mark * 100
        if drop_percent >= params["trailing_percent"] and ctx.pnl > 0:
            # Trailing stop is reported as a stop loss
            return self._signal(
                condition, ctx, ExitReason.STOP_LOSS, 0.8, Urgency.HIGH,
                f"Trailing stop triggered: {drop_percent:.1f}% drop from high of ${high_water_mark:.2f}",
            )
        return None

    def _check_time_decay(self, condition: ExitCondition, ctx: ExitContext) -> Optional[ExitSignal]:
        params = condition.parameters

        # Inside the force-exit window the expiration rule owns the exit
        in_force_window = ctx.hours_to_expiration < params.get("force_exit_hours", 0.0)

        if ctx.days_to_expiration < params["dte_threshold"] and not in_force_window and ctx.current_price > 0:
            decay_ratio = abs(ctx.theta) / ctx.current_price
            if decay_ratio > params["decay_threshold"]:
                return self._signal(
                    condition, ctx, ExitReason.TIME_DECAY, 0.85, Urgency.HIGH,
                    f"Theta decay {decay_ratio:.0%} of option value per day",
                )

        if ctx.holding_hours > params["max_holding_hours"]:
            return self._signal(
                condition, ctx, ExitReason.TIME_DECAY, 0.8, Urgency.MEDIUM,
                f"Held {ctx.holding_hours:.1f}h, over the {params['max_holding_hours']}h limit",
            )
        return None

    def _check_expiration(self, condition: ExitCondition, ctx: ExitContext) -> Optional[ExitSignal]:
        params = condition.parameters

        if ctx.hours_to_expiration <= 0:
            return self._signal(
                condition, ctx, ExitReason.EXPIRATION, 1.0, Urgency.CRITICAL,
                "Option has expired",
            )
        if ctx.hours_to_expiration < params["force_exit_hours"]:
            return self._signal(
                condition, ctx, ExitReason.EXPIRATION, 0.9, Urgency.HIGH,
                f"Expires in {ctx.hours_to_expiration:.1f}h - forcing exit",
            )
        if ctx.days_to_expiration < params["warning_days"]:
            return self._signal(
                condition, ctx, ExitReason.EXPIRATION, 0.5, Urgency.LOW,
                f"Expires in {ctx.days_to_expiration:.1f} days",
            )
        return None

    def _check_breakeven_stop(self, condition: ExitCondition, ctx: ExitContext) -> Optional[ExitSignal]:
        if ctx.pnl > 0:
            if condition.state != ConditionState.ARMED:
                logger.debug(f"Breakeven stop armed for {ctx.position_id}")
            condition.state = ConditionState.ARMED
            return None

        if condition.state == ConditionState.ARMED:
            condition.state = ConditionState.FIRED
            return self._signal(
                condition, ctx, ExitReason.STOP_LOSS, 0.7, Urgency.MEDIUM,
                "Breakeven stop triggered - protecting against loss after profit",
            )
        return None

    def update_condition(
        self,
        position_id: str,
        condition_type: ExitConditionType,
        parameters: Dict[str, Any],
    ) -> bool:
        """Merge new parameters into a condition; False if it doesn't exist"""
        condition = self._conditions.get(position_id, {}).get(condition_type)
        if condition is None:
            return False
        condition.parameters.update(parameters)
        logger.info(f"Updated {condition_type.value} condition for {position_id}")
        return True

    def enable_condition(self, position_id: str, condition_type: ExitConditionType) -> bool:
        return self._set_enabled(position_id, condition_type, True)

    def disable_condition(self, position_id: str, condition_type: ExitConditionType) -> bool:
        return self._set_enabled(position_id, condition_type, False)

    def _set_enabled(self, position_id: str, condition_type: ExitConditionType, enabled: bool) -> bool:
        condition = self._conditions.get(position_id, {}).get(condition_type)
        if condition is None:
            return False
        condition.enabled = enabled
        logger.info(f"{'Enabled' if enabled else 'Disabled'} {condition_type.value} condition for {position_id}")
        return True

    def get_conditions(self, position_id: str) -> List[ExitCondition]:
        conditions = self._conditions.get(position_id, {})
        return sorted(conditions.values(), key=lambda c: c.priority)

    def get_stats(self) -> Dict[str, int]:
        return {
            "positions_monitored": len(self._conditions),
            "active_conditions": sum(
                1 for conditions in self._conditions.values() for c in conditions.values() if c.enabled
            ),
            "signals_generated": self._signals_generated,
            "auto_exits_recommended": self._auto_exits_recommended,
        }
