"""
Virtual Portfolio

Positions and the paper account that owns them. The account keeps an arena
of open positions keyed by id plus a ticker -> id-set index, and updates
both inside the same method so they never disagree.
"""

import math
import statistics
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Deque, Dict, List, Optional, Set

from loguru import logger

from ..utils.helpers import ensure_utc
from .errors import PositionClosedError
from .greeks import days_to_expiry
from .models import (
    CONTRACT_MULTIPLIER,
    ExecutionDetails,
    ExitReason,
    GreeksSnapshot,
    OptionsGreeks,
    OptionType,
    PositionStatus,
    TimeDecaySnapshot,
    VolatilitySnapshot,
)


@dataclass
class Position:
    """
    One simulated long option holding

    Mutable while OPEN. ``close()`` stamps the exit fields and seals the
    instance; any later attribute assignment raises PositionClosedError.
    """
    position_id: str
    ticker: str
    symbol: str
    option_type: OptionType
    strike: float
    expiration: datetime
    signal_id: str
    quantity: int
    entry_price: float
    entry_time: datetime
    execution: ExecutionDetails
    entry_greeks: OptionsGreeks = field(default_factory=OptionsGreeks)
    current_greeks: OptionsGreeks = field(default_factory=OptionsGreeks)
    confidence: float = 0.0
    expected_move: float = 0.0

    # Quantitative state
    current_price: float = 0.0
    unrealized_pnl: float = 0.0
    realized_pnl: float = 0.0
    pnl_percent: float = 0.0
    max_favorable_excursion: float = 0.0
    max_adverse_excursion: float = 0.0
    last_underlying_price: Optional[float] = None
    last_update: Optional[datetime] = None

    # Lifecycle
    status: PositionStatus = PositionStatus.OPEN
    exit_time: Optional[datetime] = None
    exit_price: Optional[float] = None
    exit_reason: Optional[ExitReason] = None

    # Bounded histories (FIFO eviction at history_limit)
    history_limit: int = 100
    greeks_history: Deque[GreeksSnapshot] = field(default=None)
    time_decay_history: Deque[TimeDecaySnapshot] = field(default=None)
    volatility_history: Deque[VolatilitySnapshot] = field(default=None)

    def __post_init__(self):
        self.expiration = ensure_utc(self.expiration)
        self.entry_time = ensure_utc(self.entry_time)
        if not self.current_price:
            self.current_price = self.entry_price
        self.greeks_history = deque(self.greeks_history or (), maxlen=self.history_limit)
        self.time_decay_history = deque(self.time_decay_history or (), maxlen=self.history_limit)
        self.volatility_history = deque(self.volatility_history or (), maxlen=self.history_limit)

    def __setattr__(self, name: str, value: Any) -> None:
        if self.__dict__.get("_sealed", False):
            raise PositionClosedError(self.position_id, name)
        object.__setattr__(self, name, value)

    @property
    def is_open(self) -> bool:
        return self.status == PositionStatus.OPEN

    @property
    def entry_cost(self) -> float:
        """Capital committed at entry"""
        return self.entry_price * self.quantity * CONTRACT_MULTIPLIER

    @property
    def notional(self) -> float:
        """Current market value of the holding"""
        return self.current_price * self.quantity * CONTRACT_MULTIPLIER

    @property
    def pnl(self) -> float:
        return self.unrealized_pnl if self.is_open else self.realized_pnl

    def update_price(self, price: float, as_of: Optional[datetime] = None) -> float:
        """
        Mark the position to a new option price

        Args:
            price: New option price (>= 0)
            as_of: Time of the update

        Returns:
            The previous price
        """
        previous = self.current_price
        self.current_price = max(0.0, price)
        self.unrealized_pnl = (self.current_price - self.entry_price) * self.quantity * CONTRACT_MULTIPLIER
        self.pnl_percent = (self.current_price - self.entry_price) / self.entry_price * 100

        if self.unrealized_pnl > self.max_favorable_excursion:
            self.max_favorable_excursion = self.unrealized_pnl
        if self.unrealized_pnl < self.max_adverse_excursion:
            self.max_adverse_excursion = self.unrealized_pnl

        if as_of is not None:
            self.last_update = ensure_utc(as_of)

        return previous

    def days_to_expiration(self, as_of: datetime) -> float:
        return days_to_expiry(self.expiration, as_of)

    def hours_to_expiration(self, as_of: datetime) -> float:
        return self.days_to_expiration(as_of) * 24

    def holding_hours(self, as_of: datetime) -> float:
        return (ensure_utc(as_of) - self.entry_time).total_seconds() / 3600

    def close(self, exit_price: float, reason: ExitReason, as_of: datetime) -> None:
        """
        Transition OPEN -> CLOSED/EXPIRED and seal the position

        Raises:
            PositionClosedError: If the position is already closed
        """
        if not self.is_open:
            raise PositionClosedError(self.position_id, "status")

        self.update_price(exit_price, as_of)
        self.realized_pnl = self.unrealized_pnl
        self.unrealized_pnl = 0.0
        self.exit_price = self.current_price
        self.exit_time = ensure_utc(as_of)
        self.exit_reason = reason
        self.status = PositionStatus.EXPIRED if reason == ExitReason.EXPIRATION else PositionStatus.CLOSED

        # Freeze histories so the sealed record is fully read-only
        self.greeks_history = tuple(self.greeks_history)
        self.time_decay_history = tuple(self.time_decay_history)
        self.volatility_history = tuple(self.volatility_history)
        object.__setattr__(self, "_sealed", True)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "position_id": self.position_id,
            "ticker": self.ticker,
            "symbol": self.symbol,
            "option_type": self.option_type.value,
            "strike": self.strike,
            "expiration": self.expiration.isoformat(),
            "signal_id": self.signal_id,
            "quantity": self.quantity,
            "entry_price": self.entry_price,
            "entry_time": self.entry_time.isoformat(),
            "current_price": self.current_price,
            "unrealized_pnl": self.unrealized_pnl,
            "realized_pnl": self.realized_pnl,
            "pnl_percent": self.pnl_percent,
            "max_favorable_excursion": self.max_favorable_excursion,
            "max_adverse_excursion": self.max_adverse_excursion,
            "status": self.status.value,
            "exit_time": self.exit_time.isoformat() if self.exit_time else None,
            "exit_price": self.exit_price,
            "exit_reason": self.exit_reason.value if self.exit_reason else None,
            "entry_greeks": self.entry_greeks.to_dict(),
            "current_greeks": self.current_greeks.to_dict(),
            "execution": self.execution.to_dict(),
        }


@dataclass
class TickerPerformance:
    """Closed-trade statistics for one ticker"""
    ticker: str
    trades: int = 0
    wins: int = 0
    total_pnl: float = 0.0

    @property
    def win_rate(self) -> float:
        return self.wins / self.trades if self.trades else 0.0

    @property
    def average_pnl(self) -> float:
        return self.total_pnl / self.trades if self.trades else 0.0


@dataclass
class PerformanceMetrics:
    """Closed-trade performance of the account"""
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: float = 0.0
    average_win: float = 0.0
    average_loss: float = 0.0
    profit_factor: float = 0.0
    sharpe_ratio: float = 0.0
    average_holding_hours: float = 0.0
    best_trade: float = 0.0
    worst_trade: float = 0.0
    by_ticker: Dict[str, TickerPerformance] = field(default_factory=dict)

    @classmethod
    def from_closed(cls, closed: List[Position]) -> "PerformanceMetrics":
        """Compute metrics from closed positions"""
        if not closed:
            return cls()

        pnls = [p.realized_pnl for p in closed]
        wins = [pnl for pnl in pnls if pnl > 0]
        losses = [pnl for pnl in pnls if pnl <= 0]

        win_total = sum(wins)
        loss_total = abs(sum(losses))
        if loss_total > 0:
            profit_factor = win_total / loss_total
        else:
            profit_factor = math.inf if win_total > 0 else 0.0

        # Per-trade returns as fractions
        returns = [p.pnl_percent / 100 for p in closed]
        if len(returns) > 1:
            stdev = statistics.stdev(returns)
            sharpe = statistics.mean(returns) / stdev if stdev > 0 else 0.0
        else:
            sharpe = 0.0

        by_ticker: Dict[str, TickerPerformance] = {}
        for p in closed:
            stats = by_ticker.setdefault(p.ticker, TickerPerformance(ticker=p.ticker))
            stats.trades += 1
            stats.total_pnl += p.realized_pnl
            if p.realized_pnl > 0:
                stats.wins += 1

        holding = [p.holding_hours(p.exit_time) for p in closed if p.exit_time is not None]

        return cls(
            total_trades=len(closed),
            winning_trades=len(wins),
            losing_trades=len(losses),
            win_rate=len(wins) / len(closed),
            average_win=statistics.mean(wins) if wins else 0.0,
            average_loss=statistics.mean(losses) if losses else 0.0,
            profit_factor=profit_factor,
            sharpe_ratio=sharpe,
            average_holding_hours=statistics.mean(holding) if holding else 0.0,
            best_trade=max(pnls),
            worst_trade=min(pnls),
            by_ticker=by_ticker,
        )


class PaperAccount:
    """
    Balances and positions of one simulated trader

    Balances:
    - current = initial + realized + unrealized P&L
    - available = initial + realized - entry cost of open positions

    The engine serializes access; the account itself does no locking.
    """

    def __init__(self, account_id: str, initial_balance: float):
        self.account_id = account_id
        self._reset_state(initial_balance)

    def _reset_state(self, initial_balance: float) -> None:
        self.initial_balance = initial_balance
        self.current_balance = initial_balance
        self.available_balance = initial_balance
        self.realized_pnl = 0.0
        self.total_pnl = 0.0
        self.total_pnl_percent = 0.0
        self.portfolio_heat = 0.0
        self.peak_balance = initial_balance
        self.max_drawdown = 0.0
        self.max_drawdown_percent = 0.0

        self.positions: Dict[str, Position] = {}
        self.positions_by_ticker: Dict[str, Set[str]] = {}
        self.closed_positions: List[Position] = []
        self.performance = PerformanceMetrics()

    def reset(self, initial_balance: float) -> None:
        """Discard all positions and history and start over"""
        self._reset_state(initial_balance)
        logger.info(f"Account {self.account_id} reset to ${initial_balance:,.2f}")

    # ------------------------------------------------------------------
    # Arena + ticker index
    # ------------------------------------------------------------------

    def add_position(self, position: Position) -> None:
        """Store an open position under both indices and commit its capital"""
        if position.position_id in self.positions:
            raise ValueError(f"Duplicate position id {position.position_id}")

        self.positions[position.position_id] = position
        self.positions_by_ticker.setdefault(position.ticker, set()).add(position.position_id)
        self.available_balance -= position.entry_cost

    def remove_position(self, position_id: str) -> Optional[Position]:
        """Take a position out of both indices; returns None if not open"""
        position = self.positions.pop(position_id, None)
        if position is None:
            return None

        bucket = self.positions_by_ticker.get(position.ticker)
        if bucket is not None:
            bucket.discard(position_id)
            if not bucket:
                del self.positions_by_ticker[position.ticker]

        return position

    def record_closed(self, position: Position) -> None:
        """Book a closed position's result and release its capital"""
        self.closed_positions.append(position)
        self.realized_pnl += position.realized_pnl
        self.available_balance += position.entry_cost + position.realized_pnl
        self.performance = PerformanceMetrics.from_closed(self.closed_positions)

    def get_position(self, position_id: str) -> Optional[Position]:
        return self.positions.get(position_id)

    def open_positions(self) -> List[Position]:
        return list(self.positions.values())

    def positions_for_ticker(self, ticker: str) -> List[Position]:
        ids = self.positions_by_ticker.get(ticker, set())
        return [self.positions[pid] for pid in sorted(ids)]

    def check_consistency(self) -> bool:
        """Every open position is in the id map and exactly one ticker bucket"""
        indexed = [pid for ids in self.positions_by_ticker.values() for pid in ids]
        if len(indexed) != len(set(indexed)) or set(indexed) != set(self.positions):
            return False

        for ticker, ids in self.positions_by_ticker.items():
            for pid in ids:
                position = self.positions[pid]
                if position.ticker != ticker or not position.is_open:
                    return False
        return True

    # ------------------------------------------------------------------
    # Aggregates
    # ------------------------------------------------------------------

    @property
    def unrealized_pnl(self) -> float:
        return sum(p.unrealized_pnl for p in self.positions.values())

    @property
    def open_notional(self) -> float:
        return sum(p.notional for p in self.positions.values())

    @property
    def committed_capital(self) -> float:
        return sum(p.entry_cost for p in self.positions.values())

    def ticker_notional(self, ticker: str) -> float:
        return sum(p.notional for p in self.positions_for_ticker(ticker))

    @property
    def current_drawdown(self) -> float:
        """Fractional drop of the current balance from its peak"""
        if self.peak_balance <= 0:
            return 0.0
        return max(0.0, (self.peak_balance - self.current_balance) / self.peak_balance)

    def refresh_balances(self) -> None:
        """Recompute balances, heat and drawdown from the positions"""
        self.current_balance = self.initial_balance + self.realized_pnl + self.unrealized_pnl
        self.total_pnl = self.current_balance - self.initial_balance
        self.total_pnl_percent = self.total_pnl / self.initial_balance * 100 if self.initial_balance else 0.0
        self.portfolio_heat = self.open_notional / self.current_balance if self.current_balance > 0 else 0.0

        if self.current_balance > self.peak_balance:
            self.peak_balance = self.current_balance

        drawdown = self.peak_balance - self.current_balance
        if drawdown > self.max_drawdown:
            self.max_drawdown = drawdown
            self.max_drawdown_percent = drawdown / self.peak_balance * 100 if self.peak_balance else 0.0

    def summary(self) -> Dict[str, Any]:
        perf = self.performance
        return {
            "account_id": self.account_id,
            "initial_balance": self.initial_balance,
            "current_balance": self.current_balance,
            "available_balance": self.available_balance,
            "realized_pnl": self.realized_pnl,
            "unrealized_pnl": self.unrealized_pnl,
            "total_pnl": self.total_pnl,
            "total_pnl_percent": self.total_pnl_percent,
            "portfolio_heat": self.portfolio_heat,
            "max_drawdown": self.max_drawdown,
            "max_drawdown_percent": self.max_drawdown_percent,
            "open_positions": len(self.positions),
            "closed_positions": len(self.closed_positions),
            "performance": {
                "total_trades": perf.total_trades,
                "win_rate": perf.win_rate,
                "profit_factor": perf.profit_factor,
                "sharpe_ratio": perf.sharpe_ratio,
                "average_holding_hours": perf.average_holding_hours,
                "by_ticker": {
                    t: {"trades": s.trades, "win_rate": s.win_rate, "total_pnl": s.total_pnl}
                    for t, s in perf.by_ticker.items()
                },
            },
        }
