"""Shared data models for the funding sniper bot.

CRITICAL: All monetary values use Decimal. Never use float for prices, quantities, or fees.
All timestamps are integer Unix milliseconds, matching the exchange.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from funding_sniper.exchange.types import InstrumentPrecision
    from funding_sniper.position.profit_check import DeferredCheck


class OrderSide(str, Enum):
    """Order direction."""

    BUY = "buy"
    SELL = "sell"


class PositionSide(str, Enum):
    """Position direction. Fixed for the lifetime of a run."""

    LONG = "long"
    SHORT = "short"

    @property
    def entry_order_side(self) -> OrderSide:
        return OrderSide.BUY if self is PositionSide.LONG else OrderSide.SELL

    @property
    def exit_order_side(self) -> OrderSide:
        return OrderSide.SELL if self is PositionSide.LONG else OrderSide.BUY

    @property
    def direction(self) -> Decimal:
        """+1 for LONG, -1 for SHORT. Multiplies price moves into PnL."""
        return Decimal("1") if self is PositionSide.LONG else Decimal("-1")


class EntryTimingPolicy(str, Enum):
    """When, relative to the funding instant, an entry may fire."""

    PRE_FUNDING = "pre_funding"
    POST_FUNDING = "post_funding"
    IMMEDIATE = "immediate"


class ExitPolicy(str, Enum):
    """How an open position is taken off."""

    FIXED_BRACKET = "fixed_bracket"  # stop-loss + take-profit orders
    PROFIT_CHECK = "post_funding_profit_check"  # stop-loss + one deferred net PnL check


class PositionState(str, Enum):
    """Lifecycle state of the single live position. EMPTY is represented by None."""

    OPENING = "opening"
    OPEN = "open"
    PROFIT_CHECK_PENDING = "profit_check_pending"
    CLOSING = "closing"
    EMERGENCY_UNWIND = "emergency_unwind"


class CloseReason(str, Enum):
    """Why a position left the book."""

    STOP_HIT = "stop_hit"
    TAKE_PROFIT_HIT = "take_profit_hit"
    CLOSED_AFTER_PROFIT_CHECK = "closed_after_profit_check"
    CLOSED_OTHER = "closed_other"
    CLOSED_UNKNOWN = "closed_unknown"
    EMERGENCY_UNWIND = "emergency_unwind"


class ProfitDecision(str, Enum):
    """Outcome of a deferred profit check."""

    CLOSE = "close"
    HOLD = "hold"
    STALE = "stale"


@dataclass
class FundingRateData:
    """One row of the funding snapshot for a perpetual contract."""

    symbol: str
    rate: Decimal
    mark_price: Decimal
    next_funding_time: int  # Unix milliseconds


@dataclass
class TradeMetrics:
    """Sizing, protection and expected economics for a prospective entry."""

    notional: Decimal
    quantity: Decimal
    entry_fee: Decimal
    stop_loss_price: Decimal
    take_profit_price: Decimal | None
    estimated_funding_gain: Decimal
    estimated_loss_at_stop: Decimal
    estimated_profit_at_target: Decimal | None = None


@dataclass
class Candidate:
    """A ranked opportunity. Lives for a single poll cycle."""

    symbol: str
    funding_rate: Decimal
    next_funding_time: int
    mark_price: Decimal
    metrics: TradeMetrics
    ms_to_funding: int  # negative once funding has happened
    precision: InstrumentPrecision


@dataclass
class OrderFill:
    """Result of a market order."""

    order_id: str
    symbol: str
    side: OrderSide
    filled_qty: Decimal
    average_price: Decimal | None
    timestamp: int


@dataclass
class OrderAck:
    """Acknowledgement of a resting (stop / take-profit) order."""

    order_id: str
    symbol: str


@dataclass
class ExchangePosition:
    """Authoritative position as reported by the exchange."""

    symbol: str
    size: Decimal  # signed: positive long, negative short
    mark_price: Decimal
    unrealized_pnl: Decimal


@dataclass
class TradeFill:
    """A single execution from the account's trade history."""

    order_id: str
    side: OrderSide
    price: Decimal
    quantity: Decimal
    realized_pnl: Decimal
    timestamp: int


@dataclass
class Position:
    """The single in-flight position.

    funding_rate and entry_fee are frozen at open time and never re-derived.
    """

    symbol: str
    side: PositionSide
    entry_price: Decimal
    quantity: Decimal
    entry_time: int
    funding_time: int
    funding_rate: Decimal
    entry_fee: Decimal
    stop_order_id: str | None = None
    take_profit_order_id: str | None = None
    # Stop id withdrawn by the profit check; a fill may still carry it
    cancelled_stop_order_id: str | None = None
    state: PositionState = PositionState.OPENING
    pending_check: DeferredCheck | None = field(default=None, repr=False)
    profit_check_completed: bool = False


@dataclass(frozen=True)
class TradeHistoryRecord:
    """Append-only record of a closed trade."""

    closed_at: int
    symbol: str
    side: PositionSide
    entry_price: Decimal
    exit_price: Decimal
    quantity: Decimal
    realized_pnl: Decimal
    reason: CloseReason


@dataclass(frozen=True)
class Alert:
    """A condition the operator must resolve by hand."""

    timestamp: int
    symbol: str
    message: str
