"""Shared trading session state.

The session is the single owner of all mutable lifecycle state: the position
slot, the order-placement lock, trade history, and operator alerts. Every
component receives the same TradingSession instance; nothing is kept in
module-level globals.
"""

import asyncio
import time

from funding_sniper.exchange.types import InstrumentPrecision
from funding_sniper.logging import get_logger
from funding_sniper.models import Alert, Candidate, Position, TradeHistoryRecord

logger = get_logger(__name__)


def now_ms() -> int:
    """Current wall-clock time as Unix milliseconds."""
    return int(time.time() * 1000)


class TradingSession:
    """In-memory context threaded through every component.

    Attributes:
        position: The single in-flight position, or None when EMPTY.
        order_lock: Guards every entry, unwind, profit-check and
            reconciliation-close sequence.
        trades: Append-only trade history in insertion order.
        alerts: Manual-intervention alerts raised during the run.
        precision_table: Instrument precision, loaded once at startup.
        last_candidates: Ranked candidates from the most recent poll tick.
    """

    def __init__(self) -> None:
        self.position: Position | None = None
        self.order_lock = asyncio.Lock()
        self.trades: list[TradeHistoryRecord] = []
        self.alerts: list[Alert] = []
        self.precision_table: dict[str, InstrumentPrecision] = {}
        self.last_candidates: list[Candidate] = []
        self.last_tick_at: int | None = None

    @property
    def has_position(self) -> bool:
        return self.position is not None

    def set_position(self, position: Position) -> None:
        """Occupy the position slot.

        Raises:
            RuntimeError: If a position is already held.
        """
        if self.position is not None:
            raise RuntimeError(
                f"position slot already held by {self.position.symbol}"
            )
        self.position = position

    def clear_position(self) -> None:
        """Empty the slot and cancel any deferred check still targeting it."""
        position = self.position
        if position is None:
            return
        if position.pending_check is not None:
            position.pending_check.cancel()
            position.pending_check = None
        self.position = None
        logger.info("position_cleared", symbol=position.symbol)

    def record_trade(self, record: TradeHistoryRecord) -> None:
        self.trades.append(record)
        logger.info(
            "trade_recorded",
            symbol=record.symbol,
            side=record.side.value,
            entry_price=str(record.entry_price),
            exit_price=str(record.exit_price),
            quantity=str(record.quantity),
            realized_pnl=str(record.realized_pnl),
            reason=record.reason.value,
        )

    def raise_alert(self, symbol: str, message: str) -> Alert:
        """Record a manual-intervention alert at the most severe log level."""
        alert = Alert(timestamp=now_ms(), symbol=symbol, message=message)
        self.alerts.append(alert)
        logger.critical(
            "manual_intervention_required",
            symbol=symbol,
            message=message,
            manual_intervention_required=True,
        )
        return alert
