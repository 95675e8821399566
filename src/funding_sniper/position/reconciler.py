"""Reconciliation of externally closed positions into trade history.

Every poll tick with a position in the slot, the exchange's authoritative
position size is checked. Once it has collapsed to (approximately) zero the
close reason is resolved from recent fills, exactly one TradeHistoryRecord is
appended, residual trigger orders are cancelled, and only then is the slot
cleared.

Close reason resolution (newest matching fill first):
  fill order id == (cancelled) stop id   -> STOP_HIT
  fill order id == take-profit order id  -> TAKE_PROFIT_HIT
  profit check completed, no stop id     -> CLOSED_AFTER_PROFIT_CHECK
  any other matching fill                -> CLOSED_OTHER
  no matching fill / history unavailable -> CLOSED_UNKNOWN
"""

from decimal import Decimal

from funding_sniper.config import StrategySettings
from funding_sniper.exceptions import ExchangeError
from funding_sniper.exchange.client import ExchangeClient
from funding_sniper.logging import get_logger
from funding_sniper.models import (
    CloseReason,
    ExchangePosition,
    Position,
    PositionState,
    TradeFill,
    TradeHistoryRecord,
)
from funding_sniper.session import TradingSession, now_ms

logger = get_logger(__name__)


class Reconciler:
    """Detects external closure and records it exactly once.

    Args:
        session: Shared session holding the position slot and lock.
        client: Exchange client for position size, fills and cancels.
        strategy: Close and fill-matching tolerances.
    """

    def __init__(
        self,
        session: TradingSession,
        client: ExchangeClient,
        strategy: StrategySettings,
    ) -> None:
        self._session = session
        self._client = client
        self._close_tolerance = strategy.close_quantity_tolerance
        self._fill_tolerance = strategy.fill_match_tolerance
        self._lookback_ms = strategy.fill_lookback_ms

    async def reconcile(self) -> TradeHistoryRecord | None:
        """Check the live position against the exchange.

        Skipped while another sequence holds the order lock; the next tick
        retries.

        Returns:
            The appended record if a closure was detected, else None.
        """
        session = self._session
        if session.position is None or session.order_lock.locked():
            return None

        async with session.order_lock:
            position = session.position
            if position is None:
                return None

            try:
                observed = await self._client.get_position_size(position.symbol)
            except ExchangeError as e:
                logger.warning(
                    "position_size_unavailable", symbol=position.symbol, error=str(e)
                )
                return None

            if abs(observed.size) >= position.quantity * self._close_tolerance:
                return None

            previous_state = position.state
            position.state = PositionState.CLOSING
            logger.info(
                "external_close_detected",
                symbol=position.symbol,
                observed_size=str(observed.size),
            )

            try:
                record = await self._build_record(position, observed)
                session.record_trade(record)
            except Exception as e:
                logger.error(
                    "trade_record_failed",
                    symbol=position.symbol,
                    error=str(e),
                    exc_info=True,
                )
                position.state = previous_state
                return None

            await self._cancel_residual_orders(position)
            session.clear_position()
            return record

    def match_fill(self, position: Position, fills: list[TradeFill]) -> TradeFill | None:
        """Newest exit-side fill that plausibly closed this position."""
        exit_side = position.side.exit_order_side
        max_diff = position.quantity * self._fill_tolerance
        matching = [
            f
            for f in fills
            if f.side == exit_side
            and abs(f.quantity - position.quantity) <= max_diff
            and f.timestamp >= position.entry_time
            and f.realized_pnl != 0
        ]
        if not matching:
            return None
        matching.sort(key=lambda f: f.timestamp, reverse=True)
        return matching[0]

    @staticmethod
    def classify(position: Position, fill: TradeFill | None) -> CloseReason:
        if fill is None:
            return CloseReason.CLOSED_UNKNOWN
        stop_ids = {position.stop_order_id, position.cancelled_stop_order_id} - {None}
        if fill.order_id in stop_ids:
            return CloseReason.STOP_HIT
        if (
            position.take_profit_order_id is not None
            and fill.order_id == position.take_profit_order_id
        ):
            return CloseReason.TAKE_PROFIT_HIT
        if position.profit_check_completed and position.stop_order_id is None:
            return CloseReason.CLOSED_AFTER_PROFIT_CHECK
        return CloseReason.CLOSED_OTHER

    async def _build_record(
        self, position: Position, observed: ExchangePosition
    ) -> TradeHistoryRecord:
        fill: TradeFill | None = None
        try:
            fills = await self._client.get_recent_fills(
                position.symbol, position.entry_time - self._lookback_ms
            )
            fill = self.match_fill(position, fills)
        except ExchangeError as e:
            logger.warning(
                "fill_history_unavailable", symbol=position.symbol, error=str(e)
            )

        reason = self.classify(position, fill)
        if fill is not None:
            exit_price = fill.price
            realized_pnl = fill.realized_pnl
            closed_at = fill.timestamp
        else:
            logger.warning("close_reason_ambiguous", symbol=position.symbol)
            exit_price = observed.mark_price if observed.mark_price > 0 else position.entry_price
            realized_pnl = observed.unrealized_pnl
            closed_at = now_ms()

        return TradeHistoryRecord(
            closed_at=closed_at,
            symbol=position.symbol,
            side=position.side,
            entry_price=position.entry_price,
            exit_price=exit_price,
            quantity=position.quantity,
            realized_pnl=Decimal(realized_pnl),
            reason=reason,
        )

    async def _cancel_residual_orders(self, position: Position) -> None:
        for order_id in (position.stop_order_id, position.take_profit_order_id):
            if order_id is None:
                continue
            try:
                await self._client.cancel_order(position.symbol, order_id)
            except ExchangeError as e:
                # Usually already filled or cancelled alongside the close
                logger.debug(
                    "residual_cancel_failed",
                    symbol=position.symbol,
                    order_id=order_id,
                    error=str(e),
                )
