"""Deferred post-funding profit check.

After funding settles, one delayed check estimates the position's net PnL
(price move + funding received - entry fee - exit fee) and flattens it only
when the estimate is strictly positive. Otherwise the stop-loss order stays
as the sole protection.

The check carries a CheckToken captured when it was scheduled. When it fires
it compares the token's stop order id against the live position: any
mismatch means the position it was scheduled for is gone and the check is a
no-op.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from decimal import Decimal

from funding_sniper.config import FeeSettings
from funding_sniper.exceptions import ExchangeError, OrderNotFound
from funding_sniper.exchange.client import ExchangeClient
from funding_sniper.logging import get_logger
from funding_sniper.models import (
    CloseReason,
    Position,
    PositionSide,
    PositionState,
    ProfitDecision,
    TradeHistoryRecord,
)
from funding_sniper.position.metrics import estimate_funding_gain
from funding_sniper.session import TradingSession, now_ms

logger = get_logger(__name__)

# Strong references to running checks; the event loop only keeps weak ones
_running_checks: set[asyncio.Task] = set()


@dataclass(frozen=True)
class CheckToken:
    """Schedule-time snapshot of the position a profit check targets.

    stop_order_id doubles as the identity token.
    """

    symbol: str
    side: PositionSide
    quantity: Decimal
    entry_price: Decimal
    funding_rate: Decimal
    entry_fee: Decimal
    stop_order_id: str | None

    @classmethod
    def from_position(cls, position: Position) -> "CheckToken":
        return cls(
            symbol=position.symbol,
            side=position.side,
            quantity=position.quantity,
            entry_price=position.entry_price,
            funding_rate=position.funding_rate,
            entry_fee=position.entry_fee,
            stop_order_id=position.stop_order_id,
        )

    @property
    def funding_gain(self) -> Decimal:
        return estimate_funding_gain(
            self.entry_price * self.quantity, self.funding_rate, self.side
        )

    def matches(self, position: Position | None) -> bool:
        return (
            position is not None
            and position.symbol == self.symbol
            and position.stop_order_id == self.stop_order_id
        )


class DeferredCheck:
    """Cancellable one-shot timer wrapping an asyncio task.

    Args:
        delay_seconds: Time to sleep before invoking the callback.
        callback: Coroutine function invoked once the delay elapses.
        fire_at: Target Unix-ms timestamp, kept for display.
    """

    def __init__(
        self,
        delay_seconds: float,
        callback: Callable[[], Awaitable[object]],
        fire_at: int,
    ) -> None:
        self.fire_at = fire_at
        self._delay = max(0.0, delay_seconds)
        self._callback = callback
        self._task: asyncio.Task | None = asyncio.create_task(self._run())
        _running_checks.add(self._task)
        self._task.add_done_callback(_running_checks.discard)

    async def _run(self) -> None:
        await asyncio.sleep(self._delay)
        try:
            await self._callback()
        except Exception as e:
            logger.error("deferred_check_failed", error=str(e), exc_info=True)

    @property
    def done(self) -> bool:
        return self._task is None or self._task.done()

    def cancel(self) -> None:
        """Cancel the pending task. A running check never cancels itself."""
        task = self._task
        if task is None or task.done():
            return
        if task is asyncio.current_task():
            return
        task.cancel()
        logger.debug("deferred_check_cancelled", fire_at=self.fire_at)


class ProfitEvaluator:
    """Runs the one-shot profit check under the order-placement lock.

    Args:
        session: Shared session holding the position slot and lock.
        client: Exchange client for mark price, cancel and flatten.
        fees: Taker rate used for the exit fee estimate.
    """

    def __init__(
        self,
        session: TradingSession,
        client: ExchangeClient,
        fees: FeeSettings,
    ) -> None:
        self._session = session
        self._client = client
        self._fees = fees

    def estimate_net_pnl(self, token: CheckToken, mark_price: Decimal) -> Decimal:
        """Price PnL + frozen funding gain - frozen entry fee - exit fee at mark."""
        price_pnl = (mark_price - token.entry_price) * token.quantity * token.side.direction
        exit_fee = mark_price * token.quantity * self._fees.taker
        return price_pnl + token.funding_gain - token.entry_fee - exit_fee

    async def evaluate(self, token: CheckToken) -> ProfitDecision:
        """Decide close-now vs hold for the position the token targets.

        Returns:
            STALE if the token no longer matches the live position or the
            check already ran; CLOSE if the position was flattened; HOLD
            otherwise (including failures that leave the position open).
        """
        session = self._session
        async with session.order_lock:
            position = session.position
            if not token.matches(position) or position.profit_check_completed:
                logger.info(
                    "profit_check_stale",
                    symbol=token.symbol,
                    stop_order_id=token.stop_order_id,
                )
                return ProfitDecision.STALE

            # At most once per position, even if every later step fails
            position.profit_check_completed = True
            position.pending_check = None
            position.state = PositionState.PROFIT_CHECK_PENDING

            try:
                mark_price = await self._client.get_mark_price(token.symbol)
            except ExchangeError as e:
                logger.warning(
                    "profit_check_mark_price_unavailable",
                    symbol=token.symbol,
                    error=str(e),
                )
                position.state = PositionState.OPEN
                return ProfitDecision.HOLD

            net_pnl = self.estimate_net_pnl(token, mark_price)
            if net_pnl <= 0:
                logger.info(
                    "profit_check_hold",
                    symbol=token.symbol,
                    mark_price=str(mark_price),
                    estimated_net_pnl=str(net_pnl),
                )
                position.state = PositionState.OPEN
                return ProfitDecision.HOLD

            logger.info(
                "profit_check_closing",
                symbol=token.symbol,
                mark_price=str(mark_price),
                estimated_net_pnl=str(net_pnl),
            )
            return await self._flatten(position, token, mark_price)

    async def _flatten(
        self, position: Position, token: CheckToken, mark_price: Decimal
    ) -> ProfitDecision:
        position.state = PositionState.CLOSING

        stop_missing = False
        if position.stop_order_id is not None:
            try:
                await self._client.cancel_order(position.symbol, position.stop_order_id)
            except OrderNotFound:
                stop_missing = True
                logger.info(
                    "stop_already_gone",
                    symbol=position.symbol,
                    order_id=position.stop_order_id,
                )
            except ExchangeError as e:
                logger.warning(
                    "stop_cancel_failed_holding",
                    symbol=position.symbol,
                    order_id=position.stop_order_id,
                    error=str(e),
                )
                position.state = PositionState.OPEN
                return ProfitDecision.HOLD
            position.cancelled_stop_order_id = position.stop_order_id
            position.stop_order_id = None

        try:
            fill = await self._client.place_market_order(
                position.symbol,
                position.side.exit_order_side,
                position.quantity,
                reduce_only=True,
            )
        except ExchangeError as e:
            position.state = PositionState.OPEN
            if stop_missing and await self._is_flat(position.symbol):
                # The stop filled before the check; the reconciler records it
                logger.info(
                    "profit_check_found_position_stopped_out",
                    symbol=position.symbol,
                    stop_order_id=position.cancelled_stop_order_id,
                )
                return ProfitDecision.HOLD
            self._session.raise_alert(
                position.symbol,
                f"flatten after profit check failed with the stop already cancelled: {e}",
            )
            return ProfitDecision.HOLD

        exit_price = fill.average_price or mark_price
        quantity = fill.filled_qty or position.quantity
        exit_fee = exit_price * quantity * self._fees.taker
        realized = (
            (exit_price - position.entry_price) * quantity * position.side.direction
            + token.funding_gain
            - position.entry_fee
            - exit_fee
        )

        self._session.record_trade(
            TradeHistoryRecord(
                closed_at=fill.timestamp or now_ms(),
                symbol=position.symbol,
                side=position.side,
                entry_price=position.entry_price,
                exit_price=exit_price,
                quantity=quantity,
                realized_pnl=realized,
                reason=CloseReason.CLOSED_AFTER_PROFIT_CHECK,
            )
        )
        self._session.clear_position()
        return ProfitDecision.CLOSE

    async def _is_flat(self, symbol: str) -> bool:
        try:
            observed = await self._client.get_position_size(symbol)
        except ExchangeError as e:
            logger.warning("position_size_unavailable", symbol=symbol, error=str(e))
            return False
        return observed.size == 0
