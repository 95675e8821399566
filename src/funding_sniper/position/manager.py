"""Position lifecycle management for the single in-flight position.

State machine:
  EMPTY -> OPENING -> OPEN -> {PROFIT_CHECK_PENDING} -> CLOSING -> EMPTY
  OPENING -> EMERGENCY_UNWIND (protective stop could not be placed)

Open sequence (under the order-placement lock, each failure stops progress):
1. Set leverage for the symbol
2. Market entry sized to the candidate quantity
3. Derive fill price (average, else candidate mark price) and quantity
4. Protective stop-market order sized to the filled quantity
5. Take-profit order (fixed-bracket exits) or deferred profit check

A normally open position is never assumed closed by this class: closure is
confirmed by the Reconciler observing the exchange-side size reach zero.
"""

from decimal import Decimal

from funding_sniper.config import FeeSettings, StrategySettings
from funding_sniper.exceptions import ExchangeError
from funding_sniper.exchange.client import ExchangeClient
from funding_sniper.logging import get_logger, position_context
from funding_sniper.models import (
    Candidate,
    CloseReason,
    ExitPolicy,
    Position,
    PositionState,
    TradeHistoryRecord,
)
from funding_sniper.position.profit_check import CheckToken, DeferredCheck, ProfitEvaluator
from funding_sniper.session import TradingSession, now_ms

logger = get_logger(__name__)


class PositionManager:
    """Opens, protects and (on failure) unwinds the session's single position.

    Args:
        session: Shared session holding the position slot and lock.
        client: Exchange client (paper or live).
        evaluator: Profit evaluator the deferred check calls into.
        strategy: Leverage, side and exit policy configuration.
        fees: Taker rate for the frozen entry fee.
    """

    def __init__(
        self,
        session: TradingSession,
        client: ExchangeClient,
        evaluator: ProfitEvaluator,
        strategy: StrategySettings,
        fees: FeeSettings,
    ) -> None:
        self._session = session
        self._client = client
        self._evaluator = evaluator
        self._strategy = strategy
        self._fees = fees

    async def open_position(self, candidate: Candidate) -> Position | None:
        """Run the open sequence for a candidate.

        A no-op returning None when a position already exists.

        Args:
            candidate: The ranked candidate selected by the entry scheduler.

        Returns:
            The OPEN position, or None if entry was aborted or unwound.
        """
        session = self._session
        async with session.order_lock:
            if session.has_position:
                logger.info(
                    "open_skipped_position_exists",
                    symbol=candidate.symbol,
                    current=session.position.symbol,
                )
                return None

            symbol = candidate.symbol
            side = self._strategy.position_side
            metrics = candidate.metrics

            try:
                await self._client.set_leverage(symbol, self._strategy.leverage)
            except ExchangeError as e:
                logger.warning("set_leverage_failed", symbol=symbol, error=str(e))
                return None

            try:
                fill = await self._client.place_market_order(
                    symbol, side.entry_order_side, metrics.quantity
                )
            except ExchangeError as e:
                logger.warning("entry_order_failed", symbol=symbol, error=str(e))
                return None

            entry_price = fill.average_price or candidate.mark_price
            quantity = fill.filled_qty or metrics.quantity
            position = Position(
                symbol=symbol,
                side=side,
                entry_price=entry_price,
                quantity=quantity,
                entry_time=fill.timestamp or now_ms(),
                funding_time=candidate.next_funding_time,
                funding_rate=candidate.funding_rate,
                entry_fee=entry_price * quantity * self._fees.taker,
                state=PositionState.OPENING,
            )
            session.set_position(position)
            logger.info(
                "position_entered",
                symbol=symbol,
                side=side.value,
                entry_price=str(entry_price),
                quantity=str(quantity),
                funding_rate=str(candidate.funding_rate),
                ms_to_funding=candidate.ms_to_funding,
            )

            try:
                stop = await self._client.place_stop_order(
                    symbol, side.exit_order_side, quantity, metrics.stop_loss_price
                )
            except Exception as e:
                logger.error("stop_order_failed", symbol=symbol, error=str(e))
                await self._emergency_unwind(position)
                return None
            position.stop_order_id = stop.order_id

            if (
                self._strategy.exit_policy == ExitPolicy.FIXED_BRACKET
                and metrics.take_profit_price is not None
            ):
                await self._place_take_profit(position, metrics.take_profit_price)

            position.state = PositionState.OPEN
            logger.info(
                "position_protected",
                symbol=symbol,
                stop_order_id=position.stop_order_id,
                stop_price=str(metrics.stop_loss_price),
                take_profit_order_id=position.take_profit_order_id,
            )

            if self._strategy.exit_policy == ExitPolicy.PROFIT_CHECK:
                self._schedule_profit_check(position)

            return position

    async def _place_take_profit(self, position: Position, price: Decimal) -> None:
        try:
            ack = await self._client.place_take_profit_order(
                position.symbol, position.side.exit_order_side, position.quantity, price
            )
        except ExchangeError as e:
            # The stop still protects the position
            logger.warning(
                "take_profit_order_failed", symbol=position.symbol, error=str(e)
            )
            return
        position.take_profit_order_id = ack.order_id

    def _schedule_profit_check(self, position: Position) -> None:
        fire_at = position.funding_time + self._strategy.profit_check_delay_ms
        delay_ms = fire_at - now_ms()
        if delay_ms <= 0:
            logger.warning(
                "profit_check_not_scheduled",
                symbol=position.symbol,
                fire_at=fire_at,
                reason="target time already passed",
            )
            return

        token = CheckToken.from_position(position)
        with position_context(position.symbol, position.stop_order_id):
            position.pending_check = DeferredCheck(
                delay_ms / 1000,
                lambda: self._evaluator.evaluate(token),
                fire_at=fire_at,
            )
        position.state = PositionState.PROFIT_CHECK_PENDING
        logger.info(
            "profit_check_scheduled",
            symbol=position.symbol,
            fire_at=fire_at,
            delay_seconds=delay_ms / 1000,
        )

    async def _emergency_unwind(self, position: Position) -> None:
        """Flatten an unprotected position. Caller holds the order lock.

        On failure the position record is kept so it stays visible, and a
        manual-intervention alert is raised.
        """
        position.state = PositionState.EMERGENCY_UNWIND
        logger.warning("emergency_unwind_started", symbol=position.symbol)
        try:
            fill = await self._client.place_market_order(
                position.symbol,
                position.side.exit_order_side,
                position.quantity,
                reduce_only=True,
            )
        except ExchangeError as e:
            self._session.raise_alert(
                position.symbol,
                f"emergency unwind failed, position is live without a stop: {e}",
            )
            return

        exit_price = fill.average_price or position.entry_price
        quantity = fill.filled_qty or position.quantity
        exit_fee = exit_price * quantity * self._fees.taker
        realized = (
            (exit_price - position.entry_price) * quantity * position.side.direction
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
                reason=CloseReason.EMERGENCY_UNWIND,
            )
        )
        self._session.clear_position()
        logger.info("emergency_unwind_completed", symbol=position.symbol)
