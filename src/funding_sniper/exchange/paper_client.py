"""Paper trading exchange client with simulated fills.

Delegates market data (funding snapshot, precision table, mark price) to a
real client and simulates everything account-side: market fills at mark
price plus slippage, one tracked position per symbol, resting stop and
take-profit orders, and a fill history with realized PnL.

Resting trigger orders are evaluated against the current mark price when the
position is queried, which is what the reconciler does every poll tick.
"""

import time
from dataclasses import dataclass
from decimal import Decimal
from uuid import uuid4

from funding_sniper.config import FeeSettings, PaperSettings
from funding_sniper.exceptions import OrderNotFound, OrderRejected
from funding_sniper.exchange.client import ExchangeClient
from funding_sniper.exchange.types import InstrumentPrecision
from funding_sniper.logging import get_logger
from funding_sniper.models import (
    ExchangePosition,
    FundingRateData,
    OrderAck,
    OrderFill,
    OrderSide,
    TradeFill,
)

logger = get_logger(__name__)


@dataclass
class _SimPosition:
    size: Decimal  # signed
    entry_price: Decimal


@dataclass
class _TriggerOrder:
    order_id: str
    symbol: str
    side: OrderSide
    quantity: Decimal
    trigger_price: Decimal
    kind: str  # "stop" or "take_profit"


class PaperExchangeClient(ExchangeClient):
    """Simulated account on top of live market data.

    Args:
        market_data: Client used for public market data only.
        paper_settings: Slippage applied to simulated market fills.
        fee_settings: Fee rates applied to simulated fills.
    """

    def __init__(
        self,
        market_data: ExchangeClient,
        paper_settings: PaperSettings,
        fee_settings: FeeSettings,
    ) -> None:
        self._market_data = market_data
        self._slippage = paper_settings.slippage
        self._fees = fee_settings
        self._positions: dict[str, _SimPosition] = {}
        self._orders: dict[str, _TriggerOrder] = {}
        self._fills: dict[str, list[TradeFill]] = {}
        self._leverage: dict[str, int] = {}

    async def connect(self) -> None:
        await self._market_data.connect()
        logger.info("paper_client_ready", slippage=str(self._slippage))

    async def close(self) -> None:
        await self._market_data.close()

    async def get_funding_snapshot(self) -> list[FundingRateData]:
        return await self._market_data.get_funding_snapshot()

    async def get_instrument_precision_table(self) -> dict[str, InstrumentPrecision]:
        return await self._market_data.get_instrument_precision_table()

    async def get_mark_price(self, symbol: str) -> Decimal:
        return await self._market_data.get_mark_price(symbol)

    async def set_leverage(self, symbol: str, leverage: int) -> None:
        self._leverage[symbol] = leverage
        logger.info("paper_leverage_set", symbol=symbol, leverage=leverage)

    async def place_market_order(
        self,
        symbol: str,
        side: OrderSide,
        quantity: Decimal,
        reduce_only: bool = False,
    ) -> OrderFill:
        """Simulate a market order at mark price with slippage against the taker."""
        mark = await self._market_data.get_mark_price(symbol)
        if side == OrderSide.BUY:
            fill_price = mark * (Decimal("1") + self._slippage)
        else:
            fill_price = mark * (Decimal("1") - self._slippage)

        current = self._positions.get(symbol)
        if reduce_only:
            if current is None or current.size == 0:
                raise OrderRejected(f"reduce-only order with no position on {symbol}")
            quantity = min(quantity, abs(current.size))

        order_id = f"paper-{uuid4().hex[:12]}"
        fill = self._apply_fill(
            symbol, order_id, side, quantity, fill_price, self._fees.taker
        )
        logger.info(
            "paper_market_fill",
            symbol=symbol,
            side=side.value,
            quantity=str(quantity),
            price=str(fill_price),
            realized_pnl=str(fill.realized_pnl),
        )
        return OrderFill(
            order_id=order_id,
            symbol=symbol,
            side=side,
            filled_qty=quantity,
            average_price=fill_price,
            timestamp=fill.timestamp,
        )

    async def place_stop_order(
        self,
        symbol: str,
        side: OrderSide,
        quantity: Decimal,
        trigger_price: Decimal,
    ) -> OrderAck:
        return self._rest_order("stop", symbol, side, quantity, trigger_price)

    async def place_take_profit_order(
        self,
        symbol: str,
        side: OrderSide,
        quantity: Decimal,
        trigger_price: Decimal,
    ) -> OrderAck:
        return self._rest_order("take_profit", symbol, side, quantity, trigger_price)

    async def cancel_order(self, symbol: str, order_id: str) -> None:
        order = self._orders.get(order_id)
        if order is None or order.symbol != symbol:
            raise OrderNotFound(f"unknown order {order_id} on {symbol}")
        del self._orders[order_id]
        logger.info("paper_order_cancelled", symbol=symbol, order_id=order_id)

    async def get_position_size(self, symbol: str) -> ExchangePosition:
        """Return the simulated position after triggering any crossed orders."""
        mark = await self._market_data.get_mark_price(symbol)
        self._trigger_resting_orders(symbol, mark)

        pos = self._positions.get(symbol)
        if pos is None or pos.size == 0:
            return ExchangePosition(
                symbol=symbol,
                size=Decimal("0"),
                mark_price=mark,
                unrealized_pnl=Decimal("0"),
            )
        return ExchangePosition(
            symbol=symbol,
            size=pos.size,
            mark_price=mark,
            unrealized_pnl=(mark - pos.entry_price) * pos.size,
        )

    async def get_recent_fills(self, symbol: str, since: int) -> list[TradeFill]:
        return [f for f in self._fills.get(symbol, []) if f.timestamp >= since]

    # ------------------------------------------------------------------
    # Simulation internals
    # ------------------------------------------------------------------

    def _rest_order(
        self,
        kind: str,
        symbol: str,
        side: OrderSide,
        quantity: Decimal,
        trigger_price: Decimal,
    ) -> OrderAck:
        pos = self._positions.get(symbol)
        if pos is None or pos.size == 0:
            raise OrderRejected(f"reduce-only {kind} order with no position on {symbol}")

        order_id = f"paper-{kind}-{uuid4().hex[:12]}"
        self._orders[order_id] = _TriggerOrder(
            order_id=order_id,
            symbol=symbol,
            side=side,
            quantity=quantity,
            trigger_price=trigger_price,
            kind=kind,
        )
        logger.info(
            "paper_order_resting",
            kind=kind,
            symbol=symbol,
            order_id=order_id,
            trigger_price=str(trigger_price),
        )
        return OrderAck(order_id=order_id, symbol=symbol)

    def _is_triggered(self, order: _TriggerOrder, mark: Decimal) -> bool:
        # A sell stop fires on a drop, a sell take-profit on a rise; buys mirror.
        if order.kind == "stop":
            if order.side == OrderSide.SELL:
                return mark <= order.trigger_price
            return mark >= order.trigger_price
        if order.side == OrderSide.SELL:
            return mark >= order.trigger_price
        return mark <= order.trigger_price

    def _trigger_resting_orders(self, symbol: str, mark: Decimal) -> None:
        for order in list(self._orders.values()):
            if order.order_id not in self._orders:
                continue  # removed when an earlier trigger flattened the position
            if order.symbol != symbol or not self._is_triggered(order, mark):
                continue
            del self._orders[order.order_id]

            pos = self._positions.get(symbol)
            if pos is None or pos.size == 0:
                continue
            quantity = min(order.quantity, abs(pos.size))
            fee_rate = self._fees.taker if order.kind == "stop" else self._fees.maker
            self._apply_fill(
                symbol, order.order_id, order.side, quantity, order.trigger_price, fee_rate
            )
            logger.info(
                "paper_order_triggered",
                kind=order.kind,
                symbol=symbol,
                order_id=order.order_id,
                price=str(order.trigger_price),
            )

    def _apply_fill(
        self,
        symbol: str,
        order_id: str,
        side: OrderSide,
        quantity: Decimal,
        price: Decimal,
        fee_rate: Decimal,
    ) -> TradeFill:
        """Update the simulated position and record the execution.

        realized_pnl is non-zero only on fills that reduce the position, and
        is net of the fill's own fee, matching the exchange's trade history.
        """
        signed = quantity if side == OrderSide.BUY else -quantity
        pos = self._positions.get(symbol)
        realized = Decimal("0")

        if pos is None or pos.size == 0:
            self._positions[symbol] = _SimPosition(size=signed, entry_price=price)
        elif (pos.size > 0) == (signed > 0):
            new_size = pos.size + signed
            pos.entry_price = (
                pos.entry_price * abs(pos.size) + price * quantity
            ) / abs(new_size)
            pos.size = new_size
        else:
            closed = min(quantity, abs(pos.size))
            direction = Decimal("1") if pos.size > 0 else Decimal("-1")
            fee = closed * price * fee_rate
            realized = (price - pos.entry_price) * closed * direction - fee
            pos.size += signed
            if pos.size == 0:
                del self._positions[symbol]
                # Flat position leaves no resting reduce-only orders behind
                for oid in [o.order_id for o in self._orders.values() if o.symbol == symbol]:
                    del self._orders[oid]

        fill = TradeFill(
            order_id=order_id,
            side=side,
            price=price,
            quantity=quantity,
            realized_pnl=realized,
            timestamp=int(time.time() * 1000),
        )
        self._fills.setdefault(symbol, []).append(fill)
        return fill
