"""Binance USD-M futures client implementation via ccxt async.

Wraps ccxt.async_support.binanceusdm with market loading, precision
extraction, and normalisation of ccxt exceptions into the closed set of
error kinds in funding_sniper.exceptions.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from decimal import Decimal

import ccxt.async_support as ccxt_async
from ccxt.base import errors as ccxt_errors

from funding_sniper.config import ExchangeSettings
from funding_sniper.exceptions import (
    ExchangeRejected,
    OrderNotFound,
    OrderRejected,
    TransientFetchFailure,
)
from funding_sniper.exchange.client import ExchangeClient
from funding_sniper.exchange.types import InstrumentPrecision, decimal_places
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


@contextmanager
def _normalise_errors(operation: str, order_call: bool = False) -> Iterator[None]:
    """Translate ccxt exceptions raised inside the block.

    Order placement rejections become OrderRejected, other rejections become
    ExchangeRejected. Network problems are always TransientFetchFailure.
    """
    try:
        yield
    except ccxt_errors.OrderNotFound as e:
        raise OrderNotFound(f"{operation}: {e}") from e
    except ccxt_errors.NetworkError as e:
        raise TransientFetchFailure(f"{operation}: {e}") from e
    except ccxt_errors.BaseError as e:
        if order_call:
            raise OrderRejected(f"{operation}: {e}") from e
        raise ExchangeRejected(f"{operation}: {e}") from e


def _to_decimal(value, default: str = "0") -> Decimal:
    if value is None or value == "":
        return Decimal(default)
    return Decimal(str(value))


class BinanceFuturesClient(ExchangeClient):
    """Concrete Binance USD-M perpetual futures client using ccxt async."""

    def __init__(self, settings: ExchangeSettings) -> None:
        self._settings = settings

        config: dict = {
            "apiKey": settings.api_key.get_secret_value(),
            "secret": settings.api_secret.get_secret_value(),
            "enableRateLimit": True,
            "options": {
                "defaultType": "future",
            },
        }
        self._exchange = ccxt_async.binanceusdm(config)
        if settings.testnet:
            self._exchange.set_sandbox_mode(True)
        self._markets: dict = {}

    @property
    def exchange(self) -> ccxt_async.binanceusdm:
        """Access the underlying ccxt exchange instance."""
        return self._exchange

    async def connect(self) -> None:
        """Initialize connection by loading markets."""
        logger.info("connecting_to_binance", testnet=self._settings.testnet)
        with _normalise_errors("load_markets"):
            self._markets = await self._exchange.load_markets()
        logger.info(
            "binance_connected",
            market_count=len(self._markets),
            testnet=self._settings.testnet,
        )

    async def close(self) -> None:
        """Clean up ccxt async resources. CRITICAL: must be called to avoid resource leaks."""
        logger.info("closing_binance_connection")
        await self._exchange.close()
        logger.info("binance_connection_closed")

    async def get_funding_snapshot(self) -> list[FundingRateData]:
        """Fetch funding rate, mark price and next funding time for all perpetuals.

        Rows missing any of the three fields are skipped. A failed request
        returns an empty list so the caller skips the tick.
        """
        try:
            raw = await self._exchange.fetch_funding_rates()
        except ccxt_errors.BaseError as e:
            logger.warning("funding_snapshot_failed", error=str(e))
            return []

        snapshot: list[FundingRateData] = []
        for symbol, entry in raw.items():
            info = entry.get("info") or {}
            rate = info.get("lastFundingRate", entry.get("fundingRate"))
            mark = info.get("markPrice", entry.get("markPrice"))
            next_time = info.get("nextFundingTime", entry.get("fundingTimestamp"))
            if rate is None or mark is None or not next_time:
                continue
            snapshot.append(
                FundingRateData(
                    symbol=symbol,
                    rate=_to_decimal(rate),
                    mark_price=_to_decimal(mark),
                    next_funding_time=int(next_time),
                )
            )
        logger.debug("funding_snapshot_fetched", count=len(snapshot))
        return snapshot

    async def get_instrument_precision_table(self) -> dict[str, InstrumentPrecision]:
        """Build the precision table from loaded market metadata.

        Only active linear swaps are included. Decimal-place precision comes
        from the raw exchange info when present, otherwise it is derived from
        ccxt's unified step sizes.
        """
        if not self._markets:
            await self.connect()

        table: dict[str, InstrumentPrecision] = {}
        for symbol, market in self._markets.items():
            if not (market.get("linear") and market.get("swap")):
                continue
            if market.get("active") is False:
                continue

            info = market.get("info") or {}
            precision = market.get("precision") or {}
            limits = market.get("limits") or {}

            tick_size = _to_decimal(precision.get("price"))
            amount_step = _to_decimal(precision.get("amount"))

            if "pricePrecision" in info:
                price_places = int(info["pricePrecision"])
            else:
                price_places = decimal_places(tick_size) if tick_size > 0 else 0
            if "quantityPrecision" in info:
                qty_places = int(info["quantityPrecision"])
            else:
                qty_places = decimal_places(amount_step) if amount_step > 0 else 0

            table[symbol] = InstrumentPrecision(
                symbol=symbol,
                price_precision=price_places,
                quantity_precision=qty_places,
                min_qty=_to_decimal((limits.get("amount") or {}).get("min")),
                tick_size=tick_size,
            )

        logger.info("precision_table_loaded", symbol_count=len(table))
        return table

    async def set_leverage(self, symbol: str, leverage: int) -> None:
        logger.info("setting_leverage", symbol=symbol, leverage=leverage)
        with _normalise_errors("set_leverage"):
            await self._exchange.set_leverage(leverage, symbol)

    async def place_market_order(
        self,
        symbol: str,
        side: OrderSide,
        quantity: Decimal,
        reduce_only: bool = False,
    ) -> OrderFill:
        """Place a market order and return its fill.

        Binance does not always echo an average price on the create response;
        average_price is then None and the caller falls back to mark price.
        """
        params = {"reduceOnly": True} if reduce_only else {}
        logger.info(
            "creating_market_order",
            symbol=symbol,
            side=side.value,
            quantity=str(quantity),
            reduce_only=reduce_only,
        )
        with _normalise_errors("place_market_order", order_call=True):
            order = await self._exchange.create_order(
                symbol, "market", side.value, float(quantity), None, params=params
            )

        average = order.get("average")
        filled = order.get("filled")
        return OrderFill(
            order_id=str(order.get("id", "")),
            symbol=symbol,
            side=side,
            filled_qty=_to_decimal(filled) if filled else Decimal("0"),
            average_price=_to_decimal(average) if average else None,
            timestamp=int(order.get("timestamp") or self._exchange.milliseconds()),
        )

    async def _place_trigger_order(
        self,
        order_type: str,
        symbol: str,
        side: OrderSide,
        quantity: Decimal,
        trigger_price: Decimal,
    ) -> OrderAck:
        logger.info(
            "creating_trigger_order",
            order_type=order_type,
            symbol=symbol,
            side=side.value,
            quantity=str(quantity),
            trigger_price=str(trigger_price),
        )
        params = {"stopPrice": str(trigger_price), "reduceOnly": True}
        with _normalise_errors(f"place_{order_type.lower()}", order_call=True):
            order = await self._exchange.create_order(
                symbol, order_type, side.value, float(quantity), None, params=params
            )
        return OrderAck(order_id=str(order.get("id", "")), symbol=symbol)

    async def place_stop_order(
        self,
        symbol: str,
        side: OrderSide,
        quantity: Decimal,
        trigger_price: Decimal,
    ) -> OrderAck:
        return await self._place_trigger_order(
            "STOP_MARKET", symbol, side, quantity, trigger_price
        )

    async def place_take_profit_order(
        self,
        symbol: str,
        side: OrderSide,
        quantity: Decimal,
        trigger_price: Decimal,
    ) -> OrderAck:
        return await self._place_trigger_order(
            "TAKE_PROFIT_MARKET", symbol, side, quantity, trigger_price
        )

    async def cancel_order(self, symbol: str, order_id: str) -> None:
        logger.info("cancelling_order", order_id=order_id, symbol=symbol)
        with _normalise_errors("cancel_order"):
            await self._exchange.cancel_order(order_id, symbol)

    async def get_mark_price(self, symbol: str) -> Decimal:
        try:
            data = await self._exchange.fetch_funding_rate(symbol)
        except ccxt_errors.BaseError as e:
            raise TransientFetchFailure(f"get_mark_price: {e}") from e
        mark = (data.get("info") or {}).get("markPrice", data.get("markPrice"))
        if mark is None:
            raise TransientFetchFailure(f"get_mark_price: no mark price for {symbol}")
        return _to_decimal(mark)

    async def get_position_size(self, symbol: str) -> ExchangePosition:
        """Return the signed position size for a symbol (0 when flat)."""
        try:
            positions = await self._exchange.fetch_positions([symbol])
        except ccxt_errors.BaseError as e:
            raise TransientFetchFailure(f"get_position_size: {e}") from e

        for pos in positions:
            if pos.get("symbol") != symbol:
                continue
            info = pos.get("info") or {}
            amount = info.get("positionAmt")
            if amount is None:
                contracts = _to_decimal(pos.get("contracts"))
                amount = -contracts if pos.get("side") == "short" else contracts
            return ExchangePosition(
                symbol=symbol,
                size=_to_decimal(amount),
                mark_price=_to_decimal(info.get("markPrice", pos.get("markPrice"))),
                unrealized_pnl=_to_decimal(
                    info.get("unRealizedProfit", pos.get("unrealizedPnl"))
                ),
            )

        return ExchangePosition(
            symbol=symbol,
            size=Decimal("0"),
            mark_price=Decimal("0"),
            unrealized_pnl=Decimal("0"),
        )

    async def get_recent_fills(self, symbol: str, since: int) -> list[TradeFill]:
        try:
            trades = await self._exchange.fetch_my_trades(symbol, since=since)
        except ccxt_errors.BaseError as e:
            raise TransientFetchFailure(f"get_recent_fills: {e}") from e

        fills: list[TradeFill] = []
        for trade in trades:
            info = trade.get("info") or {}
            fills.append(
                TradeFill(
                    order_id=str(trade.get("order") or info.get("orderId", "")),
                    side=OrderSide(trade["side"]),
                    price=_to_decimal(trade.get("price")),
                    quantity=_to_decimal(trade.get("amount")),
                    realized_pnl=_to_decimal(info.get("realizedPnl")),
                    timestamp=int(trade.get("timestamp") or 0),
                )
            )
        return fills
