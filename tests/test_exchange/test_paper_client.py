"""Tests for PaperExchangeClient simulated fills and trigger orders.

Verifies:
- Market data is delegated to the wrapped client
- Market fills apply slippage against the taker
- Stop and take-profit orders trigger when the mark crosses them
- Fills carry realized PnL only when they reduce the position
- Cancelling an unknown order raises OrderNotFound
"""

from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from funding_sniper.config import FeeSettings, PaperSettings
from funding_sniper.exceptions import OrderNotFound, OrderRejected
from funding_sniper.exchange.client import ExchangeClient
from funding_sniper.exchange.paper_client import PaperExchangeClient
from funding_sniper.models import OrderSide

SYMBOL = "BTC/USDT:USDT"


@pytest.fixture
def market_data() -> AsyncMock:
    client = AsyncMock(spec=ExchangeClient)
    client.get_mark_price.return_value = Decimal("100")
    return client


@pytest.fixture
def paper(market_data: AsyncMock) -> PaperExchangeClient:
    return PaperExchangeClient(market_data, PaperSettings(), FeeSettings())


class TestDelegation:
    @pytest.mark.asyncio
    async def test_market_data_delegated(
        self, paper: PaperExchangeClient, market_data: AsyncMock
    ) -> None:
        market_data.get_funding_snapshot.return_value = []
        market_data.get_instrument_precision_table.return_value = {}

        assert await paper.get_funding_snapshot() == []
        assert await paper.get_instrument_precision_table() == {}
        assert await paper.get_mark_price(SYMBOL) == Decimal("100")

    @pytest.mark.asyncio
    async def test_connect_and_close_delegated(
        self, paper: PaperExchangeClient, market_data: AsyncMock
    ) -> None:
        await paper.connect()
        await paper.close()
        market_data.connect.assert_awaited_once()
        market_data.close.assert_awaited_once()


class TestMarketOrders:
    @pytest.mark.asyncio
    async def test_buy_fills_above_mark(self, paper: PaperExchangeClient) -> None:
        fill = await paper.place_market_order(SYMBOL, OrderSide.BUY, Decimal("30"))

        assert fill.average_price == Decimal("100.0500")
        assert fill.filled_qty == Decimal("30")
        pos = await paper.get_position_size(SYMBOL)
        assert pos.size == Decimal("30")

    @pytest.mark.asyncio
    async def test_reduce_only_close_realizes_pnl(
        self, paper: PaperExchangeClient, market_data: AsyncMock
    ) -> None:
        await paper.place_market_order(SYMBOL, OrderSide.BUY, Decimal("30"))
        market_data.get_mark_price.return_value = Decimal("101")

        await paper.place_market_order(SYMBOL, OrderSide.SELL, Decimal("30"), reduce_only=True)

        pos = await paper.get_position_size(SYMBOL)
        assert pos.size == Decimal("0")
        fills = await paper.get_recent_fills(SYMBOL, since=0)
        assert len(fills) == 2
        assert fills[0].realized_pnl == Decimal("0")
        assert fills[1].realized_pnl > 0

    @pytest.mark.asyncio
    async def test_reduce_only_without_position_rejected(self, paper: PaperExchangeClient) -> None:
        with pytest.raises(OrderRejected):
            await paper.place_market_order(SYMBOL, OrderSide.SELL, Decimal("1"), reduce_only=True)


class TestTriggerOrders:
    @pytest.mark.asyncio
    async def test_stop_triggers_on_drop(
        self, paper: PaperExchangeClient, market_data: AsyncMock
    ) -> None:
        await paper.place_market_order(SYMBOL, OrderSide.BUY, Decimal("30"))
        ack = await paper.place_stop_order(SYMBOL, OrderSide.SELL, Decimal("30"), Decimal("99.3"))

        market_data.get_mark_price.return_value = Decimal("99.5")
        assert (await paper.get_position_size(SYMBOL)).size == Decimal("30")

        market_data.get_mark_price.return_value = Decimal("99.2")
        assert (await paper.get_position_size(SYMBOL)).size == Decimal("0")

        fills = await paper.get_recent_fills(SYMBOL, since=0)
        assert fills[-1].order_id == ack.order_id
        assert fills[-1].price == Decimal("99.3")
        assert fills[-1].realized_pnl < 0

    @pytest.mark.asyncio
    async def test_take_profit_triggers_on_rise_and_clears_stop(
        self, paper: PaperExchangeClient, market_data: AsyncMock
    ) -> None:
        await paper.place_market_order(SYMBOL, OrderSide.BUY, Decimal("30"))
        stop = await paper.place_stop_order(SYMBOL, OrderSide.SELL, Decimal("30"), Decimal("99.3"))
        tp = await paper.place_take_profit_order(
            SYMBOL, OrderSide.SELL, Decimal("30"), Decimal("101")
        )

        market_data.get_mark_price.return_value = Decimal("101.2")
        assert (await paper.get_position_size(SYMBOL)).size == Decimal("0")

        fills = await paper.get_recent_fills(SYMBOL, since=0)
        assert fills[-1].order_id == tp.order_id
        with pytest.raises(OrderNotFound):
            await paper.cancel_order(SYMBOL, stop.order_id)

    @pytest.mark.asyncio
    async def test_stop_without_position_rejected(self, paper: PaperExchangeClient) -> None:
        with pytest.raises(OrderRejected):
            await paper.place_stop_order(SYMBOL, OrderSide.SELL, Decimal("1"), Decimal("99"))

    @pytest.mark.asyncio
    async def test_cancel_resting_order(self, paper: PaperExchangeClient) -> None:
        await paper.place_market_order(SYMBOL, OrderSide.BUY, Decimal("30"))
        ack = await paper.place_stop_order(SYMBOL, OrderSide.SELL, Decimal("30"), Decimal("99.3"))

        await paper.cancel_order(SYMBOL, ack.order_id)

        with pytest.raises(OrderNotFound):
            await paper.cancel_order(SYMBOL, ack.order_id)
