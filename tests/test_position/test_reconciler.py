"""Tests for the Reconciler.

Verifies:
- Open positions (size above tolerance) are left alone
- Close reason resolution: stop, take-profit, profit check, other, unknown
- A stop withdrawn by the profit check is still recognised on its fill
- SHORT positions match BUY closing fills only
- Fill matching by side, quantity tolerance, entry time and realized PnL
- Exactly one record per detected closure, slot cleared after recording
- Recording failure leaves the position for the next tick
- Residual order cancels are best effort
"""

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from funding_sniper.config import StrategySettings
from funding_sniper.exceptions import OrderNotFound, TransientFetchFailure
from funding_sniper.models import (
    CloseReason,
    ExchangePosition,
    OrderSide,
    PositionSide,
    PositionState,
    TradeFill,
)
from funding_sniper.position.reconciler import Reconciler
from funding_sniper.session import TradingSession

from conftest import NOW_MS, SYMBOL, make_position


def _observed(size: str = "0", mark: str = "99.3", upnl: str = "-21") -> ExchangePosition:
    return ExchangePosition(
        symbol=SYMBOL,
        size=Decimal(size),
        mark_price=Decimal(mark),
        unrealized_pnl=Decimal(upnl),
    )


def _fill(
    order_id: str,
    ts: int = NOW_MS + 60_000,
    side: OrderSide = OrderSide.SELL,
    qty: str = "30.000",
    price: str = "99.3",
    pnl: str = "-21",
) -> TradeFill:
    return TradeFill(
        order_id=order_id,
        side=side,
        price=Decimal(price),
        quantity=Decimal(qty),
        realized_pnl=Decimal(pnl),
        timestamp=ts,
    )


@pytest.fixture
def reconciler(
    session: TradingSession, mock_client: AsyncMock, strategy: StrategySettings
) -> Reconciler:
    return Reconciler(session, mock_client, strategy)


# ---------------------------------------------------------------------------
# Still open
# ---------------------------------------------------------------------------


class TestStillOpen:
    @pytest.mark.asyncio
    async def test_no_position_does_nothing(
        self, reconciler: Reconciler, mock_client: AsyncMock
    ) -> None:
        assert await reconciler.reconcile() is None
        mock_client.get_position_size.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_open_position_untouched(
        self, session: TradingSession, reconciler: Reconciler, mock_client: AsyncMock
    ) -> None:
        session.set_position(make_position())
        mock_client.get_position_size.return_value = _observed(size="30.000")

        assert await reconciler.reconcile() is None
        assert session.position is not None
        assert session.trades == []

    @pytest.mark.asyncio
    async def test_residual_dust_counts_as_closed(
        self, session: TradingSession, reconciler: Reconciler, mock_client: AsyncMock
    ) -> None:
        session.set_position(make_position())
        # 0.2 < 30 * 1%
        mock_client.get_position_size.return_value = _observed(size="0.2")
        mock_client.get_recent_fills.return_value = []

        assert await reconciler.reconcile() is not None
        assert session.position is None

    @pytest.mark.asyncio
    async def test_size_query_failure_skips(
        self, session: TradingSession, reconciler: Reconciler, mock_client: AsyncMock
    ) -> None:
        session.set_position(make_position())
        mock_client.get_position_size.side_effect = TransientFetchFailure("timeout")

        assert await reconciler.reconcile() is None
        assert session.position is not None

    @pytest.mark.asyncio
    async def test_skips_while_lock_held(
        self, session: TradingSession, reconciler: Reconciler, mock_client: AsyncMock
    ) -> None:
        session.set_position(make_position())
        async with session.order_lock:
            assert await reconciler.reconcile() is None
        mock_client.get_position_size.assert_not_awaited()


# ---------------------------------------------------------------------------
# Close reasons
# ---------------------------------------------------------------------------


class TestCloseReasons:
    @pytest.mark.asyncio
    async def test_stop_hit(
        self, session: TradingSession, reconciler: Reconciler, mock_client: AsyncMock
    ) -> None:
        session.set_position(make_position())
        mock_client.get_position_size.return_value = _observed()
        mock_client.get_recent_fills.return_value = [_fill("stop-1")]
        mock_client.cancel_order.side_effect = OrderNotFound("gone")

        record = await reconciler.reconcile()

        assert record is not None
        assert record.reason == CloseReason.STOP_HIT
        assert record.exit_price == Decimal("99.3")
        assert record.realized_pnl == Decimal("-21")
        assert session.trades == [record]
        assert session.position is None
        mock_client.get_recent_fills.assert_awaited_once_with(SYMBOL, NOW_MS - 5000)

    @pytest.mark.asyncio
    async def test_take_profit_hit(
        self, session: TradingSession, reconciler: Reconciler, mock_client: AsyncMock
    ) -> None:
        session.set_position(make_position(take_profit_order_id="tp-1"))
        mock_client.get_position_size.return_value = _observed()
        mock_client.get_recent_fills.return_value = [_fill("tp-1", price="101", pnl="30")]

        record = await reconciler.reconcile()

        assert record is not None
        assert record.reason == CloseReason.TAKE_PROFIT_HIT
        mock_client.cancel_order.assert_any_await(SYMBOL, "stop-1")

    @pytest.mark.asyncio
    async def test_closed_after_profit_check(
        self, session: TradingSession, reconciler: Reconciler, mock_client: AsyncMock
    ) -> None:
        session.set_position(make_position(stop_order_id=None, profit_check_completed=True))
        mock_client.get_position_size.return_value = _observed()
        mock_client.get_recent_fills.return_value = [_fill("flatten-1", price="100.5", pnl="15")]

        record = await reconciler.reconcile()

        assert record is not None
        assert record.reason == CloseReason.CLOSED_AFTER_PROFIT_CHECK
        mock_client.cancel_order.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_withdrawn_stop_fill_is_stop_hit(
        self, session: TradingSession, reconciler: Reconciler, mock_client: AsyncMock
    ) -> None:
        # The profit check found the stop gone because it had already filled
        session.set_position(
            make_position(
                stop_order_id=None,
                cancelled_stop_order_id="stop-1",
                profit_check_completed=True,
            )
        )
        mock_client.get_position_size.return_value = _observed()
        mock_client.get_recent_fills.return_value = [_fill("stop-1")]

        record = await reconciler.reconcile()

        assert record is not None
        assert record.reason == CloseReason.STOP_HIT
        assert record.realized_pnl == Decimal("-21")
        mock_client.cancel_order.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_closed_other(
        self, session: TradingSession, reconciler: Reconciler, mock_client: AsyncMock
    ) -> None:
        session.set_position(make_position())
        mock_client.get_position_size.return_value = _observed()
        mock_client.get_recent_fills.return_value = [_fill("manual-99")]

        record = await reconciler.reconcile()

        assert record is not None
        assert record.reason == CloseReason.CLOSED_OTHER

    @pytest.mark.asyncio
    async def test_no_matching_fill_is_unknown(
        self, session: TradingSession, reconciler: Reconciler, mock_client: AsyncMock
    ) -> None:
        session.set_position(make_position())
        mock_client.get_position_size.return_value = _observed(mark="98.7", upnl="-39")
        mock_client.get_recent_fills.return_value = [
            _fill("stop-1", side=OrderSide.BUY),  # wrong side
            _fill("stop-1", qty="10"),  # wrong quantity
            _fill("stop-1", ts=NOW_MS - 1000),  # before entry
            _fill("stop-1", pnl="0"),  # opening fill
        ]

        record = await reconciler.reconcile()

        assert record is not None
        assert record.reason == CloseReason.CLOSED_UNKNOWN
        assert record.exit_price == Decimal("98.7")
        assert record.realized_pnl == Decimal("-39")
        assert session.position is None

    @pytest.mark.asyncio
    async def test_fill_history_error_is_unknown(
        self, session: TradingSession, reconciler: Reconciler, mock_client: AsyncMock
    ) -> None:
        session.set_position(make_position())
        mock_client.get_position_size.return_value = _observed()
        mock_client.get_recent_fills.side_effect = TransientFetchFailure("timeout")

        record = await reconciler.reconcile()

        assert record is not None
        assert record.reason == CloseReason.CLOSED_UNKNOWN
        assert len(session.trades) == 1

    @pytest.mark.asyncio
    async def test_newest_matching_fill_wins(
        self, session: TradingSession, reconciler: Reconciler, mock_client: AsyncMock
    ) -> None:
        session.set_position(make_position())
        mock_client.get_position_size.return_value = _observed()
        mock_client.get_recent_fills.return_value = [
            _fill("manual-1", ts=NOW_MS + 10_000, price="99.9"),
            _fill("stop-1", ts=NOW_MS + 50_000, price="99.3"),
        ]

        record = await reconciler.reconcile()

        assert record is not None
        assert record.reason == CloseReason.STOP_HIT
        assert record.exit_price == Decimal("99.3")

    @pytest.mark.asyncio
    async def test_quantity_within_tolerance_matches(
        self, session: TradingSession, reconciler: Reconciler, mock_client: AsyncMock
    ) -> None:
        session.set_position(make_position())
        mock_client.get_position_size.return_value = _observed()
        # 0.1 difference < 30 * 0.5%
        mock_client.get_recent_fills.return_value = [_fill("stop-1", qty="29.9")]

        record = await reconciler.reconcile()

        assert record is not None
        assert record.reason == CloseReason.STOP_HIT


# ---------------------------------------------------------------------------
# Short side
# ---------------------------------------------------------------------------


class TestShortPosition:
    @pytest.mark.asyncio
    async def test_buy_stop_fill_is_stop_hit(
        self, session: TradingSession, reconciler: Reconciler, mock_client: AsyncMock
    ) -> None:
        session.set_position(make_position(side=PositionSide.SHORT))
        mock_client.get_position_size.return_value = _observed(mark="100.7")
        mock_client.get_recent_fills.return_value = [
            _fill("stop-1", side=OrderSide.BUY, price="100.7")
        ]

        record = await reconciler.reconcile()

        assert record is not None
        assert record.reason == CloseReason.STOP_HIT
        assert record.side == PositionSide.SHORT
        assert record.exit_price == Decimal("100.7")
        assert session.position is None

    @pytest.mark.asyncio
    async def test_sell_fill_does_not_close_short(
        self, session: TradingSession, reconciler: Reconciler, mock_client: AsyncMock
    ) -> None:
        session.set_position(make_position(side=PositionSide.SHORT))
        mock_client.get_position_size.return_value = _observed(mark="100.7", upnl="-21")
        mock_client.get_recent_fills.return_value = [_fill("stop-1", side=OrderSide.SELL)]

        record = await reconciler.reconcile()

        assert record is not None
        assert record.reason == CloseReason.CLOSED_UNKNOWN
        assert record.exit_price == Decimal("100.7")

    def test_match_fill_takes_buy_side(self, reconciler: Reconciler) -> None:
        position = make_position(side=PositionSide.SHORT)
        buy = _fill("stop-1", side=OrderSide.BUY)
        sell = _fill("manual-1", side=OrderSide.SELL, ts=NOW_MS + 90_000)

        assert reconciler.match_fill(position, [buy, sell]) is buy


# ---------------------------------------------------------------------------
# Exactly-once recording
# ---------------------------------------------------------------------------


class TestExactlyOnce:
    @pytest.mark.asyncio
    async def test_single_record_across_ticks(
        self, session: TradingSession, reconciler: Reconciler, mock_client: AsyncMock
    ) -> None:
        session.set_position(make_position())
        mock_client.get_position_size.return_value = _observed()
        mock_client.get_recent_fills.return_value = [_fill("stop-1")]

        await reconciler.reconcile()
        await reconciler.reconcile()

        assert len(session.trades) == 1

    @pytest.mark.asyncio
    async def test_record_failure_keeps_position_for_retry(
        self, session: TradingSession, reconciler: Reconciler, mock_client: AsyncMock
    ) -> None:
        session.set_position(make_position())
        mock_client.get_position_size.return_value = _observed()
        mock_client.get_recent_fills.return_value = [_fill("stop-1")]

        with patch.object(session, "record_trade", side_effect=RuntimeError("disk full")):
            assert await reconciler.reconcile() is None

        assert session.position is not None
        assert session.position.state == PositionState.OPEN
        mock_client.cancel_order.assert_not_awaited()

        record = await reconciler.reconcile()
        assert record is not None
        assert session.trades == [record]
        assert session.position is None

    @pytest.mark.asyncio
    async def test_clearing_cancels_pending_check(
        self, session: TradingSession, reconciler: Reconciler, mock_client: AsyncMock
    ) -> None:
        pending = MagicMock()
        position = make_position()
        position.pending_check = pending
        session.set_position(position)
        mock_client.get_position_size.return_value = _observed()
        mock_client.get_recent_fills.return_value = [_fill("stop-1")]

        await reconciler.reconcile()

        pending.cancel.assert_called_once()
