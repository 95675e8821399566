"""Shared test fixtures for the funding sniper bot."""

from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from funding_sniper.config import (
    AppSettings,
    ExchangeSettings,
    FeeSettings,
    PaperSettings,
    StrategySettings,
)
from funding_sniper.exchange.client import ExchangeClient
from funding_sniper.exchange.types import InstrumentPrecision
from funding_sniper.models import (
    Candidate,
    OrderAck,
    OrderFill,
    OrderSide,
    Position,
    PositionSide,
    PositionState,
)
from funding_sniper.position.metrics import compute_metrics
from funding_sniper.session import TradingSession

SYMBOL = "BTC/USDT:USDT"
NOW_MS = 1_700_000_000_000


@pytest.fixture
def strategy() -> StrategySettings:
    """Strategy defaults (LONG, pre-funding entry, post-funding profit check)."""
    return StrategySettings()


@pytest.fixture
def fees() -> FeeSettings:
    return FeeSettings()


@pytest.fixture
def mock_settings(strategy: StrategySettings, fees: FeeSettings) -> AppSettings:
    """Return AppSettings with test defaults (paper mode, dummy API keys)."""
    return AppSettings(
        log_level="DEBUG",
        exchange=ExchangeSettings(
            api_key="test-api-key",  # type: ignore[arg-type]
            api_secret="test-api-secret",  # type: ignore[arg-type]
            testnet=False,
        ),
        strategy=strategy,
        fees=fees,
        paper=PaperSettings(),
    )


@pytest.fixture
def precision() -> InstrumentPrecision:
    return InstrumentPrecision(
        symbol=SYMBOL,
        price_precision=1,
        quantity_precision=3,
        min_qty=Decimal("0.001"),
        tick_size=Decimal("0.1"),
    )


@pytest.fixture
def session() -> TradingSession:
    return TradingSession()


@pytest.fixture
def mock_client() -> AsyncMock:
    """Exchange client with happy-path defaults for the open sequence."""
    client = AsyncMock(spec=ExchangeClient)
    client.place_market_order.return_value = OrderFill(
        order_id="entry-1",
        symbol=SYMBOL,
        side=OrderSide.BUY,
        filled_qty=Decimal("30.000"),
        average_price=Decimal("100"),
        timestamp=NOW_MS,
    )
    client.place_stop_order.return_value = OrderAck(order_id="stop-1", symbol=SYMBOL)
    client.place_take_profit_order.return_value = OrderAck(order_id="tp-1", symbol=SYMBOL)
    return client


def make_candidate(
    strategy: StrategySettings,
    fees: FeeSettings,
    precision: InstrumentPrecision,
    rate: Decimal = Decimal("-0.002"),
    mark_price: Decimal = Decimal("100"),
    ms_to_funding: int = 5_000,
    now: int = NOW_MS,
) -> Candidate:
    metrics = compute_metrics(mark_price, precision, rate, strategy, fees)
    assert metrics is not None
    return Candidate(
        symbol=precision.symbol,
        funding_rate=rate,
        next_funding_time=now + ms_to_funding,
        mark_price=mark_price,
        metrics=metrics,
        ms_to_funding=ms_to_funding,
        precision=precision,
    )


def make_position(**overrides) -> Position:
    fields = dict(
        symbol=SYMBOL,
        side=PositionSide.LONG,
        entry_price=Decimal("100"),
        quantity=Decimal("30.000"),
        entry_time=NOW_MS,
        funding_time=NOW_MS + 5_000,
        funding_rate=Decimal("-0.002"),
        entry_fee=Decimal("1.5"),
        stop_order_id="stop-1",
        state=PositionState.OPEN,
    )
    fields.update(overrides)
    return Position(**fields)
