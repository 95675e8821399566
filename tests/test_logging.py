"""Tests for structured logging helpers.

Verifies:
- Decimal and enum values render as plain strings
- A position binding reaches tasks created inside the block only
- setup_logging binds the trading mode
"""

import asyncio
import logging
from decimal import Decimal

import pytest
import structlog

from funding_sniper.logging import position_context, render_trading_values, setup_logging
from funding_sniper.models import PositionState

from conftest import SYMBOL


def test_trading_values_rendered_as_strings() -> None:
    event = render_trading_values(
        None,
        "info",
        {
            "event": "position_entered",
            "entry_price": Decimal("99.3"),
            "state": PositionState.OPEN,
            "count": 2,
        },
    )

    assert event == {
        "event": "position_entered",
        "entry_price": "99.3",
        "state": "open",
        "count": 2,
    }


@pytest.mark.asyncio
async def test_position_context_follows_task_created_inside() -> None:
    structlog.contextvars.clear_contextvars()

    async def bound() -> dict:
        await asyncio.sleep(0)
        return structlog.contextvars.get_contextvars()

    with position_context(SYMBOL, "stop-1"):
        task = asyncio.create_task(bound())

    assert structlog.contextvars.get_contextvars() == {}
    assert await task == {"symbol": SYMBOL, "stop_order_id": "stop-1"}


def test_setup_logging_binds_mode() -> None:
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    try:
        setup_logging("DEBUG", mode="paper")
        assert structlog.contextvars.get_contextvars() == {"mode": "paper"}
        assert logging.getLogger("ccxt").level == logging.WARNING
    finally:
        structlog.contextvars.clear_contextvars()
        structlog.reset_defaults()
        root.handlers[:] = handlers
        root.setLevel(level)
