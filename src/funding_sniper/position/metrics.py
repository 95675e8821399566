"""Trade metrics calculation for a prospective entry.

Pure functions only: no I/O, no state. All calculations use Decimal.

Sizing flow:
1. notional = investment_usd * leverage
2. quantity = notional / entry_price, floored to the quantity precision
3. reject (None) if the floored quantity is zero or below min_qty
4. stop-loss snapped to the nearest tick; take-profit too, for fixed-bracket exits only
5. reject (None) if snapping moved a trigger to the wrong side of entry
"""

from decimal import Decimal

from funding_sniper.config import FeeSettings, StrategySettings
from funding_sniper.exchange.types import (
    InstrumentPrecision,
    floor_to_precision,
    format_price,
    snap_to_tick,
)
from funding_sniper.models import ExitPolicy, PositionSide, TradeMetrics


def estimate_funding_gain(
    notional: Decimal, funding_rate: Decimal, side: PositionSide
) -> Decimal:
    """Funding received (positive) or paid (negative) for one settlement.

    Positive rates charge longs and pay shorts, so a LONG gains
    -notional * rate and a SHORT gains +notional * rate.
    """
    if side == PositionSide.LONG:
        return -notional * funding_rate
    return notional * funding_rate


def _trigger_price(
    entry_price: Decimal, offset: Decimal, precision: InstrumentPrecision
) -> Decimal:
    raw = entry_price * (Decimal("1") + offset)
    return format_price(snap_to_tick(raw, precision.tick_size), precision.price_precision)


def compute_metrics(
    entry_price: Decimal,
    precision: InstrumentPrecision | None,
    funding_rate: Decimal,
    strategy: StrategySettings,
    fees: FeeSettings,
) -> TradeMetrics | None:
    """Size a position and derive its protective prices and expected economics.

    Args:
        entry_price: Expected entry price (mark price at ranking time).
        precision: Instrument constraints for the symbol.
        funding_rate: Current funding rate as a signed fraction.
        strategy: Sizing, side and stop/target configuration.
        fees: Maker/taker fee rates.

    Returns:
        TradeMetrics, or None when the instrument is not tradable under the
        current configuration. None is a filtering outcome, not an error.
    """
    if entry_price <= 0 or precision is None:
        return None
    if strategy.require_negative_funding and funding_rate >= 0:
        return None

    side = strategy.position_side
    direction = side.direction

    notional = strategy.investment_usd * Decimal(strategy.leverage)
    quantity = floor_to_precision(notional / entry_price, precision.quantity_precision)
    if quantity <= 0 or quantity < precision.min_qty:
        return None

    # Stop sits on the loss side: below entry for LONG, above for SHORT
    stop_fraction = strategy.stop_loss_fraction
    stop_loss_price = _trigger_price(entry_price, -direction * stop_fraction, precision)
    if (stop_loss_price - entry_price) * direction >= 0:
        return None

    take_profit_price: Decimal | None = None
    estimated_profit_at_target: Decimal | None = None

    entry_fee = notional * fees.taker
    exit_fee_at_stop = notional * (Decimal("1") - direction * stop_fraction) * fees.taker
    estimated_loss_at_stop = notional * stop_fraction + entry_fee + exit_fee_at_stop

    # Profit-check exits never place a take-profit order
    tp_fraction = strategy.take_profit_fraction
    if (
        strategy.exit_policy == ExitPolicy.FIXED_BRACKET
        and tp_fraction is not None
        and tp_fraction > 0
    ):
        take_profit_price = _trigger_price(entry_price, direction * tp_fraction, precision)
        if (take_profit_price - entry_price) * direction <= 0:
            return None
        exit_fee_at_target = notional * (Decimal("1") + direction * tp_fraction) * fees.maker
        estimated_profit_at_target = notional * tp_fraction - entry_fee - exit_fee_at_target

    return TradeMetrics(
        notional=notional,
        quantity=quantity,
        entry_fee=entry_fee,
        stop_loss_price=stop_loss_price,
        take_profit_price=take_profit_price,
        estimated_funding_gain=estimate_funding_gain(notional, funding_rate, side),
        estimated_loss_at_stop=estimated_loss_at_stop,
        estimated_profit_at_target=estimated_profit_at_target,
    )
