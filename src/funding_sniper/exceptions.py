"""Custom exceptions for the funding sniper bot.

Exchange failures are normalised into a closed set of error kinds at the
client boundary (see exchange/binance_client.py). Strategy code only ever
inspects these classes, never raw ccxt exceptions.
"""

from enum import Enum


class ExchangeErrorKind(str, Enum):
    """Closed enumeration of exchange failure kinds."""

    EXCHANGE_REJECTED = "exchange_rejected"
    ORDER_REJECTED = "order_rejected"
    ORDER_NOT_FOUND = "order_not_found"
    TRANSIENT = "transient"


class BotError(Exception):
    """Base exception for all bot errors."""


class ExchangeError(BotError):
    """Base class for normalised exchange failures."""

    kind: ExchangeErrorKind = ExchangeErrorKind.EXCHANGE_REJECTED


class ExchangeRejected(ExchangeError):
    """Raised when the exchange declines a non-order request (e.g. leverage)."""

    kind = ExchangeErrorKind.EXCHANGE_REJECTED


class OrderRejected(ExchangeError):
    """Raised when the exchange declines an order."""

    kind = ExchangeErrorKind.ORDER_REJECTED


class OrderNotFound(ExchangeError):
    """Raised when cancelling an order the exchange no longer knows about."""

    kind = ExchangeErrorKind.ORDER_NOT_FOUND


class TransientFetchFailure(ExchangeError):
    """Raised when a market data or account query fails and may succeed later."""

    kind = ExchangeErrorKind.TRANSIENT
