"""Abstract exchange client interface.

Defines the contract every exchange implementation provides to the strategy
core. Implementations translate their native errors into the classes in
funding_sniper.exceptions before they escape, so the core never inspects
transport-specific error shapes.
"""

from abc import ABC, abstractmethod
from decimal import Decimal

from funding_sniper.exchange.types import InstrumentPrecision
from funding_sniper.models import (
    ExchangePosition,
    FundingRateData,
    OrderAck,
    OrderFill,
    OrderSide,
    TradeFill,
)


class ExchangeClient(ABC):
    """Abstract base class for perpetual futures exchange clients."""

    @abstractmethod
    async def connect(self) -> None:
        """Initialize connection and load markets."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Clean up resources (CRITICAL for ccxt async)."""
        ...

    @abstractmethod
    async def get_funding_snapshot(self) -> list[FundingRateData]:
        """Return the current funding rate of every perpetual.

        Returns an empty list on transient failure instead of raising.
        """
        ...

    @abstractmethod
    async def get_instrument_precision_table(self) -> dict[str, InstrumentPrecision]:
        """Return precision metadata for every tradable perpetual, keyed by symbol."""
        ...

    @abstractmethod
    async def set_leverage(self, symbol: str, leverage: int) -> None:
        """Set the leverage multiplier for a symbol.

        Raises:
            ExchangeRejected: If the exchange refuses the leverage change.
        """
        ...

    @abstractmethod
    async def place_market_order(
        self,
        symbol: str,
        side: OrderSide,
        quantity: Decimal,
        reduce_only: bool = False,
    ) -> OrderFill:
        """Place a market order and return its fill.

        Raises:
            OrderRejected: If the exchange declines the order.
        """
        ...

    @abstractmethod
    async def place_stop_order(
        self,
        symbol: str,
        side: OrderSide,
        quantity: Decimal,
        trigger_price: Decimal,
    ) -> OrderAck:
        """Place a reduce-only stop-market order.

        Raises:
            OrderRejected: If the exchange declines the order.
        """
        ...

    @abstractmethod
    async def place_take_profit_order(
        self,
        symbol: str,
        side: OrderSide,
        quantity: Decimal,
        trigger_price: Decimal,
    ) -> OrderAck:
        """Place a reduce-only take-profit-market order.

        Raises:
            OrderRejected: If the exchange declines the order.
        """
        ...

    @abstractmethod
    async def cancel_order(self, symbol: str, order_id: str) -> None:
        """Cancel a resting order.

        Raises:
            OrderNotFound: If the order is already gone (filled or cancelled).
        """
        ...

    @abstractmethod
    async def get_mark_price(self, symbol: str) -> Decimal:
        """Return the current mark price.

        Raises:
            TransientFetchFailure: If the price cannot be fetched.
        """
        ...

    @abstractmethod
    async def get_position_size(self, symbol: str) -> ExchangePosition:
        """Return the exchange's authoritative position for a symbol.

        A symbol with no position is reported with size 0.
        """
        ...

    @abstractmethod
    async def get_recent_fills(self, symbol: str, since: int) -> list[TradeFill]:
        """Return account executions for a symbol since a Unix-ms timestamp."""
        ...
