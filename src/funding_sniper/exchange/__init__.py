"""Exchange client layer -- Binance USD-M futures via ccxt, plus a paper simulator."""

from funding_sniper.exchange.binance_client import BinanceFuturesClient
from funding_sniper.exchange.client import ExchangeClient
from funding_sniper.exchange.paper_client import PaperExchangeClient
from funding_sniper.exchange.types import InstrumentPrecision

__all__ = [
    "BinanceFuturesClient",
    "ExchangeClient",
    "InstrumentPrecision",
    "PaperExchangeClient",
]
