"""Candidate ranking over the latest funding snapshot.

Two-stage ordering:
  1. profitability: funding rate ascending (most negative first), truncated
     to the configured top-N pool
  2. urgency: within that pool only, time-to-funding ascending, ties broken
     by funding rate ascending

Profitability picks the pool and urgency orders it, so an imminent but
marginal symbol can never displace a more profitable one from the pool.
"""

from decimal import Decimal

from funding_sniper.config import FeeSettings, StrategySettings
from funding_sniper.exchange.types import InstrumentPrecision
from funding_sniper.logging import get_logger
from funding_sniper.models import Candidate, FundingRateData
from funding_sniper.position.metrics import compute_metrics

logger = get_logger(__name__)


class CandidateRanker:
    """Filters a funding snapshot and produces the ordered shortlist.

    Args:
        strategy: Quote asset, rate threshold and top-N list size.
        fees: Fee rates forwarded to the metrics calculator.
    """

    def __init__(self, strategy: StrategySettings, fees: FeeSettings) -> None:
        self._strategy = strategy
        self._fees = fees

    def rank(
        self,
        snapshot: list[FundingRateData],
        precision_table: dict[str, InstrumentPrecision],
        now_ms: int,
    ) -> list[Candidate]:
        """Rank the snapshot into at most top_list_count candidates.

        Args:
            snapshot: Funding rows from the exchange.
            precision_table: Instrument precision keyed by symbol.
            now_ms: Current time, used to compute ms_to_funding.

        Returns:
            Candidates in priority order; index 0 is this tick's candidate.
        """
        best: dict[str, Candidate] = {}
        threshold = self._strategy.funding_rate_threshold

        for row in snapshot:
            if not self._matches_quote(row.symbol):
                continue
            if not row.rate < threshold:
                continue

            precision = precision_table.get(row.symbol)
            if precision is None:
                continue

            metrics = compute_metrics(
                row.mark_price, precision, row.rate, self._strategy, self._fees
            )
            if metrics is None:
                logger.debug("candidate_filtered_out", symbol=row.symbol, rate=str(row.rate))
                continue

            # Duplicate rows for one symbol: keep the most negative rate
            existing = best.get(row.symbol)
            if existing is not None and existing.funding_rate <= row.rate:
                continue

            best[row.symbol] = Candidate(
                symbol=row.symbol,
                funding_rate=row.rate,
                next_funding_time=row.next_funding_time,
                mark_price=row.mark_price,
                metrics=metrics,
                ms_to_funding=row.next_funding_time - now_ms,
                precision=precision,
            )

        pool = sorted(best.values(), key=lambda c: c.funding_rate)
        pool = pool[: self._strategy.top_list_count]
        pool.sort(key=lambda c: (c.ms_to_funding, c.funding_rate))
        return pool

    def _matches_quote(self, symbol: str) -> bool:
        # ccxt unified perpetual symbols end in ":USDT"; raw ids end in "USDT"
        return symbol.endswith(self._strategy.quote_asset)

    @staticmethod
    def best_rate(candidates: list[Candidate]) -> Decimal | None:
        """Most negative funding rate among the candidates, if any."""
        if not candidates:
            return None
        return min(c.funding_rate for c in candidates)
