"""Main bot orchestrator -- runs the fixed-interval poll loop.

Each tick, in this fixed order:
  1. SNAPSHOT: fetch funding rates for every perpetual (empty -> skip tick)
  2. RANK: filter, size and order candidates
  3. ENTER or RECONCILE: with no position, let the entry scheduler consider
     the head candidate; with a position, reconcile it against the exchange

The deferred profit check runs as its own task on the same event loop and
is serialised against the tick by the session's order-placement lock.
"""

import asyncio

from funding_sniper.config import AppSettings
from funding_sniper.exchange.client import ExchangeClient
from funding_sniper.logging import get_logger
from funding_sniper.market_data.ranker import CandidateRanker
from funding_sniper.models import Candidate
from funding_sniper.position.entry_scheduler import EntryScheduler
from funding_sniper.position.reconciler import Reconciler
from funding_sniper.session import TradingSession, now_ms

logger = get_logger(__name__)


class Orchestrator:
    """Poll loop wiring snapshot, ranking, entry and reconciliation.

    Args:
        settings: Application-wide settings.
        client: Exchange client (paper or live).
        session: Shared trading session.
        ranker: Candidate ranker.
        scheduler: Entry scheduler.
        reconciler: Reconciliation engine.
    """

    def __init__(
        self,
        settings: AppSettings,
        client: ExchangeClient,
        session: TradingSession,
        ranker: CandidateRanker,
        scheduler: EntryScheduler,
        reconciler: Reconciler,
    ) -> None:
        self._settings = settings
        self._client = client
        self._session = session
        self._ranker = ranker
        self._scheduler = scheduler
        self._reconciler = reconciler
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Load the precision table once, then run the poll loop until stopped."""
        strategy = self._settings.strategy
        logger.info(
            "orchestrator_starting",
            mode=strategy.mode,
            side=strategy.position_side.value,
            entry_timing=strategy.entry_timing.value,
            exit_policy=strategy.exit_policy.value,
        )
        self._session.precision_table = await self._client.get_instrument_precision_table()
        self._running = True
        try:
            await self._run_loop()
        finally:
            self._running = False
            logger.info("orchestrator_stopped")

    async def stop(self) -> None:
        """Signal the loop to stop.

        Open positions are left on the exchange under their stop order. The
        pending profit check is cancelled since nothing will serve it.
        """
        logger.info("orchestrator_stopping_gracefully")
        self._running = False
        position = self._session.position
        if position is not None:
            if position.pending_check is not None:
                position.pending_check.cancel()
                position.pending_check = None
            logger.warning(
                "position_still_open_on_shutdown",
                symbol=position.symbol,
                quantity=str(position.quantity),
                stop_order_id=position.stop_order_id,
                note="position remains on the exchange, manage it manually",
            )

    async def _run_loop(self) -> None:
        interval = self._settings.strategy.check_interval_seconds
        while self._running:
            try:
                await self.tick()
                await asyncio.sleep(interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("orchestrator_cycle_error", error=str(e), exc_info=True)
                await asyncio.sleep(interval)

    async def tick(self, now: int | None = None) -> list[Candidate]:
        """Run one poll cycle.

        Args:
            now: Override for the current Unix-ms time.

        Returns:
            The ranked candidates for this tick (empty when skipped).
        """
        snapshot = await self._client.get_funding_snapshot()
        if not snapshot:
            logger.warning("funding_snapshot_empty_skipping_tick")
            return []

        now = now if now is not None else now_ms()
        candidates = self._ranker.rank(snapshot, self._session.precision_table, now)
        self._session.last_candidates = candidates
        self._session.last_tick_at = now

        if candidates:
            head = candidates[0]
            logger.debug(
                "tick_ranked",
                candidate_count=len(candidates),
                head=head.symbol,
                head_rate=str(head.funding_rate),
                ms_to_funding=head.ms_to_funding,
            )

        if self._session.position is None:
            await self._scheduler.maybe_enter(candidates)
        else:
            await self._reconciler.reconcile()
        return candidates

    def get_status(self) -> dict:
        """Return current orchestrator status for the status API."""
        strategy = self._settings.strategy
        position = self._session.position
        best = CandidateRanker.best_rate(self._session.last_candidates)
        return {
            "running": self._running,
            "mode": strategy.mode,
            "side": strategy.position_side.value,
            "entry_timing": strategy.entry_timing.value,
            "exit_policy": strategy.exit_policy.value,
            "last_tick_at": self._session.last_tick_at,
            "candidate_count": len(self._session.last_candidates),
            "best_funding_rate": str(best) if best is not None else None,
            "position_symbol": position.symbol if position is not None else None,
            "position_state": position.state.value if position is not None else "empty",
            "trade_count": len(self._session.trades),
            "alert_count": len(self._session.alerts),
        }
