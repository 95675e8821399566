"""Entry timing decision for the head candidate of each poll tick."""

from funding_sniper.config import StrategySettings
from funding_sniper.logging import get_logger
from funding_sniper.models import Candidate, EntryTimingPolicy, Position
from funding_sniper.position.manager import PositionManager
from funding_sniper.session import TradingSession

logger = get_logger(__name__)


class EntryScheduler:
    """Fires the open sequence when the top candidate is inside its window.

    Exactly one EntryTimingPolicy is active per run:
    - PRE_FUNDING: 0 < ms_to_funding <= window
    - POST_FUNDING: 0 < -ms_to_funding <= window
    - IMMEDIATE: always

    Args:
        session: Shared session (position slot and order lock).
        manager: Position manager that runs the open sequence.
        strategy: Timing policy and window configuration.
    """

    def __init__(
        self,
        session: TradingSession,
        manager: PositionManager,
        strategy: StrategySettings,
    ) -> None:
        self._session = session
        self._manager = manager
        self._policy = strategy.entry_timing
        self._window_ms = strategy.entry_window_ms

    def should_fire(self, candidate: Candidate) -> bool:
        ms = candidate.ms_to_funding
        if self._policy == EntryTimingPolicy.PRE_FUNDING:
            return 0 < ms <= self._window_ms
        if self._policy == EntryTimingPolicy.POST_FUNDING:
            return 0 < -ms <= self._window_ms
        return True

    async def maybe_enter(self, candidates: list[Candidate]) -> Position | None:
        """Open a position on the head candidate if its window is open.

        Only index 0 is considered; the rest of the list is never evaluated
        in the same tick.

        Returns:
            The opened position, or None if nothing was opened.
        """
        if not candidates:
            return None
        if self._session.has_position or self._session.order_lock.locked():
            return None

        head = candidates[0]
        if not self.should_fire(head):
            return None

        logger.info(
            "entry_window_open",
            symbol=head.symbol,
            policy=self._policy.value,
            ms_to_funding=head.ms_to_funding,
            funding_rate=str(head.funding_rate),
        )
        return await self._manager.open_position(head)
