"""
Negotiation Deadline Engine

AUTHORITY: SYSTEM
Tracks the wall-clock budget of every live call and fires the timeout
WITHOUT waiting for a webhook.

Key behaviors:
- Deadline is measured from started_at (entry into CALLING)
- A negotiation is over budget after CALL_TIMEOUT_SECONDS or MAX_ATTEMPTS
  recorded attempts, whichever comes first
- Firing a deadline only schedules the orchestrator callback; the state
  machine guard decides whether it still applies
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, Optional, Set, Tuple

from ...config import CALL_TIMEOUT_SECONDS, MAX_ATTEMPTS
from ...models.domain import Negotiation, utcnow

logger = logging.getLogger(__name__)


TimeoutCallback = Callable[[str], Awaitable[None]]


class NegotiationDeadlineEngine:
    """
    Manages call deadlines for the orchestrator.

    Core Responsibilities:
    - Calculate deadlines from started_at
    - Arm / disarm one timer per negotiation on the running event loop
    - Detect attempt-budget exhaustion
    """

    def __init__(
        self,
        call_timeout_seconds: float = CALL_TIMEOUT_SECONDS,
        max_attempts: int = MAX_ATTEMPTS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.call_timeout_seconds = call_timeout_seconds
        self.max_attempts = max_attempts
        self._clock = clock
        self._timers: Dict[str, asyncio.TimerHandle] = {}
        self._tasks: Set[asyncio.Task] = set()

    # =========================================================================
    # DEADLINE CALCULATION
    # =========================================================================

    def calculate_deadline(self, started_at: datetime) -> datetime:
        return started_at + timedelta(seconds=self.call_timeout_seconds)

    def remaining_seconds(self, started_at: datetime) -> float:
        """Seconds left before the deadline, never negative."""
        remaining = (self.calculate_deadline(started_at) - self._clock()).total_seconds()
        return max(remaining, 0.0)

    def is_expired(self, started_at: Optional[datetime]) -> bool:
        if started_at is None:
            return False
        return self.remaining_seconds(started_at) <= 0

    def attempts_exhausted(self, negotiation: Negotiation) -> bool:
        return len(negotiation.attempts) >= self.max_attempts

    def check_budget(self, negotiation: Negotiation) -> Tuple[bool, Optional[str]]:
        """
        Check whether a live negotiation is still within budget.

        Returns (within_budget, reason)
        """
        if self.attempts_exhausted(negotiation):
            return False, f"Attempt limit reached ({len(negotiation.attempts)}/{self.max_attempts})"
        if self.is_expired(negotiation.started_at):
            return False, f"Call exceeded {self.call_timeout_seconds:.0f}s without completing"
        return True, None

    # =========================================================================
    # TIMERS
    # =========================================================================

    def arm(self, negotiation_id: str, started_at: datetime, callback: TimeoutCallback) -> None:
        """Schedule callback(negotiation_id) at the deadline. Must run on the event loop."""
        self.disarm(negotiation_id)
        loop = asyncio.get_running_loop()
        delay = self.remaining_seconds(started_at)
        self._timers[negotiation_id] = loop.call_later(delay, self._fire, negotiation_id, callback)
        logger.debug(f"Armed call timeout for negotiation {negotiation_id} in {delay:.1f}s")

    def disarm(self, negotiation_id: str) -> bool:
        timer = self._timers.pop(negotiation_id, None)
        if timer is None:
            return False
        timer.cancel()
        logger.debug(f"Disarmed call timeout for negotiation {negotiation_id}")
        return True

    def is_armed(self, negotiation_id: str) -> bool:
        return negotiation_id in self._timers

    def _fire(self, negotiation_id: str, callback: TimeoutCallback) -> None:
        self._timers.pop(negotiation_id, None)
        logger.info(f"Call timeout fired for negotiation {negotiation_id}")
        task = asyncio.ensure_future(callback(negotiation_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait for timeout callbacks already fired."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def shutdown(self) -> None:
        for negotiation_id in list(self._timers):
            self.disarm(negotiation_id)
