"""
Negotiation Orchestrator

AUTHORITY: SYSTEM
Drives each negotiation through the state machine and is the only writer
of negotiation records.

Flow:
    trigger -> research (leverage + live rates) -> plan -> dispatch call
    -> register handle -> events arrive via webhook ingress -> terminal

The trigger path awaits twice (evidence, then dispatch). Everything after
that is event-driven. Events for one negotiation are applied one at a time,
in arrival order, under a per-negotiation lock. The state machine guard
makes duplicate, late and racing events no-ops. Slow dispatcher work that
follows an event (starting the agent) runs as a background task outside the
lock, so a hangup for the same call is never queued behind it.
"""
import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional, Set, Tuple
from uuid import uuid4

from ...config import EngineSettings
from ...errors import (
    CorrelationMiss, DispatchError, NegotiationInProgressError,
    RecordNotFoundError, TimeoutExceeded, ValidationError,
)
from ...models.domain import (
    AttemptOutcome, Bill, CallEvent, CallEventType, CallHandle, CallOutcome,
    CompetitorRate, Leverage, Negotiation, NegotiationAttempt, NegotiationPlan,
    NegotiationStatus, Tactic, utcnow,
)
from ..research.base import CompetitorResearch
from ..strategy.selector import StrategyEngine, validate_bill
from ..telephony.dispatcher import CallDispatcher
from .correlator import CallCorrelator
from .deadline_engine import NegotiationDeadlineEngine
from .leverage import LeverageRepository, NegotiationResult
from .record_store import RecordStore
from .savings import calculate_savings, resolve_new_rate
from .state_machine import NegotiationEvent, NegotiationStateMachine

logger = logging.getLogger(__name__)


LIVE_STATUSES = frozenset({NegotiationStatus.CALLING, NegotiationStatus.NEGOTIATING})


class NegotiationOrchestrator:
    """
    Runs negotiations for bills.

    Collaborators:
    - store: negotiation records (shared mutable state)
    - correlator: call handle -> negotiation id (shared mutable state)
    - dispatcher: places and controls calls
    - leverage: provider leverage, read during planning
    - research: optional live competitor research
    """

    def __init__(
        self,
        store: RecordStore,
        correlator: CallCorrelator,
        dispatcher: CallDispatcher,
        leverage: LeverageRepository,
        research: Optional[CompetitorResearch] = None,
        strategy: Optional[StrategyEngine] = None,
        settings: Optional[EngineSettings] = None,
        clock: Callable[[], datetime] = utcnow,
        deadlines: Optional[NegotiationDeadlineEngine] = None,
    ):
        self.settings = settings or EngineSettings()
        self.store = store
        self.correlator = correlator
        self.dispatcher = dispatcher
        self.leverage = leverage
        self.research = research
        self.strategy = strategy or StrategyEngine(self.settings.min_expected_savings)
        self.state_machine = NegotiationStateMachine()
        self._clock = clock
        self.deadlines = deadlines or NegotiationDeadlineEngine(
            call_timeout_seconds=self.settings.call_timeout_seconds,
            max_attempts=self.settings.max_attempts,
            clock=clock,
        )
        # Held only across the one-active-per-bill check and the create
        self._admission: Optional[asyncio.Lock] = None
        self._locks: Dict[str, asyncio.Lock] = {}
        self._bills: Dict[str, Bill] = {}
        self._tasks: Set[asyncio.Task] = set()

    # =========================================================================
    # TRIGGER PATH
    # =========================================================================

    async def start_negotiation(self, bill: Bill) -> Negotiation:
        """
        Research, plan and dial for a bill.

        Returns the negotiation as it stands once the call is placed (or
        when it was cancelled mid-way).

        Raises:
            ValidationError: bad bill, nothing is created
            NegotiationInProgressError: bill already has a live negotiation
            DispatchError: the call could not be placed; negotiation is failed
        """
        validate_bill(bill)

        async with self._admission_lock():
            await self._ensure_no_active(bill)
            negotiation = await self.store.create(Negotiation(
                id=str(uuid4()),
                bill_id=bill.id,
                owner_id=bill.owner_id,
                provider_id=bill.provider_id,
                category=bill.category,
                original_rate=bill.current_rate,
                created_at=self._clock(),
                updated_at=self._clock(),
            ))
        self._bills[negotiation.id] = bill
        logger.info(f"Negotiation {negotiation.id} created for bill {bill.id} ({bill.provider_id})")

        async with self._lock_for(negotiation.id):
            negotiation = await self._apply(negotiation, NegotiationEvent.RESEARCH_TRIGGERED) or negotiation

        leverage, researched = await self._gather_evidence(bill)

        plan = None
        async with self._lock_for(negotiation.id):
            current = await self._require(negotiation.id)
            if current.status != NegotiationStatus.RESEARCHING:
                logger.info(f"Negotiation {current.id} left researching ({current.status.value}); not dialing")
            else:
                plan = self.strategy.build_plan(
                    bill,
                    researched,
                    leverage.retention_offers,
                    leverage.historical_average_savings,
                    leverage.competitor_rates,
                )
                current = await self._apply(
                    current,
                    NegotiationEvent.PLAN_READY,
                    plan=plan,
                    started_at=self._clock(),
                )
        if plan is None:
            return self._finish_trigger(current)

        try:
            handle = await self._place_call(current, plan, bill)
        except DispatchError as exc:
            exc.negotiation_id = current.id
            failed = await self._fail_dispatch(current.id, exc)
            if failed is not None:
                raise
            return self._finish_trigger(await self._require(current.id))

        return await self._register_call(current.id, handle)

    def launch(self, bill: Bill) -> asyncio.Task:
        """Run start_negotiation as an independent task."""
        return self._spawn(self.start_negotiation(bill))

    async def _ensure_no_active(self, bill: Bill) -> None:
        for existing in await self.store.find_by_bill(bill.id):
            if not existing.is_terminal:
                raise NegotiationInProgressError(bill.id, existing.id)

    async def _gather_evidence(self, bill: Bill) -> Tuple[Leverage, List[CompetitorRate]]:
        leverage, researched = await asyncio.gather(
            self._fetch_leverage(bill.provider_id),
            self._fetch_research(bill),
        )
        return leverage, researched

    async def _fetch_leverage(self, provider_id: str) -> Leverage:
        try:
            return await asyncio.wait_for(
                self.leverage.get_leverage(provider_id),
                timeout=self.settings.leverage_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Leverage lookup for {provider_id} timed out; planning without it")
        except Exception as exc:
            logger.warning(f"Leverage lookup for {provider_id} failed: {exc}; planning without it")
        return Leverage.empty(provider_id)

    async def _fetch_research(self, bill: Bill) -> List[CompetitorRate]:
        if self.research is None:
            return []
        try:
            return list(await asyncio.wait_for(
                self.research.find_competitor_rates(bill),
                timeout=self.settings.leverage_timeout_seconds,
            ))
        except asyncio.TimeoutError:
            logger.warning(f"Competitor research for bill {bill.id} timed out")
        except Exception as exc:
            logger.warning(f"Competitor research for bill {bill.id} failed: {exc}")
        return []

    async def _place_call(self, negotiation: Negotiation, plan: NegotiationPlan, bill: Bill) -> CallHandle:
        try:
            return await asyncio.wait_for(
                self.dispatcher.place_call(negotiation, plan, bill),
                timeout=self.settings.dispatch_timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            raise DispatchError(
                f"Dispatcher did not return within {self.settings.dispatch_timeout_seconds:.0f}s",
                negotiation.id,
            ) from exc
        except DispatchError:
            raise
        except Exception as exc:
            raise DispatchError(f"Dispatcher error: {exc}", negotiation.id) from exc

    async def _fail_dispatch(self, negotiation_id: str, exc: DispatchError) -> Optional[Negotiation]:
        async with self._lock_for(negotiation_id):
            current = await self._require(negotiation_id)
            failed = await self._terminate(
                current,
                NegotiationEvent.DISPATCH_FAILED,
                AttemptOutcome.FAILED,
                notes=f"DispatchError: {exc}",
            )
        if failed is None:
            logger.info(f"Dispatch error for negotiation {negotiation_id} after it left calling: {exc}")
            return None
        logger.error(f"Negotiation {negotiation_id} failed to dispatch: {exc}")
        await self._report_result(failed)
        return self._finish_trigger(failed)

    async def _register_call(self, negotiation_id: str, handle: CallHandle) -> Negotiation:
        async with self._lock_for(negotiation_id):
            current = await self._require(negotiation_id)
            if current.status == NegotiationStatus.CALLING:
                self.correlator.register(handle.handle, negotiation_id)
                placed = await self._apply(
                    current,
                    NegotiationEvent.CALL_PLACED,
                    external_call_handle=handle.handle,
                    agent_started=handle.agent_started,
                )
                self.deadlines.arm(negotiation_id, placed.started_at or self._clock(), self.on_call_timeout)
                logger.info(f"Negotiation {negotiation_id} dialing on call {handle.handle}")
                return placed

            # Cancelled while the dial was in flight
            logger.info(
                f"Negotiation {negotiation_id} is {current.status.value}; hanging up call {handle.handle}"
            )
            await self._hang_up(handle.handle)
        return self._finish_trigger(current)

    def _finish_trigger(self, negotiation: Negotiation) -> Negotiation:
        """Release per-negotiation bookkeeping once the trigger path ends on a terminal record."""
        if negotiation.is_terminal:
            self._forget(negotiation)
            self._drop_lock(negotiation.id)
        return negotiation

    # =========================================================================
    # EVENT INGRESS
    # =========================================================================

    async def handle_event(self, event: CallEvent) -> Optional[Negotiation]:
        """
        Apply a call lifecycle event.

        Unknown handles are logged and dropped. Returns the negotiation after
        the event, or None when the event could not be correlated.
        """
        negotiation_id = self.correlator.resolve(event.call_handle)
        if negotiation_id is None:
            miss = CorrelationMiss(event.call_handle)
            logger.warning(f"{miss}; dropping {event.event_type.value} event")
            return None

        async with self._lock_for(negotiation_id):
            current = await self.store.get(negotiation_id)
            if current is None:
                logger.warning(f"Call {event.call_handle} maps to missing negotiation {negotiation_id}")
                self.correlator.unregister(event.call_handle)
                result = None
            elif event.event_type == CallEventType.INITIATED:
                logger.debug(f"Call {event.call_handle} initiated for negotiation {negotiation_id}")
                result = current
            elif event.event_type == CallEventType.ANSWERED:
                result = await self._on_answered(current)
            else:
                result = await self._on_ended(current, event)

        self._drop_lock_if_done(negotiation_id, result)
        return result

    async def _on_answered(self, current: Negotiation) -> Negotiation:
        updated = await self._apply(current, NegotiationEvent.CALL_ANSWERED)
        if updated is None:
            return current
        if not updated.agent_started and updated.external_call_handle is not None:
            self._spawn(self._start_agent(updated, self._bills.get(updated.id)))
        return updated

    async def _start_agent(self, negotiation: Negotiation, bill: Optional[Bill]) -> None:
        """Start the conversational agent, then record it if the call is still live."""
        handle = negotiation.external_call_handle
        try:
            await asyncio.wait_for(
                self.dispatcher.start_agent(negotiation, negotiation.plan, bill),
                timeout=self.settings.dispatch_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"Agent start for negotiation {negotiation.id} did not finish within "
                f"{self.settings.dispatch_timeout_seconds:.0f}s"
            )
            return
        except DispatchError as exc:
            logger.warning(f"Could not start agent for negotiation {negotiation.id}: {exc}")
            return

        async with self._lock_for(negotiation.id):
            current = await self.store.get(negotiation.id)
            if (
                current is not None
                and current.status == NegotiationStatus.NEGOTIATING
                and current.external_call_handle == handle
            ):
                current = await self.store.update(negotiation.id, {"agent_started": True})
                logger.info(f"Agent started for negotiation {negotiation.id} on call {handle}")
        self._drop_lock_if_done(negotiation.id, current)

    async def _on_ended(self, current: Negotiation, event: CallEvent) -> Negotiation:
        succeeded = event.outcome == CallOutcome.SUCCESS
        if succeeded:
            finished = await self._terminate(
                current,
                NegotiationEvent.CALL_SUCCEEDED,
                AttemptOutcome.SUCCESS,
                reported_rate=event.new_rate,
            )
        else:
            outcome = event.outcome.value if event.outcome else "none"
            finished = await self._terminate(
                current,
                NegotiationEvent.CALL_FAILED,
                AttemptOutcome.FAILED,
                notes=f"Call ended with outcome {outcome}",
            )
        if finished is None:
            return current
        await self._report_result(finished)
        self._forget(finished)
        return finished

    # =========================================================================
    # TIMEOUTS AND ATTEMPTS
    # =========================================================================

    async def on_call_timeout(self, negotiation_id: str) -> Optional[Negotiation]:
        """Deadline callback. A no-op when a terminal event already won."""
        finished = None
        async with self._lock_for(negotiation_id):
            current = await self.store.get(negotiation_id)
            if current is not None:
                _, reason = self.deadlines.check_budget(current)
                finished = await self._expire(current, reason or "Call timed out")
        if finished is not None:
            await self._report_result(finished)
            self._forget(finished)
            current = finished
        self._drop_lock_if_done(negotiation_id, current)
        return current

    async def record_tactic_attempt(
        self,
        negotiation_id: str,
        tactic: Tactic,
        outcome: AttemptOutcome,
        notes: Optional[str] = None,
    ) -> Negotiation:
        """
        Append an in-call attempt. Reaching the attempt limit fails the
        negotiation the same way the wall-clock timeout does.

        Raises:
            RecordNotFoundError: unknown negotiation
            ValidationError: tactic is not part of the negotiation's plan
        """
        finished = None
        async with self._lock_for(negotiation_id):
            current = await self._require(negotiation_id)
            if current.status not in LIVE_STATUSES:
                logger.info(
                    f"Attempt {tactic.value} ignored for negotiation {negotiation_id} in {current.status.value}"
                )
            else:
                if current.plan is not None and tactic not in current.plan.tactics:
                    raise ValidationError(
                        f"Tactic {tactic.value} is not in the plan for negotiation {negotiation_id}"
                    )
                attempt = NegotiationAttempt(tactic=tactic, outcome=outcome, timestamp=self._clock(), notes=notes)
                current = await self.store.update(negotiation_id, {"attempts": current.attempts + [attempt]})
                logger.info(
                    f"Negotiation {negotiation_id} attempt {len(current.attempts)}: "
                    f"{tactic.value} -> {outcome.value}"
                )

                within_budget, reason = self.deadlines.check_budget(current)
                if not within_budget:
                    finished = await self._expire(current, reason)

        if finished is not None:
            await self._report_result(finished)
            self._forget(finished)
            current = finished
        self._drop_lock_if_done(negotiation_id, current)
        return current

    async def _expire(self, current: Negotiation, reason: str) -> Optional[Negotiation]:
        error = TimeoutExceeded(reason)
        allowed, _ = self.state_machine.can_transition(current.status, NegotiationEvent.CALL_TIMEOUT)
        if not allowed:
            logger.debug(f"Timeout for negotiation {current.id} ignored in {current.status.value}")
            return None

        handle = current.external_call_handle
        finished = await self._terminate(
            current,
            NegotiationEvent.CALL_TIMEOUT,
            AttemptOutcome.ESCALATED,
            notes=f"TimeoutExceeded: {error}",
        )
        logger.warning(f"Negotiation {current.id} failed: {error}")
        if handle:
            await self._hang_up(handle)
        return finished

    # =========================================================================
    # CANCELLATION AND READS
    # =========================================================================

    async def cancel(self, negotiation_id: str) -> Negotiation:
        """Cancel a non-terminal negotiation. Terminal ones are returned unchanged."""
        async with self._lock_for(negotiation_id):
            current = await self._require(negotiation_id)
            handle = current.external_call_handle
            cancelled = await self._apply(
                current,
                NegotiationEvent.CANCEL,
                external_call_handle=None,
                completed_at=self._clock(),
            )
            if cancelled is not None:
                if handle:
                    self.correlator.unregister(handle)
                    await self._hang_up(handle)
                self.deadlines.disarm(negotiation_id)
                self._forget(cancelled)
                current = cancelled

        self._drop_lock_if_done(negotiation_id, current)
        return current

    async def get(self, negotiation_id: str) -> Optional[Negotiation]:
        return await self.store.get(negotiation_id)

    async def negotiations_for_bill(self, bill_id: str) -> List[Negotiation]:
        return await self.store.find_by_bill(bill_id)

    async def settle(self) -> None:
        """Wait for background work (launched negotiations, agent starts) to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Stop timers and wait for background work already started."""
        self.deadlines.shutdown()
        await self.settle()
        await self.deadlines.drain()

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _spawn(self, work: Awaitable[Optional[Negotiation]]) -> asyncio.Task:
        task = asyncio.ensure_future(work)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Background negotiation task failed: {exc}")

    def _admission_lock(self) -> asyncio.Lock:
        if self._admission is None:
            self._admission = asyncio.Lock()
        return self._admission

    def _lock_for(self, negotiation_id: str) -> asyncio.Lock:
        lock = self._locks.get(negotiation_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[negotiation_id] = lock
        return lock

    def _drop_lock(self, negotiation_id: str) -> None:
        lock = self._locks.get(negotiation_id)
        if lock is not None and not lock.locked():
            self._locks.pop(negotiation_id, None)

    def _drop_lock_if_done(self, negotiation_id: str, negotiation: Optional[Negotiation]) -> None:
        # Terminal records accept no further writes, so their lock guards nothing
        if negotiation is None or negotiation.is_terminal:
            self._drop_lock(negotiation_id)

    async def _require(self, negotiation_id: str) -> Negotiation:
        negotiation = await self.store.get(negotiation_id)
        if negotiation is None:
            raise RecordNotFoundError(negotiation_id)
        return negotiation

    async def _apply(self, current: Negotiation, event: NegotiationEvent, **changes) -> Optional[Negotiation]:
        """
        Move a negotiation along one edge and persist the changes.

        Returns None (and writes nothing) when the state machine rejects the event.
        """
        allowed, reason = self.state_machine.can_transition(current.status, event)
        if not allowed:
            logger.info(f"Negotiation {current.id}: {reason}")
            return None

        target = self.state_machine.next_state(current.status, event)
        partial = dict(changes)
        if target != current.status:
            partial["status"] = target
        updated = await self.store.update(current.id, partial) if partial else current
        logger.info(f"Negotiation {current.id}: {current.status.value} -> {target.value} ({event.value})")
        return updated

    async def _terminate(
        self,
        current: Negotiation,
        event: NegotiationEvent,
        outcome: AttemptOutcome,
        notes: Optional[str] = None,
        reported_rate: Optional[float] = None,
    ) -> Optional[Negotiation]:
        """Apply a terminal edge: record the attempt, release the call, stamp savings on success."""
        allowed, _ = self.state_machine.can_transition(current.status, event)
        if not allowed:
            return await self._apply(current, event)

        now = self._clock()
        attempt = NegotiationAttempt(
            tactic=self._current_tactic(current),
            outcome=outcome,
            timestamp=now,
            notes=notes,
        )
        changes = {
            "attempts": current.attempts + [attempt],
            "external_call_handle": None,
            "completed_at": now,
        }
        if event == NegotiationEvent.CALL_SUCCEEDED:
            new_rate = resolve_new_rate(current.original_rate, current.plan, reported_rate)
            savings = calculate_savings(current.original_rate, new_rate)
            changes.update({
                "new_rate": savings.new_rate,
                "monthly_savings": savings.monthly_savings,
                "total_savings": savings.yearly_savings,
            })

        if current.external_call_handle:
            self.correlator.unregister(current.external_call_handle)
        self.deadlines.disarm(current.id)
        return await self._apply(current, event, **changes)

    @staticmethod
    def _current_tactic(negotiation: Negotiation) -> Tactic:
        """Tactic in play: next plan tactic after those already attempted."""
        if negotiation.plan is None:
            return negotiation.attempts[-1].tactic if negotiation.attempts else Tactic.LOYALTY_PLAY
        tactics = negotiation.plan.tactics
        return tactics[min(len(negotiation.attempts), len(tactics) - 1)]

    async def _hang_up(self, handle: str) -> None:
        try:
            await self.dispatcher.end_call(handle)
        except DispatchError as exc:
            logger.warning(f"Failed to hang up call {handle}: {exc}")

    async def _report_result(self, negotiation: Negotiation) -> None:
        if negotiation.status == NegotiationStatus.CANCELLED:
            return
        last = negotiation.attempts[-1] if negotiation.attempts else None
        result = NegotiationResult(
            negotiation_id=negotiation.id,
            provider_id=negotiation.provider_id,
            success=negotiation.status == NegotiationStatus.SUCCESS,
            monthly_savings=negotiation.monthly_savings or 0.0,
            tactic=last.tactic.value if last else None,
            notes=last.notes if last else None,
        )
        try:
            await self.leverage.record_result(result)
        except Exception as exc:
            logger.warning(f"Could not record result for negotiation {negotiation.id}: {exc}")

    def _forget(self, negotiation: Negotiation) -> None:
        self._bills.pop(negotiation.id, None)
