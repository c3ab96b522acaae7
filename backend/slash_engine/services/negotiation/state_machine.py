"""
Negotiation State Machine

Single NegotiationStatus enum is the source of truth.
State transitions:
    PENDING → RESEARCHING → CALLING → NEGOTIATING → SUCCESS | FAILED
    any non-terminal → CANCELLED

Terminal states (SUCCESS, FAILED, CANCELLED) accept no events. A disallowed
transition is reported, never raised: duplicate and late webhook deliveries
land here and must be no-ops.
"""
from enum import Enum
from typing import Dict, List, Optional, Tuple

from ...models.domain import NegotiationStatus, TERMINAL_STATUSES


class NegotiationEvent(str, Enum):
    """Inputs that drive the state machine."""
    RESEARCH_TRIGGERED = "research_triggered"
    PLAN_READY = "plan_ready"
    CALL_PLACED = "call_placed"
    CALL_ANSWERED = "call_answered"
    CALL_SUCCEEDED = "call_succeeded"  # ended with success signal
    CALL_FAILED = "call_failed"  # ended without success signal
    CALL_TIMEOUT = "call_timeout"  # wall-clock or attempt budget exhausted
    DISPATCH_FAILED = "dispatch_failed"
    CANCEL = "cancel"


S = NegotiationStatus
E = NegotiationEvent


# State transition map: (current_state, event) -> new_state
TRANSITIONS: Dict[Tuple[NegotiationStatus, NegotiationEvent], NegotiationStatus] = {
    # Planning
    (S.PENDING, E.RESEARCH_TRIGGERED): S.RESEARCHING,
    (S.RESEARCHING, E.PLAN_READY): S.CALLING,

    # Dialing
    (S.CALLING, E.CALL_PLACED): S.CALLING,
    (S.CALLING, E.DISPATCH_FAILED): S.FAILED,
    (S.CALLING, E.CALL_ANSWERED): S.NEGOTIATING,

    # Call ended. From CALLING when the answered event was lost or arrives late.
    (S.NEGOTIATING, E.CALL_SUCCEEDED): S.SUCCESS,
    (S.NEGOTIATING, E.CALL_FAILED): S.FAILED,
    (S.CALLING, E.CALL_SUCCEEDED): S.SUCCESS,
    (S.CALLING, E.CALL_FAILED): S.FAILED,

    # Timeout
    (S.CALLING, E.CALL_TIMEOUT): S.FAILED,
    (S.NEGOTIATING, E.CALL_TIMEOUT): S.FAILED,

    # Cancellation
    (S.PENDING, E.CANCEL): S.CANCELLED,
    (S.RESEARCHING, E.CANCEL): S.CANCELLED,
    (S.CALLING, E.CANCEL): S.CANCELLED,
    (S.NEGOTIATING, E.CANCEL): S.CANCELLED,
}


class NegotiationStateMachine:
    """
    Deterministic state machine for a single negotiation.

    Core Principles:
    - Status only moves along TRANSITIONS
    - Terminal states are final; events against them are no-ops
    - NEGOTIATING never regresses to CALLING
    """

    def can_transition(
        self,
        current_state: NegotiationStatus,
        event: NegotiationEvent,
    ) -> Tuple[bool, Optional[str]]:
        """
        Check if a state transition is allowed.

        Returns (allowed, reason)
        """
        if self.is_terminal(current_state):
            return False, f"Negotiation already terminal ({current_state.value}); {event.value} ignored"

        if (current_state, event) not in TRANSITIONS:
            return False, f"Invalid transition: {current_state.value} + {event.value}"

        return True, None

    def next_state(
        self,
        current_state: NegotiationStatus,
        event: NegotiationEvent,
    ) -> Optional[NegotiationStatus]:
        """Target state for an event, or None when the event is not accepted."""
        allowed, _ = self.can_transition(current_state, event)
        if not allowed:
            return None
        return TRANSITIONS[(current_state, event)]

    def get_available_events(self, current_state: NegotiationStatus) -> List[NegotiationEvent]:
        """Events accepted in a state."""
        return [event for (state, event) in TRANSITIONS if state == current_state]

    def is_terminal(self, state: NegotiationStatus) -> bool:
        """Check if state is terminal (no further transitions possible)."""
        return state in TERMINAL_STATUSES
