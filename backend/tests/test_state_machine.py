"""
Tests for the negotiation state machine.

The transition map is the only authority on status changes:
- forward path pending → researching → calling → negotiating → terminal
- any non-terminal state can be cancelled
- terminal states accept nothing
- negotiating never regresses to calling
"""
import pytest

from slash_engine.models.domain import NegotiationStatus as S
from slash_engine.services.negotiation.state_machine import (
    NegotiationEvent as E, NegotiationStateMachine, TRANSITIONS,
)


@pytest.fixture
def machine():
    return NegotiationStateMachine()


class TestForwardPath:

    @pytest.mark.parametrize("state,event,expected", [
        (S.PENDING, E.RESEARCH_TRIGGERED, S.RESEARCHING),
        (S.RESEARCHING, E.PLAN_READY, S.CALLING),
        (S.CALLING, E.CALL_PLACED, S.CALLING),
        (S.CALLING, E.CALL_ANSWERED, S.NEGOTIATING),
        (S.NEGOTIATING, E.CALL_SUCCEEDED, S.SUCCESS),
        (S.NEGOTIATING, E.CALL_FAILED, S.FAILED),
        (S.CALLING, E.CALL_TIMEOUT, S.FAILED),
        (S.NEGOTIATING, E.CALL_TIMEOUT, S.FAILED),
        (S.CALLING, E.DISPATCH_FAILED, S.FAILED),
    ])
    def test_allowed_transitions(self, machine, state, event, expected):
        allowed, reason = machine.can_transition(state, event)
        assert allowed is True
        assert reason is None
        assert machine.next_state(state, event) == expected

    def test_hangup_before_answer_finishes_call(self, machine):
        """An ended event while still calling resolves by outcome."""
        assert machine.next_state(S.CALLING, E.CALL_SUCCEEDED) == S.SUCCESS
        assert machine.next_state(S.CALLING, E.CALL_FAILED) == S.FAILED


class TestGuards:

    @pytest.mark.parametrize("state", [S.PENDING, S.RESEARCHING, S.CALLING, S.NEGOTIATING])
    def test_cancel_from_any_live_state(self, machine, state):
        assert machine.next_state(state, E.CANCEL) == S.CANCELLED

    @pytest.mark.parametrize("state", [S.SUCCESS, S.FAILED, S.CANCELLED])
    def test_terminal_states_accept_nothing(self, machine, state):
        for event in E:
            allowed, reason = machine.can_transition(state, event)
            assert allowed is False
            assert "terminal" in reason
        assert machine.get_available_events(state) == []
        assert machine.is_terminal(state)

    def test_no_regression_to_calling(self, machine):
        for event in E:
            assert machine.next_state(S.NEGOTIATING, event) != S.CALLING

    def test_answered_twice_is_rejected(self, machine):
        allowed, reason = machine.can_transition(S.NEGOTIATING, E.CALL_ANSWERED)
        assert allowed is False
        assert "Invalid transition" in reason

    def test_unknown_pairs_are_reported_not_raised(self, machine):
        assert machine.next_state(S.PENDING, E.CALL_ANSWERED) is None
        assert machine.next_state(S.RESEARCHING, E.CALL_TIMEOUT) is None

    def test_no_transition_leaves_a_terminal_state(self):
        terminal = {S.SUCCESS, S.FAILED, S.CANCELLED}
        assert not [key for key in TRANSITIONS if key[0] in terminal]

    def test_available_events_in_calling(self, machine):
        events = set(machine.get_available_events(S.CALLING))
        assert E.CALL_ANSWERED in events
        assert E.CALL_TIMEOUT in events
        assert E.RESEARCH_TRIGGERED not in events
