"""
Negotiation Engine Errors

ValidationError and DispatchError reach the trigger caller.
CorrelationMiss and TimeoutExceeded are raised and handled internally;
they never leave the orchestrator.
"""
from typing import Optional


class NegotiationEngineError(Exception):
    """Base class for engine errors."""
    pass


class ValidationError(NegotiationEngineError):
    """Raised for bad input before any negotiation state is created."""
    pass


class DispatchError(NegotiationEngineError):
    """Raised when an outbound call cannot be placed."""

    def __init__(self, message: str, negotiation_id: Optional[str] = None):
        super().__init__(message)
        self.negotiation_id = negotiation_id


class CorrelationMiss(NegotiationEngineError):
    """An event arrived for a call handle no negotiation is tracking."""

    def __init__(self, call_handle: str):
        super().__init__(f"No negotiation registered for call handle {call_handle}")
        self.call_handle = call_handle


class TimeoutExceeded(NegotiationEngineError):
    """A live negotiation ran past its wall-clock or attempt budget."""
    pass


class RecordNotFoundError(NegotiationEngineError):
    """Raised by a record store when a negotiation id is unknown."""

    def __init__(self, negotiation_id: str):
        super().__init__(f"Negotiation {negotiation_id} not found")
        self.negotiation_id = negotiation_id


class NegotiationInProgressError(NegotiationEngineError):
    """The bill already has a negotiation that has not finished."""

    def __init__(self, bill_id: str, negotiation_id: str):
        super().__init__(f"Bill {bill_id} already has negotiation {negotiation_id} in progress")
        self.bill_id = bill_id
        self.negotiation_id = negotiation_id
