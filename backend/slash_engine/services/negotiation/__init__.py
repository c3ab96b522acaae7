"""Slash Negotiation Engine - Negotiation Orchestration

State machine, call correlation, deadlines and the orchestrator that ties
them to the record store, leverage repository and call dispatcher.
"""
from .state_machine import NegotiationEvent, NegotiationStateMachine, TRANSITIONS
from .correlator import CallCorrelator
from .deadline_engine import NegotiationDeadlineEngine
from .record_store import RecordStore, InMemoryRecordStore, SqlRecordStore
from .leverage import (
    LeverageRepository, InMemoryLeverageRepository, SqlLeverageRepository, NegotiationResult,
)
from .savings import SavingsBreakdown, calculate_savings, resolve_new_rate
from .orchestrator import NegotiationOrchestrator

__all__ = [
    "NegotiationEvent", "NegotiationStateMachine", "TRANSITIONS",
    "CallCorrelator",
    "NegotiationDeadlineEngine",
    "RecordStore", "InMemoryRecordStore", "SqlRecordStore",
    "LeverageRepository", "InMemoryLeverageRepository", "SqlLeverageRepository", "NegotiationResult",
    "SavingsBreakdown", "calculate_savings", "resolve_new_rate",
    "NegotiationOrchestrator",
]
