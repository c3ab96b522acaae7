"""Slash Negotiation Engine - Data Models"""
from .domain import (
    # Enums
    BillCategory, NegotiationStatus, Tactic, AttemptOutcome, CallEventType, CallOutcome,
    TERMINAL_STATUSES,
    # Tactic catalog
    TacticInfo, TACTIC_CATALOG, tactics_for_category,
    # Inputs
    Bill, CompetitorRate, RetentionOffer, Leverage,
    # Strategy output
    NegotiationPlan,
    # Aggregate
    NegotiationAttempt, Negotiation,
    # Calls
    CallHandle, CallEvent,
)
from .providers import Provider, PROVIDERS, get_provider, providers_in_category

__all__ = [
    "BillCategory", "NegotiationStatus", "Tactic", "AttemptOutcome", "CallEventType", "CallOutcome",
    "TERMINAL_STATUSES",
    "TacticInfo", "TACTIC_CATALOG", "tactics_for_category",
    "Bill", "CompetitorRate", "RetentionOffer", "Leverage",
    "NegotiationPlan",
    "NegotiationAttempt", "Negotiation",
    "CallHandle", "CallEvent",
    "Provider", "PROVIDERS", "get_provider", "providers_in_category",
]
