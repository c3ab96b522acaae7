"""Slash Negotiation Engine - Telephony

Outbound call placement and in-call agent control.
"""
from .dispatcher import CallDispatcher, TelnyxCallDispatcher, build_negotiation_instructions
from .telnyx_client import TelnyxClient, TelnyxAPIError

__all__ = [
    "CallDispatcher", "TelnyxCallDispatcher", "build_negotiation_instructions",
    "TelnyxClient", "TelnyxAPIError",
]
