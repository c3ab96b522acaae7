"""
Telnyx Webhook Ingress

POST /webhooks/telnyx

Translates Telnyx call-control webhooks into CallEvents and hands them to
the orchestrator. Well-formed deliveries are always acknowledged with 200,
including ones for calls no negotiation is tracking, so Telnyx does not retry.
"""
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from ..models.domain import CallEvent, CallEventType, CallOutcome
from ..services.negotiation import NegotiationOrchestrator

logger = logging.getLogger(__name__)


router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


EVENT_TYPE_MAP = {
    "call.initiated": CallEventType.INITIATED,
    "call.answered": CallEventType.ANSWERED,
    "call.hangup": CallEventType.ENDED,
}

SUCCESS_OUTCOMES = {"success", "succeeded", "completed_success"}
FAILED_OUTCOMES = {"failed", "failure", "no_answer", "busy", "rejected"}


# =============================================================================
# REQUEST/RESPONSE MODELS
# =============================================================================

class TelnyxCallPayload(BaseModel):
    """Call fields Telnyx sends with every call.* event."""
    call_control_id: str = Field(..., description="Handle returned when the call was dialed")
    call_id: Optional[str] = None
    state: Optional[str] = None
    duration: Optional[float] = None
    result: Optional[Dict[str, Any]] = Field(None, description="Outcome block on call.hangup")


class TelnyxEvent(BaseModel):
    event_type: str
    payload: TelnyxCallPayload


class TelnyxWebhook(BaseModel):
    """Accepts the v2 envelope ({"data": {...}}) or a flat event."""
    data: Optional[TelnyxEvent] = None
    event_type: Optional[str] = None
    payload: Optional[TelnyxCallPayload] = None

    def event(self) -> Optional[TelnyxEvent]:
        if self.data is not None:
            return self.data
        if self.event_type and self.payload is not None:
            return TelnyxEvent(event_type=self.event_type, payload=self.payload)
        return None


class WebhookAck(BaseModel):
    status: str
    event_type: str
    negotiation_id: Optional[str] = None
    negotiation_status: Optional[str] = None


# =============================================================================
# TRANSLATION
# =============================================================================

def parse_outcome(result: Optional[Dict[str, Any]]) -> Optional[CallOutcome]:
    if not result or result.get("outcome") is None:
        return None
    outcome = str(result["outcome"]).strip().lower()
    if outcome in SUCCESS_OUTCOMES:
        return CallOutcome.SUCCESS
    if outcome in FAILED_OUTCOMES:
        return CallOutcome.FAILED
    return CallOutcome.UNKNOWN


def parse_new_rate(result: Optional[Dict[str, Any]]) -> Optional[float]:
    if not result or result.get("new_rate") is None:
        return None
    try:
        return float(result["new_rate"])
    except (TypeError, ValueError):
        logger.warning(f"Ignoring unparseable new_rate in webhook: {result['new_rate']!r}")
        return None


def to_call_event(event: TelnyxEvent) -> Optional[CallEvent]:
    """CallEvent for a tracked event type, else None."""
    event_type = EVENT_TYPE_MAP.get(event.event_type)
    if event_type is None:
        return None
    result = event.payload.result
    if event_type == CallEventType.ENDED:
        return CallEvent(
            call_handle=event.payload.call_control_id,
            event_type=event_type,
            outcome=parse_outcome(result),
            new_rate=parse_new_rate(result),
        )
    return CallEvent(call_handle=event.payload.call_control_id, event_type=event_type)


def get_orchestrator(request: Request) -> NegotiationOrchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Negotiation engine not initialized")
    return orchestrator


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.post("/telnyx", response_model=WebhookAck)
async def telnyx_webhook(
    body: TelnyxWebhook,
    orchestrator: NegotiationOrchestrator = Depends(get_orchestrator),
):
    """Receive a Telnyx call lifecycle event."""
    event = body.event()
    if event is None:
        raise HTTPException(status_code=422, detail="Webhook carries no event_type/payload")

    call_event = to_call_event(event)
    if call_event is None:
        logger.debug(f"Ignoring Telnyx event {event.event_type}")
        return WebhookAck(status="ignored", event_type=event.event_type)

    negotiation = await orchestrator.handle_event(call_event)
    if negotiation is None:
        return WebhookAck(status="unmatched", event_type=event.event_type)

    return WebhookAck(
        status="received",
        event_type=event.event_type,
        negotiation_id=negotiation.id,
        negotiation_status=negotiation.status.value,
    )
