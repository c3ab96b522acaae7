"""
Negotiation Control - Internal API Endpoints

Entry points the bill service calls to drive the engine.

Endpoints:
A) POST /internal/negotiations - Trigger a negotiation for a bill
B) GET  /internal/negotiations/{id} - Read a negotiation
C) POST /internal/negotiations/{id}/cancel - Cancel (state change)
D) POST /internal/negotiations/{id}/attempts - Report an in-call tactic attempt
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from ..errors import DispatchError, NegotiationInProgressError, RecordNotFoundError, ValidationError
from ..models.domain import AttemptOutcome, Bill, BillCategory, Negotiation, Tactic
from ..services.negotiation import NegotiationOrchestrator
from .webhooks import get_orchestrator


router = APIRouter(prefix="/internal/negotiations", tags=["Negotiations"])


# =============================================================================
# REQUEST/RESPONSE MODELS
# =============================================================================

class TriggerRequest(BaseModel):
    """Bill to negotiate."""
    bill_id: str
    owner_id: str
    provider_id: str
    category: BillCategory
    current_rate: float = Field(..., description="Current monthly rate", allow_inf_nan=False)
    account_number: str
    plan_name: Optional[str] = None
    provider_name: Optional[str] = None


class AttemptRequest(BaseModel):
    tactic: Tactic
    outcome: AttemptOutcome
    notes: Optional[str] = None


class AttemptView(BaseModel):
    tactic: str
    outcome: str
    timestamp: str
    notes: Optional[str] = None


class NegotiationResponse(BaseModel):
    id: str
    bill_id: str
    provider_id: str
    status: str
    original_rate: float
    tactics: List[str] = []
    expected_savings: Optional[float] = None
    leverage_score: Optional[float] = None
    external_call_handle: Optional[str] = None
    attempts: List[AttemptView] = []
    new_rate: Optional[float] = None
    monthly_savings: Optional[float] = None
    total_savings: Optional[float] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None


def _to_response(negotiation: Negotiation) -> NegotiationResponse:
    plan = negotiation.plan
    return NegotiationResponse(
        id=negotiation.id,
        bill_id=negotiation.bill_id,
        provider_id=negotiation.provider_id,
        status=negotiation.status.value,
        original_rate=negotiation.original_rate,
        tactics=[t.value for t in plan.tactics] if plan else [],
        expected_savings=plan.expected_savings if plan else None,
        leverage_score=plan.leverage_score if plan else None,
        external_call_handle=negotiation.external_call_handle,
        attempts=[AttemptView(**a.to_dict()) for a in negotiation.attempts],
        new_rate=negotiation.new_rate,
        monthly_savings=negotiation.monthly_savings,
        total_savings=negotiation.total_savings,
        started_at=negotiation.started_at.isoformat() if negotiation.started_at else None,
        completed_at=negotiation.completed_at.isoformat() if negotiation.completed_at else None,
    )


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.post("", response_model=NegotiationResponse)
async def trigger_negotiation(
    request: TriggerRequest,
    orchestrator: NegotiationOrchestrator = Depends(get_orchestrator),
):
    """Research, plan and dial. Returns once the call is placed."""
    bill = Bill(
        id=request.bill_id,
        owner_id=request.owner_id,
        provider_id=request.provider_id,
        category=request.category,
        current_rate=request.current_rate,
        account_number=request.account_number,
        plan_name=request.plan_name,
        provider_name=request.provider_name,
    )
    try:
        negotiation = await orchestrator.start_negotiation(bill)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except NegotiationInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except DispatchError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return _to_response(negotiation)


@router.get("/{negotiation_id}", response_model=NegotiationResponse)
async def get_negotiation(
    negotiation_id: str,
    orchestrator: NegotiationOrchestrator = Depends(get_orchestrator),
):
    negotiation = await orchestrator.get(negotiation_id)
    if negotiation is None:
        raise HTTPException(status_code=404, detail=f"Negotiation {negotiation_id} not found")
    return _to_response(negotiation)


@router.post("/{negotiation_id}/cancel", response_model=NegotiationResponse)
async def cancel_negotiation(
    negotiation_id: str,
    orchestrator: NegotiationOrchestrator = Depends(get_orchestrator),
):
    """Cancel a negotiation. Already-finished negotiations come back unchanged."""
    try:
        negotiation = await orchestrator.cancel(negotiation_id)
    except RecordNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return _to_response(negotiation)


@router.post("/{negotiation_id}/attempts", response_model=NegotiationResponse)
async def record_attempt(
    negotiation_id: str,
    request: AttemptRequest,
    orchestrator: NegotiationOrchestrator = Depends(get_orchestrator),
):
    """Tactics outside the negotiation's plan are rejected with 400."""
    try:
        negotiation = await orchestrator.record_tactic_attempt(
            negotiation_id, request.tactic, request.outcome, request.notes,
        )
    except RecordNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _to_response(negotiation)
