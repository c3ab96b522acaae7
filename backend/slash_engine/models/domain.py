"""
Slash Negotiation Engine - Domain Models

These dataclasses are the shapes passed between the strategy engine,
the orchestrator and its collaborators (record store, leverage repository,
call dispatcher). Persistence rows live in db_models.py.
"""

from __future__ import annotations
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Any, Tuple


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS
# =============================================================================

class BillCategory(str, Enum):
    INTERNET = "internet"
    CELL_PHONE = "cell_phone"
    INSURANCE = "insurance"
    MEDICAL = "medical"


class NegotiationStatus(str, Enum):
    """States in the negotiation state machine."""
    PENDING = "pending"
    RESEARCHING = "researching"
    CALLING = "calling"
    NEGOTIATING = "negotiating"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({
    NegotiationStatus.SUCCESS,
    NegotiationStatus.FAILED,
    NegotiationStatus.CANCELLED,
})


class Tactic(str, Enum):
    # Telecom / insurance
    COMPETITOR_CONQUEST = "competitor_conquest"
    LOYALTY_PLAY = "loyalty_play"
    CHURN_THREAT = "churn_threat"
    RETENTION_CLOSE = "retention_close"
    SUPERVISOR_REQUEST = "supervisor_request"

    # Medical
    CASH_PAY_DISCOUNT = "cash_pay_discount"
    PAYMENT_PLAN = "payment_plan"
    ITEMIZED_BILL_REVIEW = "itemized_bill_review"


class AttemptOutcome(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    ESCALATED = "escalated"


class CallEventType(str, Enum):
    """Call lifecycle events delivered by the webhook ingress."""
    INITIATED = "initiated"
    ANSWERED = "answered"
    ENDED = "ended"


class CallOutcome(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    UNKNOWN = "unknown"


# =============================================================================
# TACTIC CATALOG
# =============================================================================

@dataclass(frozen=True)
class TacticInfo:
    name: str
    description: str
    priority: int
    categories: Tuple[BillCategory, ...]


_TELECOM_AND_INSURANCE = (
    BillCategory.INTERNET,
    BillCategory.CELL_PHONE,
    BillCategory.INSURANCE,
)

TACTIC_CATALOG: Dict[Tactic, TacticInfo] = {
    Tactic.COMPETITOR_CONQUEST: TacticInfo(
        "Competitor Conquest", "Use competitor pricing as leverage", 1, _TELECOM_AND_INSURANCE
    ),
    Tactic.LOYALTY_PLAY: TacticInfo(
        "Loyalty Play", "Emphasize customer tenure and loyalty", 2, _TELECOM_AND_INSURANCE
    ),
    Tactic.CHURN_THREAT: TacticInfo(
        "Churn Threat", "Express intent to cancel or switch", 3, _TELECOM_AND_INSURANCE
    ),
    Tactic.RETENTION_CLOSE: TacticInfo(
        "Retention Close", "Close when rep offers discount", 4, _TELECOM_AND_INSURANCE
    ),
    Tactic.SUPERVISOR_REQUEST: TacticInfo(
        "Supervisor Request", "Escalate to supervisor for better offers", 5, _TELECOM_AND_INSURANCE
    ),
    Tactic.CASH_PAY_DISCOUNT: TacticInfo(
        "Cash Pay Discount", "Ask for discount if paying cash instead of insurance", 2,
        (BillCategory.MEDICAL,),
    ),
    Tactic.PAYMENT_PLAN: TacticInfo(
        "Payment Plan", "Set up interest-free payment plan for large bills", 3,
        (BillCategory.MEDICAL,),
    ),
    Tactic.ITEMIZED_BILL_REVIEW: TacticInfo(
        "Itemized Bill Review", "Request itemized bill to check for errors or overcharges", 1,
        (BillCategory.MEDICAL,),
    ),
}


def tactics_for_category(category: BillCategory) -> List[Tactic]:
    """Tactics scoped to a category, in default priority order."""
    scoped = [t for t, info in TACTIC_CATALOG.items() if category in info.categories]
    return sorted(scoped, key=lambda t: TACTIC_CATALOG[t].priority)


# =============================================================================
# INPUTS: BILL AND LEVERAGE
# =============================================================================

@dataclass
class Bill:
    """A recurring bill. Owned outside the engine and read-only here."""
    id: str
    owner_id: str
    provider_id: str
    category: BillCategory
    current_rate: float
    account_number: str
    plan_name: Optional[str] = None
    provider_name: Optional[str] = None  # medical bills: user-entered facility name


@dataclass
class CompetitorRate:
    provider: str
    plan_name: str
    monthly_rate: float
    source: str
    observed_at: datetime = field(default_factory=utcnow)
    contract_terms: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["observed_at"] = self.observed_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> CompetitorRate:
        observed_at = data.get("observed_at")
        return cls(
            provider=data["provider"],
            plan_name=data.get("plan_name", ""),
            monthly_rate=float(data["monthly_rate"]),
            source=data.get("source", ""),
            observed_at=datetime.fromisoformat(observed_at) if observed_at else utcnow(),
            contract_terms=data.get("contract_terms"),
        )


@dataclass
class RetentionOffer:
    provider: str
    trigger: str
    typical_discount: float  # percent
    success_rate: float  # 0..1


@dataclass
class Leverage:
    """Aggregated evidence for a provider, as returned by a leverage repository."""
    provider: str
    competitor_rates: List[CompetitorRate] = field(default_factory=list)
    retention_offers: List[RetentionOffer] = field(default_factory=list)
    historical_negotiations: int = 0
    historical_average_savings: float = 0.0

    @classmethod
    def empty(cls, provider: str) -> Leverage:
        return cls(provider=provider)


# =============================================================================
# STRATEGY OUTPUT
# =============================================================================

@dataclass(frozen=True)
class NegotiationPlan:
    """
    Output of the strategy engine.

    Immutable once produced. The orchestrator persists it on the
    researching -> calling transition and never recomputes it.
    """
    tactics: Tuple[Tactic, ...]
    expected_savings: float
    script: str
    competitor_rates: Tuple[CompetitorRate, ...] = ()
    leverage_score: float = 0.0  # 0..1, grows with the number of cheaper competitors

    @property
    def primary_tactic(self) -> Tactic:
        return self.tactics[0]

    @property
    def fallback_tactic(self) -> Tactic:
        return self.tactics[-1]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tactics": [t.value for t in self.tactics],
            "expected_savings": self.expected_savings,
            "script": self.script,
            "competitor_rates": [r.to_dict() for r in self.competitor_rates],
            "leverage_score": self.leverage_score,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> NegotiationPlan:
        return cls(
            tactics=tuple(Tactic(t) for t in data["tactics"]),
            expected_savings=float(data["expected_savings"]),
            script=data.get("script", ""),
            competitor_rates=tuple(
                CompetitorRate.from_dict(r) for r in data.get("competitor_rates", [])
            ),
            leverage_score=float(data.get("leverage_score", 0.0)),
        )


# =============================================================================
# NEGOTIATION AGGREGATE
# =============================================================================

@dataclass
class NegotiationAttempt:
    tactic: Tactic
    outcome: AttemptOutcome
    timestamp: datetime = field(default_factory=utcnow)
    notes: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tactic": self.tactic.value,
            "outcome": self.outcome.value,
            "timestamp": self.timestamp.isoformat(),
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> NegotiationAttempt:
        return cls(
            tactic=Tactic(data["tactic"]),
            outcome=AttemptOutcome(data["outcome"]),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            notes=data.get("notes"),
        )


@dataclass
class Negotiation:
    """
    The mutable aggregate owned by the orchestrator.

    id, bill_id, owner_id, provider_id, category and original_rate are set at
    creation and never change. Everything else moves only through the
    orchestrator's state machine.
    """
    id: str
    bill_id: str
    owner_id: str
    provider_id: str
    category: BillCategory
    original_rate: float
    status: NegotiationStatus = NegotiationStatus.PENDING

    plan: Optional[NegotiationPlan] = None
    external_call_handle: Optional[str] = None
    agent_started: bool = False
    attempts: List[NegotiationAttempt] = field(default_factory=list)

    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    new_rate: Optional[float] = None
    monthly_savings: Optional[float] = None
    total_savings: Optional[float] = None

    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


# =============================================================================
# CALL DISPATCH AND EVENTS
# =============================================================================

@dataclass(frozen=True)
class CallHandle:
    """Result of placing a call."""
    handle: str
    call_id: Optional[str] = None
    agent_started: bool = False


@dataclass(frozen=True)
class CallEvent:
    """A discrete call lifecycle event, transport independent."""
    call_handle: str
    event_type: CallEventType
    outcome: Optional[CallOutcome] = None
    new_rate: Optional[float] = None  # rate the agent secured, when reported
    received_at: datetime = field(default_factory=utcnow)
