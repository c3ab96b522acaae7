"""
Slash Negotiation Engine - Strategy Engine

Takes a Bill plus leverage evidence and creates a NegotiationPlan.
Determines:
- Which competitor rates are usable (merged, deduped, sorted)
- Which tactics to use and in what order (category-scoped)
- The expected-savings target
- The opening script for the call

Pure: no I/O, no clock reads that influence ordering decisions.
"""
from __future__ import annotations
import logging
import math
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

from ...config import MIN_EXPECTED_SAVINGS
from ...models.domain import (
    Bill, BillCategory, CompetitorRate, NegotiationPlan, RetentionOffer, Tactic,
    tactics_for_category,
)
from ...errors import ValidationError
from .scripts import render_script

logger = logging.getLogger(__name__)


MEDICAL_SAVINGS_RATIO = 0.30
SAVINGS_CAP_RATIO = 0.25
DEFAULT_SAVINGS_RATIO = 0.15
HIGH_SUCCESS_RETENTION = 0.6


# =============================================================================
# RATE MERGING
# =============================================================================

def _keep_cheaper(pool: Dict[str, CompetitorRate], rate: CompetitorRate) -> None:
    current = pool.get(rate.provider)
    if current is None:
        pool[rate.provider] = rate
        return
    if rate.monthly_rate < current.monthly_rate:
        pool[rate.provider] = rate
    elif rate.monthly_rate == current.monthly_rate and rate.observed_at > current.observed_at:
        pool[rate.provider] = rate


def merge_competitor_rates(
    researched: Iterable[CompetitorRate],
    verified: Iterable[CompetitorRate] = (),
) -> List[CompetitorRate]:
    """
    Merge live research with repository rates.

    One entry per provider. A verified (repository) entry replaces any
    researched entry for the same provider. Duplicates inside one source keep
    the cheapest, then the most recently observed. Result is sorted ascending
    by monthly rate.
    """
    research_pool: Dict[str, CompetitorRate] = {}
    for rate in researched:
        if rate.monthly_rate > 0:
            _keep_cheaper(research_pool, rate)

    verified_pool: Dict[str, CompetitorRate] = {}
    for rate in verified:
        if rate.monthly_rate > 0:
            _keep_cheaper(verified_pool, rate)

    merged = {**research_pool, **verified_pool}
    return sorted(merged.values(), key=lambda r: (r.monthly_rate, r.provider))


# =============================================================================
# TACTIC SELECTION
# =============================================================================

def select_tactics(
    category: BillCategory,
    has_advantage: bool,
    has_retention_signal: bool,
    merged_rates: Sequence[CompetitorRate],
) -> List[Tactic]:
    """
    Category-scoped tactic list in catalog priority order.

    Evidence-gated tactics are dropped when their evidence is missing:
    - COMPETITOR_CONQUEST needs a cheaper competitor
    - RETENTION_CLOSE needs a retention signal
    """
    candidates = tactics_for_category(category)
    if not candidates:
        raise ValidationError(f"Unsupported bill category: {category}")

    if category == BillCategory.INSURANCE:
        # Insurance leads with quotes whenever any exist; bundle/retention offers are routine
        has_advantage = bool(merged_rates)
        has_retention_signal = True

    tactics: List[Tactic] = []
    for tactic in candidates:
        if tactic == Tactic.COMPETITOR_CONQUEST and not has_advantage:
            continue
        if tactic == Tactic.RETENTION_CLOSE and not has_retention_signal:
            continue
        tactics.append(tactic)
    return tactics


# =============================================================================
# STRATEGY ENGINE
# =============================================================================

class StrategyEngine:
    """
    Build negotiation plans.

    Input: Bill, competitor rates, retention offers, historical average savings
    Output: NegotiationPlan (immutable)

    Stateless; safe to share across concurrent negotiations.
    """

    def __init__(self, min_expected_savings: float = MIN_EXPECTED_SAVINGS):
        self.min_expected_savings = min_expected_savings

    def build_plan(
        self,
        bill: Bill,
        competitor_rates: Sequence[CompetitorRate],
        retention_offers: Sequence[RetentionOffer],
        historical_average_savings: Optional[float] = None,
        leverage_rates: Sequence[CompetitorRate] = (),
    ) -> NegotiationPlan:
        """
        Create a NegotiationPlan for a bill.

        Args:
            bill: The bill being negotiated
            competitor_rates: Rates from live research
            retention_offers: Retention offer statistics
            historical_average_savings: Average monthly savings from past negotiations
            leverage_rates: Verified rates from the leverage repository

        Returns:
            NegotiationPlan

        Raises:
            ValidationError: If the bill's current rate is not a positive finite number
        """
        validate_bill(bill)

        merged = merge_competitor_rates(competitor_rates, leverage_rates)

        cheaper = [r for r in merged if r.monthly_rate < bill.current_rate]
        has_advantage = len(cheaper) > 0

        provider_offers = [o for o in retention_offers if o.provider == bill.provider_id]
        has_retention_signal = bool(provider_offers) or any(
            o.success_rate > HIGH_SUCCESS_RETENTION for o in retention_offers
        )

        tactics = select_tactics(bill.category, has_advantage, has_retention_signal, merged)

        expected = self._expected_savings(
            bill,
            cheapest_advantage=cheaper[0] if cheaper else None,
            historical_average_savings=historical_average_savings,
        )

        analysis = analyze_competition(bill.current_rate, merged)

        plan = NegotiationPlan(
            tactics=tuple(tactics),
            expected_savings=expected,
            script=render_script(tactics[0], bill, merged),
            competitor_rates=tuple(merged),
            leverage_score=analysis.leverage,
        )

        logger.info(
            f"Plan for bill {bill.id} ({bill.category.value}): "
            f"primary={plan.primary_tactic.value}, tactics={len(tactics)}, "
            f"expected_savings={expected:.2f}, competitors={len(merged)}, "
            f"leverage={analysis.leverage:.2f} ({analysis.recommendation})"
        )
        return plan

    def _expected_savings(
        self,
        bill: Bill,
        cheapest_advantage: Optional[CompetitorRate],
        historical_average_savings: Optional[float],
    ) -> float:
        rate = bill.current_rate
        cap = rate * SAVINGS_CAP_RATIO

        if bill.category == BillCategory.MEDICAL:
            savings = rate * MEDICAL_SAVINGS_RATIO
        elif cheapest_advantage is not None:
            savings = min(rate - cheapest_advantage.monthly_rate, cap)
        elif historical_average_savings and historical_average_savings > 0:
            savings = min(historical_average_savings, cap)
        else:
            savings = rate * DEFAULT_SAVINGS_RATIO

        return max(savings, self.min_expected_savings)


def validate_bill(bill: Bill) -> None:
    """Reject bills the engine cannot negotiate."""
    rate = bill.current_rate
    if rate is None or not math.isfinite(rate) or rate <= 0:
        raise ValidationError(f"Bill {bill.id} has invalid current rate: {rate}")
    if not isinstance(bill.category, BillCategory):
        raise ValidationError(f"Bill {bill.id} has unknown category: {bill.category}")


# =============================================================================
# COMPETITIVE ANALYSIS
# =============================================================================

@dataclass(frozen=True)
class CompetitiveAnalysis:
    competitors: List[CompetitorRate]
    leverage: float  # 0..1
    recommendation: str


def analyze_competition(current_rate: float, competitor_rates: Sequence[CompetitorRate]) -> CompetitiveAnalysis:
    """Score how much pricing leverage the competitor set gives."""
    ordered = sorted(competitor_rates, key=lambda r: r.monthly_rate)
    cheaper = [r for r in ordered if r.monthly_rate < current_rate]
    leverage = min(len(cheaper) / 3, 1.0) if cheaper else 0.0

    if leverage > 0.7:
        recommendation = "Strong leverage - lead with competitor conquest"
    elif leverage > 0.3:
        recommendation = "Moderate leverage - combine competitor + loyalty tactics"
    else:
        recommendation = "Limited leverage - lead with loyalty and churn threat"

    return CompetitiveAnalysis(competitors=ordered, leverage=leverage, recommendation=recommendation)


# =============================================================================
# FACTORY FUNCTION
# =============================================================================

def build_plan(
    bill: Bill,
    competitor_rates: Sequence[CompetitorRate],
    retention_offers: Sequence[RetentionOffer],
    historical_average_savings: Optional[float] = None,
    leverage_rates: Sequence[CompetitorRate] = (),
) -> NegotiationPlan:
    """Build a plan with the default savings floor."""
    return StrategyEngine().build_plan(
        bill,
        competitor_rates,
        retention_offers,
        historical_average_savings,
        leverage_rates,
    )
