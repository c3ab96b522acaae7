# services/negotiation/savings.py

from dataclasses import dataclass
from typing import Optional

from ...models.domain import NegotiationPlan

MONTHS_PER_YEAR = 12


@dataclass(frozen=True)
class SavingsBreakdown:
    new_rate: float
    monthly_savings: float
    yearly_savings: float
    percentage_saved: float


def calculate_savings(original_rate: float, new_rate: float) -> SavingsBreakdown:
    """Monthly savings floored at zero; yearly is twelve months of it."""
    monthly = max(original_rate - new_rate, 0.0)
    percentage = (monthly / original_rate) * 100 if original_rate > 0 else 0.0
    return SavingsBreakdown(
        new_rate=new_rate,
        monthly_savings=round(monthly, 2),
        yearly_savings=round(monthly * MONTHS_PER_YEAR, 2),
        percentage_saved=round(percentage, 2),
    )


def resolve_new_rate(
    original_rate: float,
    plan: Optional[NegotiationPlan],
    reported_rate: Optional[float] = None,
) -> float:
    """
    Rate to record on success.

    The agent's reported rate wins; otherwise the plan target is assumed met.
    """
    if reported_rate is not None and reported_rate >= 0:
        return reported_rate
    expected = plan.expected_savings if plan is not None else 0.0
    return max(original_rate - expected, 0.0)
