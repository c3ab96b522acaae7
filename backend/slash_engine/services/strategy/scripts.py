"""
Negotiation script text.

Deterministic templates: the same bill, tactic and rates always produce
the same text.
"""
from typing import List, Sequence

from ...models.domain import Bill, BillCategory, CompetitorRate, Tactic


RETENTION_TARGET_RATIO = 0.2


def _money(amount: float) -> str:
    return f"${amount:.2f}"


def _opening(bill: Bill) -> List[str]:
    if bill.category == BillCategory.MEDICAL:
        return [
            f"Hello, I'm calling about my medical bill from {bill.provider_name or 'your facility'}.",
            f"The account number is {bill.account_number} and the amount is {_money(bill.current_rate)}.",
        ]
    return [
        f"Hello, I'm calling about my account. My account number is {bill.account_number}.",
        f"I'm currently on the {bill.plan_name or 'current plan'} at {_money(bill.current_rate)} per month.",
    ]


def _tactic_lines(tactic: Tactic, bill: Bill, competitor_rates: Sequence[CompetitorRate]) -> List[str]:
    if tactic == Tactic.COMPETITOR_CONQUEST:
        if competitor_rates:
            best = competitor_rates[0]
            return [
                f"I've been looking at other options and noticed that {best.provider} is offering "
                f"similar service for {_money(best.monthly_rate)} per month.",
                "I'm a loyal customer and would prefer to stay, but the price difference is significant.",
                "Can you help me get a better rate?",
            ]
        return ["I've seen better rates from competitors. Can you help me get a better deal?"]

    if tactic == Tactic.LOYALTY_PLAY:
        return [
            "I've been a customer for over a year now and I've always paid on time.",
            "I'm trying to reduce my monthly expenses and would appreciate any loyalty discount you can offer.",
            "Can you review my account and see what's available?",
        ]

    if tactic == Tactic.CHURN_THREAT:
        return [
            "If I can't get a better rate, I may need to consider switching to another provider.",
            "I'd prefer to stay, but I need to be mindful of my budget.",
        ]

    if tactic == Tactic.RETENTION_CLOSE:
        target = bill.current_rate * (1 - RETENTION_TARGET_RATIO)
        return [
            "Thank you for that offer. Can you do one better?",
            f"I'd like to see if we can get to {_money(target)} per month.",
        ]

    if tactic == Tactic.SUPERVISOR_REQUEST:
        return [
            "I appreciate your help, but I'd like to speak with a supervisor who may have more authority to help me.",
        ]

    if tactic == Tactic.CASH_PAY_DISCOUNT:
        return [
            "I understand that if I pay this bill out-of-pocket without going through insurance, "
            "there's often a significant discount available.",
            "I'd like to know what the cash-pay rate would be for this bill.",
            "I've heard discounts of 30-50% are common for self-pay patients.",
        ]

    if tactic == Tactic.PAYMENT_PLAN:
        return [
            "I'd like to set up a payment plan for this bill.",
            "Can you offer a 12-month interest-free payment plan?",
            "This would help me manage the cost while ensuring you receive full payment.",
        ]

    if tactic == Tactic.ITEMIZED_BILL_REVIEW:
        return [
            "I'd like to request an itemized bill to review all the charges.",
            "I want to make sure all the services listed are accurate and that there are no "
            "duplicate or incorrect charges.",
            "Can you send me a detailed breakdown of all charges?",
        ]

    return ["What options are available to reduce my bill?"]


def _closing(category: BillCategory) -> List[str]:
    if category == BillCategory.MEDICAL:
        return ["Thank you for your help. I appreciate any assistance you can provide in reducing this bill."]
    return ["What can you do to help me save on my monthly bill?"]


def render_script(primary: Tactic, bill: Bill, competitor_rates: Sequence[CompetitorRate]) -> str:
    """Opening, primary tactic argument, closing ask."""
    lines = _opening(bill) + _tactic_lines(primary, bill, competitor_rates) + _closing(bill.category)
    return " ".join(lines)


def get_tactic_line(tactic: Tactic, bill: Bill, competitor_rates: Sequence[CompetitorRate]) -> str:
    """One-line prompt the in-call agent uses when escalating to a tactic."""
    if tactic == Tactic.COMPETITOR_CONQUEST:
        if competitor_rates:
            best = competitor_rates[0]
            return (
                f"I see that {best.provider} is offering {_money(best.monthly_rate)}/month. "
                f"Can you match or beat that?"
            )
        return "I've seen better rates elsewhere. Can you help me get a better deal?"
    if tactic == Tactic.LOYALTY_PLAY:
        return (
            "I've been a loyal customer for over a year. I'd like to stay with you but need a better rate. "
            "What can you offer?"
        )
    if tactic == Tactic.CHURN_THREAT:
        return "I'm seriously considering switching providers. Is there anything you can do to keep my business?"
    if tactic == Tactic.RETENTION_CLOSE:
        target = bill.current_rate * (1 - RETENTION_TARGET_RATIO)
        return f"Thank you for that offer. Can you do one better? I'd like to see if we can get to {_money(target)}/month."
    if tactic == Tactic.SUPERVISOR_REQUEST:
        return "I appreciate your help, but I'd like to speak with a supervisor who may have more authority to help me."
    if tactic == Tactic.CASH_PAY_DISCOUNT:
        return "What's the cash-pay discount you can offer? I've heard 30-50% discounts are common for self-pay patients."
    if tactic == Tactic.PAYMENT_PLAN:
        return "Can you set up a 12-month interest-free payment plan? That would work much better for my budget."
    if tactic == Tactic.ITEMIZED_BILL_REVIEW:
        return (
            "Please send me the itemized bill. I want to review all charges to ensure accuracy "
            "before we discuss payment options."
        )
    return "What other options are available to reduce my bill?"
