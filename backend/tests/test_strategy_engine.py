"""
Tests for the Strategy Engine.

Covers:
1. Internet bill with a cheaper competitor (competitor conquest, capped savings)
2. Medical bill (fixed tactic order, 30% target)
3. Empty leverage still produces a plan
4. Rate merging: dedupe by provider, verified wins, ascending order
5. Insurance and retention-signal ordering
6. Validation of bad bills, including non-finite rates
7. Deterministic scripts and per-tactic lines
8. Catalog-driven tactic order and the leverage score
"""
from datetime import datetime, timedelta, timezone

import pytest

from slash_engine.errors import ValidationError
from slash_engine.models.domain import (
    Bill, BillCategory, CompetitorRate, RetentionOffer, Tactic, tactics_for_category,
)
from slash_engine.services.strategy import (
    StrategyEngine, analyze_competition, build_plan, get_tactic_line,
    merge_competitor_rates, render_script,
)


T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)


def rate(provider, monthly, source="research", observed_at=T0, plan="Basic"):
    return CompetitorRate(
        provider=provider, plan_name=plan, monthly_rate=monthly, source=source, observed_at=observed_at,
    )


def bill(category=BillCategory.INTERNET, current_rate=89.99, provider_id="comcast"):
    return Bill(
        id="bill-1",
        owner_id="user-1",
        provider_id=provider_id,
        category=category,
        current_rate=current_rate,
        account_number="ACCT-1",
        plan_name="Performance Pro",
    )


# =============================================================================
# TEST: PLANS
# =============================================================================

class TestBuildPlan:
    """Plans for the main bill categories."""

    def test_internet_with_cheaper_competitor(self):
        """89.99 vs spectrum 64.99 → conquest first, savings capped at 25%."""
        plan = build_plan(bill(), [rate("spectrum", 64.99)], [], None)

        assert plan.primary_tactic == Tactic.COMPETITOR_CONQUEST
        assert plan.tactics == (
            Tactic.COMPETITOR_CONQUEST,
            Tactic.LOYALTY_PLAY,
            Tactic.CHURN_THREAT,
            Tactic.SUPERVISOR_REQUEST,
        )
        assert plan.fallback_tactic == Tactic.SUPERVISOR_REQUEST
        assert plan.expected_savings == pytest.approx(22.50, abs=0.01)
        assert "spectrum" in plan.script
        assert "$64.99" in plan.script

    def test_advantage_smaller_than_cap(self):
        """Savings is the gap to the cheapest competitor when below the cap."""
        plan = build_plan(bill(current_rate=80.00), [rate("cox", 70.00)], [])
        assert plan.expected_savings == pytest.approx(10.00)

    def test_medical_bill(self):
        """Medical: fixed order, 30% target."""
        plan = build_plan(
            bill(category=BillCategory.MEDICAL, current_rate=450.00, provider_id="st_marys"),
            [rate("spectrum", 10.00)],
            [RetentionOffer("st_marys", "cancel", 20, 0.9)],
            historical_average_savings=300.0,
        )
        assert plan.tactics == (
            Tactic.ITEMIZED_BILL_REVIEW,
            Tactic.CASH_PAY_DISCOUNT,
            Tactic.PAYMENT_PLAN,
        )
        assert plan.expected_savings == pytest.approx(135.00)

    def test_empty_leverage_uses_default_ratio(self):
        """No rates, no offers, no history → 15% and no conquest."""
        plan = build_plan(bill(current_rate=100.00), [], [], None)

        assert Tactic.COMPETITOR_CONQUEST not in plan.tactics
        assert Tactic.RETENTION_CLOSE not in plan.tactics
        assert plan.primary_tactic == Tactic.LOYALTY_PLAY
        assert plan.expected_savings == pytest.approx(15.00)

    def test_historical_average_capped(self):
        plan = build_plan(bill(current_rate=100.00), [], [], historical_average_savings=40.0)
        assert plan.expected_savings == pytest.approx(25.00)

        plan = build_plan(bill(current_rate=100.00), [], [], historical_average_savings=12.0)
        assert plan.expected_savings == pytest.approx(12.00)

    def test_savings_floor(self):
        """Small bills still target the minimum savings."""
        plan = build_plan(bill(current_rate=20.00), [], [], None)
        assert plan.expected_savings == pytest.approx(5.00)

    def test_custom_floor(self):
        plan = StrategyEngine(min_expected_savings=8.0).build_plan(bill(current_rate=20.00), [], [])
        assert plan.expected_savings == pytest.approx(8.00)

    def test_competitors_above_current_rate_give_no_advantage(self):
        plan = build_plan(bill(current_rate=50.00), [rate("spectrum", 70.00)], [])
        assert Tactic.COMPETITOR_CONQUEST not in plan.tactics
        assert plan.competitor_rates[0].provider == "spectrum"

    def test_retention_signal_from_provider_offer(self):
        offers = [RetentionOffer("comcast", "threaten_cancel", 20.0, 0.3)]
        plan = build_plan(bill(), [], offers)
        assert plan.tactics == (
            Tactic.LOYALTY_PLAY,
            Tactic.CHURN_THREAT,
            Tactic.RETENTION_CLOSE,
            Tactic.SUPERVISOR_REQUEST,
        )

    def test_retention_signal_from_high_success_offer(self):
        offers = [RetentionOffer("another_provider", "loyalty", 10.0, 0.75)]
        plan = build_plan(bill(), [], offers)
        assert Tactic.RETENTION_CLOSE in plan.tactics

    def test_low_success_foreign_offer_is_no_signal(self):
        offers = [RetentionOffer("another_provider", "loyalty", 10.0, 0.6)]
        plan = build_plan(bill(), [], offers)
        assert Tactic.RETENTION_CLOSE not in plan.tactics

    def test_insurance_leads_with_any_quote(self):
        """Insurance: conquest whenever a quote exists, even a pricier one."""
        plan = build_plan(
            bill(category=BillCategory.INSURANCE, current_rate=120.0, provider_id="geico"),
            [rate("progressive", 140.0)],
            [],
        )
        assert plan.tactics == (
            Tactic.COMPETITOR_CONQUEST,
            Tactic.LOYALTY_PLAY,
            Tactic.CHURN_THREAT,
            Tactic.RETENTION_CLOSE,
            Tactic.SUPERVISOR_REQUEST,
        )

    def test_insurance_without_quotes(self):
        plan = build_plan(bill(category=BillCategory.INSURANCE, current_rate=120.0, provider_id="geico"), [], [])
        assert plan.primary_tactic == Tactic.LOYALTY_PLAY
        assert Tactic.RETENTION_CLOSE in plan.tactics

    def test_plan_is_deterministic(self):
        rates = [rate("spectrum", 64.99), rate("cox", 70.00)]
        first = build_plan(bill(), rates, [], 10.0)
        second = build_plan(bill(), list(reversed(rates)), [], 10.0)
        assert first == second

    def test_plan_is_immutable(self):
        plan = build_plan(bill(), [], [])
        with pytest.raises(Exception):
            plan.expected_savings = 1.0


# =============================================================================
# TEST: VALIDATION
# =============================================================================

class TestValidation:

    @pytest.mark.parametrize("current_rate", [0, -10.0, float("nan"), float("inf"), float("-inf")])
    def test_non_positive_or_non_finite_rate_rejected(self, current_rate):
        with pytest.raises(ValidationError):
            build_plan(bill(current_rate=current_rate), [], [])

    def test_unknown_category_rejected(self):
        bad = bill()
        bad.category = "water"
        with pytest.raises(ValidationError):
            build_plan(bad, [], [])


# =============================================================================
# TEST: RATE MERGING
# =============================================================================

class TestMergeCompetitorRates:

    def test_dedupes_by_provider_keeping_cheapest(self):
        merged = merge_competitor_rates([rate("cox", 70.0), rate("cox", 60.0), rate("spectrum", 65.0)])
        assert [(r.provider, r.monthly_rate) for r in merged] == [("cox", 60.0), ("spectrum", 65.0)]

    def test_verified_entry_wins(self):
        researched = [rate("spectrum", 40.0)]
        verified = [rate("spectrum", 55.0, source="repository")]
        merged = merge_competitor_rates(researched, verified)
        assert len(merged) == 1
        assert merged[0].monthly_rate == 55.0
        assert merged[0].source == "repository"

    def test_equal_price_keeps_newest(self):
        older = rate("cox", 60.0, source="old", observed_at=T0)
        newer = rate("cox", 60.0, source="new", observed_at=T0 + timedelta(days=1))
        merged = merge_competitor_rates([older, newer])
        assert merged[0].source == "new"

    def test_sorted_ascending_and_non_positive_dropped(self):
        merged = merge_competitor_rates(
            [rate("a", 80.0), rate("b", 0.0), rate("c", 45.0)],
            [rate("d", 60.0)],
        )
        assert [r.provider for r in merged] == ["c", "d", "a"]

    def test_repository_rates_feed_the_plan(self):
        plan = build_plan(bill(), [], [], None, leverage_rates=[rate("att", 59.99, source="repository")])
        assert plan.primary_tactic == Tactic.COMPETITOR_CONQUEST
        assert plan.expected_savings == pytest.approx(89.99 * 0.25)


# =============================================================================
# TEST: SCRIPTS
# =============================================================================

class TestScripts:

    def test_medical_script_mentions_facility(self):
        medical = bill(category=BillCategory.MEDICAL, current_rate=450.0)
        medical.provider_name = "St. Mary's"
        script = render_script(Tactic.ITEMIZED_BILL_REVIEW, medical, [])
        assert "medical bill from St. Mary's" in script
        assert "$450.00" in script
        assert "itemized bill" in script

    def test_conquest_without_rates_falls_back(self):
        script = render_script(Tactic.COMPETITOR_CONQUEST, bill(), [])
        assert "better rates from competitors" in script

    def test_retention_close_line_targets_twenty_percent(self):
        line = get_tactic_line(Tactic.RETENTION_CLOSE, bill(current_rate=100.0), [])
        assert "$80.00/month" in line

    def test_every_tactic_has_a_line(self):
        for tactic in Tactic:
            assert get_tactic_line(tactic, bill(), [rate("spectrum", 64.99)])


# =============================================================================
# TEST: COMPETITIVE ANALYSIS
# =============================================================================

class TestCompetitiveAnalysis:

    def test_strong_leverage(self):
        rates = [rate("a", 50.0), rate("b", 60.0), rate("c", 70.0), rate("d", 99.0)]
        analysis = analyze_competition(89.99, rates)
        assert analysis.leverage == 1.0
        assert analysis.recommendation.startswith("Strong leverage")

    def test_moderate_leverage(self):
        analysis = analyze_competition(89.99, [rate("a", 50.0), rate("b", 60.0)])
        assert analysis.leverage == pytest.approx(2 / 3)
        assert analysis.recommendation.startswith("Moderate leverage")

    def test_no_leverage(self):
        analysis = analyze_competition(40.0, [rate("a", 50.0)])
        assert analysis.leverage == 0.0
        assert analysis.recommendation.startswith("Limited leverage")

    def test_plan_carries_leverage_score(self):
        rates = [rate("a", 50.0), rate("b", 60.0), rate("c", 99.0)]
        plan = build_plan(bill(), rates, [])
        assert plan.leverage_score == pytest.approx(analyze_competition(89.99, rates).leverage)
        assert plan.leverage_score == pytest.approx(2 / 3)

    def test_no_cheaper_competitor_scores_zero(self):
        assert build_plan(bill(current_rate=40.0), [rate("a", 50.0)], []).leverage_score == 0.0


# =============================================================================
# TEST: TACTIC CATALOG
# =============================================================================

class TestTacticCatalog:

    def test_medical_order_follows_catalog(self):
        plan = build_plan(bill(category=BillCategory.MEDICAL, current_rate=450.0), [], [])
        assert list(plan.tactics) == tactics_for_category(BillCategory.MEDICAL)
        assert plan.primary_tactic == Tactic.ITEMIZED_BILL_REVIEW

    @pytest.mark.parametrize("category", [BillCategory.INTERNET, BillCategory.INSURANCE])
    def test_full_evidence_plan_is_the_catalog_order(self, category):
        """With every piece of evidence present nothing is dropped."""
        plan = build_plan(
            bill(category=category, current_rate=120.0),
            [rate("spectrum", 64.99)],
            [RetentionOffer("comcast", "threaten_cancel", 20.0, 0.9)],
        )
        assert list(plan.tactics) == tactics_for_category(category)

    def test_every_category_has_tactics(self):
        for category in BillCategory:
            assert tactics_for_category(category)
