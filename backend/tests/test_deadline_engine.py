"""
Tests for the negotiation deadline engine.
"""
import asyncio
from datetime import datetime, timedelta, timezone

from slash_engine.models.domain import (
    AttemptOutcome, BillCategory, Negotiation, NegotiationAttempt, Tactic,
)
from slash_engine.services.negotiation.deadline_engine import NegotiationDeadlineEngine


NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def live_negotiation(started_at=NOW, attempts=0):
    return Negotiation(
        id="neg-1",
        bill_id="bill-1",
        owner_id="user-1",
        provider_id="comcast",
        category=BillCategory.INTERNET,
        original_rate=89.99,
        started_at=started_at,
        attempts=[
            NegotiationAttempt(tactic=Tactic.LOYALTY_PLAY, outcome=AttemptOutcome.FAILED)
            for _ in range(attempts)
        ],
    )


class TestDeadlineCalculation:

    def test_deadline_is_ten_minutes_from_start(self):
        engine = NegotiationDeadlineEngine(clock=lambda: NOW)
        assert engine.calculate_deadline(NOW) == NOW + timedelta(minutes=10)
        assert engine.remaining_seconds(NOW) == 600

    def test_remaining_never_negative(self):
        engine = NegotiationDeadlineEngine(clock=lambda: NOW + timedelta(hours=1))
        assert engine.remaining_seconds(NOW) == 0.0
        assert engine.is_expired(NOW)

    def test_not_started_never_expires(self):
        assert not NegotiationDeadlineEngine(clock=lambda: NOW).is_expired(None)

    def test_budget_by_time(self):
        engine = NegotiationDeadlineEngine(clock=lambda: NOW + timedelta(minutes=10))
        within, reason = engine.check_budget(live_negotiation())
        assert within is False
        assert "600s" in reason

    def test_budget_by_attempts(self):
        engine = NegotiationDeadlineEngine(clock=lambda: NOW)
        assert engine.check_budget(live_negotiation(attempts=4)) == (True, None)
        within, reason = engine.check_budget(live_negotiation(attempts=5))
        assert within is False
        assert reason == "Attempt limit reached (5/5)"


class TestTimers:

    def test_armed_timer_fires_once(self):
        fired = []

        async def callback(negotiation_id):
            fired.append(negotiation_id)

        async def run():
            engine = NegotiationDeadlineEngine(call_timeout_seconds=0.02)
            engine.arm("neg-1", datetime.now(timezone.utc), callback)
            assert engine.is_armed("neg-1")
            await asyncio.sleep(0.1)
            await engine.drain()
            return engine

        engine = asyncio.run(run())
        assert fired == ["neg-1"]
        assert not engine.is_armed("neg-1")

    def test_disarmed_timer_never_fires(self):
        fired = []

        async def callback(negotiation_id):
            fired.append(negotiation_id)

        async def run():
            engine = NegotiationDeadlineEngine(call_timeout_seconds=0.02)
            engine.arm("neg-1", datetime.now(timezone.utc), callback)
            assert engine.disarm("neg-1") is True
            assert engine.disarm("neg-1") is False
            await asyncio.sleep(0.1)

        asyncio.run(run())
        assert fired == []

    def test_rearm_replaces_timer(self):
        fired = []

        async def callback(negotiation_id):
            fired.append(negotiation_id)

        async def run():
            engine = NegotiationDeadlineEngine(call_timeout_seconds=0.02)
            started = datetime.now(timezone.utc)
            engine.arm("neg-1", started, callback)
            engine.arm("neg-1", started, callback)
            await asyncio.sleep(0.1)
            await engine.drain()

        asyncio.run(run())
        assert fired == ["neg-1"]
