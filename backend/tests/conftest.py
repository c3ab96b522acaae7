"""
Shared fixtures for the negotiation engine tests.

Fakes stand in for the call dispatcher and competitor research so the
orchestrator can be driven end to end without network access.
"""
import asyncio
from typing import List, Optional

import pytest

from slash_engine.config import EngineSettings
from slash_engine.errors import DispatchError
from slash_engine.models.domain import (
    Bill, BillCategory, CallHandle, CompetitorRate, Negotiation, NegotiationPlan,
)
from slash_engine.services.negotiation import (
    CallCorrelator, InMemoryLeverageRepository, InMemoryRecordStore, NegotiationOrchestrator,
)
from slash_engine.services.research.base import CompetitorResearch
from slash_engine.services.telephony.dispatcher import CallDispatcher


# =============================================================================
# FAKES
# =============================================================================

class FakeDispatcher(CallDispatcher):
    """Records calls; hands out call-1, call-2, ... as handles."""

    def __init__(self, error: Optional[Exception] = None, agent_started: bool = False,
                 delay: float = 0.0, start_error: Optional[Exception] = None, start_delay: float = 0.0):
        self.error = error
        self.agent_started = agent_started
        self.delay = delay
        self.start_error = start_error
        self.start_delay = start_delay
        self.placed: List[str] = []
        self.plans: List[NegotiationPlan] = []
        self.agents_started: List[str] = []
        self.ended: List[str] = []

    async def place_call(self, negotiation: Negotiation, plan: NegotiationPlan, bill: Optional[Bill] = None):
        self.placed.append(negotiation.id)
        self.plans.append(plan)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return CallHandle(handle=f"call-{len(self.placed)}", agent_started=self.agent_started)

    async def start_agent(self, negotiation, plan, bill=None):
        if self.start_delay:
            await asyncio.sleep(self.start_delay)
        if self.start_error is not None:
            raise self.start_error
        self.agents_started.append(negotiation.id)

    async def end_call(self, call_handle: str):
        self.ended.append(call_handle)


class FakeResearch(CompetitorResearch):

    def __init__(self, rates: Optional[List[CompetitorRate]] = None,
                 error: Optional[Exception] = None, delay: float = 0.0):
        self.rates = rates or []
        self.error = error
        self.delay = delay
        self.calls = 0

    async def find_competitor_rates(self, bill):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return list(self.rates)


class FailingLeverage(InMemoryLeverageRepository):

    async def get_leverage(self, provider_id):
        raise ConnectionError("leverage database unavailable")


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def internet_bill():
    return Bill(
        id="bill-internet",
        owner_id="user-1",
        provider_id="comcast",
        category=BillCategory.INTERNET,
        current_rate=89.99,
        account_number="ACCT-1001",
        plan_name="Performance Pro",
    )


@pytest.fixture
def medical_bill():
    return Bill(
        id="bill-medical",
        owner_id="user-1",
        provider_id="st_marys",
        category=BillCategory.MEDICAL,
        current_rate=450.00,
        account_number="MRN-77",
        provider_name="St. Mary's Hospital",
    )


@pytest.fixture
def fast_settings():
    return EngineSettings(
        call_timeout_seconds=600,
        max_attempts=5,
        leverage_timeout_seconds=0.5,
        dispatch_timeout_seconds=0.5,
    )


@pytest.fixture
def make_orchestrator(fast_settings):
    """Build an orchestrator over in-memory collaborators."""

    def _make(dispatcher=None, leverage=None, research=None, settings=None):
        return NegotiationOrchestrator(
            store=InMemoryRecordStore(),
            correlator=CallCorrelator(),
            dispatcher=dispatcher or FakeDispatcher(),
            leverage=leverage or InMemoryLeverageRepository(),
            research=research,
            settings=settings or fast_settings,
        )

    return _make


@pytest.fixture
def fake_dispatcher_cls():
    return FakeDispatcher


@pytest.fixture
def fake_research_cls():
    return FakeResearch


@pytest.fixture
def failing_leverage():
    return FailingLeverage()


@pytest.fixture
def dispatch_error():
    return DispatchError("provider line unreachable")
