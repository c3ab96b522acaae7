"""
Tests for the Telnyx client and call dispatcher.

HTTP is mocked at the requests.Session level.
"""
import asyncio
from unittest.mock import MagicMock

import pytest
import requests

from slash_engine.config import EngineSettings
from slash_engine.errors import DispatchError
from slash_engine.models.domain import (
    Bill, BillCategory, CompetitorRate, Negotiation, NegotiationPlan, Tactic,
)
from slash_engine.services.telephony import (
    TelnyxAPIError, TelnyxCallDispatcher, TelnyxClient, build_negotiation_instructions,
)


# =============================================================================
# FIXTURES
# =============================================================================

def response(payload=None, status=200):
    resp = MagicMock()
    resp.status_code = status
    resp.content = b"{}" if payload is not None else b""
    resp.json.return_value = payload
    resp.text = "error body"
    if status >= 400:
        resp.raise_for_status.side_effect = requests.HTTPError(response=resp)
    return resp


@pytest.fixture
def settings():
    return EngineSettings(
        telnyx_api_key="KEY123",
        telnyx_phone_number="+1 (555) 010-0000",
        telnyx_connection_id="conn-1",
        telnyx_webhook_url="https://example.test/webhooks/telnyx",
    )


@pytest.fixture
def negotiation():
    return Negotiation(
        id="neg-1",
        bill_id="bill-1",
        owner_id="user-1",
        provider_id="comcast",
        category=BillCategory.INTERNET,
        original_rate=89.99,
    )


@pytest.fixture
def plan():
    return NegotiationPlan(
        tactics=(Tactic.COMPETITOR_CONQUEST, Tactic.LOYALTY_PLAY, Tactic.SUPERVISOR_REQUEST),
        expected_savings=22.5,
        script="Hello.",
        competitor_rates=(
            CompetitorRate(provider="spectrum", plan_name="Premier", monthly_rate=64.99, source="web"),
        ),
    )


@pytest.fixture
def bill():
    return Bill(
        id="bill-1",
        owner_id="user-1",
        provider_id="comcast",
        category=BillCategory.INTERNET,
        current_rate=89.99,
        account_number="ACCT-1001",
        plan_name="Performance Pro",
    )


# =============================================================================
# TEST: CLIENT
# =============================================================================

class TestTelnyxClient:

    def test_requires_api_key(self):
        client = TelnyxClient(None, session=MagicMock())
        with pytest.raises(TelnyxAPIError):
            client.hangup("cc-1")

    def test_http_error_carries_status(self):
        session = MagicMock()
        session.request.return_value = response(status=422)
        client = TelnyxClient("KEY", session=session)

        with pytest.raises(TelnyxAPIError) as exc_info:
            client.hangup("cc-1")
        assert exc_info.value.status_code == 422

    def test_bearer_auth_and_url(self):
        session = MagicMock()
        session.request.return_value = response(payload=None)
        client = TelnyxClient("KEY", session=session)

        client.hangup("cc-9")

        args, kwargs = session.request.call_args
        assert args == ("POST", "https://api.telnyx.com/v2/calls/cc-9/actions/hangup")
        assert kwargs["headers"]["Authorization"] == "Bearer KEY"

    def test_assistant_lookup_is_cached(self):
        session = MagicMock()
        session.request.return_value = response({"data": [{"id": "asst-7", "name": "Slash Bill Negotiator"}]})
        client = TelnyxClient("KEY", session=session)

        assert client.get_or_create_assistant() == "asst-7"
        assert client.get_or_create_assistant() == "asst-7"
        assert session.request.call_count == 1

    def test_assistant_created_when_missing(self):
        session = MagicMock()
        session.request.side_effect = [
            response({"data": [{"id": "other", "name": "Someone Else"}]}),
            response({"data": {"id": "asst-new"}}),
        ]
        client = TelnyxClient("KEY", session=session)

        assert client.get_or_create_assistant() == "asst-new"
        method, url = session.request.call_args_list[1][0]
        assert (method, url) == ("POST", "https://api.telnyx.com/v2/ai/assistants")


# =============================================================================
# TEST: DISPATCHER
# =============================================================================

class TestTelnyxCallDispatcher:

    def test_place_call_dials_retention_line_and_starts_agent(self, settings, negotiation, plan, bill):
        session = MagicMock()
        session.request.side_effect = [
            response({"data": {"id": "call-id-1", "call_control_id": "cc-1"}}),
            response({"data": []}),
            response({"data": {"id": "asst-1"}}),
            response({}),
        ]
        dispatcher = TelnyxCallDispatcher(settings, TelnyxClient("KEY", session=session))

        handle = asyncio.run(dispatcher.place_call(negotiation, plan, bill))

        assert handle.handle == "cc-1"
        assert handle.call_id == "call-id-1"
        assert handle.agent_started is True

        dial_body = session.request.call_args_list[0][1]["json"]
        assert dial_body["to"] == "+18009346489"
        assert dial_body["from"] == "+15550100000"
        assert dial_body["connection_id"] == "conn-1"
        assert dial_body["webhook_url"] == "https://example.test/webhooks/telnyx"

        start_body = session.request.call_args_list[3][1]["json"]
        assert start_body["assistant"]["id"] == "asst-1"
        assert "ACCT-1001" in start_body["assistant"]["instructions"]

    def test_agent_not_started_before_answer(self, settings, negotiation, plan):
        session = MagicMock()
        session.request.side_effect = [
            response({"data": {"id": "call-id-1", "call_control_id": "cc-1"}}),
            response({"data": [{"id": "asst-1", "name": "Slash Bill Negotiator"}]}),
            response(status=422),
        ]
        dispatcher = TelnyxCallDispatcher(settings, TelnyxClient("KEY", session=session))

        handle = asyncio.run(dispatcher.place_call(negotiation, plan))

        assert handle.handle == "cc-1"
        assert handle.agent_started is False

    def test_missing_configuration_is_dispatch_error(self, negotiation, plan):
        dispatcher = TelnyxCallDispatcher(EngineSettings(telnyx_api_key="KEY"), MagicMock())
        with pytest.raises(DispatchError):
            asyncio.run(dispatcher.place_call(negotiation, plan))

    def test_provider_without_number_is_dispatch_error(self, settings, negotiation, plan):
        client = MagicMock()
        dispatcher = TelnyxCallDispatcher(settings, client)
        medical = Negotiation(
            id="neg-2", bill_id="bill-2", owner_id="user-1", provider_id="st_marys",
            category=BillCategory.MEDICAL, original_rate=450.0,
        )

        with pytest.raises(DispatchError) as exc_info:
            asyncio.run(dispatcher.place_call(medical, plan))

        assert exc_info.value.negotiation_id == "neg-2"
        client.dial.assert_not_called()

    def test_network_failure_is_dispatch_error(self, settings, negotiation, plan):
        session = MagicMock()
        session.request.side_effect = requests.ConnectionError("connection refused")
        dispatcher = TelnyxCallDispatcher(settings, TelnyxClient("KEY", session=session))

        with pytest.raises(DispatchError):
            asyncio.run(dispatcher.place_call(negotiation, plan))

    def test_start_agent_requires_active_call(self, settings, negotiation, plan):
        dispatcher = TelnyxCallDispatcher(settings, MagicMock())
        with pytest.raises(DispatchError):
            asyncio.run(dispatcher.start_agent(negotiation, plan))

    def test_end_call_failure_is_dispatch_error(self, settings):
        client = MagicMock()
        client.hangup.side_effect = TelnyxAPIError("gone", status_code=404)
        dispatcher = TelnyxCallDispatcher(settings, client)

        with pytest.raises(DispatchError):
            asyncio.run(dispatcher.end_call("cc-1"))
        client.hangup.assert_called_once_with("cc-1")


class TestInstructions:

    def test_instructions_list_tactics_and_quotes(self, negotiation, plan, bill):
        text = build_negotiation_instructions(negotiation, plan, bill)
        assert "Current monthly rate: $89.99/month" in text
        assert "1. competitor conquest" in text
        assert "3. supervisor request" in text
        assert "- spectrum: Premier at $64.99/mo" in text
        assert "Target savings: at least $22.50/month." in text

    def test_instructions_without_plan(self, negotiation):
        text = build_negotiation_instructions(negotiation, None)
        assert "Account: bill-1" in text
        assert "tactics" not in text.lower().split("rules:")[0]
