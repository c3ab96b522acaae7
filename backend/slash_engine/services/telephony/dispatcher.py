"""
Call Dispatcher

Places outbound negotiation calls and controls the in-call agent.
Every failure surfaces as DispatchError; callers never see transport errors.
"""
import asyncio
import logging
import re
from abc import ABC, abstractmethod
from typing import Optional

from ...config import EngineSettings
from ...errors import DispatchError
from ...models.domain import Bill, CallHandle, Negotiation, NegotiationPlan
from ...models.providers import get_provider
from ..strategy.scripts import get_tactic_line
from .telnyx_client import TelnyxAPIError, TelnyxClient

logger = logging.getLogger(__name__)


class CallDispatcher(ABC):
    """Outbound call control used by the orchestrator."""

    @abstractmethod
    async def place_call(
        self,
        negotiation: Negotiation,
        plan: NegotiationPlan,
        bill: Optional[Bill] = None,
    ) -> CallHandle:
        """Dial the provider. Raises DispatchError when no call was placed."""
        ...

    @abstractmethod
    async def start_agent(
        self,
        negotiation: Negotiation,
        plan: Optional[NegotiationPlan],
        bill: Optional[Bill] = None,
    ) -> None:
        ...

    @abstractmethod
    async def end_call(self, call_handle: str) -> None:
        ...


def _e164(number: str) -> str:
    digits = re.sub(r"\D", "", number)
    return f"+{digits}"


def build_negotiation_instructions(
    negotiation: Negotiation,
    plan: Optional[NegotiationPlan],
    bill: Optional[Bill] = None,
) -> str:
    """Per-call agent instructions: bill facts, tactic order, competitor quotes."""
    rate = negotiation.original_rate
    lines = [
        "You are Alex, calling on behalf of a customer to negotiate a lower rate on their bill. "
        "You work for a consumer savings service.",
        "",
        "BILL DETAILS:",
        f"- Current monthly rate: ${rate:.2f}/month",
        f"- Account: {bill.account_number if bill else negotiation.bill_id}",
    ]
    if bill is not None and bill.plan_name:
        lines.append(f"- Plan: {bill.plan_name}")

    if plan is not None:
        lines += ["", "Negotiation tactics to use (in order of priority):"]
        for index, tactic in enumerate(plan.tactics, start=1):
            line = tactic.value.replace("_", " ")
            if bill is not None:
                line = f"{line}: \"{get_tactic_line(tactic, bill, plan.competitor_rates)}\""
            lines.append(f"{index}. {line}")
        if plan.competitor_rates:
            lines += ["", "Competitor rates you can reference:"]
            for quote in plan.competitor_rates:
                lines.append(f"- {quote.provider}: {quote.plan_name} at ${quote.monthly_rate:.2f}/mo")
        lines += ["", f"Target savings: at least ${plan.expected_savings:.2f}/month."]

    lines += [
        "",
        "RULES:",
        "- Be polite but persistent",
        "- Keep turns short, 1-2 sentences",
        "- If the first rep can't help, ask for the retention or cancellation department",
        "- If they make an offer, push once more before accepting",
        "- Thank the rep at the end regardless of outcome",
    ]
    return "\n".join(lines)


class TelnyxCallDispatcher(CallDispatcher):
    """
    Dial through Telnyx Call Control and run the Telnyx AI assistant on the call.

    Blocking HTTP runs in a worker thread.
    """

    def __init__(self, settings: EngineSettings, client: Optional[TelnyxClient] = None):
        self.settings = settings
        self.client = client or TelnyxClient(settings.telnyx_api_key)

    def _dial_number(self, negotiation: Negotiation) -> str:
        provider = get_provider(negotiation.provider_id)
        number = provider.dial_number if provider else None
        if not number:
            raise DispatchError(
                f"No phone number on file for provider {negotiation.provider_id}",
                negotiation.id,
            )
        return _e164(number)

    async def place_call(
        self,
        negotiation: Negotiation,
        plan: NegotiationPlan,
        bill: Optional[Bill] = None,
    ) -> CallHandle:
        if not self.settings.telnyx_phone_number:
            raise DispatchError("TELNYX_PHONE_NUMBER not configured", negotiation.id)
        if not self.settings.telnyx_connection_id:
            raise DispatchError("TELNYX_CONNECTION_ID not configured", negotiation.id)
        to_number = self._dial_number(negotiation)

        try:
            call = await asyncio.to_thread(
                self.client.dial,
                self.settings.telnyx_connection_id,
                _e164(self.settings.telnyx_phone_number),
                to_number,
                self.settings.telnyx_webhook_url,
            )
        except TelnyxAPIError as exc:
            raise DispatchError(str(exc), negotiation.id) from exc

        handle = call["call_control_id"]
        logger.info(f"Dialed {to_number} for negotiation {negotiation.id} (call {handle})")

        # The assistant often cannot start before the call is answered; the
        # orchestrator retries on the answered event.
        agent_started = False
        try:
            await self._start_assistant(handle, negotiation, plan, bill)
            agent_started = True
        except TelnyxAPIError as exc:
            logger.info(f"Assistant not started on dial for call {handle}: {exc}")

        return CallHandle(handle=handle, call_id=call.get("id"), agent_started=agent_started)

    async def start_agent(
        self,
        negotiation: Negotiation,
        plan: Optional[NegotiationPlan],
        bill: Optional[Bill] = None,
    ) -> None:
        handle = negotiation.external_call_handle
        if not handle:
            raise DispatchError(f"Negotiation {negotiation.id} has no active call", negotiation.id)
        try:
            await self._start_assistant(handle, negotiation, plan, bill)
        except TelnyxAPIError as exc:
            raise DispatchError(str(exc), negotiation.id) from exc
        logger.info(f"Assistant started on call {handle} for negotiation {negotiation.id}")

    async def end_call(self, call_handle: str) -> None:
        try:
            await asyncio.to_thread(self.client.hangup, call_handle)
        except TelnyxAPIError as exc:
            raise DispatchError(f"Hangup failed for call {call_handle}: {exc}") from exc

    async def _start_assistant(
        self,
        handle: str,
        negotiation: Negotiation,
        plan: Optional[NegotiationPlan],
        bill: Optional[Bill],
    ) -> None:
        assistant_id = await asyncio.to_thread(self.client.get_or_create_assistant)
        instructions = build_negotiation_instructions(negotiation, plan, bill)
        await asyncio.to_thread(self.client.start_assistant, handle, assistant_id, instructions)
