"""Thin client for the Telnyx Call Control and AI Assistant APIs."""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Optional

import requests

logger = logging.getLogger(__name__)

TELNYX_API_BASE = "https://api.telnyx.com/v2"
ASSISTANT_NAME = "Slash Bill Negotiator"

DEFAULT_INSTRUCTIONS = (
    "You are Alex, a friendly and persistent bill negotiation specialist calling on behalf of a "
    "customer. You work for a consumer savings service.\n\n"
    "Your approach:\n"
    "- Be polite but firm, you're here to get a better deal\n"
    "- Keep responses short, 1-2 sentences per turn\n"
    "- If the first rep can't help, politely ask for the retention or loyalty department\n"
    "- Reference competitor offers when appropriate\n"
    "- Aim for at least 15-20% savings on the monthly bill\n"
    "- If they offer something, try once more for a better deal before accepting\n"
    "- Thank the rep regardless of outcome\n"
    "- If asked for account verification details you don't have, say you'll need to call back "
    "with that info"
)

DEFAULT_GREETING = (
    "Hi, I'm calling about an account. I'm hoping to talk to someone about getting a better "
    "rate on the monthly bill."
)


class TelnyxAPIError(RuntimeError):
    """Raised when Telnyx returns an error response or cannot be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TelnyxClient:
    """Blocking wrapper around the Telnyx v2 REST API."""

    def __init__(
        self,
        api_key: Optional[str],
        *,
        base_url: str = TELNYX_API_BASE,
        timeout: int = 30,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()
        self._assistant_lock = threading.Lock()
        self._assistant_id: Optional[str] = None

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------
    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

    def _request(self, method: str, path: str, body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if not self.api_key:
            raise TelnyxAPIError("TELNYX_API_KEY not configured")
        url = f"{self.base_url}{path}"
        try:
            response = self._session.request(
                method,
                url,
                headers=self._headers(),
                json=body,
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.HTTPError as exc:
            status_code = exc.response.status_code if exc.response is not None else None
            message = exc.response.text if exc.response is not None else str(exc)
            raise TelnyxAPIError(f"Telnyx API error: {status_code} - {message}", status_code=status_code) from exc
        except requests.RequestException as exc:
            raise TelnyxAPIError(str(exc)) from exc

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise TelnyxAPIError(f"Telnyx returned invalid JSON: {exc}") from exc

    # ------------------------------------------------------------------
    # Call control
    # ------------------------------------------------------------------
    def dial(
        self,
        connection_id: str,
        from_number: str,
        to_number: str,
        webhook_url: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Place an outbound call. Returns the call's data block."""
        body: Dict[str, Any] = {
            "connection_id": connection_id,
            "from": from_number,
            "to": to_number,
        }
        if webhook_url:
            body["webhook_url"] = webhook_url
        data = self._request("POST", "/calls", body).get("data") or {}
        if not data.get("call_control_id"):
            raise TelnyxAPIError("Telnyx dial response had no call_control_id")
        return data

    def start_assistant(self, call_control_id: str, assistant_id: str, instructions: Optional[str] = None) -> None:
        assistant: Dict[str, Any] = {"id": assistant_id}
        if instructions:
            assistant["instructions"] = instructions
        self._request("POST", f"/calls/{call_control_id}/actions/ai_assistant_start", {"assistant": assistant})

    def hangup(self, call_control_id: str) -> None:
        self._request("POST", f"/calls/{call_control_id}/actions/hangup", {})

    # ------------------------------------------------------------------
    # Assistants
    # ------------------------------------------------------------------
    def get_or_create_assistant(self) -> str:
        """Assistant id for ASSISTANT_NAME, created on first use and cached."""
        with self._assistant_lock:
            if self._assistant_id:
                return self._assistant_id

            try:
                assistants = self._request("GET", "/ai/assistants").get("data") or []
            except TelnyxAPIError as exc:
                logger.warning(f"Failed to list assistants, creating a new one: {exc}")
                assistants = []

            existing = next((a for a in assistants if a.get("name") == ASSISTANT_NAME), None)
            if existing and existing.get("id"):
                logger.info(f"Found existing assistant: {existing['id']}")
                self._assistant_id = existing["id"]
                return self._assistant_id

            created = self._request("POST", "/ai/assistants", {
                "name": ASSISTANT_NAME,
                "model": "openai/gpt-4o",
                "instructions": DEFAULT_INSTRUCTIONS,
                "greeting": DEFAULT_GREETING,
                "telephony_settings": {"time_limit_secs": 1800},
            }).get("data") or {}
            assistant_id = created.get("id")
            if not assistant_id:
                raise TelnyxAPIError("Failed to create assistant - no ID returned")
            logger.info(f"Created Telnyx AI assistant: {assistant_id}")
            self._assistant_id = assistant_id
            return assistant_id
