"""
Slash Negotiation Engine - Configuration

All runtime knobs come from environment variables.
"""
import os
from dataclasses import dataclass
from typing import Optional


# Limits for a single live negotiation
CALL_TIMEOUT_SECONDS = 10 * 60
MAX_ATTEMPTS = 5

# Collaborator round-trip budgets
LEVERAGE_TIMEOUT_SECONDS = 10.0
DISPATCH_TIMEOUT_SECONDS = 30.0

# Savings floor for any plan (currency epsilon)
MIN_EXPECTED_SAVINGS = 5.0

DEFAULT_DATABASE_URL = "sqlite:///./negotiations.db"


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return float(raw)


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


@dataclass(frozen=True)
class EngineSettings:
    """Settings for the orchestrator and its collaborators."""
    call_timeout_seconds: float = CALL_TIMEOUT_SECONDS
    max_attempts: int = MAX_ATTEMPTS
    leverage_timeout_seconds: float = LEVERAGE_TIMEOUT_SECONDS
    dispatch_timeout_seconds: float = DISPATCH_TIMEOUT_SECONDS
    min_expected_savings: float = MIN_EXPECTED_SAVINGS

    store_backend: str = "memory"  # "memory" or "sql"
    database_url: str = DEFAULT_DATABASE_URL

    telnyx_api_key: Optional[str] = None
    telnyx_phone_number: Optional[str] = None
    telnyx_connection_id: Optional[str] = None
    telnyx_webhook_url: Optional[str] = None
    tavily_api_key: Optional[str] = None

    log_level: str = "INFO"


def load_settings() -> EngineSettings:
    """Build settings from the environment."""
    return EngineSettings(
        call_timeout_seconds=_float_env("CALL_TIMEOUT_SECONDS", CALL_TIMEOUT_SECONDS),
        max_attempts=_int_env("MAX_ATTEMPTS", MAX_ATTEMPTS),
        leverage_timeout_seconds=_float_env("LEVERAGE_TIMEOUT_SECONDS", LEVERAGE_TIMEOUT_SECONDS),
        dispatch_timeout_seconds=_float_env("DISPATCH_TIMEOUT_SECONDS", DISPATCH_TIMEOUT_SECONDS),
        min_expected_savings=_float_env("MIN_EXPECTED_SAVINGS", MIN_EXPECTED_SAVINGS),
        store_backend=os.getenv("STORE_BACKEND", "memory").strip().lower(),
        database_url=os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL),
        telnyx_api_key=os.getenv("TELNYX_API_KEY"),
        telnyx_phone_number=os.getenv("TELNYX_PHONE_NUMBER"),
        telnyx_connection_id=os.getenv("TELNYX_CONNECTION_ID"),
        telnyx_webhook_url=os.getenv("TELNYX_WEBHOOK_URL"),
        tavily_api_key=os.getenv("TAVILY_API_KEY"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
