"""
Slash Negotiation Engine - SQLAlchemy ORM Models
Persistent rows behind the SQL record store and leverage repository
"""
from sqlalchemy import Column, String, Integer, Float, DateTime, Text, JSON, Boolean, Enum as SQLEnum

from ..database import Base
from .domain import BillCategory, NegotiationStatus, utcnow


# =============================================================================
# NEGOTIATIONS
# =============================================================================

class NegotiationDB(Base):
    """One negotiation attempt for a bill."""
    __tablename__ = "negotiations"

    id = Column(String(64), primary_key=True)
    bill_id = Column(String(64), nullable=False, index=True)
    owner_id = Column(String(64), nullable=False, index=True)
    provider_id = Column(String(100), nullable=False)
    category = Column(SQLEnum(BillCategory), nullable=False)

    status = Column(SQLEnum(NegotiationStatus), nullable=False, default=NegotiationStatus.PENDING, index=True)
    original_rate = Column(Float, nullable=False)

    # Plan is immutable once written; stored as its dict form
    plan = Column(JSON, nullable=True)
    external_call_handle = Column(String(255), nullable=True, index=True)
    agent_started = Column(Boolean, default=False)

    # Append-only list of {tactic, outcome, timestamp, notes}
    attempts = Column(JSON, nullable=False, default=list)

    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    new_rate = Column(Float, nullable=True)
    monthly_savings = Column(Float, nullable=True)
    total_savings = Column(Float, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


# =============================================================================
# LEVERAGE
# =============================================================================

class CompetitorRateDB(Base):
    """A competitor rate known for a provider (verified leverage)."""
    __tablename__ = "competitor_rates"

    id = Column(Integer, primary_key=True, autoincrement=True)
    provider_id = Column(String(100), nullable=False, index=True)  # provider being negotiated
    competitor = Column(String(100), nullable=False)
    plan_name = Column(String(255), nullable=False, default="")
    monthly_rate = Column(Float, nullable=False)
    source = Column(String(500), nullable=False, default="")
    contract_terms = Column(String(100), nullable=True)
    observed_at = Column(DateTime(timezone=True), default=utcnow)


class RetentionOfferDB(Base):
    """Observed retention offer statistics for a provider."""
    __tablename__ = "retention_offers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    provider_id = Column(String(100), nullable=False, index=True)
    trigger = Column(String(100), nullable=False)
    typical_discount = Column(Float, nullable=False, default=0.0)
    success_rate = Column(Float, nullable=False, default=0.0)


class NegotiationResultDB(Base):
    """Outcome of a finished negotiation; feeds historical average savings."""
    __tablename__ = "negotiation_results"

    id = Column(Integer, primary_key=True, autoincrement=True)
    negotiation_id = Column(String(64), nullable=False, unique=True)
    provider_id = Column(String(100), nullable=False, index=True)
    tactic = Column(String(50), nullable=True)
    success = Column(Boolean, nullable=False)
    monthly_savings = Column(Float, nullable=False, default=0.0)
    notes = Column(Text, nullable=True)
    recorded_at = Column(DateTime(timezone=True), default=utcnow)
