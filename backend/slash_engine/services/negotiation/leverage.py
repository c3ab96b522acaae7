"""
Leverage Repository

Provider id -> competitor rates, retention offer statistics and the
historical record of past negotiations. Read-only during planning; the
orchestrator feeds finished negotiations back through record_result().
"""
import asyncio
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from ...models.db_models import CompetitorRateDB, NegotiationResultDB, RetentionOfferDB
from ...models.domain import CompetitorRate, Leverage, RetentionOffer, utcnow

logger = logging.getLogger(__name__)


@dataclass
class NegotiationResult:
    """Outcome of a finished negotiation as seen by the leverage repository."""
    negotiation_id: str
    provider_id: str
    success: bool
    monthly_savings: float = 0.0
    tactic: Optional[str] = None
    notes: Optional[str] = None
    recorded_at: datetime = field(default_factory=utcnow)


class LeverageRepository(ABC):

    @abstractmethod
    async def get_leverage(self, provider_id: str) -> Leverage:
        ...

    async def record_result(self, result: NegotiationResult) -> None:
        """Repositories without a history table ignore results."""
        return None


def _summarize(results: Iterable[NegotiationResult]) -> Tuple[int, float]:
    results = list(results)
    wins = [r.monthly_savings for r in results if r.success]
    average = sum(wins) / len(wins) if wins else 0.0
    return len(results), average


# =============================================================================
# IN-MEMORY REPOSITORY
# =============================================================================

class InMemoryLeverageRepository(LeverageRepository):
    """Seedable repository for tests and single-process runs."""

    def __init__(
        self,
        competitor_rates: Optional[Dict[str, List[CompetitorRate]]] = None,
        retention_offers: Optional[Dict[str, List[RetentionOffer]]] = None,
    ):
        self._lock = threading.Lock()
        self._rates: Dict[str, List[CompetitorRate]] = {
            k: list(v) for k, v in (competitor_rates or {}).items()
        }
        self._offers: Dict[str, List[RetentionOffer]] = {
            k: list(v) for k, v in (retention_offers or {}).items()
        }
        self._results: Dict[str, NegotiationResult] = {}

    def add_competitor_rate(self, provider_id: str, rate: CompetitorRate) -> None:
        with self._lock:
            self._rates.setdefault(provider_id, []).append(rate)

    def add_retention_offer(self, provider_id: str, offer: RetentionOffer) -> None:
        with self._lock:
            self._offers.setdefault(provider_id, []).append(offer)

    async def get_leverage(self, provider_id: str) -> Leverage:
        with self._lock:
            rates = list(self._rates.get(provider_id, []))
            offers = list(self._offers.get(provider_id, []))
            results = [r for r in self._results.values() if r.provider_id == provider_id]
        count, average = _summarize(results)
        return Leverage(
            provider=provider_id,
            competitor_rates=rates,
            retention_offers=offers,
            historical_negotiations=count,
            historical_average_savings=average,
        )

    async def record_result(self, result: NegotiationResult) -> None:
        with self._lock:
            # One result per negotiation; a repeat report replaces the first
            self._results[result.negotiation_id] = result

    @property
    def results(self) -> List[NegotiationResult]:
        with self._lock:
            return list(self._results.values())


# =============================================================================
# SQL REPOSITORY
# =============================================================================

class SqlLeverageRepository(LeverageRepository):
    """
    SQLAlchemy-backed repository.

    Queries run in a worker thread so the event loop never blocks on the database.
    """

    def __init__(self, session_factory: Optional[Callable[[], Session]] = None):
        if session_factory is None:
            from ...database import SessionLocal
            session_factory = SessionLocal
        self._session_factory = session_factory

    async def get_leverage(self, provider_id: str) -> Leverage:
        return await asyncio.to_thread(self._load, provider_id)

    async def record_result(self, result: NegotiationResult) -> None:
        await asyncio.to_thread(self._store_result, result)

    def _load(self, provider_id: str) -> Leverage:
        session = self._session_factory()
        try:
            rate_rows = (
                session.query(CompetitorRateDB)
                .filter(CompetitorRateDB.provider_id == provider_id)
                .all()
            )
            offer_rows = (
                session.query(RetentionOfferDB)
                .filter(RetentionOfferDB.provider_id == provider_id)
                .all()
            )
            count = (
                session.query(func.count(NegotiationResultDB.id))
                .filter(NegotiationResultDB.provider_id == provider_id)
                .scalar()
            ) or 0
            average = (
                session.query(func.avg(NegotiationResultDB.monthly_savings))
                .filter(
                    NegotiationResultDB.provider_id == provider_id,
                    NegotiationResultDB.success.is_(True),
                )
                .scalar()
            )
        finally:
            session.close()

        rates = []
        for row in rate_rows:
            observed_at = row.observed_at
            if observed_at is not None and observed_at.tzinfo is None:
                observed_at = observed_at.replace(tzinfo=timezone.utc)
            rates.append(CompetitorRate(
                provider=row.competitor,
                plan_name=row.plan_name,
                monthly_rate=row.monthly_rate,
                source=row.source,
                observed_at=observed_at or utcnow(),
                contract_terms=row.contract_terms,
            ))

        offers = [
            RetentionOffer(
                provider=row.provider_id,
                trigger=row.trigger,
                typical_discount=row.typical_discount,
                success_rate=row.success_rate,
            )
            for row in offer_rows
        ]

        return Leverage(
            provider=provider_id,
            competitor_rates=rates,
            retention_offers=offers,
            historical_negotiations=int(count),
            historical_average_savings=float(average or 0.0),
        )

    def _store_result(self, result: NegotiationResult) -> None:
        session = self._session_factory()
        try:
            row = (
                session.query(NegotiationResultDB)
                .filter(NegotiationResultDB.negotiation_id == result.negotiation_id)
                .one_or_none()
            )
            if row is None:
                row = NegotiationResultDB(negotiation_id=result.negotiation_id)
                session.add(row)
            row.provider_id = result.provider_id
            row.success = result.success
            row.monthly_savings = result.monthly_savings
            row.tactic = result.tactic
            row.notes = result.notes
            row.recorded_at = result.recorded_at
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def add_competitor_rate(self, provider_id: str, rate: CompetitorRate) -> None:
        session = self._session_factory()
        try:
            session.add(CompetitorRateDB(
                provider_id=provider_id,
                competitor=rate.provider,
                plan_name=rate.plan_name,
                monthly_rate=rate.monthly_rate,
                source=rate.source,
                contract_terms=rate.contract_terms,
                observed_at=rate.observed_at,
            ))
            session.commit()
        finally:
            session.close()

    def add_retention_offer(self, provider_id: str, offer: RetentionOffer) -> None:
        session = self._session_factory()
        try:
            session.add(RetentionOfferDB(
                provider_id=provider_id,
                trigger=offer.trigger,
                typical_discount=offer.typical_discount,
                success_rate=offer.success_rate,
            ))
            session.commit()
        finally:
            session.close()
