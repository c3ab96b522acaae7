"""
Negotiation Record Store

Durable or in-memory map of negotiation id -> Negotiation.
The orchestrator is the only writer. Every update is applied atomically
with respect to concurrent updates on the same id. The interface is async
so a database-backed store never blocks the event loop.
"""
import asyncio
import copy
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from ...errors import RecordNotFoundError
from ...models.db_models import NegotiationDB
from ...models.domain import (
    Negotiation, NegotiationAttempt, NegotiationPlan, utcnow,
)

logger = logging.getLogger(__name__)


IMMUTABLE_FIELDS = frozenset({
    "id", "bill_id", "owner_id", "provider_id", "category", "original_rate", "created_at",
})

MUTABLE_FIELDS = frozenset({
    "status", "plan", "external_call_handle", "agent_started", "attempts",
    "started_at", "completed_at", "new_rate", "monthly_savings", "total_savings",
})


def _check_partial(partial: Dict[str, Any]) -> None:
    frozen = IMMUTABLE_FIELDS.intersection(partial)
    if frozen:
        raise ValueError(f"Cannot update immutable negotiation fields: {sorted(frozen)}")
    unknown = set(partial) - MUTABLE_FIELDS
    if unknown:
        raise ValueError(f"Unknown negotiation fields: {sorted(unknown)}")


class RecordStore(ABC):
    """Interface the orchestrator reads and writes negotiations through."""

    @abstractmethod
    async def create(self, negotiation: Negotiation) -> Negotiation:
        ...

    @abstractmethod
    async def get(self, negotiation_id: str) -> Optional[Negotiation]:
        ...

    @abstractmethod
    async def update(self, negotiation_id: str, partial: Dict[str, Any]) -> Negotiation:
        """Apply a partial update; raises RecordNotFoundError for unknown ids."""
        ...

    @abstractmethod
    async def find_by_bill(self, bill_id: str) -> List[Negotiation]:
        ...


# =============================================================================
# IN-MEMORY STORE
# =============================================================================

class InMemoryRecordStore(RecordStore):
    """
    Process-local store.

    Returns copies so no caller can mutate stored state outside update().
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: Dict[str, Negotiation] = {}

    async def create(self, negotiation: Negotiation) -> Negotiation:
        with self._lock:
            if negotiation.id in self._records:
                raise ValueError(f"Negotiation {negotiation.id} already exists")
            self._records[negotiation.id] = copy.deepcopy(negotiation)
            return copy.deepcopy(negotiation)

    async def get(self, negotiation_id: str) -> Optional[Negotiation]:
        with self._lock:
            record = self._records.get(negotiation_id)
            return copy.deepcopy(record) if record is not None else None

    async def update(self, negotiation_id: str, partial: Dict[str, Any]) -> Negotiation:
        _check_partial(partial)
        with self._lock:
            record = self._records.get(negotiation_id)
            if record is None:
                raise RecordNotFoundError(negotiation_id)
            updated = copy.deepcopy(record)
            for key, value in partial.items():
                setattr(updated, key, copy.deepcopy(value))
            updated.updated_at = utcnow()
            self._records[negotiation_id] = updated
            return copy.deepcopy(updated)

    async def find_by_bill(self, bill_id: str) -> List[Negotiation]:
        with self._lock:
            matches = [copy.deepcopy(n) for n in self._records.values() if n.bill_id == bill_id]
        return sorted(matches, key=lambda n: n.created_at, reverse=True)


# =============================================================================
# SQL STORE
# =============================================================================

def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _to_column(key: str, value: Any) -> Any:
    if key == "plan":
        return value.to_dict() if value is not None else None
    if key == "attempts":
        return [a.to_dict() for a in value]
    return value


def _from_row(row: NegotiationDB) -> Negotiation:
    return Negotiation(
        id=row.id,
        bill_id=row.bill_id,
        owner_id=row.owner_id,
        provider_id=row.provider_id,
        category=row.category,
        original_rate=row.original_rate,
        status=row.status,
        plan=NegotiationPlan.from_dict(row.plan) if row.plan else None,
        external_call_handle=row.external_call_handle,
        agent_started=bool(row.agent_started),
        attempts=[NegotiationAttempt.from_dict(a) for a in (row.attempts or [])],
        started_at=_aware(row.started_at),
        completed_at=_aware(row.completed_at),
        new_rate=row.new_rate,
        monthly_savings=row.monthly_savings,
        total_savings=row.total_savings,
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


class SqlRecordStore(RecordStore):
    """
    SQLAlchemy-backed store on the negotiations table.

    Each call runs in a worker thread so the event loop never blocks on the database.
    """

    def __init__(self, session_factory: Optional[Callable[[], Session]] = None):
        if session_factory is None:
            from ...database import SessionLocal
            session_factory = SessionLocal
        self._session_factory = session_factory
        self._lock = threading.Lock()

    async def create(self, negotiation: Negotiation) -> Negotiation:
        return await asyncio.to_thread(self._create, negotiation)

    async def get(self, negotiation_id: str) -> Optional[Negotiation]:
        return await asyncio.to_thread(self._get, negotiation_id)

    async def update(self, negotiation_id: str, partial: Dict[str, Any]) -> Negotiation:
        _check_partial(partial)
        return await asyncio.to_thread(self._update, negotiation_id, partial)

    async def find_by_bill(self, bill_id: str) -> List[Negotiation]:
        return await asyncio.to_thread(self._find_by_bill, bill_id)

    def _create(self, negotiation: Negotiation) -> Negotiation:
        session = self._session_factory()
        try:
            row = NegotiationDB(
                id=negotiation.id,
                bill_id=negotiation.bill_id,
                owner_id=negotiation.owner_id,
                provider_id=negotiation.provider_id,
                category=negotiation.category,
                original_rate=negotiation.original_rate,
                status=negotiation.status,
                plan=_to_column("plan", negotiation.plan),
                external_call_handle=negotiation.external_call_handle,
                agent_started=negotiation.agent_started,
                attempts=_to_column("attempts", negotiation.attempts),
                started_at=negotiation.started_at,
                completed_at=negotiation.completed_at,
                new_rate=negotiation.new_rate,
                monthly_savings=negotiation.monthly_savings,
                total_savings=negotiation.total_savings,
                created_at=negotiation.created_at,
                updated_at=negotiation.updated_at,
            )
            session.add(row)
            session.commit()
            return _from_row(row)
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _get(self, negotiation_id: str) -> Optional[Negotiation]:
        session = self._session_factory()
        try:
            row = session.get(NegotiationDB, negotiation_id)
            return _from_row(row) if row is not None else None
        finally:
            session.close()

    def _update(self, negotiation_id: str, partial: Dict[str, Any]) -> Negotiation:
        with self._lock:
            session = self._session_factory()
            try:
                row = (
                    session.query(NegotiationDB)
                    .filter(NegotiationDB.id == negotiation_id)
                    .with_for_update()
                    .one_or_none()
                )
                if row is None:
                    raise RecordNotFoundError(negotiation_id)
                for key, value in partial.items():
                    setattr(row, key, _to_column(key, value))
                row.updated_at = utcnow()
                session.commit()
                return _from_row(row)
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()

    def _find_by_bill(self, bill_id: str) -> List[Negotiation]:
        session = self._session_factory()
        try:
            rows = (
                session.query(NegotiationDB)
                .filter(NegotiationDB.bill_id == bill_id)
                .order_by(NegotiationDB.created_at.desc())
                .all()
            )
            return [_from_row(r) for r in rows]
        finally:
            session.close()
