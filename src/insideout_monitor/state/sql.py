"""
SQLAlchemy-backed status store.

Persists current entity state, the raw sighting history, and the alert
delivery log. ``last_seen`` only ever moves forward: the write is a
conditional UPDATE so reordered samples cannot regress it.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    Index,
    Integer,
    String,
    Text,
    create_engine,
    func,
    select,
    update,
)
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from insideout_monitor.errors import PersistenceUnavailable
from insideout_monitor.state.store import initial_state
from insideout_monitor.state.types import (
    AlertEvent,
    AlertEventType,
    DeliveryResult,
    EntityState,
    EntityStatus,
    EntityType,
    Sample,
    SightingResult,
)

LOGGER = logging.getLogger(__name__)

Base = declarative_base()


class EntityStateRow(Base):
    """Current status per entity key."""

    __tablename__ = "entity_states"

    entity_key = Column(String(255), primary_key=True)
    entity_type = Column(String(32), nullable=False)
    status = Column(String(16), nullable=False)
    last_seen = Column(BigInteger, nullable=False)
    last_status_change = Column(BigInteger, nullable=False)
    reported_status = Column(String(16), nullable=True)
    details = Column("metadata", JSON, nullable=False, default=dict)
    updated_at = Column(BigInteger, nullable=False)

    def __repr__(self):
        return f"<EntityStateRow(key={self.entity_key}, status={self.status}, last_seen={self.last_seen})>"


class SightingRow(Base):
    """One accepted sample; the status history behind the dashboard reports."""

    __tablename__ = "sightings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    entity_key = Column(String(255), nullable=False, index=True)
    entity_type = Column(String(32), nullable=False)
    kind = Column(String(16), nullable=False)
    device_timestamp = Column(BigInteger, nullable=False)
    received_at = Column(BigInteger, nullable=False, index=True)
    reported_status = Column(String(16), nullable=True)
    payload = Column(JSON, nullable=False, default=dict)


class AlertLogRow(Base):
    """Audit record of every delivery attempt, successful or not."""

    __tablename__ = "alert_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    entity_type = Column(String(32), nullable=False)
    entity_key = Column(String(255), nullable=False)
    event_type = Column(String(16), nullable=False)
    sink_kind = Column(String(16), nullable=False)
    sink_name = Column(String(100), nullable=False)
    sent_at = Column(BigInteger, nullable=False)
    success = Column(Boolean, nullable=False)
    error_message = Column(Text, nullable=True)

    __table_args__ = (
        Index("ix_alert_log_entity_event", "entity_key", "event_type"),
    )


def create_store_engine(database_url: str) -> Engine:
    """Create an engine, sharing one connection for in-memory SQLite."""
    url = make_url(database_url)
    kwargs: Dict[str, Any] = {"pool_pre_ping": True}
    if url.get_backend_name() == "sqlite":
        kwargs["connect_args"] = {"check_same_thread": False}
        if url.database in (None, "", ":memory:"):
            kwargs["poolclass"] = StaticPool
        else:
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)
    return create_engine(database_url, **kwargs)


class SqlStatusStore:
    """StatusStore implementation over any SQLAlchemy-supported database."""

    def __init__(self, database_url: Optional[str] = None, *, engine: Optional[Engine] = None) -> None:
        if engine is None:
            if not database_url:
                raise ValueError("database_url or engine is required")
            engine = create_store_engine(database_url)
        self._engine = engine
        try:
            Base.metadata.create_all(self._engine)
        except SQLAlchemyError as exc:
            raise PersistenceUnavailable(f"schema initialisation failed: {exc}") from exc
        self._sessions = sessionmaker(
            bind=self._engine,
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
        )

    @contextmanager
    def _session(self) -> Iterator[Session]:
        session = self._sessions()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            raise PersistenceUnavailable(str(exc)) from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def close(self) -> None:
        self._engine.dispose()

    def get_entity_state(self, key: str) -> Optional[EntityState]:
        with self._session() as session:
            row = session.get(EntityStateRow, key)
            return _state_from_row(row) if row is not None else None

    def list_entity_states(self) -> List[EntityState]:
        with self._session() as session:
            rows = session.scalars(select(EntityStateRow)).all()
            return [_state_from_row(row) for row in rows]

    def record_sighting(self, sample: Sample) -> SightingResult:
        with self._session() as session:
            session.add(
                SightingRow(
                    entity_key=sample.entity_key,
                    entity_type=sample.entity_type.value,
                    kind=sample.kind.value,
                    device_timestamp=sample.device_timestamp,
                    received_at=sample.received_at,
                    reported_status=sample.reported_status.value if sample.reported_status else None,
                    payload=sample.payload,
                )
            )
            row = session.get(EntityStateRow, sample.entity_key)
            if row is None:
                state = initial_state(sample)
                session.add(_row_from_state(state, updated_at=sample.received_at))
                return SightingResult(state=state, created=True, advanced=True)
            if row.entity_type != sample.entity_type.value:
                return SightingResult(state=_state_from_row(row), created=False, advanced=False, type_conflict=True)

            merged = {**(row.details or {}), **sample.metadata}
            result = session.execute(
                update(EntityStateRow)
                .where(
                    EntityStateRow.entity_key == sample.entity_key,
                    EntityStateRow.last_seen < sample.last_seen,
                )
                .values(
                    {
                        EntityStateRow.last_seen: sample.last_seen,
                        EntityStateRow.reported_status: sample.reported_status.value if sample.reported_status else None,
                        EntityStateRow.details: merged,
                        EntityStateRow.updated_at: sample.received_at,
                    }
                )
                .execution_options(synchronize_session=False)
            )
            session.expire(row)
            return SightingResult(state=_state_from_row(row), created=False, advanced=result.rowcount == 1)

    def upsert_entity_state(
        self,
        key: str,
        status: EntityStatus,
        last_seen: int,
        last_status_change: int,
        *,
        entity_type: EntityType = EntityType.DEVICE,
    ) -> EntityState:
        with self._session() as session:
            row = session.get(EntityStateRow, key)
            if row is None:
                row = EntityStateRow(
                    entity_key=key,
                    entity_type=entity_type.value,
                    status=status.value,
                    last_seen=last_seen,
                    last_status_change=last_status_change,
                    reported_status=None,
                    details={},
                    updated_at=last_status_change,
                )
                session.add(row)
            else:
                row.status = status.value
                row.last_seen = max(row.last_seen, last_seen)
                row.last_status_change = last_status_change
                row.updated_at = last_status_change
            session.flush()
            return _state_from_row(row)

    def record_alert(self, event: AlertEvent, result: DeliveryResult, *, sent_at: Optional[int] = None) -> None:
        with self._session() as session:
            session.add(
                AlertLogRow(
                    entity_type=event.entity_type.value,
                    entity_key=event.entity_key,
                    event_type=event.event_type.value,
                    sink_kind=result.sink_kind,
                    sink_name=result.sink_name,
                    sent_at=event.occurred_at if sent_at is None else sent_at,
                    success=result.success,
                    error_message=result.error,
                )
            )

    def get_last_alert_sent_at(self, key: str, event_type: AlertEventType) -> Optional[int]:
        with self._session() as session:
            value = session.scalar(
                select(func.max(AlertLogRow.sent_at)).where(
                    AlertLogRow.entity_key == key,
                    AlertLogRow.event_type == event_type.value,
                )
            )
            return int(value) if value is not None else None

    def sighting_count(self, key: str) -> int:
        with self._session() as session:
            return int(
                session.scalar(select(func.count(SightingRow.id)).where(SightingRow.entity_key == key)) or 0
            )


def _row_from_state(state: EntityState, *, updated_at: int) -> EntityStateRow:
    return EntityStateRow(
        entity_key=state.entity_key,
        entity_type=state.entity_type.value,
        status=state.status.value,
        last_seen=state.last_seen,
        last_status_change=state.last_status_change,
        reported_status=state.reported_status.value if state.reported_status else None,
        details=dict(state.metadata),
        updated_at=updated_at,
    )


def _state_from_row(row: EntityStateRow) -> EntityState:
    return EntityState(
        entity_key=row.entity_key,
        entity_type=EntityType(row.entity_type),
        status=EntityStatus(row.status),
        last_seen=int(row.last_seen),
        last_status_change=int(row.last_status_change),
        reported_status=EntityStatus(row.reported_status) if row.reported_status else None,
        metadata=dict(row.details or {}),
    )


__all__ = [
    "AlertLogRow",
    "Base",
    "EntityStateRow",
    "SightingRow",
    "SqlStatusStore",
    "create_store_engine",
]
