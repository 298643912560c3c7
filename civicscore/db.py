from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Generator

from sqlalchemy import create_engine, delete, select
from sqlalchemy.orm import Session, sessionmaker

from civicscore.config import data_dir
from civicscore.models import AnalysisRecord, Base, DomainRow, EntityRow, MetadataRecord, QuestionRow
from civicscore.normalizer import parse_questions
from civicscore.schemas import Domain, Entity, Question
from civicscore.stores import DocumentNotFound

log = logging.getLogger(__name__)

_lock = threading.Lock()
_engine = None
_SessionLocal = None


def init_db(db_path: str | Path | None = None) -> None:
    global _engine, _SessionLocal
    with _lock:
        if _engine is not None:
            _engine.dispose()
        if db_path is None:
            db_path = data_dir() / "civicscore.db"
        db_path = Path(db_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        _engine = create_engine(f"sqlite:///{db_path}", connect_args={"check_same_thread": False})
        Base.metadata.create_all(_engine)
        _SessionLocal = sessionmaker(bind=_engine, autoflush=False, expire_on_commit=False)


def get_session() -> Session:
    with _lock:
        if _SessionLocal is None:
            raise RuntimeError("init_db() has not been called")
        factory = _SessionLocal
    return factory()  # type: ignore[misc]


@contextmanager
def session_scope(factory: Callable[[], Session] = get_session) -> Generator[Session, None, None]:
    """Context manager providing a session that is rolled back on error."""
    session = factory()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# ---------------------------------------------------------------------------
# Write helpers (ingestion side; the scoring engine never writes)
# ---------------------------------------------------------------------------


def upsert_entity(session: Session, entity: Entity, sort_order: int = 0) -> EntityRow:
    row = session.get(EntityRow, entity.id)
    if row is None:
        row = EntityRow(id=entity.id)
        session.add(row)
    row.name = entity.name
    row.display_name = entity.display_name or entity.name or entity.id
    row.sort_order = sort_order
    return row


def upsert_domain(session: Session, domain: Domain, questions: list[Any]) -> DomainRow:
    """Create or replace a domain and its question definitions."""
    row = session.get(DomainRow, domain.id)
    if row is None:
        row = DomainRow(id=domain.id)
        session.add(row)
    row.name = domain.name
    row.display_name = domain.display_name or domain.name or domain.id
    row.description = domain.description
    session.execute(delete(QuestionRow).where(QuestionRow.domain_id == domain.id))
    for position, q in enumerate(parse_questions(questions)):
        session.add(QuestionRow(
            domain_id=domain.id,
            key=str(q.id),
            numeric_key=isinstance(q.id, int),
            text=q.question,
            category=q.category,
            weight=q.weight,
            display_order=q.order,
            position=position,
        ))
    return row


def _save_payload(session: Session, model, domain_id: str, entity_id: str, payload: Any) -> None:
    rec = session.execute(
        select(model).where(model.domain_id == domain_id, model.entity_id == entity_id)
    ).scalars().first()
    if rec is None:
        rec = model(domain_id=domain_id, entity_id=entity_id)
        session.add(rec)
    rec.payload_json = json.dumps(payload)


def save_analysis(session: Session, domain_id: str, entity_id: str, payload: Any) -> None:
    """Store a raw analysis record as-is (any historical shape)."""
    _save_payload(session, AnalysisRecord, domain_id, entity_id, payload)


def save_metadata(session: Session, domain_id: str, entity_id: str, payload: Any) -> None:
    _save_payload(session, MetadataRecord, domain_id, entity_id, payload)


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

def _payload(rec: AnalysisRecord | MetadataRecord) -> Any:
    try:
        return json.loads(rec.payload_json or "")
    except json.JSONDecodeError:
        log.warning("Unparseable payload for %s/%s", rec.domain_id, rec.entity_id)
        return rec.payload_json  # surfaces later as a malformed record


class SqlDocumentStore:
    """DocumentStore over the SQLAlchemy tables in ``civicscore.models``."""

    def __init__(self, session_factory: Callable[[], Session] = get_session):
        self._session_factory = session_factory

    async def get_questions(self, domain_id: str) -> list[Question]:
        with session_scope(self._session_factory) as session:
            domain = session.get(DomainRow, domain_id)
            if domain is None:
                raise DocumentNotFound(f"No questions for domain {domain_id!r}")
            return [
                Question(
                    id=int(q.key) if q.numeric_key else q.key,
                    question=q.text,
                    category=q.category,
                    weight=q.weight,
                    order=q.display_order,
                )
                for q in domain.questions
            ]

    async def _record(self, model, domain_id: str, entity_id: str) -> Any | None:
        with session_scope(self._session_factory) as session:
            rec = session.execute(
                select(model).where(model.domain_id == domain_id, model.entity_id == entity_id)
            ).scalars().first()
            return _payload(rec) if rec is not None else None

    async def get_analysis(self, domain_id: str, entity_id: str) -> Any | None:
        return await self._record(AnalysisRecord, domain_id, entity_id)

    async def load_metadata(self, domain_id: str, entity_id: str) -> Any | None:
        return await self._record(MetadataRecord, domain_id, entity_id)

    async def list_entities(self) -> list[Entity]:
        with session_scope(self._session_factory) as session:
            rows = session.execute(
                select(EntityRow).order_by(EntityRow.sort_order, EntityRow.id)
            ).scalars().all()
            return [Entity(id=r.id, name=r.name, display_name=r.display_name) for r in rows]

    async def get_domains(self) -> list[Domain]:
        with session_scope(self._session_factory) as session:
            rows = session.execute(select(DomainRow).order_by(DomainRow.id)).scalars().all()
            return [
                Domain(id=r.id, name=r.name, display_name=r.display_name, description=r.description)
                for r in rows
            ]
