"""SQLite/SQLAlchemy storage for projected training plans."""

import logging
from contextlib import contextmanager
from typing import Iterator, List, Optional

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..config import config
from .models import Base, TrainingPlanRecord

logger = logging.getLogger(__name__)


def make_engine(url: str):
    if url.startswith("sqlite"):
        # One shared connection so in-memory stores survive between sessions
        return create_engine(url, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    return create_engine(url)


class PlanStore:
    """Saves and reads back plan projections."""

    def __init__(self, database_url: Optional[str] = None):
        self.database_url = database_url or config.DATABASE_URL
        self.engine = make_engine(self.database_url)
        self.session_factory = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False)

    def create_tables(self):
        Base.metadata.create_all(bind=self.engine)

    def drop_tables(self):
        Base.metadata.drop_all(bind=self.engine)

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """Session that commits on success and rolls back on any error."""
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def save_plan(self, record: TrainingPlanRecord) -> TrainingPlanRecord:
        """Persist a plan record and return it with its id assigned."""
        with self.session_scope() as session:
            session.add(record)
            session.flush()
            logger.info(f"Stored training plan {record.id} ({record.name})")
        return record

    def list_plans(self, limit: Optional[int] = None) -> List[TrainingPlanRecord]:
        """Stored plans, newest first."""
        with self.session_scope() as session:
            query = session.query(TrainingPlanRecord).order_by(
                TrainingPlanRecord.created_at.desc(), TrainingPlanRecord.id.desc()
            )
            if limit:
                query = query.limit(limit)
            return query.all()

    def get_plan(self, plan_id: int) -> Optional[TrainingPlanRecord]:
        with self.session_scope() as session:
            return session.get(TrainingPlanRecord, plan_id)

    def close(self):
        self.engine.dispose()


_store: Optional[PlanStore] = None


def get_store() -> PlanStore:
    """Shared store for the configured DATABASE_URL, created on first use."""
    global _store
    if _store is None:
        _store = PlanStore()
        _store.create_tables()
    return _store


def close_store():
    global _store
    if _store is not None:
        _store.close()
        _store = None
