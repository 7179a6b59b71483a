from collections.abc import Generator

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from examsched.core.config import get_settings
from examsched.db.session import SessionLocal
from examsched.services.batch_orchestrator import BatchOrchestrator
from examsched.services.reference_data import ReferenceDataProvider, SqlReferenceDataProvider


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_actor_id(x_actor_id: str | None = Header(default=None, max_length=36)) -> str | None:
    if x_actor_id is None:
        return None
    return x_actor_id.strip() or None


def get_reference_provider(db: Session = Depends(get_db)) -> ReferenceDataProvider:
    return SqlReferenceDataProvider(db, default_duration_minutes=get_settings().exam_default_duration_minutes)


def get_orchestrator(
    db: Session = Depends(get_db),
    provider: ReferenceDataProvider = Depends(get_reference_provider),
) -> BatchOrchestrator:
    return BatchOrchestrator(db, provider, settings=get_settings())
