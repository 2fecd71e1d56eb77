import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import and_
from sqlalchemy.orm import Session

from ..db import utcnow
from ..models.source import DataSource

logger = logging.getLogger(__name__)


def is_due(last_fetch: Optional[datetime], fetch_interval: int, now: datetime) -> bool:
    """A source is due once ``fetch_interval`` seconds have passed since its last fetch"""
    if last_fetch is None:
        return True
    return (now - last_fetch).total_seconds() >= fetch_interval


class SourceService:
    """Service for feed sources"""

    @staticmethod
    def get_source(db: Session, source_id: int) -> Optional[DataSource]:
        return db.query(DataSource).filter(DataSource.id == source_id).first()

    @staticmethod
    def get_active_sources(db: Session) -> List[DataSource]:
        """Active, unpaused sources"""
        return db.query(DataSource).filter(
            and_(DataSource.is_active.is_(True), DataSource.is_paused.is_(False))
        ).order_by(DataSource.id).all()

    @staticmethod
    def get_due_sources(db: Session, now: Optional[datetime] = None) -> List[DataSource]:
        now = now or utcnow()
        return [
            source for source in SourceService.get_active_sources(db)
            if is_due(source.last_fetch, source.fetch_interval, now)
        ]

    @staticmethod
    def mark_status(db: Session, source_id: int, status: str, error: Optional[str] = None):
        """Record the outcome of a fetch attempt; also stamps last_fetch"""
        db.query(DataSource).filter(DataSource.id == source_id).update({
            "last_fetch_status": status,
            "last_fetch_error": error,
            "last_fetch": utcnow(),
        })
        db.commit()

    @staticmethod
    def pause(db: Session, source_id: int) -> DataSource:
        return SourceService._set_paused(db, source_id, True)

    @staticmethod
    def resume(db: Session, source_id: int) -> DataSource:
        return SourceService._set_paused(db, source_id, False)

    @staticmethod
    def _set_paused(db: Session, source_id: int, paused: bool) -> DataSource:
        source = SourceService.get_source(db, source_id)
        if not source:
            raise ValueError("Source not found")
        source.is_paused = paused
        db.commit()
        db.refresh(source)
        logger.info(f"Source {source.name} {'paused' if paused else 'resumed'}")
        return source

    @staticmethod
    def list_sources(db: Session) -> List[DataSource]:
        return db.query(DataSource).order_by(DataSource.id).all()

    @staticmethod
    def create_source(db: Session, name: str, url: str, indicator_types: List[str],
                      fetch_interval: int = 3600, created_by: Optional[int] = None) -> DataSource:
        source = DataSource(
            name=name,
            url=url,
            indicator_types=list(dict.fromkeys(indicator_types)),
            fetch_interval=fetch_interval,
            is_active=True,
            is_paused=False,
            last_fetch_status="pending",
            created_by=created_by,
        )
        db.add(source)
        db.commit()
        db.refresh(source)
        logger.info(f"Created source {source.name}", extra={"source_id": source.id})
        return source
