import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import and_, func
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from ..config import SETTING_ENABLE_SOAR_URL
from ..db import utcnow
from ..models.indicator import Indicator
from .audit import emit_audit_event
from .classifier import Rejection, RejectionReason, classify
from .settings import SettingsStore, settings_store
from .whitelist import WhitelistService, find_matching_entry

logger = logging.getLogger(__name__)

# Duplicate checks ignore case for these kinds only
CASE_INSENSITIVE_TYPES = ("hash", "domain")


class IndicatorError(ValueError):
    """Base class for manual indicator submission failures"""


class IndicatorRejected(IndicatorError):
    def __init__(self, rejection: Rejection):
        super().__init__(rejection.message)
        self.reason = rejection.reason


class IndicatorWhitelisted(IndicatorError):
    pass


class DuplicateIndicator(IndicatorError):
    pass


class SoarUrlDisabled(IndicatorError):
    pass


def _insert_for(db: Session):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    raise RuntimeError(f"Indicator upsert is not supported on {dialect}")


class IndicatorService:
    """Storage operations on indicators"""

    @staticmethod
    def upsert_batch(db: Session, rows: Sequence[Dict[str, Any]]) -> int:
        """
        Insert new (value, type) pairs as active; for pairs that already exist
        only refresh the origin attribution.

        Runs as one ``INSERT ... ON CONFLICT DO UPDATE`` so concurrent
        ingestions of different sources can race on the same pair without
        creating duplicates. Activation state and timestamps of existing rows
        are never touched.
        """
        if not rows:
            return 0

        unique: Dict[tuple, Dict[str, Any]] = {}
        for row in rows:
            unique.setdefault((row["value"], row["type"]), row)

        now = utcnow()
        values = [
            {
                "value": row["value"],
                "type": row["type"],
                "hash_type": row.get("hash_type"),
                "source": row.get("source") or "unknown",
                "source_id": row.get("source_id"),
                "is_active": True,
                "created_at": now,
                "updated_at": now,
                "created_by": row.get("created_by"),
            }
            for row in unique.values()
        ]

        insert = _insert_for(db)
        stmt = insert(Indicator).values(values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[Indicator.value, Indicator.type],
            set_={
                "source": stmt.excluded.source,
                "source_id": stmt.excluded.source_id,
            },
        )
        db.execute(stmt)
        db.commit()
        return len(values)

    @staticmethod
    def get_active_values(db: Session, types: Sequence[str]) -> List[str]:
        rows = (
            db.query(Indicator.value)
            .filter(and_(Indicator.type.in_(list(types)), Indicator.is_active.is_(True)))
            .order_by(Indicator.id)
            .all()
        )
        return [value for (value,) in rows]

    @staticmethod
    def find_duplicate(db: Session, value: str, kind: str) -> Optional[Indicator]:
        query = db.query(Indicator).filter(Indicator.type == kind)
        if kind in CASE_INSENSITIVE_TYPES:
            query = query.filter(func.lower(Indicator.value) == value.lower())
        else:
            query = query.filter(Indicator.value == value)
        return query.first()

    @staticmethod
    def create_manual(
        db: Session,
        raw_value: str,
        created_by: Optional[int] = None,
        kind: Optional[str] = None,
        notes: Optional[str] = None,
        settings: SettingsStore = settings_store,
    ) -> Indicator:
        """
        Classify, whitelist-check and store a single operator-entered value.

        ``kind`` may only be given as ``soar-url`` (for a value that
        classifies as a URL, when that kind is enabled) or as the classified
        kind itself. Duplicates are rejected, not merged.
        """
        result = classify(raw_value)
        if isinstance(result, Rejection):
            raise IndicatorRejected(result)

        target = result.kind
        if kind and kind != result.kind:
            if kind == "soar-url" and result.kind == "url":
                if not settings.get_bool(SETTING_ENABLE_SOAR_URL):
                    raise SoarUrlDisabled("The soar-url indicator type is disabled")
                target = "soar-url"
            else:
                raise IndicatorRejected(Rejection(
                    RejectionReason.UNRECOGNIZED,
                    f"'{result.value}' is a {result.kind}, not a {kind}",
                ))

        entries = WhitelistService.load_entries(db, result.kind)
        entry = find_matching_entry(result.value, result.kind, entries)
        if entry is not None:
            emit_audit_event(
                "warning", "blocked", "indicator",
                f"Whitelist blocked indicator: {result.value}",
                metadata={"whitelist_entry_id": entry.id, "type": target},
                user_id=created_by,
            )
            raise IndicatorWhitelisted(f"Indicator is whitelisted by entry {entry.value}")

        if IndicatorService.find_duplicate(db, result.value, target) is not None:
            raise DuplicateIndicator(f"Indicator {result.value} already exists")

        indicator = Indicator(
            value=result.value,
            type=target,
            hash_type=result.hash_algorithm,
            source="manual",
            source_id=None,
            is_active=True,
            notes=notes,
            created_by=created_by,
        )
        db.add(indicator)
        db.commit()
        db.refresh(indicator)

        emit_audit_event(
            "info", "create", "indicator",
            f"Created new indicator: {indicator.value}",
            resource_id=str(indicator.id),
            user_id=created_by,
        )
        return indicator

    @staticmethod
    def temp_activate(db: Session, indicator_id: int, duration_hours: int, user_id: Optional[int] = None) -> Indicator:
        """Mark an indicator active until ``now + duration_hours``"""
        if duration_hours <= 0:
            raise ValueError("Duration must be a positive number of hours")
        indicator = db.get(Indicator, indicator_id)
        if indicator is None:
            raise ValueError("Indicator not found")

        now = utcnow()
        expires = now + timedelta(hours=duration_hours)
        indicator.is_active = True
        indicator.temp_active_until = expires
        indicator.updated_at = now
        db.commit()
        db.refresh(indicator)

        emit_audit_event(
            "info", "temp_activate", "indicator",
            f"Temporarily activated indicator for {duration_hours} hours until {expires.isoformat()}Z",
            resource_id=str(indicator.id),
            user_id=user_id,
        )
        return indicator

    @staticmethod
    def purge_expired_temporary(db: Session) -> int:
        """Delete temporarily activated indicators whose expiry has passed"""
        now = utcnow()
        expired = (
            db.query(Indicator)
            .filter(
                Indicator.is_active.is_(True),
                Indicator.temp_active_until.isnot(None),
                Indicator.temp_active_until <= now,
            )
            .all()
        )
        removed = [(i.id, i.value) for i in expired]
        for indicator in expired:
            db.delete(indicator)
        db.commit()

        for indicator_id, value in removed:
            emit_audit_event(
                "info", "temp_delete", "indicator",
                f"Automatically deleted expired temporary indicator: {value}",
                resource_id=str(indicator_id),
            )
        if removed:
            logger.info(f"Purged {len(removed)} expired temporary indicators")
        return len(removed)
