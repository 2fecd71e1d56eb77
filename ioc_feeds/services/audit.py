"""
Audit event emission
"""

import logging
from typing import Any, Dict, Optional

from ..db import SessionLocal
from ..models.audit_log import AuditLog

logger = logging.getLogger(__name__)

_LOG_LEVELS = {"info": logging.INFO, "warning": logging.WARNING, "error": logging.ERROR}


def build_audit_log(
    level: str,
    action: str,
    resource: str,
    details: str,
    resource_id: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    user_id: Optional[int] = None,
) -> AuditLog:
    """Unsaved audit row, for callers that write it inside their own transaction"""
    return AuditLog(
        level=level,
        action=action,
        resource=resource,
        resource_id=resource_id,
        details=details,
        meta=metadata,
        user_id=user_id,
    )


def log_audit_event(entry: AuditLog):
    logger.log(_LOG_LEVELS.get(entry.level, logging.INFO), f"AUDIT {entry.action} {entry.resource}: {entry.details}",
               extra={
                   "component": "audit",
                   "action": entry.action,
                   "resource_id": entry.resource_id,
               })


def emit_audit_event(
    level: str,
    action: str,
    resource: str,
    details: str,
    resource_id: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    user_id: Optional[int] = None,
) -> None:
    """Record one audit event; a failing audit write never breaks the caller"""

    db = SessionLocal()
    try:
        entry = build_audit_log(level, action, resource, details, resource_id, metadata, user_id)
        db.add(entry)
        db.commit()
        log_audit_event(entry)

    except Exception as e:
        logger.error(f"Failed to write audit event: {e}")
        db.rollback()
    finally:
        db.close()
