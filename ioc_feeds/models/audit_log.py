"""
Audit Log Model
"""

from sqlalchemy import Column, Integer, String, Text, DateTime, JSON

from ..db import Base, utcnow


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    level = Column(String(16), nullable=False, index=True)  # info, warning, error
    action = Column(String(64), nullable=False, index=True)  # fetch, process, blocked, create, export, ...
    resource = Column(String(64), nullable=False)  # data_source, indicator, whitelist, blacklist
    resource_id = Column(String(64), nullable=True)
    details = Column(Text, nullable=False)
    user_id = Column(Integer, nullable=True)
    meta = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
