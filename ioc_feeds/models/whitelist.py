from sqlalchemy import Column, String, Text, Integer, DateTime, ForeignKey

from ..db import Base, utcnow


class WhitelistEntry(Base):
    __tablename__ = "whitelist"

    id = Column(Integer, primary_key=True, index=True)
    value = Column(String(512), nullable=False, unique=True)  # ip, CIDR block, domain, hash or url
    type = Column(String(16), nullable=False, index=True)
    reason = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    created_by = Column(Integer, nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "value": self.value,
            "type": self.type,
            "reason": self.reason,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "created_by": self.created_by,
        }


class WhitelistBlock(Base):
    """One suppressed ingestion attempt; written once, never updated"""
    __tablename__ = "whitelist_blocks"

    id = Column(Integer, primary_key=True, index=True)
    value = Column(Text, nullable=False)
    type = Column(String(16), nullable=False)
    source = Column(String(255), nullable=False)
    source_id = Column(Integer, ForeignKey("data_sources.id", ondelete="SET NULL"), nullable=True)
    whitelist_entry_id = Column(Integer, ForeignKey("whitelist.id", ondelete="SET NULL"), nullable=True)
    blocked_reason = Column(Text, nullable=False)
    blocked_at = Column(DateTime, nullable=False, default=utcnow, index=True)
