from sqlalchemy import Column, String, Text, Integer, Boolean, DateTime, ForeignKey, Index, UniqueConstraint

from ..db import Base, utcnow

INDICATOR_TYPES = ("ip", "domain", "hash", "url", "soar-url")


class Indicator(Base):
    __tablename__ = "indicators"

    id = Column(Integer, primary_key=True, index=True)
    value = Column(Text, nullable=False)
    type = Column(String(16), nullable=False)  # ip | domain | hash | url | soar-url
    hash_type = Column(String(16), nullable=True)  # md5, sha1, sha224, sha256, sha384, sha512
    source = Column(String(255), nullable=False)  # origin label: feed name or "manual"
    source_id = Column(Integer, ForeignKey("data_sources.id", ondelete="SET NULL"), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    temp_active_until = Column(DateTime, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)
    created_by = Column(Integer, nullable=True)

    __table_args__ = (
        UniqueConstraint("value", "type", name="uq_indicators_value_type"),
        Index("idx_indicators_type_active", "type", "is_active"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "value": self.value,
            "type": self.type,
            "hash_type": self.hash_type,
            "source": self.source,
            "source_id": self.source_id,
            "is_active": self.is_active,
            "temp_active_until": self.temp_active_until.isoformat() if self.temp_active_until else None,
            "notes": self.notes,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "created_by": self.created_by,
        }
