from sqlalchemy import Column, String, Text, Integer, Boolean, DateTime, JSON, Index

from ..db import Base, utcnow


class DataSource(Base):
    __tablename__ = "data_sources"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    url = Column(Text, nullable=False)
    indicator_types = Column(JSON, nullable=False, default=list)  # subset of ip, domain, hash, url
    fetch_interval = Column(Integer, nullable=False, default=3600)  # seconds
    is_active = Column(Boolean, nullable=False, default=True)
    is_paused = Column(Boolean, nullable=False, default=False)
    last_fetch = Column(DateTime, nullable=True)
    last_fetch_status = Column(String(32), nullable=True)  # pending|processing|success|error
    last_fetch_error = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    created_by = Column(Integer, nullable=True)

    __table_args__ = (
        Index("idx_data_sources_active", "is_active", "is_paused"),
    )

    def to_dict(self):
        """Convert to dictionary for API responses"""
        return {
            "id": self.id,
            "name": self.name,
            "url": self.url,
            "indicator_types": list(self.indicator_types or []),
            "fetch_interval": self.fetch_interval,
            "is_active": self.is_active,
            "is_paused": self.is_paused,
            "last_fetch": self.last_fetch.isoformat() if self.last_fetch else None,
            "last_fetch_status": self.last_fetch_status,
            "last_fetch_error": self.last_fetch_error,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
