import logging
from typing import Dict, Optional

from sqlalchemy.orm import Session

from ..config import DEFAULT_SETTINGS
from ..db import SessionLocal, utcnow
from ..models.setting import Setting

logger = logging.getLogger(__name__)


class SettingsStore:
    """Key/value runtime settings with typed accessors and defaults"""

    def __init__(self, session_factory=SessionLocal, defaults: Optional[Dict[str, str]] = None):
        self._session_factory = session_factory
        self.defaults = dict(DEFAULT_SETTINGS if defaults is None else defaults)

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        db = self._session_factory()
        try:
            row = db.query(Setting).filter(Setting.key == key).first()
        finally:
            db.close()
        if row is not None:
            return row.value
        return default if default is not None else self.defaults.get(key)

    def get_int(self, key: str) -> int:
        fallback = int(self.defaults[key])
        raw = self.get(key)
        try:
            value = int(str(raw).strip())
        except (TypeError, ValueError):
            logger.warning(f"Setting {key}={raw!r} is not an integer, using {fallback}")
            return fallback
        if value <= 0:
            logger.warning(f"Setting {key}={value} must be positive, using {fallback}")
            return fallback
        return value

    def get_bool(self, key: str) -> bool:
        raw = self.get(key) or ""
        return raw.strip().lower() in ("true", "1", "yes", "on")

    def set(self, key: str, value: str) -> None:
        db = self._session_factory()
        try:
            row = db.query(Setting).filter(Setting.key == key).first()
            if row is None:
                db.add(Setting(key=key, value=str(value)))
            else:
                row.value = str(value)
                row.updated_at = utcnow()
            db.commit()
        finally:
            db.close()

    def seed_defaults(self, db: Session) -> int:
        """Insert missing default settings; existing values are left alone"""
        existing = {key for (key,) in db.query(Setting.key).all()}
        added = 0
        for key, value in self.defaults.items():
            if key not in existing:
                db.add(Setting(key=key, value=value))
                added += 1
        db.commit()
        return added


settings_store = SettingsStore()
