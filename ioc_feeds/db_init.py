import logging
from pathlib import Path
from threading import Lock
from typing import Optional

from .blacklist import BlacklistGenerator
from .db import Base, SessionLocal, engine
from .services.settings import settings_store

logger = logging.getLogger(__name__)

_initialized = False
_init_lock = Lock()


def init_schema_and_seed(output_root: Optional[Path] = None) -> None:
    """
    Ensure tables, default settings and blacklist output directories exist.
    Safe to call multiple times.
    """
    global _initialized
    if _initialized:
        return
    with _init_lock:
        if _initialized:
            return

        # Register every model with Base.metadata
        from . import models  # noqa: F401

        Base.metadata.create_all(bind=engine)

        db = SessionLocal()
        try:
            added = settings_store.seed_defaults(db)
        finally:
            db.close()
        if added:
            logger.info(f"Seeded {added} default settings")

        BlacklistGenerator(output_root=output_root).ensure_directories()

        _initialized = True


def reset_initialized() -> None:
    """Forget a previous initialisation so the next call runs again"""
    global _initialized
    with _init_lock:
        _initialized = False
