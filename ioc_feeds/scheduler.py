"""
Periodic driver for feed ingestion and blacklist export
"""

import asyncio
import logging
from datetime import datetime
from typing import Callable, List, Optional

from .blacklist import BlacklistGenerator
from .config import EXPORT_CHECK_INTERVAL_SECONDS, SETTING_EXPORT_INTERVAL, SOURCE_CHECK_INTERVAL_SECONDS
from .db import SessionLocal, utcnow
from .fetcher import cancel_background_tasks, dispatch_ingest
from .models.source import DataSource
from .services.indicators import IndicatorService
from .services.settings import SettingsStore, settings_store
from .services.sources import SourceService, is_due

logger = logging.getLogger(__name__)


def _load_due_sources(now: datetime) -> List[DataSource]:
    db = SessionLocal()
    try:
        return SourceService.get_due_sources(db, now)
    finally:
        db.close()


def _purge_expired() -> int:
    db = SessionLocal()
    try:
        return IndicatorService.purge_expired_temporary(db)
    finally:
        db.close()


class FeedScheduler:
    """
    Two independent loops: a source-due check that hands due sources to
    background ingestion tasks, and an export check that regenerates the
    blacklist once the configured export interval has passed.
    """

    def __init__(
        self,
        generator: Optional[BlacklistGenerator] = None,
        settings: SettingsStore = settings_store,
        source_check_interval: float = SOURCE_CHECK_INTERVAL_SECONDS,
        export_check_interval: float = EXPORT_CHECK_INTERVAL_SECONDS,
        dispatch: Callable[[DataSource], asyncio.Task] = dispatch_ingest,
    ):
        self.generator = generator or BlacklistGenerator(settings=settings)
        self.settings = settings
        self.source_check_interval = source_check_interval
        self.export_check_interval = export_check_interval
        self._dispatch = dispatch
        self.last_export: Optional[datetime] = None
        self._tasks: List[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    async def check_sources(self, now: Optional[datetime] = None) -> List[int]:
        """Purge expired temporary indicators, then dispatch every due source"""
        try:
            await asyncio.to_thread(_purge_expired)
        except Exception as e:
            logger.error(f"Temporary indicator cleanup failed: {e}", exc_info=True)

        sources = await asyncio.to_thread(_load_due_sources, now or utcnow())
        dispatched = []
        for source in sources:
            logger.info(f"Scheduling fetch for {source.name}", extra={"source_id": source.id})
            self._dispatch(source)
            dispatched.append(source.id)
        return dispatched

    async def check_export(self, now: Optional[datetime] = None) -> bool:
        """
        Regenerate the blacklist if the export interval has passed; True if it ran.

        The completion time is only recorded when every kind exported cleanly,
        so a failed cycle is retried on the next check.
        """
        interval = self.settings.get_int(SETTING_EXPORT_INTERVAL)
        if not is_due(self.last_export, interval, now or utcnow()):
            return False
        result = await asyncio.to_thread(self.generator.regenerate)
        if result["errors"]:
            logger.warning(f"Blacklist export incomplete, retrying next check: {sorted(result['errors'])}")
            return True
        self.last_export = utcnow()
        return True

    async def _source_loop(self):
        while True:
            try:
                await self.check_sources()
            except Exception as e:
                logger.error(f"Source check failed: {e}", exc_info=True)
            await asyncio.sleep(self.source_check_interval)

    async def _export_loop(self):
        while True:
            try:
                await self.check_export()
            except Exception as e:
                logger.error(f"Blacklist export check failed: {e}", exc_info=True)
            await asyncio.sleep(self.export_check_interval)

    def start(self):
        if self.running:
            return
        self._tasks = [
            asyncio.create_task(self._source_loop(), name="source-check"),
            asyncio.create_task(self._export_loop(), name="export-check"),
        ]
        logger.info("Feed scheduler started", extra={
            "source_check_interval": self.source_check_interval,
            "export_check_interval": self.export_check_interval,
        })

    async def stop(self):
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        await cancel_background_tasks()
        logger.info("Feed scheduler stopped")
