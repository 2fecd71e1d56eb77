"""
Tests for the periodic scheduler
"""

import asyncio
from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest

from ioc_feeds.blacklist import BlacklistGenerator
from ioc_feeds.db import utcnow
from ioc_feeds.models import Indicator
from ioc_feeds.scheduler import FeedScheduler
from ioc_feeds.services.sources import SourceService, is_due


class TestIsDue:
    def test_due_arithmetic(self):
        now = utcnow()
        assert is_due(now - timedelta(seconds=599), 600, now) is False
        assert is_due(now - timedelta(seconds=600), 600, now) is True
        assert is_due(now - timedelta(seconds=601), 600, now) is True

    def test_never_fetched(self):
        assert is_due(None, 600, utcnow()) is True


class TestSourceCheck:
    """Due sources are handed off without waiting."""

    def _scheduler(self, dispatch, settings):
        return FeedScheduler(generator=MagicMock(), settings=settings, dispatch=dispatch)

    @pytest.mark.asyncio
    async def test_only_due_sources_dispatched(self, db, make_source, settings):
        now = utcnow()
        never = make_source(name="never fetched", fetch_interval=600)
        recent = make_source(name="recent", fetch_interval=600)
        boundary = make_source(name="boundary", fetch_interval=600)
        paused = make_source(name="paused", fetch_interval=600)
        inactive = make_source(name="inactive", fetch_interval=600)
        recent.last_fetch = now - timedelta(seconds=599)
        boundary.last_fetch = now - timedelta(seconds=600)
        inactive.is_active = False
        db.commit()
        SourceService.pause(db, paused.id)

        dispatch = MagicMock()
        dispatched = await self._scheduler(dispatch, settings).check_sources(now=now)

        assert dispatched == [never.id, boundary.id]
        assert [c.args[0].id for c in dispatch.call_args_list] == [never.id, boundary.id]

    @pytest.mark.asyncio
    async def test_does_not_wait_for_ingestion(self, make_source, settings):
        make_source()
        started = []
        finish = asyncio.Event()

        async def slow_ingest(source):
            await finish.wait()

        def dispatch(source):
            task = asyncio.create_task(slow_ingest(source))
            started.append(task)
            return task

        await asyncio.wait_for(self._scheduler(dispatch, settings).check_sources(), timeout=5)

        assert len(started) == 1
        assert not started[0].done()
        finish.set()
        await started[0]

    @pytest.mark.asyncio
    async def test_purges_expired_temporary_indicators(self, db, settings):
        db.add(Indicator(value="8.8.4.4", type="ip", source="manual", is_active=True,
                         temp_active_until=utcnow() - timedelta(minutes=5)))
        db.commit()

        await self._scheduler(MagicMock(), settings).check_sources()

        db.expire_all()
        assert db.query(Indicator).count() == 0

    @pytest.mark.asyncio
    async def test_resumed_source_is_due_again(self, db, make_source, settings):
        source = make_source()
        SourceService.pause(db, source.id)
        dispatch = MagicMock()
        scheduler = self._scheduler(dispatch, settings)

        assert await scheduler.check_sources() == []
        SourceService.resume(db, source.id)
        assert await scheduler.check_sources() == [source.id]


def _generator():
    generator = MagicMock()
    generator.regenerate.return_value = {"lines": {}, "files": {}, "errors": {}}
    return generator


class TestExportCheck:
    @pytest.mark.asyncio
    async def test_export_throttled_by_interval(self, settings):
        generator = _generator()
        scheduler = FeedScheduler(generator=generator, settings=settings, dispatch=MagicMock())

        assert await scheduler.check_export() is True
        assert await scheduler.check_export() is False
        assert generator.regenerate.call_count == 1

        scheduler.last_export = utcnow() - timedelta(seconds=300)
        assert await scheduler.check_export() is True
        assert generator.regenerate.call_count == 2

    @pytest.mark.asyncio
    async def test_failed_export_retried_next_check(self, db, settings, output_root):
        generator = BlacklistGenerator(output_root=output_root, settings=settings)
        scheduler = FeedScheduler(generator=generator, settings=settings, dispatch=MagicMock())

        with patch.object(generator, "_export_kind", side_effect=OSError("disk full")):
            assert await scheduler.check_export() is True
        assert scheduler.last_export is None

        assert await scheduler.check_export() is True
        assert scheduler.last_export is not None
        assert await scheduler.check_export() is False


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_and_stop(self, settings):
        generator = _generator()
        scheduler = FeedScheduler(
            generator=generator,
            settings=settings,
            source_check_interval=0.01,
            export_check_interval=0.01,
            dispatch=MagicMock(),
        )

        scheduler.start()
        assert scheduler.running
        await asyncio.sleep(0.1)
        await scheduler.stop()

        assert not scheduler.running
        assert generator.regenerate.call_count >= 1
