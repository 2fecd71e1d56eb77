"""
Feed fetch, parse and filter pipeline

One ingestion per source at a time: download the feed body, pull candidate
indicators out of it per configured kind, drop noise and whitelisted values,
then upsert the survivors in small batches.
"""

import asyncio
import logging
import re
import threading
import time
from contextlib import contextmanager
from typing import Any, Dict, List, Optional, Set

import httpx
from sqlalchemy.exc import SQLAlchemyError

from .config import (
    FETCH_TIMEOUT_SECONDS,
    FETCH_USER_AGENT,
    SAVE_BATCH_PAUSE_SECONDS,
    SAVE_BATCH_SIZE,
)
from .db import SessionLocal
from .logging_config import log_feed_event
from .models.source import DataSource
from .models.whitelist import WhitelistBlock
from .services.audit import build_audit_log, emit_audit_event, log_audit_event
from .services.classifier import Classification, classify
from .services.indicators import IndicatorService
from .services.prometheus_metrics import prometheus_metrics
from .services.sources import SourceService
from .services.whitelist import WhitelistService, bulk_check, find_matching_entry

logger = logging.getLogger(__name__)

BLOCKED_REASON = "Blocked by whitelist entry during feed processing"

# Extraction is deliberately loose; the classifier decides what survives
EXTRACTION_PATTERNS = {
    "ip": re.compile(
        r"(?:(?:25[0-5]|2[0-4][0-9]|[01]?[0-9][0-9]?)\.){3}(?:25[0-5]|2[0-4][0-9]|[01]?[0-9][0-9]?)"
    ),
    "domain": re.compile(r"(?:[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?\.)+[a-zA-Z]{2,}"),
    # md5, sha1, sha256, sha512 only
    "hash": re.compile(r"\b(?:[a-fA-F0-9]{128}|[a-fA-F0-9]{64}|[a-fA-F0-9]{40}|[a-fA-F0-9]{32})\b"),
    "url": re.compile(r"https?://[^\s<>\"{}|\\^`\[\]]+"),
}


class FeedFetchError(Exception):
    """A feed could not be downloaded; ``message`` is what the source records"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class IngestionGuard:
    """Set of source ids with an ingestion in flight"""

    def __init__(self):
        self._active: Set[int] = set()
        self._lock = threading.Lock()

    def try_acquire(self, source_id: int) -> bool:
        with self._lock:
            if source_id in self._active:
                return False
            self._active.add(source_id)
            return True

    def release(self, source_id: int):
        with self._lock:
            self._active.discard(source_id)

    def is_active(self, source_id: int) -> bool:
        with self._lock:
            return source_id in self._active

    @contextmanager
    def claim(self, source_id: int):
        """Yields True if this caller now owns ``source_id``; released on exit"""
        acquired = self.try_acquire(source_id)
        try:
            yield acquired
        finally:
            if acquired:
                self.release(source_id)


ingestion_guard = IngestionGuard()

# Strong references so fire-and-forget tasks are not collected mid-run
_background_tasks: Set[asyncio.Task] = set()


def extract_candidates(body: str, kind: str) -> List[str]:
    """Distinct matches of ``kind``'s pattern in ``body``, first-seen order"""
    pattern = EXTRACTION_PATTERNS.get(kind)
    if pattern is None:
        return []
    return list(dict.fromkeys(pattern.findall(body)))


def _timeout_message(seconds: float) -> str:
    if seconds >= 60 and seconds % 60 == 0:
        minutes = int(seconds // 60)
        return f"Request timeout after {minutes} minute{'s' if minutes != 1 else ''}"
    return f"Request timeout after {seconds:g} seconds"


def describe_fetch_failure(exc: BaseException, timeout: float = FETCH_TIMEOUT_SECONDS) -> str:
    """Short, operator-facing description of a failed download"""
    if isinstance(exc, (TimeoutError, httpx.TimeoutException)):
        return _timeout_message(timeout)
    if isinstance(exc, httpx.HTTPStatusError):
        return f"HTTP {exc.response.status_code}: {exc.response.reason_phrase}"

    text = str(exc)
    lowered = text.lower()
    if "econnreset" in lowered or "connection reset" in lowered:
        return "Connection reset by remote server"
    if (
        "enotfound" in lowered
        or "name or service not known" in lowered
        or "nodename nor servname" in lowered
        or "name resolution" in lowered
        or "getaddrinfo failed" in lowered
    ):
        return "DNS resolution failed"
    if "econnrefused" in lowered or "connection refused" in lowered:
        return "Connection refused"
    return text or exc.__class__.__name__


async def fetch_feed(
    url: str,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    timeout: float = FETCH_TIMEOUT_SECONDS,
) -> str:
    """GET a feed body; any failure is raised as FeedFetchError"""
    headers = {"User-Agent": FETCH_USER_AGENT, "Accept": "text/plain, */*"}
    try:
        async with asyncio.timeout(timeout):
            async with httpx.AsyncClient(
                transport=transport,
                headers=headers,
                timeout=timeout,
                follow_redirects=True,
            ) as client:
                response = await client.get(url)
                response.raise_for_status()
                return response.text
    except httpx.HTTPStatusError as e:
        raise FeedFetchError(describe_fetch_failure(e, timeout), status_code=e.response.status_code) from e
    except (TimeoutError, httpx.HTTPError) as e:
        raise FeedFetchError(describe_fetch_failure(e, timeout)) from e


def _filter_whitelisted(source: DataSource, kind: str, candidates: List[Classification]) -> List[Classification]:
    """Drop whitelisted candidates, recording a block row and audit event for each in one transaction"""
    if not candidates:
        return []

    db = SessionLocal()
    try:
        entries = WhitelistService.load_entries(db, kind)
        if not entries:
            return candidates
        blocked = bulk_check([c.value for c in candidates], kind, entries)
        if not blocked:
            return candidates

        survivors = []
        audit_rows = []
        for candidate in candidates:
            if candidate.value not in blocked:
                survivors.append(candidate)
                continue
            entry = find_matching_entry(candidate.value, kind, entries)
            db.add(WhitelistBlock(
                value=candidate.value,
                type=kind,
                source=source.name,
                source_id=source.id,
                whitelist_entry_id=entry.id if entry else None,
                blocked_reason=BLOCKED_REASON,
            ))
            audit_rows.append(build_audit_log(
                "warning", "blocked", "indicator",
                f"Whitelist blocked {kind} indicator from {source.name}: {candidate.value}",
                resource_id=str(source.id),
                metadata={"whitelist_entry_id": entry.id if entry else None, "type": kind},
            ))
        db.add_all(audit_rows)
        db.commit()
    finally:
        db.close()

    for row in audit_rows:
        log_audit_event(row)
    prometheus_metrics.increment_whitelist_blocks(kind, len(audit_rows))
    return survivors


def _save_batch(rows: List[Dict[str, Any]]) -> int:
    db = SessionLocal()
    try:
        return IndicatorService.upsert_batch(db, rows)
    finally:
        db.close()


def _mark_source(source_id: int, status: str, error: Optional[str] = None):
    db = SessionLocal()
    try:
        SourceService.mark_status(db, source_id, status, error)
    finally:
        db.close()


async def _persist(rows: List[Dict[str, Any]], source: DataSource) -> int:
    saved = 0
    total_batches = (len(rows) + SAVE_BATCH_SIZE - 1) // SAVE_BATCH_SIZE
    for number, start in enumerate(range(0, len(rows), SAVE_BATCH_SIZE), start=1):
        batch = rows[start:start + SAVE_BATCH_SIZE]
        try:
            saved += await asyncio.to_thread(_save_batch, batch)
        except SQLAlchemyError as e:
            logger.error(f"Failed to save batch {number}/{total_batches} for {source.name}: {e}", extra={
                "source_id": source.id,
                "batch": number,
            })
            prometheus_metrics.increment_save_batch_failures()
        if start + SAVE_BATCH_SIZE < len(rows):
            await asyncio.sleep(SAVE_BATCH_PAUSE_SECONDS)
    return saved


async def process_body(source: DataSource, body: str) -> Dict[str, int]:
    """Extract, classify, filter and store the indicators found in ``body``"""
    counts = {"fetched": 0, "valid": 0, "blocked": 0, "saved": 0, "skipped": 0}

    for kind in dict.fromkeys(source.indicator_types or []):
        if kind not in EXTRACTION_PATTERNS:
            logger.warning(f"Source {source.name} requests unsupported indicator type {kind}")
            continue

        raw = extract_candidates(body, kind)
        counts["fetched"] += len(raw)

        candidates = []
        seen = set()
        for value in raw:
            result = classify(value)
            # Feeds are noisy; rejects are skipped, not reported
            if not isinstance(result, Classification) or result.kind != kind or result.value in seen:
                counts["skipped"] += 1
                continue
            seen.add(result.value)
            candidates.append(result)

        survivors = await asyncio.to_thread(_filter_whitelisted, source, kind, candidates)
        counts["blocked"] += len(candidates) - len(survivors)
        counts["valid"] += len(survivors)

        rows = [
            {
                "value": c.value,
                "type": kind,
                "hash_type": c.hash_algorithm,
                "source": source.name,
                "source_id": source.id,
            }
            for c in survivors
        ]
        saved = await _persist(rows, source)
        counts["saved"] += saved
        prometheus_metrics.increment_saved(kind, saved)

        log_feed_event("kind_processed", f"Processed {kind} indicators from {source.name}",
                       source_id=source.id, kind=kind, extracted=len(raw),
                       valid=len(survivors), saved=saved)

    return counts


def _mark_failed(source: DataSource, error: str):
    try:
        _mark_source(source.id, "error", error)
    except SQLAlchemyError as e:
        logger.error(f"Could not record failure on {source.name}: {e}", extra={"source_id": source.id})


async def _record_processing_failure(source: DataSource, exc: Exception) -> Dict[str, Any]:
    message = str(exc) or exc.__class__.__name__
    logger.error(f"Error processing indicators for {source.name}: {message}", exc_info=True,
                 extra={"source_id": source.id})
    await asyncio.to_thread(_mark_failed, source, f"Processing failed: {message}")
    await asyncio.to_thread(
        emit_audit_event,
        "error", "process", "data_source",
        f"Failed to process indicators from {source.name}: {message}",
        str(source.id),
        {"error": message, "url": source.url},
    )
    return {"status": "error", "error": message}


async def _run_ingest(source: DataSource, transport: Optional[httpx.AsyncBaseTransport]) -> Dict[str, Any]:
    started = time.time()
    try:
        await asyncio.to_thread(_mark_source, source.id, "processing")
        logger.info(f"Starting fetch for {source.name} from {source.url}", extra={"source_id": source.id})
        body = await fetch_feed(source.url, transport=transport)
    except FeedFetchError as e:
        prometheus_metrics.record_fetch("error", time.time() - started)
        logger.warning(f"Error fetching from {source.name}: {e.message}", extra={"source_id": source.id})
        await asyncio.to_thread(_mark_failed, source, e.message)
        await asyncio.to_thread(
            emit_audit_event,
            "error", "fetch", "data_source",
            f"Failed to fetch from {source.name}: {e.message}",
            str(source.id),
            {"error": e.message, "url": source.url},
        )
        return {"status": "error", "error": e.message}
    except SQLAlchemyError as e:
        return await _record_processing_failure(source, e)
    prometheus_metrics.record_fetch("success", time.time() - started)

    try:
        counts = await process_body(source, body)
        await asyncio.to_thread(_mark_source, source.id, "success")
    except Exception as e:
        return await _record_processing_failure(source, e)

    await asyncio.to_thread(
        emit_audit_event,
        "info", "fetch", "data_source",
        f"Successfully processed {counts['saved']} indicators from {source.name}",
        str(source.id),
        {
            "totalFetched": counts["fetched"],
            "validIndicators": counts["valid"],
            "whitelistBlocked": counts["blocked"],
            "savedIndicators": counts["saved"],
            "skipped": counts["skipped"],
        },
    )
    log_feed_event("ingest_complete", f"Completed processing {source.name}: {counts['saved']} indicators saved",
                   source_id=source.id, **counts)
    return {"status": "success", **counts}


async def ingest(
    source: DataSource,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    guard: IngestionGuard = ingestion_guard,
) -> Optional[Dict[str, Any]]:
    """
    Fetch and store one source's indicators.

    Returns a summary dict, or None when an ingestion for the same source
    is already running (the running one is left alone). Fetch failures are
    recorded on the source, not raised.
    """
    with guard.claim(source.id) as acquired:
        if not acquired:
            logger.info(f"Skipping {source.name}, fetch already in progress", extra={"source_id": source.id})
            return None

        prometheus_metrics.ingestion_started()
        try:
            return await _run_ingest(source, transport)
        finally:
            prometheus_metrics.ingestion_finished()


def _on_task_done(task: asyncio.Task):
    _background_tasks.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(f"Ingestion task {task.get_name()} failed: {exc}", exc_info=exc)


def dispatch_ingest(
    source: DataSource,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    guard: IngestionGuard = ingestion_guard,
) -> asyncio.Task:
    """Start ``ingest(source)`` in the background without waiting for it"""
    task = asyncio.create_task(ingest(source, transport=transport, guard=guard), name=f"ingest-{source.id}")
    _background_tasks.add(task)
    task.add_done_callback(_on_task_done)
    return task


async def cancel_background_tasks():
    """Cancel in-flight ingestions, used on shutdown"""
    tasks = list(_background_tasks)
    for task in tasks:
        task.cancel()
    if tasks:
        await asyncio.gather(*tasks, return_exceptions=True)
