"""
Blacklist export

Writes the active indicator set to sharded plain-text files, one directory per
kind, plus a proxy category file for domains and URLs. Each kind is rebuilt
from scratch on every run: old shards are removed before new ones are written.
"""

import logging
import threading
import time
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy.exc import SQLAlchemyError

from .config import (
    BLACKLIST_DIR,
    SETTING_MAX_LINES_PER_FILE,
    SETTING_PROXY_DOMAIN_CATEGORY,
    SETTING_PROXY_URL_CATEGORY,
)
from .db import SessionLocal
from .services.audit import emit_audit_event
from .services.indicators import IndicatorService
from .services.prometheus_metrics import prometheus_metrics
from .services.settings import SettingsStore, settings_store

logger = logging.getLogger(__name__)

# kind -> (directory, shard file prefix)
KIND_LAYOUT = {
    "ip": ("IP", "BlackIP"),
    "domain": ("Domain", "BlackDomain"),
    "hash": ("Hash", "BlackHash"),
    "url": ("URL", "BlackURL"),
}
PROXY_DIR = "Proxy"
PROXY_FILE = "proxy_categories.txt"
OUTPUT_DIRS = [d for d, _ in KIND_LAYOUT.values()] + [PROXY_DIR]

# one regeneration at a time per output tree, across generator instances
_output_locks: Dict[Path, threading.Lock] = {}
_output_locks_guard = threading.Lock()


def _output_lock(root: Path) -> threading.Lock:
    with _output_locks_guard:
        return _output_locks.setdefault(root.resolve(), threading.Lock())


def expand_domains(domains: Iterable[str]) -> List[str]:
    """Each domain followed by its wildcard form"""
    lines = []
    for domain in domains:
        lines.append(domain)
        lines.append(f"*.{domain}")
    return lines


def shard(lines: Sequence[str], max_lines: int) -> List[Sequence[str]]:
    if max_lines <= 0:
        raise ValueError("max_lines must be positive")
    return [lines[i:i + max_lines] for i in range(0, len(lines), max_lines)]


def render_proxy_categories(domain_category: str, domains: Sequence[str],
                            url_category: str, urls: Sequence[str]) -> str:
    """Proxy category blocks; an empty category is left out, both empty gives ''"""
    blocks = []
    for name, values in ((domain_category, domains), (url_category, urls)):
        if not values:
            continue
        body = "\n".join(f'"{value}"' for value in values)
        blocks.append(f"define category {name}\n{body}\nend\n")
    return "\n".join(blocks)


def clear_shards(directory: Path, prefix: str) -> int:
    removed = 0
    for path in directory.glob(f"{prefix}*.txt"):
        path.unlink()
        removed += 1
    return removed


def write_shards(directory: Path, prefix: str, lines: Sequence[str], max_lines: int) -> int:
    """Replace ``prefix`` shards in ``directory`` with ``lines``; returns files written"""
    chunks = shard(lines, max_lines)
    directory.mkdir(parents=True, exist_ok=True)
    clear_shards(directory, prefix)
    for index, chunk in enumerate(chunks):
        content = "\n".join(chunk) + "\n"
        (directory / f"{prefix}{index}.txt").write_text(content, encoding="utf-8")
    return len(chunks)


class BlacklistGenerator:
    """Regenerates the on-disk blacklist from active indicators"""

    def __init__(self, output_root: Optional[Path] = None, settings: SettingsStore = settings_store,
                 session_factory=SessionLocal):
        self.output_root = Path(output_root or BLACKLIST_DIR)
        self.settings = settings
        self._session_factory = session_factory
        self._lock = _output_lock(self.output_root)

    def ensure_directories(self):
        for name in OUTPUT_DIRS:
            (self.output_root / name).mkdir(parents=True, exist_ok=True)

    def _active_values(self, types: Sequence[str]) -> List[str]:
        db = self._session_factory()
        try:
            return IndicatorService.get_active_values(db, types)
        finally:
            db.close()

    def _export_kind(self, kind: str, max_lines: int) -> Tuple[int, int]:
        directory, prefix = KIND_LAYOUT[kind]
        values = self._active_values([kind])
        if kind == "domain":
            values = expand_domains(values)
        files = write_shards(self.output_root / directory, prefix, values, max_lines)
        logger.info(f"Wrote {len(values)} {kind} lines to {files} files", extra={"kind": kind})
        return len(values), files

    def _export_proxy(self):
        domains = self._active_values(["domain"])
        urls = self._active_values(["url", "soar-url"])
        content = render_proxy_categories(
            self.settings.get(SETTING_PROXY_DOMAIN_CATEGORY), domains,
            self.settings.get(SETTING_PROXY_URL_CATEGORY), urls,
        )
        directory = self.output_root / PROXY_DIR
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / PROXY_FILE
        if path.exists():
            path.unlink()
        if not content:
            return 0, 0
        path.write_text(content, encoding="utf-8")
        return len(domains) + len(urls), 1

    def regenerate(self) -> Dict[str, Dict[str, int]]:
        """
        Rebuild every kind's shard files and the proxy category file.

        A failure in one kind is logged and audited, and the remaining kinds
        still run. Concurrent callers are serialized. Returns per-kind line and
        file counts plus any errors.
        """
        with self._lock:
            return self._regenerate()

    def _regenerate(self) -> Dict[str, Dict[str, int]]:
        started = time.time()
        max_lines = self.settings.get_int(SETTING_MAX_LINES_PER_FILE)
        lines: Dict[str, int] = {}
        files: Dict[str, int] = {}
        errors: Dict[str, str] = {}

        jobs = [(kind, lambda k=kind: self._export_kind(k, max_lines)) for kind in KIND_LAYOUT]
        jobs.append(("proxy", self._export_proxy))

        for kind, job in jobs:
            try:
                lines[kind], files[kind] = job()
            except (OSError, SQLAlchemyError) as e:
                errors[kind] = str(e)
                logger.error(f"Blacklist export failed for {kind}: {e}", extra={"kind": kind})
                prometheus_metrics.increment_export_failures(kind)
                emit_audit_event(
                    "error", "export", "blacklist",
                    f"Failed to generate {kind} blacklist files: {e}",
                    metadata={"kind": kind, "error": str(e)},
                )

        elapsed = time.time() - started
        prometheus_metrics.record_export(elapsed, files, lines)
        emit_audit_event(
            "info", "export", "blacklist",
            f"Regenerated blacklist files in {elapsed:.2f}s",
            metadata={"lines": lines, "files": files, "failed": sorted(errors)},
        )
        return {"lines": lines, "files": files, "errors": errors}

    def file_stats(self) -> Dict[str, Dict[str, int]]:
        """Shard files and total lines currently on disk, per kind"""
        stats = {}
        for kind, (directory, prefix) in KIND_LAYOUT.items():
            paths = sorted((self.output_root / directory).glob(f"{prefix}*.txt"))
            stats[kind] = {
                "files": len(paths),
                "lines": sum(_count_lines(p) for p in paths),
            }
        proxy = self.output_root / PROXY_DIR / PROXY_FILE
        stats["proxy"] = {"files": 1 if proxy.exists() else 0, "lines": _count_lines(proxy) if proxy.exists() else 0}
        return stats


def _count_lines(path: Path) -> int:
    with open(path, "r", encoding="utf-8") as f:
        return sum(1 for _ in f)
