"""
Tests for blacklist file generation
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import patch

import pytest

from ioc_feeds.blacklist import (
    BlacklistGenerator,
    expand_domains,
    render_proxy_categories,
    shard,
    write_shards,
)
from ioc_feeds.config import (
    SETTING_MAX_LINES_PER_FILE,
    SETTING_PROXY_DOMAIN_CATEGORY,
)
from ioc_feeds.models import AuditLog, Indicator


def _add(db, kind, *values, active=True):
    for value in values:
        db.add(Indicator(value=value, type=kind, source="test", is_active=active))
    db.commit()


def _lines(path):
    return path.read_text(encoding="utf-8").splitlines()


class TestHelpers:
    def test_shard_sizes(self):
        assert [len(c) for c in shard(list("abcde"), 2)] == [2, 2, 1]

    def test_shard_empty(self):
        assert shard([], 10) == []

    def test_expand_domains(self):
        assert expand_domains(["bad.example"]) == ["bad.example", "*.bad.example"]

    def test_proxy_blocks(self):
        text = render_proxy_categories("blocked_domains", ["evil-site.com"], "blocked_urls", ["https://evil-site.com/x"])
        assert text == (
            'define category blocked_domains\n"evil-site.com"\nend\n'
            '\n'
            'define category blocked_urls\n"https://evil-site.com/x"\nend\n'
        )

    def test_proxy_empty_block_omitted(self):
        text = render_proxy_categories("d", [], "u", ["https://evil-site.com/x"])
        assert "define category d" not in text
        assert text.startswith("define category u\n")

    def test_proxy_both_empty(self):
        assert render_proxy_categories("d", [], "u", []) == ""

    def test_invalid_max_lines_keeps_existing_shards(self, tmp_path):
        old = tmp_path / "BlackIP0.txt"
        old.write_text("1.2.3.4\n", encoding="utf-8")

        with pytest.raises(ValueError):
            write_shards(tmp_path, "BlackIP", ["5.6.7.8"], 0)

        assert _lines(old) == ["1.2.3.4"]


class TestRegenerate:
    """Full regeneration against the database."""

    def test_sharding(self, db, settings, output_root):
        settings.set(SETTING_MAX_LINES_PER_FILE, "2")
        _add(db, "ip", "1.2.3.4", "1.2.3.5", "1.2.3.6", "1.2.3.7", "1.2.3.8")
        ip_dir = output_root / "IP"
        ip_dir.mkdir(parents=True)
        for stale in ("BlackIP0.txt", "BlackIP7.txt"):
            (ip_dir / stale).write_text("9.9.9.9\n", encoding="utf-8")

        BlacklistGenerator(output_root=output_root, settings=settings).regenerate()

        files = sorted(p.name for p in ip_dir.iterdir())
        assert files == ["BlackIP0.txt", "BlackIP1.txt", "BlackIP2.txt"]
        assert [len(_lines(ip_dir / f)) for f in files] == [2, 2, 1]
        assert _lines(ip_dir / "BlackIP0.txt") == ["1.2.3.4", "1.2.3.5"]
        assert (ip_dir / "BlackIP2.txt").read_text(encoding="utf-8") == "1.2.3.8\n"

    def test_inactive_excluded(self, db, settings, output_root):
        _add(db, "hash", "a" * 32)
        _add(db, "hash", "b" * 32, active=False)

        BlacklistGenerator(output_root=output_root, settings=settings).regenerate()

        assert _lines(output_root / "Hash" / "BlackHash0.txt") == ["a" * 32]

    def test_domain_expansion(self, db, settings, output_root):
        _add(db, "domain", "bad.example")

        BlacklistGenerator(output_root=output_root, settings=settings).regenerate()

        lines = _lines(output_root / "Domain" / "BlackDomain0.txt")
        assert lines == ["bad.example", "*.bad.example"]

    def test_empty_kind_writes_no_files(self, db, settings, output_root):
        url_dir = output_root / "URL"
        url_dir.mkdir(parents=True)
        (url_dir / "BlackURL0.txt").write_text("https://old.example/\n", encoding="utf-8")

        BlacklistGenerator(output_root=output_root, settings=settings).regenerate()

        assert list(url_dir.iterdir()) == []

    def test_proxy_file(self, db, settings, output_root):
        settings.set(SETTING_PROXY_DOMAIN_CATEGORY, "bad_sites")
        _add(db, "domain", "evil-site.com")
        _add(db, "url", "https://evil-site.com/a")
        _add(db, "soar-url", "https://evil-site.com/b")

        BlacklistGenerator(output_root=output_root, settings=settings).regenerate()

        lines = _lines(output_root / "Proxy" / "proxy_categories.txt")
        assert lines == [
            "define category bad_sites",
            '"evil-site.com"',
            "end",
            "",
            "define category blocked_urls",
            '"https://evil-site.com/a"',
            '"https://evil-site.com/b"',
            "end",
        ]

    def test_proxy_file_removed_when_empty(self, db, settings, output_root):
        proxy_dir = output_root / "Proxy"
        proxy_dir.mkdir(parents=True)
        (proxy_dir / "proxy_categories.txt").write_text("stale", encoding="utf-8")

        BlacklistGenerator(output_root=output_root, settings=settings).regenerate()

        assert not (proxy_dir / "proxy_categories.txt").exists()

    def test_failure_is_isolated_per_kind(self, db, settings, output_root):
        _add(db, "ip", "1.2.3.4")
        _add(db, "hash", "a" * 32)
        generator = BlacklistGenerator(output_root=output_root, settings=settings)
        original = generator._export_kind

        def flaky(kind, max_lines):
            if kind == "ip":
                raise OSError("No space left on device")
            return original(kind, max_lines)

        with patch.object(generator, "_export_kind", side_effect=flaky):
            result = generator.regenerate()

        assert result["errors"] == {"ip": "No space left on device"}
        assert (output_root / "Hash" / "BlackHash0.txt").exists()
        assert db.query(AuditLog).filter(AuditLog.action == "export", AuditLog.level == "error").count() == 1

    def test_invalid_max_lines_falls_back(self, db, settings, output_root):
        settings.set(SETTING_MAX_LINES_PER_FILE, "zero")
        _add(db, "ip", "1.2.3.4", "1.2.3.5")

        result = BlacklistGenerator(output_root=output_root, settings=settings).regenerate()

        assert result["files"]["ip"] == 1

    def test_file_stats(self, db, settings, output_root):
        settings.set(SETTING_MAX_LINES_PER_FILE, "2")
        _add(db, "ip", "1.2.3.4", "1.2.3.5", "1.2.3.6")
        generator = BlacklistGenerator(output_root=output_root, settings=settings)
        generator.regenerate()

        stats = generator.file_stats()

        assert stats["ip"] == {"files": 2, "lines": 3}
        assert stats["domain"] == {"files": 0, "lines": 0}
        assert stats["proxy"]["files"] == 0

    def test_concurrent_regenerations_are_serialized(self, db, settings, output_root):
        settings.set(SETTING_MAX_LINES_PER_FILE, "2")
        _add(db, "ip", "1.2.3.4", "1.2.3.5", "1.2.3.6")
        first = BlacklistGenerator(output_root=output_root, settings=settings)
        second = BlacklistGenerator(output_root=output_root, settings=settings)
        original = BlacklistGenerator._export_kind
        state = {"active": 0, "peak": 0}
        state_lock = threading.Lock()

        def slow_export(generator, kind, max_lines):
            with state_lock:
                state["active"] += 1
                state["peak"] = max(state["peak"], state["active"])
            try:
                time.sleep(0.02)
                return original(generator, kind, max_lines)
            finally:
                with state_lock:
                    state["active"] -= 1

        with patch.object(BlacklistGenerator, "_export_kind", autospec=True, side_effect=slow_export):
            with ThreadPoolExecutor(max_workers=2) as pool:
                results = list(pool.map(lambda g: g.regenerate(), [first, second]))

        assert state["peak"] == 1
        assert [r["errors"] for r in results] == [{}, {}]
        assert sorted(p.name for p in (output_root / "IP").iterdir()) == ["BlackIP0.txt", "BlackIP1.txt"]
