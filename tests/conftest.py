# tests/conftest.py
import os
import tempfile

# Must be set before ioc_feeds is imported: config is read at import time
_TEST_ROOT = tempfile.mkdtemp(prefix="ioc-feeds-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{_TEST_ROOT}/test.db"
os.environ["BLACKLIST_DIR"] = os.path.join(_TEST_ROOT, "blacklist")
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["SAVE_BATCH_PAUSE_SECONDS"] = "0"
os.environ["LOG_FORMAT"] = "text"

import pytest
import requests

BASE_URL = os.getenv("BASE_URL")


class BaseUrlSession(requests.Session):
    def __init__(self, base_url: str):
        super().__init__()
        self._base = base_url.rstrip("/")

    def request(self, method, url, *args, **kwargs):
        # Allow relative paths like "/v1/health"
        if not url.lower().startswith("http"):
            url = f"{self._base}/{url.lstrip('/')}"
        return super().request(method, url, *args, **kwargs)


@pytest.fixture(autouse=True)
def fresh_db():
    """Every test starts from empty tables"""
    from ioc_feeds import models  # noqa: F401
    from ioc_feeds.db import Base, engine
    from ioc_feeds.db_init import reset_initialized

    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    reset_initialized()
    yield


@pytest.fixture
def db():
    from ioc_feeds.db import SessionLocal

    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def settings():
    from ioc_feeds.services.settings import SettingsStore

    return SettingsStore()


@pytest.fixture
def output_root(tmp_path):
    return tmp_path / "blacklist"


@pytest.fixture
def make_source(db):
    from ioc_feeds.services.sources import SourceService

    def _make(name="Test Feed", url="https://feeds.test-intel.net/list.txt", indicator_types=("ip",), fetch_interval=3600):
        return SourceService.create_source(db, name=name, url=url, indicator_types=list(indicator_types),
                                           fetch_interval=fetch_interval)
    return _make


@pytest.fixture
def client():
    """
    TestClient against the app in-process, or a session against a running
    deployment when BASE_URL is set.
    """
    if BASE_URL:
        yield BaseUrlSession(BASE_URL)
        return

    from fastapi.testclient import TestClient
    from ioc_feeds.main import app

    with TestClient(app) as test_client:
        yield test_client
