"""
Configuration module for the IOC feed service
"""

import os
from pathlib import Path


def env_bool(key: str, default: bool = False) -> bool:
    """Get boolean value from environment variable"""
    value = os.getenv(key, str(default)).lower()
    return value in ("true", "1", "yes", "on")


def _read_version_from_repo(default: str = "dev") -> str:
    try:
        version_file = Path(__file__).resolve().parents[1] / "VERSION"
        v = version_file.read_text(encoding="utf-8").strip()
        if v:
            return v
    except OSError:
        pass
    return os.getenv("APP_VERSION", default)

API_VERSION = _read_version_from_repo()
API_PREFIX = "/v1"

# Database configuration
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./ioc_feeds.db")

# Blacklist output
BLACKLIST_DIR = Path(os.getenv("BLACKLIST_DIR", "./public/blacklist"))

# Feed fetching
FETCH_TIMEOUT_SECONDS = float(os.getenv("FETCH_TIMEOUT_SECONDS", "120"))
FETCH_USER_AGENT = os.getenv("FETCH_USER_AGENT", "ThreatIntel-Platform/1.0")
SAVE_BATCH_SIZE = int(os.getenv("SAVE_BATCH_SIZE", "50"))
SAVE_BATCH_PAUSE_SECONDS = float(os.getenv("SAVE_BATCH_PAUSE_SECONDS", "0.1"))
MAX_INDICATOR_LENGTH = int(os.getenv("MAX_INDICATOR_LENGTH", "2048"))

# Scheduler cadences (wall-clock seconds between checks)
SCHEDULER_ENABLED: bool = env_bool("SCHEDULER_ENABLED", True)
SOURCE_CHECK_INTERVAL_SECONDS = float(os.getenv("SOURCE_CHECK_INTERVAL_SECONDS", "60"))
EXPORT_CHECK_INTERVAL_SECONDS = float(os.getenv("EXPORT_CHECK_INTERVAL_SECONDS", "10"))

# What happens to stored indicators when a whitelist entry starts matching them
WHITELIST_ACTION = os.getenv("WHITELIST_ACTION", "delete").lower()
if WHITELIST_ACTION not in ("delete", "deactivate"):
    WHITELIST_ACTION = "delete"

# Logging configuration
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = os.getenv("LOG_FORMAT", "json")

# Settings store keys and their defaults
SETTING_MAX_LINES_PER_FILE = "blacklist.maxLinesPerFile"
SETTING_EXPORT_INTERVAL = "blacklist.updateInterval"
SETTING_PROXY_DOMAIN_CATEGORY = "proxyFormat.domainCategory"
SETTING_PROXY_URL_CATEGORY = "proxyFormat.urlCategory"
SETTING_ENABLE_SOAR_URL = "system.enableSoarUrl"

DEFAULT_SETTINGS = {
    SETTING_MAX_LINES_PER_FILE: "100000",
    SETTING_EXPORT_INTERVAL: "300",
    SETTING_PROXY_DOMAIN_CATEGORY: "blocked_domains",
    SETTING_PROXY_URL_CATEGORY: "blocked_urls",
    SETTING_ENABLE_SOAR_URL: "false",
}
