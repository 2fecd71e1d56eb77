from .source import DataSource
from .indicator import Indicator, INDICATOR_TYPES
from .whitelist import WhitelistEntry, WhitelistBlock
from .audit_log import AuditLog
from .setting import Setting

__all__ = [
    "DataSource",
    "Indicator",
    "INDICATOR_TYPES",
    "WhitelistEntry",
    "WhitelistBlock",
    "AuditLog",
    "Setting",
]
