import ipaddress
import logging
from functools import lru_cache
from typing import Iterable, List, Optional, Sequence, Set

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..config import WHITELIST_ACTION
from ..db import utcnow
from ..models.indicator import Indicator
from ..models.whitelist import WhitelistEntry
from .audit import emit_audit_event
from .classifier import Rejection, classify_whitelist_value

logger = logging.getLogger(__name__)


@lru_cache(maxsize=4096)
def _network(cidr: str) -> Optional[ipaddress.IPv4Network]:
    try:
        return ipaddress.IPv4Network(cidr, strict=False)
    except ValueError:
        logger.warning(f"Invalid CIDR format in whitelist: {cidr}")
        return None


def _ip_in(value: str, cidr: str) -> bool:
    network = _network(cidr)
    if network is None:
        return False
    try:
        return ipaddress.IPv4Address(value) in network
    except ValueError:
        return False


def entry_matches(entry: WhitelistEntry, value: str, kind: str) -> bool:
    """True if a single allow-list entry covers ``value``"""
    if entry.type != kind:
        return False
    if entry.value == value:
        return True
    if kind == "ip" and "/" in entry.value:
        return _ip_in(value, entry.value)
    if kind == "domain":
        candidate = value.lower()
        rule = entry.value.lower()
        return candidate == rule or candidate.endswith("." + rule)
    return False


def find_matching_entry(value: str, kind: str, entries: Iterable[WhitelistEntry]) -> Optional[WhitelistEntry]:
    """First entry, in iteration order, that covers ``value``"""
    for entry in entries:
        if entry_matches(entry, value, kind):
            return entry
    return None


def is_whitelisted(value: str, kind: str, entries: Iterable[WhitelistEntry]) -> bool:
    return find_matching_entry(value, kind, entries) is not None


def _domain_suffixes(value: str) -> List[str]:
    labels = value.lower().split(".")
    return [".".join(labels[i:]) for i in range(len(labels))]


def bulk_check(values: Iterable[str], kind: str, entries: Sequence[WhitelistEntry]) -> Set[str]:
    """
    Subset of ``values`` that is whitelisted.

    Same answers as calling ``is_whitelisted`` per value; the rule set is
    indexed once instead of scanned per candidate.
    """
    rules = [e for e in entries if e.type == kind]
    exact = {e.value for e in rules}
    matched: Set[str] = set()

    if kind == "ip":
        networks = [n for n in (_network(e.value) for e in rules if "/" in e.value) if n is not None]
        for value in values:
            if value in exact:
                matched.add(value)
                continue
            try:
                addr = ipaddress.IPv4Address(value)
            except ValueError:
                continue
            if any(addr in network for network in networks):
                matched.add(value)
    elif kind == "domain":
        domains = {e.value.lower() for e in rules}
        for value in values:
            if value in exact or any(suffix in domains for suffix in _domain_suffixes(value)):
                matched.add(value)
    else:
        matched = {value for value in values if value in exact}

    return matched


class WhitelistService:
    """Allow-list storage and its effect on stored indicators"""

    @staticmethod
    def load_entries(db: Session, kind: str) -> List[WhitelistEntry]:
        return (
            db.query(WhitelistEntry)
            .filter(WhitelistEntry.type == kind)
            .order_by(WhitelistEntry.id)
            .all()
        )

    @staticmethod
    def add_entry(
        db: Session,
        value: str,
        kind: str,
        reason: Optional[str] = None,
        created_by: Optional[int] = None,
        action: str = WHITELIST_ACTION,
    ) -> tuple:
        """
        Store an allow-list entry and apply it to indicators already stored.

        Returns ``(entry, affected_count)``. Raises ValueError when the value
        is not a valid allow-list subject for ``kind``.
        """
        result = classify_whitelist_value(value)
        if isinstance(result, Rejection):
            raise ValueError(result.message)
        if result.kind != kind:
            raise ValueError(f"'{value}' is a {result.kind}, not a {kind}")

        entry = WhitelistEntry(value=result.value, type=kind, reason=reason, created_by=created_by)
        db.add(entry)
        db.flush()

        affected = WhitelistService.apply_to_indicators(db, entry, action)
        db.commit()

        suffix = ""
        if affected:
            verb = "deleted" if action == "delete" else "deactivated"
            suffix = f" ({verb} {affected} matching indicator{'s' if affected > 1 else ''})"
        emit_audit_event(
            "info", "create", "whitelist",
            f"Added to whitelist: {entry.value}{suffix}",
            resource_id=str(entry.id),
            metadata={"affected_indicators": affected, "action": action},
            user_id=created_by,
        )
        return entry, affected

    @staticmethod
    def apply_to_indicators(db: Session, entry: WhitelistEntry, action: str) -> int:
        """Delete or deactivate stored indicators covered by ``entry``"""
        query = db.query(Indicator).filter(Indicator.type == entry.type)
        if entry.type == "ip" and "/" in entry.value:
            candidates = [i for i in query.all() if _ip_in(i.value, entry.value)]
        elif entry.type == "domain":
            rule = entry.value.lower()
            candidates = query.filter(
                (func.lower(Indicator.value) == rule) | (func.lower(Indicator.value).like(f"%.{rule}"))
            ).all()
            candidates = [i for i in candidates if entry_matches(entry, i.value, "domain")]
        else:
            candidates = query.filter(Indicator.value == entry.value).all()

        if action == "deactivate":
            now = utcnow()
            for indicator in candidates:
                if indicator.is_active:
                    indicator.is_active = False
                    indicator.updated_at = now
        else:
            for indicator in candidates:
                db.delete(indicator)

        if candidates:
            logger.info(f"Whitelist entry {entry.value} {action}d {len(candidates)} indicators")
        return len(candidates)
