"""
Indicator classification

Decides what kind of indicator a raw string is (ip, url, hash, domain) and,
for hashes, which algorithm produced it. Invalid input never raises: every
failure comes back as a ``Rejection`` carrying a reason callers can show.
"""

import ipaddress
import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union
from urllib.parse import urlsplit

from ..config import MAX_INDICATOR_LENGTH

HASH_ALGORITHMS = {
    32: "md5",
    40: "sha1",
    56: "sha224",
    64: "sha256",
    96: "sha384",
    128: "sha512",
}

RESERVED_TLDS = {"local", "internal", "test", "example", "invalid", "localhost"}

IPV4_RE = re.compile(r"^(?:(?:25[0-5]|2[0-4]\d|1\d\d|[1-9]?\d)\.){3}(?:25[0-5]|2[0-4]\d|1\d\d|[1-9]?\d)$")
CIDR_RE = re.compile(r"^(?:\d{1,3}\.){3}\d{1,3}/\d{1,2}$")
HEX_RE = re.compile(r"^[0-9a-fA-F]+$")
DOMAIN_RE = re.compile(
    r"^(?=.{1,253}$)(?:[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z]{2,63}$",
    re.IGNORECASE,
)
SCHEME_RE = re.compile(r"^([a-z][a-z0-9+.-]*)://", re.IGNORECASE)


class RejectionReason(str, Enum):
    EMPTY = "empty"
    TOO_LONG = "too_long"
    RESERVED_IP = "reserved_ip"
    INVALID_CIDR = "invalid_cidr"
    UNSUPPORTED_SCHEME = "unsupported_scheme"
    INVALID_URL = "invalid_url"
    PRIVATE_URL_HOST = "private_url_host"
    UNSUPPORTED_HASH = "unsupported_hash"
    RESERVED_TLD = "reserved_tld"
    UNRECOGNIZED = "unrecognized"


@dataclass(frozen=True)
class Classification:
    kind: str
    value: str
    hash_algorithm: Optional[str] = None


@dataclass(frozen=True)
class Rejection:
    reason: RejectionReason
    message: str

    def __bool__(self) -> bool:
        return False


ClassifyResult = Union[Classification, Rejection]


def _is_reserved_ipv4(addr: ipaddress.IPv4Address) -> bool:
    return (
        addr.is_private
        or addr.is_reserved
        or addr.is_multicast
        or addr.is_loopback
        or addr.is_link_local
        or addr.is_unspecified
    )


def _is_reserved_host(host: str) -> bool:
    return host == "localhost" or host.rsplit(".", 1)[-1] in RESERVED_TLDS


def hash_algorithm_for(value: str) -> Optional[str]:
    """Algorithm tag for a hex digest, by length"""
    return HASH_ALGORITHMS.get(len(value))


def _classify_url(value: str, allow_private: bool) -> ClassifyResult:
    scheme = SCHEME_RE.match(value).group(1).lower()
    if scheme not in ("http", "https"):
        return Rejection(RejectionReason.UNSUPPORTED_SCHEME, f"Unsupported URL scheme '{scheme}', only http and https are accepted")
    try:
        host = (urlsplit(value).hostname or "").lower()
    except ValueError:
        host = ""
    if not host:
        return Rejection(RejectionReason.INVALID_URL, "URL has no host")
    if not allow_private:
        if _is_reserved_host(host):
            return Rejection(RejectionReason.PRIVATE_URL_HOST, f"URL host '{host}' is local")
        if IPV4_RE.match(host) and _is_reserved_ipv4(ipaddress.IPv4Address(host)):
            return Rejection(RejectionReason.PRIVATE_URL_HOST, f"URL host '{host}' is in a private or reserved range")
    return Classification(kind="url", value=value)


def _classify_domain(value: str) -> ClassifyResult:
    lowered = value.lower()
    if lowered == "localhost" or lowered.endswith(".localhost"):
        return Rejection(RejectionReason.RESERVED_TLD, "localhost is not a valid indicator")
    if not DOMAIN_RE.match(value):
        return Rejection(RejectionReason.UNRECOGNIZED, f"'{value}' is not an IP, URL, hash or domain")
    tld = lowered.rsplit(".", 1)[-1]
    if tld in RESERVED_TLDS:
        return Rejection(RejectionReason.RESERVED_TLD, f"Reserved top-level domain '.{tld}'")
    return Classification(kind="domain", value=value)


def _classify(raw: str, loose: bool) -> ClassifyResult:
    if raw is None:
        return Rejection(RejectionReason.EMPTY, "Value is empty")
    value = raw.strip()
    if not value:
        return Rejection(RejectionReason.EMPTY, "Value is empty")
    if len(value) > MAX_INDICATOR_LENGTH:
        return Rejection(RejectionReason.TOO_LONG, f"Value exceeds {MAX_INDICATOR_LENGTH} characters")

    if IPV4_RE.match(value):
        if not loose and _is_reserved_ipv4(ipaddress.IPv4Address(value)):
            return Rejection(RejectionReason.RESERVED_IP, f"{value} is in a private, reserved or multicast range")
        return Classification(kind="ip", value=value)

    if loose and CIDR_RE.match(value):
        try:
            network = ipaddress.IPv4Network(value, strict=False)
        except ValueError:
            return Rejection(RejectionReason.INVALID_CIDR, "Invalid CIDR notation, use e.g. 192.168.1.0/24")
        return Classification(kind="ip", value=str(network))

    # URL before domain: a URL host looks like a bare domain
    if SCHEME_RE.match(value):
        return _classify_url(value, allow_private=loose)

    # Hash before domain: hex runs must not be read as labels
    if HEX_RE.match(value):
        algorithm = hash_algorithm_for(value)
        if algorithm is None:
            return Rejection(RejectionReason.UNSUPPORTED_HASH, f"Unsupported hash length {len(value)}")
        return Classification(kind="hash", value=value, hash_algorithm=algorithm)

    return _classify_domain(value)


def classify(raw: str) -> ClassifyResult:
    """Classify a feed or manually entered indicator value."""
    return _classify(raw, loose=False)


def classify_whitelist_value(raw: str) -> ClassifyResult:
    """
    Classify an allow-list value.

    Private and reserved IPv4 ranges and CIDR blocks are accepted since
    internal assets are the usual whitelist subjects; TLD and URL scheme
    rules are the same as ``classify``.
    """
    return _classify(raw, loose=True)
