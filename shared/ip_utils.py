"""
Client IP normalization and classification.

normalize_ip() picks the visitor address from the direct connection and the
usual proxy headers. It always returns a syntactically valid IPv4 string and
never raises; unresolvable input falls back to the loopback address.
"""

from __future__ import annotations

import ipaddress
from typing import Mapping, Optional

LOOPBACK_IP = "127.0.0.1"

# Proxy headers consulted after the direct address, in priority order.
# x-forwarded-for is a chain and is resolved separately.
PROXY_HEADERS: tuple[str, ...] = (
    "cf-connecting-ip",
    "x-real-ip",
    "x-forwarded-for",
    "x-client-ip",
    "x-forwarded",
    "forwarded-for",
    "forwarded",
)

_IPV4_MAPPED_PREFIX = "::ffff:"

NON_PUBLIC_NETWORKS: tuple[ipaddress.IPv4Network, ...] = tuple(
    ipaddress.IPv4Network(cidr)
    for cidr in (
        "10.0.0.0/8",
        "172.16.0.0/12",
        "192.168.0.0/16",
        "127.0.0.0/8",
        "169.254.0.0/16",
        "224.0.0.0/4",
        "240.0.0.0/4",
        "0.0.0.0/8",
    )
)


def _lower_headers(headers: Optional[Mapping[str, str]]) -> dict[str, str]:
    if not headers:
        return {}
    return {str(k).lower(): v for k, v in headers.items() if v is not None}


def _clean_candidate(value: Optional[str]) -> Optional[str]:
    """Strip an address candidate and map the loopback spellings to IPv4."""
    if not value:
        return None
    candidate = str(value).strip()
    if candidate.lower().startswith(_IPV4_MAPPED_PREFIX):
        candidate = candidate[len(_IPV4_MAPPED_PREFIX):]
    if candidate in ("::1", "localhost"):
        return LOOPBACK_IP
    return candidate or None


def is_valid_ipv4(value: Optional[str]) -> bool:
    if not value:
        return False
    try:
        ipaddress.IPv4Address(value)
    except ValueError:
        return False
    return True


def is_private_ip(ip: str) -> bool:
    """True for RFC1918, loopback, link-local, multicast, reserved and 0/8.

    Documentation ranges (TEST-NET) count as public. Anything that is not a
    valid IPv4 address counts as private, so the geolocation resolver never
    queries the database for it.
    """
    try:
        addr = ipaddress.IPv4Address(ip)
    except ValueError:
        return True
    return any(addr in network for network in NON_PUBLIC_NETWORKS)


def is_public_ip(ip: str) -> bool:
    return is_valid_ipv4(ip) and not is_private_ip(ip)


def extract_forwarded_for(value: Optional[str]) -> Optional[str]:
    """Pick the client from an ``X-Forwarded-For`` chain.

    Returns the first public entry, else the first entry.
    """
    if not value:
        return None
    entries = [_clean_candidate(part) for part in value.split(",")]
    entries = [entry for entry in entries if entry]
    if not entries:
        return None
    for entry in entries:
        if is_public_ip(entry):
            return entry
    return entries[0]


def _candidates(raw_ip: Optional[str], headers: dict[str, str]):
    yield _clean_candidate(raw_ip)
    for header in PROXY_HEADERS:
        value = headers.get(header)
        if header == "x-forwarded-for":
            yield extract_forwarded_for(value)
        else:
            yield _clean_candidate(value)


def normalize_ip(
    raw_ip: Optional[str], headers: Optional[Mapping[str, str]] = None
) -> str:
    """Return the first valid IPv4 among the direct address and proxy headers.

    Examples:
        >>> normalize_ip("203.0.113.7")
        '203.0.113.7'
        >>> normalize_ip("::1")
        '127.0.0.1'
        >>> normalize_ip(None, {"X-Forwarded-For": "10.0.0.2, 198.51.100.4"})
        '198.51.100.4'
    """
    lowered = _lower_headers(headers)
    for candidate in _candidates(raw_ip, lowered):
        if is_valid_ipv4(candidate):
            return candidate
    return LOOPBACK_IP


def get_ip_source(
    raw_ip: Optional[str], headers: Optional[Mapping[str, str]] = None
) -> str:
    """Name the hop that supplied the visitor address (debug logging only)."""
    lowered = _lower_headers(headers)
    if lowered.get("cf-connecting-ip"):
        return "cloudflare"
    if lowered.get("x-real-ip"):
        return "nginx"
    if lowered.get("x-forwarded-for"):
        return "load-balancer"
    if lowered.get("x-client-ip"):
        return "apache"
    if raw_ip:
        return "direct"
    return "unknown"
