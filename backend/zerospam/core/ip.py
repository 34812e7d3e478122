"""
IP parsing helpers and trusted client IP extraction.
"""

from __future__ import annotations

from ipaddress import ip_address, ip_network
from typing import Iterable

from fastapi import Request

from zerospam.core.config import settings


def parse_ip(value: str | None) -> str | None:
    """Return the canonical form of an IPv4/IPv6 address, or None."""
    if not value or not isinstance(value, str):
        return None
    try:
        return str(ip_address(value.strip()))
    except ValueError:
        return None


def is_valid_ip(value: str | None) -> bool:
    return parse_ip(value) is not None


def ip_in_networks(value: str | None, networks: Iterable[str]) -> bool:
    """True when the address equals or falls inside any entry (IP or CIDR)."""
    parsed = parse_ip(value)
    if not parsed:
        return False
    candidate = ip_address(parsed)
    for entry in networks:
        if not entry:
            continue
        try:
            network = ip_network(str(entry).strip(), strict=False)
        except ValueError:
            continue
        if candidate.version == network.version and candidate in network:
            return True
    return False


def _is_public(ip_value: str) -> bool:
    return ip_address(ip_value).is_global


def _first_ip_from_xff(value: str) -> str | None:
    if not value:
        return None
    candidates = [part.strip() for part in value.split(",") if part.strip()]
    first_valid = None
    for candidate in candidates:
        parsed = parse_ip(candidate)
        if not parsed:
            continue
        if first_valid is None:
            first_valid = parsed
        if _is_public(parsed):
            return parsed
    return first_valid


def extract_client_ip(request: Request) -> str | None:
    """
    Resolve the real client IP based on proxy trust settings.
    """
    peer = request.client.host if request.client else None
    if not settings.TRUST_PROXY_HEADERS:
        return parse_ip(peer)

    if not ip_in_networks(peer, settings.TRUSTED_PROXY_IPS):
        return parse_ip(peer)

    for header in settings.TRUSTED_IP_HEADERS:
        raw = request.headers.get(header)
        if not raw:
            continue
        if header.lower() == "x-forwarded-for":
            parsed = _first_ip_from_xff(raw)
        else:
            parsed = parse_ip(raw.split(",")[0])
        if parsed:
            return parsed

    return parse_ip(peer)
