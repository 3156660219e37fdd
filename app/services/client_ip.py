from __future__ import annotations

from collections.abc import Mapping

UNKNOWN_IP = "0.0.0.0"

# Cloudflare's header; spoofable unless traffic really comes through the edge.
TRUSTED_EDGE_HEADER = "cf-connecting-ip"
REAL_IP_HEADER = "x-real-ip"
FORWARDED_FOR_HEADER = "x-forwarded-for"
# Azure Front Door, then App Service.
PLATFORM_HEADERS = ("x-azure-clientip", "x-client-ip")


def _header(headers: Mapping[str, str], name: str) -> str | None:
    value = headers.get(name)
    if value is None:
        # Plain dicts are case-sensitive; Starlette's Headers are not.
        for key, candidate in headers.items():
            if key.lower() == name:
                value = candidate
                break
    if value is None:
        return None
    value = value.strip()
    return value or None


def _strip_port(value: str) -> str:
    # Azure hands out "1.2.3.4:56789"; leave bare or bracketed IPv6 alone.
    if value.startswith("["):
        return value[1:].split("]", 1)[0]
    if value.count(":") == 1:
        return value.split(":", 1)[0]
    return value


def resolve_client_ip(
    headers: Mapping[str, str],
    peer_host: str | None = None,
    *,
    trust_edge: bool = False,
) -> str:
    """Best guess at the address of whoever fetched the pixel.

    Order: trusted edge header (only when ``trust_edge``), X-Real-IP, first
    X-Forwarded-For hop, platform headers, socket peer, then ``UNKNOWN_IP``.
    """

    if trust_edge:
        edge = _header(headers, TRUSTED_EDGE_HEADER)
        if edge:
            return edge

    real_ip = _header(headers, REAL_IP_HEADER)
    if real_ip:
        return real_ip

    forwarded = _header(headers, FORWARDED_FOR_HEADER)
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    for name in PLATFORM_HEADERS:
        value = _header(headers, name)
        if value:
            return _strip_port(value)

    if peer_host:
        return peer_host
    return UNKNOWN_IP
