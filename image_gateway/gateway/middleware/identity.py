"""
Client identity resolution.

Derives the key used by the rate limiters from request headers. The
value is opaque: it is never parsed as an IP address, only used as a
map key.
"""

from typing import Mapping

# Checked in this order; the first non-empty value wins
FORWARDED_FOR_HEADER = "x-forwarded-for"
REAL_IP_HEADER = "x-real-ip"
CONNECTING_IP_HEADER = "cf-connecting-ip"

UNKNOWN_IDENTITY = "unknown"


def resolve_identity(headers: Mapping[str, str]) -> str:
    """
    Resolve the caller identity from request headers.

    Args:
        headers: Request headers. Starlette headers are case-insensitive;
            plain mappings must use lower-case names.

    Returns:
        The first forwarded address, the real-IP header, the connecting-IP
        header, or "unknown" when none is present.
    """
    forwarded = headers.get(FORWARDED_FOR_HEADER)
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    for header in (REAL_IP_HEADER, CONNECTING_IP_HEADER):
        value = (headers.get(header) or "").strip()
        if value:
            return value

    return UNKNOWN_IDENTITY
