"""
SSRF Protection Guard.

This module validates caller-supplied URLs before the gateway fetches
them (e.g. remote images for merging).

The primary check is pure and synchronous:
- Protocol restriction (http/https only)
- Blocked hostnames (localhost, cloud metadata endpoints)
- Blocked IP literals (loopback, private, link-local, unique-local, ...)
- Origin allowlist in production, when configured

The literal check does not resolve DNS, so on its own it does not stop
DNS rebinding. validate_resolved() adds a resolve-then-check step that the
image fetcher runs just before connecting; the connection itself is not
pinned to the checked address.

Reference: OWASP SSRF Prevention Cheat Sheet
"""

import asyncio
import enum
import ipaddress
import socket
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple, Union
from urllib.parse import SplitResult, urlsplit

import structlog

from image_gateway.gateway.errors import ValidationRejected

logger = structlog.get_logger(__name__)

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


class RejectionReason(str, enum.Enum):
    """Why a URL was judged unsafe."""

    MALFORMED = "malformed"
    UNSUPPORTED_SCHEME = "unsupported-scheme"
    BLOCKED_HOSTNAME = "blocked-hostname"
    BLOCKED_IP_RANGE = "blocked-ip-range"
    NOT_IN_ALLOWLIST = "not-in-allowlist"


@dataclass(frozen=True)
class UrlSafetyVerdict:
    """Outcome of a URL safety check."""

    safe: bool
    reason: Optional[RejectionReason] = None


SAFE = UrlSafetyVerdict(safe=True)

_REJECTION_MESSAGES = {
    RejectionReason.MALFORMED: "Invalid URL format.",
    RejectionReason.UNSUPPORTED_SCHEME: "Invalid protocol. Only HTTP(S) is allowed.",
    RejectionReason.BLOCKED_HOSTNAME: "Access to internal/private resources is not allowed.",
    RejectionReason.BLOCKED_IP_RANGE: "Access to internal/private resources is not allowed.",
    RejectionReason.NOT_IN_ALLOWLIST: "URL domain is not in the allowed list.",
}


class SSRFError(ValidationRejected):
    """Exception raised when SSRF protection is triggered."""

    def __init__(self, reason: RejectionReason, url: str = "", resolved_ip: str = ""):
        super().__init__(_REJECTION_MESSAGES[reason])
        self.reason = reason
        self.url = url
        self.resolved_ip = resolved_ip

    def to_response(self):
        body = super().to_response()
        body["reason"] = self.reason.value
        return body


class SSRFGuard:
    """
    SSRF protection for server-side fetches.

    Rejects URLs pointing at:
    - Private IP ranges (10.x.x.x, 172.16.x.x, 192.168.x.x)
    - Loopback addresses (127.x.x.x, ::1)
    - Link-local addresses (169.254.x.x, fe80::)
    - Cloud metadata services (169.254.169.254, metadata.google.internal)
    - IPv6 unique-local and IPv4-mapped variants of the above

    In production, when allowed origins are configured, the URL's origin
    must equal one of them or be a subdomain of one.
    """

    ALLOWED_SCHEMES = ("http", "https")

    DEFAULT_BLOCKED_CIDRS = [
        # IPv4 private/special
        "0.0.0.0/8",        # Current network
        "10.0.0.0/8",       # Private Class A
        "100.64.0.0/10",    # Carrier-grade NAT
        "127.0.0.0/8",      # Loopback
        "169.254.0.0/16",   # Link-local (includes AWS metadata)
        "172.16.0.0/12",    # Private Class B
        "192.0.0.0/24",     # IETF Protocol Assignments
        "192.168.0.0/16",   # Private Class C
        "198.18.0.0/15",    # Network Interconnect Device Benchmark
        "224.0.0.0/4",      # Multicast
        "240.0.0.0/4",      # Reserved
        "255.255.255.255/32",  # Broadcast

        # IPv6 special
        "::1/128",          # Loopback
        "::/128",           # Unspecified
        "64:ff9b::/96",     # IPv4/IPv6 translation
        "fc00::/7",         # Unique local address
        "fe80::/10",        # Link-local
        "ff00::/8",         # Multicast
    ]

    BLOCKED_HOSTS = frozenset({
        "localhost",
        "metadata.google.internal",
        "metadata.goog",
        "metadata.gcp",
        "metadata",
        "instance-data",
        "0.0.0.0",
    })

    def __init__(
        self,
        allowed_origins: Iterable[str] = (),
        production: bool = False,
    ):
        """
        Initialize SSRF guard.

        Args:
            allowed_origins: Origins such as "https://cdn.example.com"
            production: Enforce allowed_origins (ignored when empty)
        """
        self.allowed_origins: Tuple[str, ...] = tuple(self._normalize_origins(allowed_origins))
        self.production = production
        self.blocked_networks = [
            ipaddress.ip_network(cidr, strict=False) for cidr in self.DEFAULT_BLOCKED_CIDRS
        ]

    def check_url(self, url: str) -> UrlSafetyVerdict:
        """Judge a URL without any network access."""
        parsed = self._parse(url)
        if parsed is None:
            return UrlSafetyVerdict(False, RejectionReason.MALFORMED)

        # 1. Validate scheme
        if parsed.scheme not in self.ALLOWED_SCHEMES:
            return UrlSafetyVerdict(False, RejectionReason.UNSUPPORTED_SCHEME)
        if not parsed.hostname:
            return UrlSafetyVerdict(False, RejectionReason.MALFORMED)

        # 2. Blocked hosts
        hostname = parsed.hostname.rstrip(".")
        if hostname in self.BLOCKED_HOSTS:
            return UrlSafetyVerdict(False, RejectionReason.BLOCKED_HOSTNAME)

        # 3. IP literals
        ip = self._literal_ip(hostname)
        if ip is not None and self._is_blocked_ip(ip):
            return UrlSafetyVerdict(False, RejectionReason.BLOCKED_IP_RANGE)

        # 4. Production allowlist
        if self.production and self.allowed_origins:
            if not self._origin_allowed(parsed):
                return UrlSafetyVerdict(False, RejectionReason.NOT_IN_ALLOWLIST)

        return SAFE

    @classmethod
    def _normalize_origins(cls, entries: Iterable[str]) -> List[str]:
        """Reduce configured entries to scheme://host[:port] form."""
        origins: List[str] = []
        for entry in entries:
            if not entry.strip():
                continue
            parsed = cls._parse(entry)
            if parsed is None or not parsed.hostname:
                logger.warning("Ignoring invalid allowed image origin", origin=entry)
                continue
            origin = _origin_of(parsed)
            if origin not in origins:
                origins.append(origin)
        return origins

    def is_safe(self, url: str) -> bool:
        return self.check_url(url).safe

    def explain_rejection(self, url: str) -> str:
        """Human-readable reason a URL was rejected."""
        verdict = self.check_url(url)
        if verdict.safe:
            return "Invalid or unsafe URL."
        return _REJECTION_MESSAGES[verdict.reason]

    def validate_url(self, url: str) -> str:
        """
        Validate a URL, raising on rejection.

        Raises:
            SSRFError: If the URL is unsafe
        """
        verdict = self.check_url(url)
        if not verdict.safe:
            logger.warning("Blocked unsafe URL", reason=verdict.reason.value)
            raise SSRFError(verdict.reason, url=url)
        return url

    async def validate_resolved(self, url: str) -> List[str]:
        """
        Resolve the URL's hostname and reject private destinations.

        Intended to run immediately before a fetch, never during
        admission checks.

        Returns:
            The resolved IP addresses

        Raises:
            SSRFError: If the URL is unsafe or resolves to a blocked range
        """
        self.validate_url(url)
        hostname = self._parse(url).hostname

        if self._literal_ip(hostname) is not None:
            return [hostname]

        loop = asyncio.get_running_loop()
        try:
            infos = await loop.getaddrinfo(hostname, None, type=socket.SOCK_STREAM)
        except socket.gaierror:
            raise SSRFError(RejectionReason.MALFORMED, url=url)

        resolved: List[str] = []
        for info in infos:
            ip_str = info[4][0]
            if ip_str in resolved:
                continue
            resolved.append(ip_str)
            if self._is_blocked_ip(ipaddress.ip_address(ip_str)):
                logger.warning("Blocked URL resolving to private address", host=hostname)
                raise SSRFError(RejectionReason.BLOCKED_IP_RANGE, url=url, resolved_ip=ip_str)

        if not resolved:
            raise SSRFError(RejectionReason.MALFORMED, url=url)
        return resolved

    @staticmethod
    def _parse(url: str) -> Optional[SplitResult]:
        if not isinstance(url, str) or not url.strip():
            return None
        try:
            parsed = urlsplit(url.strip())
            parsed.port  # raises ValueError on an invalid port
        except ValueError:
            return None
        if not parsed.scheme:
            return None
        return parsed

    @staticmethod
    def _literal_ip(hostname: str) -> Optional[IPAddress]:
        """Interpret a hostname as an IP literal, including short IPv4 forms."""
        try:
            return ipaddress.ip_address(hostname)
        except ValueError:
            pass
        # Browsers and many HTTP stacks accept 2130706433 or 0x7f.1 as IPv4
        if hostname and all(c in "0123456789abcdefx." for c in hostname):
            try:
                return ipaddress.ip_address(socket.inet_aton(hostname))
            except OSError:
                return None
        return None

    def _is_blocked_ip(self, ip: IPAddress) -> bool:
        if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
            ip = ip.ipv4_mapped
        return any(ip in network for network in self.blocked_networks)

    def _origin_allowed(self, parsed: SplitResult) -> bool:
        origin = _origin_of(parsed)
        for allowed in self.allowed_origins:
            if origin == allowed:
                return True
            allowed_parsed = self._parse(allowed)
            if allowed_parsed is None or not allowed_parsed.hostname:
                continue
            # Subdomain of an allowed origin, same scheme and port
            if (
                parsed.scheme == allowed_parsed.scheme
                and _effective_port(parsed) == _effective_port(allowed_parsed)
                and parsed.hostname.endswith("." + allowed_parsed.hostname)
            ):
                return True
        return False


def _effective_port(parsed: SplitResult) -> int:
    if parsed.port is not None:
        return parsed.port
    return 443 if parsed.scheme == "https" else 80


def _origin_of(parsed: SplitResult) -> str:
    host = parsed.hostname
    if ":" in host:
        host = f"[{host}]"
    default_port = 443 if parsed.scheme == "https" else 80
    if parsed.port is not None and parsed.port != default_port:
        return f"{parsed.scheme}://{host}:{parsed.port}"
    return f"{parsed.scheme}://{host}"
