"""SSRF guard for upstream origins.

Blocks private, loopback and link-local destinations before the proxy
issues any outbound request.  Two levels:

- :meth:`OriginGuard.is_allowed_host` inspects the literal host string
  (IP literals, ``localhost``, ``*.local``).
- :meth:`OriginGuard.is_allowed` additionally resolves host names and
  rejects the host when *any* resolved address is internal, which closes
  the gap of a public-looking name pointing at a private IP.
"""

from __future__ import annotations

import asyncio
import ipaddress
import socket

import structlog

log = structlog.get_logger(__name__)

_BLOCKED_IPV4_NETWORKS = (
    ipaddress.IPv4Network("10.0.0.0/8"),
    ipaddress.IPv4Network("127.0.0.0/8"),
    ipaddress.IPv4Network("172.16.0.0/12"),
    ipaddress.IPv4Network("192.168.0.0/16"),
)

_BLOCKED_SUFFIXES = (".local",)
_BLOCKED_NAMES = frozenset({"localhost"})

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address


def _normalize_host(host: str) -> str:
    host = host.strip().lower()
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    return host.rstrip(".")


def _parse_ip(host: str) -> IPAddress | None:
    try:
        return ipaddress.ip_address(host)
    except ValueError:
        return None


def is_internal_address(addr: IPAddress) -> bool:
    """True for any address a public proxy must never connect to."""
    if isinstance(addr, ipaddress.IPv6Address) and addr.ipv4_mapped is not None:
        addr = addr.ipv4_mapped
    if isinstance(addr, ipaddress.IPv4Address) and any(
        addr in net for net in _BLOCKED_IPV4_NETWORKS
    ):
        return True
    return (
        addr.is_private
        or addr.is_loopback
        or addr.is_link_local
        or addr.is_multicast
        or addr.is_reserved
        or addr.is_unspecified
    )


class OriginGuard:
    """Decides whether a target host may be fetched.

    Args:
        resolve_hostnames: Resolve non-literal hosts and check every
            resolved address.  A host that does not resolve is let through:
            the fetch then fails as an upstream error, not a rejection.
    """

    def __init__(self, *, resolve_hostnames: bool = True) -> None:
        self._resolve_hostnames = resolve_hostnames

    @property
    def resolves_hostnames(self) -> bool:
        return self._resolve_hostnames

    def is_allowed_host(self, host: str) -> bool:
        """Literal check of *host*; performs no I/O."""
        host = _normalize_host(host)
        if not host:
            return False
        if host in _BLOCKED_NAMES or host.endswith(_BLOCKED_SUFFIXES):
            return False

        addr = _parse_ip(host)
        if addr is not None and is_internal_address(addr):
            return False
        return True

    async def is_allowed(self, host: str) -> bool:
        """Literal check plus (optionally) DNS resolution of *host*."""
        if not self.is_allowed_host(host):
            log.warning("origin_rejected", host=host, rule="literal")
            return False

        host = _normalize_host(host)
        if not self._resolve_hostnames or _parse_ip(host) is not None:
            return True

        addresses = await self._resolve(host)
        if not addresses:
            # Nothing to connect to, so nothing internal either.
            log.debug("origin_unresolved", host=host)
            return True

        for address in addresses:
            addr = _parse_ip(address.split("%", 1)[0])
            if addr is None or is_internal_address(addr):
                log.warning(
                    "origin_rejected",
                    host=host,
                    rule="resolved_internal",
                    address=address,
                )
                return False
        return True

    async def _resolve(self, host: str) -> list[str]:
        loop = asyncio.get_running_loop()
        try:
            infos = await loop.getaddrinfo(host, None, type=socket.SOCK_STREAM)
        except (socket.gaierror, UnicodeError) as exc:
            log.debug("origin_resolve_failed", host=host, error=str(exc))
            return []
        return sorted({str(info[4][0]) for info in infos})
