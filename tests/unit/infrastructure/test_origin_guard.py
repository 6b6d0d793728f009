"""Tests for the SSRF origin guard."""

from __future__ import annotations

import socket
from unittest.mock import AsyncMock, patch

import pytest

from hlsrelay.domain.ports import OriginGuardPort
from hlsrelay.infrastructure.security.origin_guard import OriginGuard


class TestLiteralHostCheck:
    @pytest.mark.parametrize(
        "host",
        [
            "10.0.0.5",
            "127.0.0.1",
            "172.20.1.1",
            "192.168.1.1",
            "foo.local",
            "FOO.LOCAL",
            "printer.local.",
            "localhost",
            "169.254.169.254",
            "0.0.0.0",
            "::1",
            "[::1]",
            "fe80::1",
            "fd00::1",
            "::ffff:10.0.0.1",
            "224.0.0.1",
            "",
        ],
    )
    def test_rejects_internal_hosts(self, origin_guard: OriginGuard, host: str) -> None:
        assert origin_guard.is_allowed_host(host) is False

    @pytest.mark.parametrize(
        "host",
        [
            "example.com",
            "8.8.8.8",
            "cdn.example.org",
            "172.32.0.1",
            "2606:4700:4700::1111",
            "local.example.com",
        ],
    )
    def test_allows_public_hosts(self, origin_guard: OriginGuard, host: str) -> None:
        assert origin_guard.is_allowed_host(host) is True

    def test_satisfies_port(self, origin_guard: OriginGuard) -> None:
        assert isinstance(origin_guard, OriginGuardPort)


def _addrinfo(*addresses: str) -> list[tuple]:
    return [
        (socket.AF_INET, socket.SOCK_STREAM, 6, "", (addr, 0)) for addr in addresses
    ]


class TestResolvingCheck:
    @pytest.mark.asyncio()
    async def test_literal_rejection_skips_dns(self) -> None:
        guard = OriginGuard(resolve_hostnames=True)
        with patch.object(guard, "_resolve", AsyncMock()) as resolve:
            assert await guard.is_allowed("foo.local") is False
        resolve.assert_not_called()

    @pytest.mark.asyncio()
    async def test_name_resolving_to_private_ip_rejected(self) -> None:
        guard = OriginGuard(resolve_hostnames=True)
        with patch.object(
            guard, "_resolve", AsyncMock(return_value=["93.184.216.34", "10.1.2.3"])
        ):
            assert await guard.is_allowed("sneaky.example.com") is False

    @pytest.mark.asyncio()
    async def test_name_resolving_to_public_ip_allowed(self) -> None:
        guard = OriginGuard(resolve_hostnames=True)
        with patch.object(
            guard, "_resolve", AsyncMock(return_value=["93.184.216.34"])
        ):
            assert await guard.is_allowed("example.com") is True

    @pytest.mark.asyncio()
    async def test_unresolvable_host_left_to_the_fetch(self) -> None:
        guard = OriginGuard(resolve_hostnames=True)
        with patch.object(guard, "_resolve", AsyncMock(return_value=[])):
            assert await guard.is_allowed("nx.example.com") is True

    @pytest.mark.asyncio()
    async def test_ip_literal_not_resolved(self) -> None:
        guard = OriginGuard(resolve_hostnames=True)
        with patch.object(guard, "_resolve", AsyncMock()) as resolve:
            assert await guard.is_allowed("8.8.8.8") is True
        resolve.assert_not_called()

    @pytest.mark.asyncio()
    async def test_resolution_disabled(self) -> None:
        guard = OriginGuard(resolve_hostnames=False)
        with patch.object(guard, "_resolve", AsyncMock()) as resolve:
            assert await guard.is_allowed("example.com") is True
        resolve.assert_not_called()

    @pytest.mark.asyncio()
    async def test_resolve_uses_event_loop_getaddrinfo(self) -> None:
        guard = OriginGuard(resolve_hostnames=True)
        fake = AsyncMock(return_value=_addrinfo("127.0.0.1"))
        with patch("asyncio.base_events.BaseEventLoop.getaddrinfo", fake):
            assert await guard.is_allowed("internal.example.com") is False

    @pytest.mark.asyncio()
    async def test_resolve_error_is_not_a_rejection(self) -> None:
        guard = OriginGuard(resolve_hostnames=True)
        fake = AsyncMock(side_effect=socket.gaierror("nope"))
        with patch("asyncio.base_events.BaseEventLoop.getaddrinfo", fake):
            assert await guard.is_allowed("nx.example.com") is True
