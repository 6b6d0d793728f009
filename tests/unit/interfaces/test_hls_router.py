"""Tests for the HLS proxy endpoints, wired through create_app + lifespan."""

from __future__ import annotations

from collections.abc import Iterator
from unittest.mock import AsyncMock, patch
from urllib.parse import quote

import httpx
import pytest
import respx
from fastapi.testclient import TestClient
from starlette.requests import Request

from hlsrelay.infrastructure.config import AppConfig
from hlsrelay.infrastructure.security.origin_guard import OriginGuard
from hlsrelay.interfaces.api.hls.router import (
    UNKNOWN_CLIENT,
    client_identity,
    cors_headers,
)
from hlsrelay.interfaces.app import create_app

PLAYLIST_URL = "https://cdn.example.com/live/index.m3u8"
SEGMENT_URL = "https://cdn.example.com/live/seg-1.ts"


def _q(url: str) -> str:
    return quote(url, safe="")


@pytest.fixture()
def mock_origin() -> Iterator[respx.MockRouter]:
    with respx.mock(assert_all_called=False) as router:
        yield router


def _client(config: AppConfig) -> TestClient:
    return TestClient(create_app(config))


def _request(
    headers: dict[str, str] | None = None,
    client: tuple[str, int] | None = ("9.9.9.9", 4242),
) -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/api/ts-proxy",
        "headers": [
            (k.lower().encode(), v.encode()) for k, v in (headers or {}).items()
        ],
        "client": client,
    }
    return Request(scope)


# ---------------------------------------------------------------------------
# /api/m3u8-proxy
# ---------------------------------------------------------------------------


class TestPlaylistEndpoint:
    def test_rewrites_playlist(
        self, app_config: AppConfig, mock_origin: respx.MockRouter
    ) -> None:
        mock_origin.get(PLAYLIST_URL).respond(
            200, text="#EXTM3U\n#EXTINF:10,\nseg-1.ts\nlow/index.m3u8\n"
        )

        with _client(app_config) as client:
            resp = client.get(f"/api/m3u8-proxy?url={_q(PLAYLIST_URL)}")

        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith(
            "application/vnd.apple.mpegurl"
        )
        assert resp.headers["cache-control"] == "public, max-age=5"
        assert resp.headers["access-control-allow-origin"] == "*"
        assert resp.text == (
            "#EXTM3U\n#EXTINF:10,\n"
            f"http://proxy.test/api/ts-proxy?url={_q(SEGMENT_URL)}\n"
            "http://proxy.test/api/m3u8-proxy?url="
            f"{_q('https://cdn.example.com/live/low/index.m3u8')}\n"
        )

    def test_forwards_user_agent_and_cookie_only(
        self, app_config: AppConfig, mock_origin: respx.MockRouter
    ) -> None:
        route = mock_origin.get(PLAYLIST_URL).respond(200, text="#EXTM3U\n")

        with _client(app_config) as client:
            client.get(
                f"/api/m3u8-proxy?url={_q(PLAYLIST_URL)}",
                headers={
                    "User-Agent": "VLC/3.0",
                    "Cookie": "s=1",
                    "Authorization": "Bearer secret",
                },
            )

        sent = route.calls[0].request.headers
        assert sent["user-agent"] == "VLC/3.0"
        assert sent["cookie"] == "s=1"
        assert "authorization" not in sent

    def test_missing_url(self, app_config: AppConfig) -> None:
        with _client(app_config) as client:
            resp = client.get("/api/m3u8-proxy")

        assert resp.status_code == 400
        assert resp.text == "Missing url param"
        assert resp.headers["access-control-allow-origin"] == "*"

    def test_invalid_url(self, app_config: AppConfig) -> None:
        with _client(app_config) as client:
            resp = client.get("/api/m3u8-proxy?url=not-a-url")

        assert resp.status_code == 400
        assert resp.text == "Invalid url param"

    def test_wrong_extension(self, app_config: AppConfig) -> None:
        with _client(app_config) as client:
            resp = client.get(f"/api/m3u8-proxy?url={_q(SEGMENT_URL)}")

        assert resp.status_code == 400
        assert resp.text == "Only M3U8 playlists supported"

    def test_private_host_rejected(
        self, app_config: AppConfig, mock_origin: respx.MockRouter
    ) -> None:
        route = mock_origin.get("http://192.168.1.1/index.m3u8")

        with _client(app_config) as client:
            resp = client.get(
                f"/api/m3u8-proxy?url={_q('http://192.168.1.1/index.m3u8')}"
            )

        assert resp.status_code == 403
        assert resp.text == "Invalid host"
        assert not route.called

    def test_origin_cookie_not_shared_between_viewers(
        self, app_config: AppConfig, mock_origin: respx.MockRouter
    ) -> None:
        route = mock_origin.get(PLAYLIST_URL).respond(
            200,
            text="#EXTM3U\n",
            headers={"Set-Cookie": "session=ALICE; Path=/"},
        )
        url = f"/api/m3u8-proxy?url={_q(PLAYLIST_URL)}"

        with _client(app_config) as client:
            alice = client.get(url, headers={"X-Forwarded-For": "1.1.1.1"})
            bob = client.get(url, headers={"X-Forwarded-For": "2.2.2.2"})

        assert alice.status_code == 200
        assert bob.status_code == 200
        assert "cookie" not in route.calls[1].request.headers

    def test_unresolvable_origin_is_500(
        self, app_config: AppConfig, mock_origin: respx.MockRouter
    ) -> None:
        config = app_config.model_copy(update={"resolve_hostnames": True})
        target = "https://no-such-origin.example/a.m3u8"
        mock_origin.get(target).mock(
            side_effect=httpx.ConnectError("Name or service not known")
        )

        with patch.object(OriginGuard, "_resolve", AsyncMock(return_value=[])):
            with _client(config) as client:
                resp = client.get(f"/api/m3u8-proxy?url={_q(target)}")

        assert resp.status_code == 500
        assert resp.text == "Proxy failed"

    def test_upstream_failure_does_not_leak_details(
        self, app_config: AppConfig, mock_origin: respx.MockRouter
    ) -> None:
        mock_origin.get(PLAYLIST_URL).mock(
            side_effect=httpx.ConnectError("db.internal refused")
        )

        with _client(app_config) as client:
            resp = client.get(f"/api/m3u8-proxy?url={_q(PLAYLIST_URL)}")

        assert resp.status_code == 500
        assert resp.text == "Proxy failed"
        assert resp.headers["cache-control"] == "no-store"

    def test_upstream_error_status_becomes_500(
        self, app_config: AppConfig, mock_origin: respx.MockRouter
    ) -> None:
        mock_origin.get(PLAYLIST_URL).respond(404, text="not here")

        with _client(app_config) as client:
            resp = client.get(f"/api/m3u8-proxy?url={_q(PLAYLIST_URL)}")

        assert resp.status_code == 500
        assert resp.text == "Proxy failed"


# ---------------------------------------------------------------------------
# /api/ts-proxy
# ---------------------------------------------------------------------------


class TestSegmentEndpoint:
    def test_streams_segment_bytes(
        self, app_config: AppConfig, mock_origin: respx.MockRouter
    ) -> None:
        content = bytes(range(256)) * 1024
        mock_origin.get(SEGMENT_URL).respond(
            200,
            content=content,
            headers={"Content-Type": "application/octet-stream", "ETag": '"abc"'},
        )

        with _client(app_config) as client:
            resp = client.get(f"/api/ts-proxy?url={_q(SEGMENT_URL)}")

        assert resp.status_code == 200
        assert resp.content == content
        assert resp.headers["content-type"] == "video/mp2t"
        assert resp.headers["etag"] == '"abc"'
        assert resp.headers["access-control-allow-origin"] == "*"

    def test_head_forwarded(
        self, app_config: AppConfig, mock_origin: respx.MockRouter
    ) -> None:
        route = mock_origin.head(SEGMENT_URL).respond(
            200, headers={"Content-Length": "1000"}
        )

        with _client(app_config) as client:
            resp = client.head(f"/api/ts-proxy?url={_q(SEGMENT_URL)}")

        assert resp.status_code == 200
        assert route.called

    def test_wrong_extension(self, app_config: AppConfig) -> None:
        with _client(app_config) as client:
            resp = client.get(f"/api/ts-proxy?url={_q(PLAYLIST_URL)}")

        assert resp.status_code == 400
        assert resp.text == "Only TS segments supported"

    @pytest.mark.parametrize(
        "target",
        [
            "http://127.0.0.1/seg.ts",
            "http://10.1.2.3/seg.ts",
            "http://172.16.0.1/seg.ts",
            "http://nas.local/seg.ts",
            "http://localhost/seg.ts",
        ],
    )
    def test_internal_targets_rejected(
        self, app_config: AppConfig, target: str
    ) -> None:
        with _client(app_config) as client:
            resp = client.get(f"/api/ts-proxy?url={_q(target)}")

        assert resp.status_code == 403
        assert resp.text == "Invalid host"

    def test_upstream_404_becomes_500(
        self, app_config: AppConfig, mock_origin: respx.MockRouter
    ) -> None:
        mock_origin.get(SEGMENT_URL).respond(404)

        with _client(app_config) as client:
            resp = client.get(f"/api/ts-proxy?url={_q(SEGMENT_URL)}")

        assert resp.status_code == 500
        assert resp.text == "Proxy failed"


# ---------------------------------------------------------------------------
# Rate limiting
# ---------------------------------------------------------------------------


class TestRateLimit:
    def test_over_limit_returns_429_with_retry_after(
        self, app_config: AppConfig, mock_origin: respx.MockRouter
    ) -> None:
        config = app_config.model_copy(update={"rate_limit_max_requests": 2})
        mock_origin.get(SEGMENT_URL).respond(200, content=b"x")

        with _client(config) as client:
            url = f"/api/ts-proxy?url={_q(SEGMENT_URL)}"
            assert client.get(url).status_code == 200
            assert client.get(url).status_code == 200
            resp = client.get(url)

        assert resp.status_code == 429
        assert resp.text == "Rate limit exceeded"
        assert 1 <= int(resp.headers["retry-after"]) <= 60
        assert resp.headers["access-control-allow-origin"] == "*"

    def test_budget_shared_across_endpoints(
        self, app_config: AppConfig, mock_origin: respx.MockRouter
    ) -> None:
        config = app_config.model_copy(update={"rate_limit_max_requests": 1})
        mock_origin.get(PLAYLIST_URL).respond(200, text="#EXTM3U\n")

        with _client(config) as client:
            assert client.get(
                f"/api/m3u8-proxy?url={_q(PLAYLIST_URL)}"
            ).status_code == 200
            resp = client.get(f"/api/ts-proxy?url={_q(SEGMENT_URL)}")

        assert resp.status_code == 429

    def test_forwarded_clients_have_separate_budgets(
        self, app_config: AppConfig, mock_origin: respx.MockRouter
    ) -> None:
        config = app_config.model_copy(update={"rate_limit_max_requests": 1})
        mock_origin.get(SEGMENT_URL).respond(200, content=b"x")
        url = f"/api/ts-proxy?url={_q(SEGMENT_URL)}"

        with _client(config) as client:
            a = client.get(url, headers={"X-Forwarded-For": "1.1.1.1"})
            b = client.get(url, headers={"X-Forwarded-For": "2.2.2.2, 10.0.0.1"})
            a_again = client.get(url, headers={"X-Forwarded-For": "1.1.1.1"})

        assert a.status_code == 200
        assert b.status_code == 200
        assert a_again.status_code == 429

    def test_rejected_host_does_not_consume_budget(
        self, app_config: AppConfig, mock_origin: respx.MockRouter
    ) -> None:
        config = app_config.model_copy(update={"rate_limit_max_requests": 1})
        mock_origin.get(SEGMENT_URL).respond(200, content=b"x")

        with _client(config) as client:
            for _ in range(3):
                client.get(f"/api/ts-proxy?url={_q('http://127.0.0.1/a.ts')}")
            resp = client.get(f"/api/ts-proxy?url={_q(SEGMENT_URL)}")

        assert resp.status_code == 200


# ---------------------------------------------------------------------------
# CORS, preflight, health
# ---------------------------------------------------------------------------


class TestCorsAndHealth:
    @pytest.mark.parametrize("path", ["/api/m3u8-proxy", "/api/ts-proxy"])
    def test_preflight(self, app_config: AppConfig, path: str) -> None:
        with _client(app_config) as client:
            resp = client.options(path)

        assert resp.status_code == 204
        assert resp.headers["access-control-allow-origin"] == "*"
        assert resp.headers["access-control-allow-methods"] == "GET, HEAD"
        assert resp.headers["access-control-allow-headers"] == "Content-Type, Cookie"

    def test_allow_list_echoes_known_origin(self, app_config: AppConfig) -> None:
        config = app_config.model_copy(
            update={
                "cors_allowed_origins": [
                    "https://a.example.com",
                    "https://b.example.com",
                ]
            }
        )
        with _client(config) as client:
            resp = client.get(
                "/api/m3u8-proxy", headers={"Origin": "https://b.example.com"}
            )

        assert resp.status_code == 400
        assert resp.headers["access-control-allow-origin"] == "https://b.example.com"
        assert resp.headers["vary"] == "Origin"

    def test_healthz(self, app_config: AppConfig) -> None:
        with _client(app_config) as client:
            resp = client.get("/api/healthz")

        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}


class TestClientIdentity:
    def test_first_forwarded_address(self, app_config: AppConfig) -> None:
        request = _request({"X-Forwarded-For": " 1.1.1.1 , 2.2.2.2"})
        assert client_identity(request, app_config) == "1.1.1.1"

    def test_falls_back_to_peer(self, app_config: AppConfig) -> None:
        assert client_identity(_request(), app_config) == "9.9.9.9"

    def test_unknown_without_peer_fallback(self, app_config: AppConfig) -> None:
        config = app_config.model_copy(update={"rate_limit_peer_fallback": False})
        assert client_identity(_request(), config) == UNKNOWN_CLIENT

    def test_unknown_without_peer(self, app_config: AppConfig) -> None:
        assert client_identity(_request(client=None), app_config) == UNKNOWN_CLIENT

    def test_custom_header(self, app_config: AppConfig) -> None:
        config = app_config.model_copy(update={"client_ip_header": "X-Real-IP"})
        request = _request({"X-Real-IP": "5.5.5.5", "X-Forwarded-For": "6.6.6.6"})
        assert client_identity(request, config) == "5.5.5.5"


class TestCorsHeaders:
    def test_wildcard(self) -> None:
        headers = cors_headers(_request({"Origin": "https://x.example"}), ["*"])
        assert headers["Access-Control-Allow-Origin"] == "*"
        assert "Vary" not in headers

    def test_unknown_origin_gets_first_entry(self) -> None:
        headers = cors_headers(
            _request({"Origin": "https://evil.example"}),
            ["https://a.example", "https://b.example"],
        )
        assert headers["Access-Control-Allow-Origin"] == "https://a.example"
