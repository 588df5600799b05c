"""Tests for the local tailscaled API discoverer."""

from __future__ import annotations

import shutil
import tempfile

from collections.abc import AsyncIterator, Iterator
from pathlib import Path
from typing import Any

import pytest

from aiohttp import web

from tailscalesd.discovery.errors import DecodeError, TransportError, UpstreamRequestFailed
from tailscalesd.discovery.local_api import LOCAL_API_HOST, LocalAPIDiscoverer


class FakeTailscaled:
    """Serves a canned status document."""

    def __init__(self) -> None:
        self.status: int = 200
        self.body: Any = {}
        self.paths: list[str] = []

    async def handle(self, request: web.Request) -> web.Response:
        self.paths.append(request.path)
        if isinstance(self.body, (bytes, str)):
            return web.Response(status=self.status, body=self.body)
        return web.json_response(self.body, status=self.status)


@pytest.fixture
def socket_dir() -> Iterator[Path]:
    # Unix socket paths are length limited, keep them short
    path = Path(tempfile.mkdtemp(prefix="tsd"))
    yield path
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def tailscaled() -> FakeTailscaled:
    return FakeTailscaled()


@pytest.fixture
async def socket_path(socket_dir: Path, tailscaled: FakeTailscaled) -> AsyncIterator[str]:
    app = web.Application()
    app.router.add_get("/localapi/v0/status", tailscaled.handle)
    runner = web.AppRunner(app)
    await runner.setup()
    path = str(socket_dir / "ts.sock")
    site = web.UnixSite(runner, path)
    await site.start()
    yield path
    await runner.cleanup()


@pytest.fixture
async def discoverer(socket_path: str) -> AsyncIterator[LocalAPIDiscoverer]:
    discoverer = LocalAPIDiscoverer(socket_path)
    yield discoverer
    await discoverer.aclose()


class TestLocalAPIDiscoverer:

    @pytest.mark.asyncio
    async def test_self_and_peers_are_listed(
        self,
        discoverer: LocalAPIDiscoverer,
        tailscaled: FakeTailscaled,
        sample_local_status: dict[str, Any],
    ):
        tailscaled.body = sample_local_status

        devices = await discoverer.devices()

        assert tailscaled.paths == ["/localapi/v0/status"]
        assert [d.id for d in devices] == ["nSelf", "nPeer"]
        gamma, delta = devices
        assert gamma.name == "gamma.example.ts.net"
        assert gamma.hostname == "gamma"
        assert gamma.addresses == ("100.64.0.3", "fd7a:115c:a1e0::3")
        assert gamma.online is True
        assert gamma.tags == ()
        assert delta.tags == ("tag:desktop",)
        assert delta.online is False
        assert delta.os == "windows"
        assert delta.last_seen is not None
        assert all(d.api == LOCAL_API_HOST for d in devices)
        assert all(d.tailnet == "example.com" for d in devices)

    @pytest.mark.asyncio
    async def test_tailnet_falls_back_to_dns_suffix(
        self,
        discoverer: LocalAPIDiscoverer,
        tailscaled: FakeTailscaled,
        sample_local_status: dict[str, Any],
    ):
        del sample_local_status["CurrentTailnet"]
        tailscaled.body = sample_local_status

        devices = await discoverer.devices()

        assert all(d.tailnet == "example.ts.net" for d in devices)

    @pytest.mark.asyncio
    async def test_no_peers(self, discoverer: LocalAPIDiscoverer, tailscaled: FakeTailscaled):
        tailscaled.body = {"Self": {"ID": "n1", "HostName": "solo"}, "Peer": None}

        devices = await discoverer.devices()

        assert [d.hostname for d in devices] == ["solo"]

    @pytest.mark.asyncio
    async def test_error_status(self, discoverer: LocalAPIDiscoverer, tailscaled: FakeTailscaled):
        tailscaled.status = 403
        tailscaled.body = "access denied"

        with pytest.raises(UpstreamRequestFailed) as exc_info:
            await discoverer.devices()

        assert exc_info.value.status == 403

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "body",
        [
            b"{",
            b"[1, 2]",
            b'{"Peer": {"k": {"TailscaleIPs": 7}}}',
            b'{"Peer": [{"ID": "x"}]}',
            b'{"CurrentTailnet": "oops"}',
            b'{"CurrentTailnet": {"Name": 5}}',
            b'{"Self": "n1"}',
        ],
    )
    async def test_malformed_status(
        self, body: bytes, discoverer: LocalAPIDiscoverer, tailscaled: FakeTailscaled
    ):
        tailscaled.body = body

        with pytest.raises(DecodeError):
            await discoverer.devices()

    @pytest.mark.asyncio
    async def test_missing_socket(self, socket_dir: Path):
        discoverer = LocalAPIDiscoverer(str(socket_dir / "missing.sock"))
        try:
            with pytest.raises(TransportError):
                await discoverer.devices()
        finally:
            await discoverer.aclose()
