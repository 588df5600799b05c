"""Pytest configuration and fixtures for tailscalesd tests."""
from __future__ import annotations

import asyncio

from collections.abc import Sequence
from typing import Any

import pytest

from tailscalesd.discovery.devices import Device


class FakeDiscoverer:
    """Deterministic Discoverer that counts upstream calls.

    Each call takes the next queued outcome: a device list is returned, an
    exception is raised. When a gate is set, calls block on it first.
    """

    def __init__(self, *outcomes: Sequence[Device] | BaseException) -> None:
        self.outcomes: list[Sequence[Device] | BaseException] = list(outcomes)
        self.calls: int = 0
        self.gate: asyncio.Event | None = None
        self.started: asyncio.Event = asyncio.Event()
        self.closed: bool = False

    async def devices(self) -> Sequence[Device]:
        self.calls += 1
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return list(outcome)

    async def aclose(self) -> None:
        self.closed = True


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 1000.0) -> None:
        self.now: float = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def alpha() -> Device:
    """Device from the public API, already stamped."""
    return Device(
        id="n1",
        name="alpha.example.ts.net",
        hostname="alpha",
        addresses=["100.64.0.1", "fd7a:115c:a1e0::1"],
        os="linux",
        authorized=True,
        clientVersion="1.56.1",
        tags=["tag:server", "tag:prod"],
        api="api.example.com",
        tailnet="t1",
    )


@pytest.fixture
def beta() -> Device:
    return Device(
        id="n2",
        name="beta.example.ts.net",
        hostname="beta",
        addresses=["100.64.0.2"],
        os="macOS",
        api="api.example.com",
        tailnet="t1",
    )


@pytest.fixture
def sample_devices_response() -> dict[str, Any]:
    """Sample public API device listing."""
    return {
        "devices": [
            {
                "addresses": ["100.64.0.1", "fd7a:115c:a1e0::1"],
                "authorized": True,
                "blocksIncomingConnections": False,
                "clientVersion": "1.56.1-t0123456789",
                "created": "2023-01-10T17:13:13Z",
                "expires": "2023-07-09T17:13:13Z",
                "hostname": "alpha",
                "id": "n1",
                "isExternal": False,
                "keyExpiryDisabled": False,
                "lastSeen": "2023-11-27T11:29:19Z",
                "machineKey": "mkey:0123",
                "name": "alpha.example.ts.net",
                "nodeKey": "nodekey:4567",
                "os": "linux",
                "tags": ["tag:server"],
                "updateAvailable": False,
                "user": "admin@example.com",
            },
            {
                "addresses": ["100.64.0.2"],
                "authorized": False,
                "clientVersion": "",
                "hostname": "beta",
                "id": "n2",
                "name": "beta.example.ts.net",
                "os": "windows",
                "tags": None,
            },
        ]
    }


@pytest.fixture
def sample_local_status() -> dict[str, Any]:
    """Sample tailscaled /localapi/v0/status document."""
    return {
        "Version": "1.56.1",
        "BackendState": "Running",
        "MagicDNSSuffix": "example.ts.net",
        "CurrentTailnet": {
            "Name": "example.com",
            "MagicDNSSuffix": "example.ts.net",
            "MagicDNSEnabled": True,
        },
        "Self": {
            "ID": "nSelf",
            "HostName": "gamma",
            "DNSName": "gamma.example.ts.net.",
            "OS": "linux",
            "TailscaleIPs": ["100.64.0.3", "fd7a:115c:a1e0::3"],
            "Online": True,
            "LastSeen": "0001-01-01T00:00:00Z",
        },
        "Peer": {
            "nodekey:abcd": {
                "ID": "nPeer",
                "HostName": "delta",
                "DNSName": "delta.example.ts.net.",
                "OS": "windows",
                "TailscaleIPs": ["100.64.0.4"],
                "Tags": ["tag:desktop"],
                "Online": False,
                "LastSeen": "2023-11-27T11:29:19Z",
            },
        },
    }
