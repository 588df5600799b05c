"""
Local tailscaled API discoverer

Lists tailnet devices from the status document served by the local node's
tailscaled over its Unix domain socket.
"""

from __future__ import annotations

import asyncio
import json

from typing import Any

import aiohttp
import structlog

from pydantic import ValidationError

from tailscalesd.discovery.devices import Device
from tailscalesd.discovery.errors import DecodeError, TransportError, UpstreamRequestFailed

logger = structlog.get_logger(__name__)

LOCAL_API_SOCKET = "/var/run/tailscale/tailscaled.sock"
LOCAL_API_HOST = "localhost"

# tailscaled ignores the host, but requests must carry this one
_STATUS_URL = "http://local-tailscaled.sock/localapi/v0/status"


def _device_from_status(node: dict[str, Any], tailnet: str) -> Device:
    """Build a Device from a ``Self`` or ``Peer`` entry of the status document."""
    return Device(
        id=str(node.get("ID", "")),
        name=(node.get("DNSName") or "").rstrip("."),
        hostname=node.get("HostName", ""),
        addresses=node.get("TailscaleIPs"),
        os=node.get("OS", ""),
        # tailscaled only reports peers this node may talk to
        authorized=True,
        tags=node.get("Tags"),
        online=node.get("Online"),
        lastSeen=node.get("LastSeen"),
        api=LOCAL_API_HOST,
        tailnet=tailnet,
    )


class LocalAPIDiscoverer:
    """Reads tailnet devices from the local tailscaled."""

    def __init__(
        self,
        socket_path: str = LOCAL_API_SOCKET,
        *,
        session: aiohttp.ClientSession | None = None,
        timeout: float = 10,
    ) -> None:
        """
        Initialize the discoverer.

        Args:
            socket_path: Path of the tailscaled Unix domain socket
            session: Session already bound to the socket; it is not closed by this object
            timeout: Total timeout for one status request in seconds
        """
        self.socket_path: str = socket_path
        self.timeout: float = timeout
        self._session: aiohttp.ClientSession | None = session
        self._owns_session: bool = session is None

    def __repr__(self) -> str:
        return f"LocalAPIDiscoverer(socket_path={self.socket_path!r})"

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                connector=aiohttp.UnixConnector(path=self.socket_path),
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            )
            self._owns_session = True
        return self._session

    async def get_status(self) -> dict[str, Any]:
        """Fetch the raw tailscaled status document."""
        session = self._get_session()
        try:
            async with session.get(_STATUS_URL) as response:
                if response.status // 100 != 2:
                    raise UpstreamRequestFailed(response.status, response.reason or "")
                body = await response.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(f"{e.__class__.__name__}: {e}") from e

        try:
            status = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise DecodeError(f"Failed to parse tailscaled status JSON: {e}") from e

        if not isinstance(status, dict):
            raise DecodeError("tailscaled status must be a JSON object")
        return status

    async def devices(self) -> list[Device]:
        """List this node and its peers.

        Raises:
            UpstreamRequestFailed: tailscaled answered with a non-2xx status
            TransportError: The socket could not be reached in time
            DecodeError: The status document was malformed
        """
        status = await self.get_status()

        current = status.get("CurrentTailnet") or {}
        peers = status.get("Peer") or {}
        if not isinstance(current, dict):
            raise DecodeError("tailscaled CurrentTailnet must be a JSON object")
        if not isinstance(peers, dict):
            raise DecodeError("tailscaled Peer must be a JSON object")

        tailnet = current.get("Name") or status.get("MagicDNSSuffix") or ""
        if not isinstance(tailnet, str):
            raise DecodeError("tailscaled tailnet name must be a string")

        nodes: list[dict[str, Any]] = []
        if status.get("Self"):
            nodes.append(status["Self"])
        nodes.extend(peers.values())

        try:
            devices = [_device_from_status(node, tailnet) for node in nodes]
        except (ValidationError, AttributeError, TypeError) as e:
            raise DecodeError(f"invalid tailscaled node entry: {e.__class__.__name__}") from e

        logger.debug(
            "Retrieved devices from local API",
            tailnet=tailnet,
            socket=self.socket_path,
            count=len(devices),
        )
        return devices

    async def aclose(self) -> None:
        """Close the client session if this discoverer created it."""
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None
