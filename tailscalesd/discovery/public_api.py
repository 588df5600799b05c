"""
Public Tailscale API discoverer

Lists the devices of a tailnet through the Tailscale control plane API.
"""

from __future__ import annotations

import asyncio
import base64

import aiohttp
import structlog

from pydantic import ValidationError

from tailscalesd.discovery.devices import Device, DeviceList
from tailscalesd.discovery.errors import DecodeError, TransportError, UpstreamRequestFailed

logger = structlog.get_logger(__name__)

PUBLIC_API_HOST = "api.tailscale.com"


def default_timeout() -> aiohttp.ClientTimeout:
    """Timeouts applied by the session this module creates itself.

    ``connect`` covers connection establishment including the TLS handshake.
    """
    return aiohttp.ClientTimeout(total=10, connect=5, sock_connect=5)


def basic_authorization(token: str) -> str:
    """Authorization header value sending the token as the basic-auth user."""
    credentials = base64.b64encode(f"{token}:".encode()).decode("ascii")
    return f"Basic {credentials}"


class PublicAPIDiscoverer:
    """Polls the public Tailscale API for the devices in a tailnet."""

    def __init__(
        self,
        tailnet: str,
        token: str,
        *,
        api_host: str = PUBLIC_API_HOST,
        scheme: str = "https",
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        """
        Initialize the discoverer.

        Args:
            tailnet: Tailnet name
            token: Tailscale API access token
            api_host: API host (and optional port) to query
            scheme: URL scheme used to reach the API
            session: Shared client session; it is not closed by this object
        """
        self.tailnet: str = tailnet
        self.api_host: str = api_host
        self.scheme: str = scheme
        self._headers: dict[str, str] = {"Authorization": basic_authorization(token)}
        self._session: aiohttp.ClientSession | None = session
        self._owns_session: bool = session is None

    def __repr__(self) -> str:
        return f"PublicAPIDiscoverer(tailnet={self.tailnet!r}, api_host={self.api_host!r})"

    @property
    def url(self) -> str:
        return f"{self.scheme}://{self.api_host}/api/v2/tailnet/{self.tailnet}/devices"

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=default_timeout())
            self._owns_session = True
        return self._session

    async def devices(self) -> list[Device]:
        """Fetch the devices of the tailnet.

        Returns:
            Devices stamped with the API host and tailnet

        Raises:
            UpstreamRequestFailed: The API answered with a non-2xx status
            TransportError: The API could not be reached in time
            DecodeError: The response body was not a device listing
        """
        session = self._get_session()
        try:
            async with session.get(self.url, headers=self._headers) as response:
                if response.status // 100 != 2:
                    raise UpstreamRequestFailed(response.status, response.reason or "")
                body = await response.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(f"{e.__class__.__name__}: {e}") from e

        try:
            listing = DeviceList.model_validate_json(body)
        except ValidationError as e:
            raise DecodeError(
                f"invalid device listing: {e.error_count()} validation errors"
            ) from e

        devices = [d.stamped(self.api_host, self.tailnet) for d in listing.devices]
        logger.debug(
            "Retrieved devices from public API",
            tailnet=self.tailnet,
            api=self.api_host,
            count=len(devices),
        )
        return devices

    async def aclose(self) -> None:
        """Close the client session if this discoverer created it."""
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None
