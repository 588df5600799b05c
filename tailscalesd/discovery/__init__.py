"""
tailscalesd Discovery Module

Provides the Device model, the Discoverer capability, its public and local
API implementations, and the rate-limiting decorator.
"""

from .devices import Device, DeviceList, Discoverer
from .errors import (
    DecodeError,
    DiscoveryError,
    RefreshFailed,
    TransportError,
    UpstreamRequestFailed,
)
from .local_api import LOCAL_API_SOCKET, LocalAPIDiscoverer
from .public_api import PUBLIC_API_HOST, PublicAPIDiscoverer
from .rate_limit import RateLimitedDiscoverer

__all__ = [
    "Device",
    "DeviceList",
    "Discoverer",
    "DiscoveryError",
    "UpstreamRequestFailed",
    "TransportError",
    "DecodeError",
    "RefreshFailed",
    "LocalAPIDiscoverer",
    "LOCAL_API_SOCKET",
    "PublicAPIDiscoverer",
    "PUBLIC_API_HOST",
    "RateLimitedDiscoverer",
]
