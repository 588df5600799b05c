"""
Device model and the Discoverer capability

A Discoverer lists the machines of one tailnet. Concrete discoverers talk to
the public Tailscale API or to the local tailscaled; decorators such as the
rate limiter wrap any Discoverer.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class Device(BaseModel):
    """A machine discovered in a tailnet."""

    model_config = ConfigDict(populate_by_name=True, extra="allow", frozen=True)

    id: str = Field(..., description="Stable device identifier")
    name: str = Field(default="", description="MagicDNS name of the device")
    hostname: str = Field(default="", description="Machine hostname")
    addresses: tuple[str, ...] = Field(
        default=(), description="Tailnet addresses, primary first"
    )
    os: str = Field(default="", description="Operating system")
    authorized: bool = Field(default=False, description="Authorized in the tailnet")
    client_version: str = Field(
        default="", alias="clientVersion", description="Tailscale client version"
    )
    tags: tuple[str, ...] = Field(default=(), description="ACL tags")
    last_seen: datetime | None = Field(
        default=None, alias="lastSeen", description="Last time the device was seen"
    )
    online: bool | None = Field(
        default=None,
        validation_alias=AliasChoices("online", "connectedToControl"),
        description="Whether the device is connected",
    )

    # Stamped by the discoverer that produced the record
    api: str = Field(default="", description="Host of the API that served this device")
    tailnet: str = Field(default="", description="Tailnet the device belongs to")

    @field_validator("addresses", "tags", mode="before")
    @classmethod
    def null_as_empty(cls, v: Any) -> Any:
        """The API sends ``null`` for empty lists."""
        return () if v is None else v

    def stamped(self, api: str, tailnet: str) -> Device:
        """Return a copy attributed to the given API host and tailnet."""
        return self.model_copy(update={"api": api, "tailnet": tailnet})

    @property
    def primary_address(self) -> str:
        """First tailnet address, or an empty string."""
        return self.addresses[0] if self.addresses else ""


class DeviceList(BaseModel):
    """Body of the public API device listing."""

    model_config = ConfigDict(extra="ignore")

    devices: list[Device] = Field(default_factory=list)

    @field_validator("devices", mode="before")
    @classmethod
    def null_as_empty(cls, v: Any) -> Any:
        return [] if v is None else v


@runtime_checkable
class Discoverer(Protocol):
    """Produces the current devices of a tailnet.

    Implementations raise a ``DiscoveryError`` subclass on failure, perform no
    retries and no caching, and must let task cancellation abort their I/O.
    """

    async def devices(self) -> Sequence[Device]:
        ...
