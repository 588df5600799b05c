"""
Prometheus HTTP service discovery exporter

Serves the devices of a Discoverer as Prometheus HTTP SD target groups.
"""

from __future__ import annotations

import asyncio

from collections.abc import Awaitable, Iterable
from typing import TypeVar

import structlog

from fastapi import FastAPI, HTTPException, Request, Response
from pydantic import BaseModel, Field

from tailscalesd import __version__
from tailscalesd.discovery.devices import Device, Discoverer
from tailscalesd.discovery.errors import DiscoveryError

logger = structlog.get_logger(__name__)

T = TypeVar("T")

LABEL_META_API = "__meta_tailscale_api"
LABEL_META_TAILNET = "__meta_tailscale_tailnet"
LABEL_META_DEVICE_ID = "__meta_tailscale_device_id"
LABEL_META_DEVICE_NAME = "__meta_tailscale_device_name"
LABEL_META_DEVICE_HOSTNAME = "__meta_tailscale_device_hostname"
LABEL_META_DEVICE_OS = "__meta_tailscale_device_os"
LABEL_META_DEVICE_AUTHORIZED = "__meta_tailscale_device_authorized"
LABEL_META_DEVICE_CLIENT_VERSION = "__meta_tailscale_device_client_version"
LABEL_META_DEVICE_TAGS = "__meta_tailscale_device_tags"
LABEL_META_DEVICE_ONLINE = "__meta_tailscale_device_online"

# Seconds between client disconnect checks while waiting for devices
DISCONNECT_POLL_INTERVAL = 0.25

# Non-standard status logged for requests abandoned by the client
CLIENT_CLOSED_REQUEST = 499


class TargetGroup(BaseModel):
    """One Prometheus HTTP SD target group."""

    targets: list[str] = Field(..., description="Scrape target addresses")
    labels: dict[str, str] = Field(default_factory=dict, description="Target labels")


class ClientDisconnected(Exception):
    """The HTTP client went away before devices were available."""


def _bool_label(value: bool) -> str:
    return "true" if value else "false"


def device_labels(device: Device) -> dict[str, str]:
    """Prometheus meta labels describing a device."""
    labels = {
        LABEL_META_API: device.api,
        LABEL_META_TAILNET: device.tailnet,
        LABEL_META_DEVICE_ID: device.id,
        LABEL_META_DEVICE_NAME: device.name,
        LABEL_META_DEVICE_HOSTNAME: device.hostname,
        LABEL_META_DEVICE_OS: device.os,
        LABEL_META_DEVICE_AUTHORIZED: _bool_label(device.authorized),
        LABEL_META_DEVICE_CLIENT_VERSION: device.client_version,
    }
    if device.tags:
        # Wrapped in separators so relabel regexes can match ",tag:x,"
        labels[LABEL_META_DEVICE_TAGS] = "," + ",".join(device.tags) + ","
    if device.online is not None:
        labels[LABEL_META_DEVICE_ONLINE] = _bool_label(device.online)
    return labels


def translate(devices: Iterable[Device]) -> list[TargetGroup]:
    """Turn devices into target groups, one per addressable device."""
    groups: list[TargetGroup] = []
    for device in devices:
        target = device.primary_address or device.hostname or device.name
        if not target:
            logger.debug("Skipping device without address", device_id=device.id)
            continue
        groups.append(TargetGroup(targets=[target], labels=device_labels(device)))
    return groups


async def _wait_for_disconnect(request: Request) -> None:
    while not await request.is_disconnected():
        await asyncio.sleep(DISCONNECT_POLL_INTERVAL)


async def until_disconnected(request: Request, awaitable: Awaitable[T]) -> T:
    """Await ``awaitable`` unless the client disconnects first.

    Raises:
        ClientDisconnected: The client closed the connection; the awaitable
            was cancelled
    """
    work = asyncio.ensure_future(awaitable)
    watcher = asyncio.ensure_future(_wait_for_disconnect(request))
    try:
        await asyncio.wait({work, watcher}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        work.cancel()
        raise
    finally:
        watcher.cancel()

    if not work.done():
        work.cancel()
        raise ClientDisconnected()
    return work.result()


def export(discoverer: Discoverer) -> FastAPI:
    """Create the HTTP SD application serving ``discoverer``'s devices."""
    app = FastAPI(
        title="tailscalesd",
        description="Prometheus HTTP service discovery for Tailscale",
        version=__version__,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    @app.get("/", response_model=list[TargetGroup])
    async def targets(request: Request):
        """Serve target groups for every discovered device."""
        try:
            devices = await until_disconnected(request, discoverer.devices())
        except ClientDisconnected:
            logger.info("Client disconnected before devices were available")
            return Response(status_code=CLIENT_CLOSED_REQUEST)
        except DiscoveryError as e:
            logger.error(
                "Failed to discover devices",
                error=f"{e.__class__.__name__}: {e}",
            )
            raise HTTPException(status_code=502, detail=e.summary)
        except Exception as e:
            logger.error(
                "Unexpected error discovering devices",
                error=f"{e.__class__.__name__}: {e}",
            )
            raise HTTPException(status_code=500, detail="Failed to discover devices")

        return translate(devices)

    return app
