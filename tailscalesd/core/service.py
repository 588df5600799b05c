"""
Main tailscalesd Service

Wires the configured discoverer behind the rate limiter and serves it as a
Prometheus HTTP service discovery endpoint.
"""
from __future__ import annotations

import sys

from collections.abc import Sequence

import uvicorn

from fastapi import FastAPI

from tailscalesd.config.logging import configure_logging, get_logger
from tailscalesd.config.settings import ConfigError, Settings, load_settings
from tailscalesd.core.exporter import export
from tailscalesd.discovery import (
    LocalAPIDiscoverer,
    PublicAPIDiscoverer,
    RateLimitedDiscoverer,
)
from tailscalesd.discovery.devices import Discoverer

logger = get_logger(__name__)


def build_discoverer(settings: Settings) -> RateLimitedDiscoverer:
    """Select the backend once and put it behind the rate limiter."""
    backend: Discoverer
    if settings.use_local_api:
        backend = LocalAPIDiscoverer(settings.local_api_socket)
    else:
        backend = PublicAPIDiscoverer(settings.tailnet, settings.token)
    return RateLimitedDiscoverer(backend, settings.poll_limit)


class TailscaleSDService:
    """HTTP service discovery server for one tailnet."""

    def __init__(self, settings: Settings) -> None:
        """
        Initialize the service.

        Args:
            settings: Validated settings
        """
        self.settings: Settings = settings
        self.discoverer: RateLimitedDiscoverer = build_discoverer(settings)
        self.app: FastAPI = export(self.discoverer)

        logger.info(
            "tailscalesd service initialized",
            discoverer=repr(self.discoverer.discoverer),
            poll_limit=str(settings.poll_limit),
        )

    async def stop(self) -> None:
        """Release the discoverer's network resources."""
        try:
            await self.discoverer.aclose()
        except Exception as e:
            logger.error("Error stopping tailscalesd service", error=f"{e.__class__.__name__}: {e}")

    async def run(self) -> None:
        """Serve until uvicorn receives a shutdown signal."""
        config = uvicorn.Config(
            app=self.app,
            host=self.settings.host,
            port=self.settings.port,
            log_config=None,  # We handle logging ourselves
            access_log=False,
        )
        server = uvicorn.Server(config)

        logger.info("Serving Tailscale service discovery", address=self.settings.address)
        try:
            await server.serve()
        except Exception as e:
            logger.error("API server error", error=f"{e.__class__.__name__}: {e}")
            raise
        finally:
            await self.stop()
            logger.info("Done")


async def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point for the tailscalesd service."""
    try:
        settings = load_settings(argv)
        settings.validate()
    except ConfigError as e:
        print(e, file=sys.stderr)
        return 2

    configure_logging(log_level=settings.log_level, json_logs=settings.json_logs)

    service = TailscaleSDService(settings)
    try:
        await service.run()
    except Exception as e:
        logger.error("Failed to run tailscalesd service", error=f"{e.__class__.__name__}: {e}")
        return 1
    return 0
