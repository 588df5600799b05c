"""
Rate-limited, caching Discoverer decorator

Wraps any Discoverer so the upstream is polled at most once per interval.
Between polls the last successful result is served from memory. When the
cached result has expired, concurrent callers share one in-flight refresh
instead of each polling the upstream.
"""

from __future__ import annotations

import asyncio
import time

from collections.abc import Callable, Sequence
from datetime import timedelta

import structlog

from tailscalesd.discovery.devices import Device, Discoverer
from tailscalesd.discovery.errors import RefreshFailed

logger = structlog.get_logger(__name__)

Snapshot = tuple[Device, ...]


def _interval_seconds(interval: timedelta | float | None) -> float:
    if interval is None:
        return 0.0
    if isinstance(interval, timedelta):
        interval = interval.total_seconds()
    return max(0.0, float(interval))


class RateLimitedDiscoverer:
    """Serves cached devices between upstream polls.

    The interval is a floor, not a schedule: nothing refreshes in the
    background, refreshes happen when a caller asks for expired data.

    A failed refresh is reported to every caller that waited on it as
    ``RefreshFailed`` and leaves the previous snapshot and its timestamp in
    place. An expired snapshot is never served, so the next call retries.
    """

    def __init__(
        self,
        discoverer: Discoverer,
        interval: timedelta | float | None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the rate limiter.

        Args:
            discoverer: Discoverer to poll
            interval: Minimum time between upstream polls; negative or None means zero
            clock: Monotonic clock in seconds
        """
        self.discoverer: Discoverer = discoverer
        self.interval: float = _interval_seconds(interval)
        self._clock = clock

        self._lock = asyncio.Lock()
        self._snapshot: Snapshot | None = None
        self._fetched_at: float | None = None
        self._refresh: asyncio.Task[Snapshot] | None = None

    def __repr__(self) -> str:
        return f"RateLimitedDiscoverer({self.discoverer!r}, interval={self.interval}s)"

    @property
    def snapshot(self) -> Snapshot | None:
        """Last successfully fetched devices, regardless of age."""
        return self._snapshot

    def _is_fresh(self) -> bool:
        if self._snapshot is None or self._fetched_at is None:
            return False
        return self._clock() - self._fetched_at < self.interval

    async def devices(self) -> Snapshot:
        """Return the cached devices, refreshing them if they have expired.

        Raises:
            RefreshFailed: The refresh this call took part in failed
        """
        async with self._lock:
            if self._is_fresh():
                return self._snapshot  # type: ignore[return-value]

            refresh = self._refresh
            if refresh is None:
                refresh = asyncio.create_task(self._poll())
                refresh.add_done_callback(self._on_refresh_done)
                self._refresh = refresh

        # Cancelling this caller must not cancel a refresh others wait on
        try:
            return await asyncio.shield(refresh)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise RefreshFailed(e) from e

    async def _poll(self) -> Snapshot:
        """Poll the wrapped discoverer and commit the result."""
        started = self._clock()
        try:
            devices: Snapshot = tuple(await self.discoverer.devices())
        except BaseException:
            async with self._lock:
                self._refresh = None
            raise

        async with self._lock:
            self._snapshot = devices
            self._fetched_at = self._clock()
            self._refresh = None

        logger.info(
            "Refreshed devices",
            count=len(devices),
            duration=round(self._clock() - started, 3),
        )
        return devices

    def _on_refresh_done(self, task: asyncio.Task[Snapshot]) -> None:
        if task.cancelled():
            logger.warning("Device refresh cancelled")
            return
        error = task.exception()
        if error is not None:
            logger.error(
                "Device refresh failed",
                error=f"{error.__class__.__name__}: {error}",
            )

    async def aclose(self) -> None:
        """Cancel an in-flight refresh and close the wrapped discoverer."""
        refresh = self._refresh
        if refresh is not None and not refresh.done():
            refresh.cancel()
        aclose = getattr(self.discoverer, "aclose", None)
        if aclose is not None:
            await aclose()
