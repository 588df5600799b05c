"""Errors raised by discoverers and the rate limiter."""

from __future__ import annotations


class DiscoveryError(Exception):
    """Base class for device discovery failures."""

    #: Short description safe to show to HTTP clients.
    summary: str = "device discovery failed"


class UpstreamRequestFailed(DiscoveryError):
    """The upstream API answered with a non-success status."""

    def __init__(self, status: int, reason: str = "") -> None:
        self.status: int = status
        self.reason: str = reason
        super().__init__(f"failed request: {status} {reason}".rstrip())

    @property
    def summary(self) -> str:  # type: ignore[override]
        return f"upstream request failed with status {self.status}"


class TransportError(DiscoveryError):
    """The upstream API could not be reached."""

    summary = "upstream API unreachable"


class DecodeError(DiscoveryError):
    """The upstream API returned a body that could not be decoded."""

    summary = "upstream API returned an invalid response"


class RefreshFailed(DiscoveryError):
    """A rate-limited refresh failed.

    Every caller that took part in the same refresh receives its own
    ``RefreshFailed`` with the same ``cause``.
    """

    def __init__(self, cause: BaseException) -> None:
        self.cause: BaseException = cause
        super().__init__(f"device refresh failed: {cause.__class__.__name__}: {cause}")

    @property
    def summary(self) -> str:  # type: ignore[override]
        if isinstance(self.cause, DiscoveryError):
            return self.cause.summary
        return DiscoveryError.summary
