"""Error taxonomy for the watch-and-reconcile engine."""
from __future__ import annotations


class FwsyncError(Exception):
    """Base error. Carries the service identity when one is known."""

    error_code = "FWSYNC_ERROR"

    def __init__(self, message: str, service: str | None = None):
        self.message = message
        self.service = service
        super().__init__(message)


class ConfigError(FwsyncError):
    """Required startup configuration is missing. Fatal."""

    error_code = "CONFIG_ERROR"


class TransportDisconnected(FwsyncError):
    """The event subscription ended or errored."""

    error_code = "TRANSPORT_DISCONNECTED"


class RemoteUnavailable(FwsyncError):
    """Reading the remote firewall state failed."""

    error_code = "REMOTE_UNAVAILABLE"


class RemoteWriteFailed(FwsyncError):
    """Writing the remote firewall state failed."""

    error_code = "REMOTE_WRITE_FAILED"


class MalformedSnapshot(FwsyncError):
    """An event object could not be read as a service at all."""

    error_code = "MALFORMED_SNAPSHOT"
