"""
Exception types for the local backend orchestrator.

Initialization failures (credentials, binary, spawn, health) propagate to the
caller. Steady-state deploy failures are caught and logged by the deploy
coordinator, so DeployFailed only escapes when deploy() is called directly.
"""

from __future__ import annotations

from typing import Optional


class OrchestratorError(Exception):
    """Base class for all orchestrator errors."""


class InvalidSecretLength(OrchestratorError):
    """Instance secret does not decode to exactly 32 bytes."""


class InvalidAdminKey(OrchestratorError):
    """Admin key is malformed or does not decrypt with the given secret."""


class UnsupportedPlatform(OrchestratorError):
    """No backend binary is published for this operating system."""


class AssetNotFound(OrchestratorError):
    """No release in the index carries an asset for the platform target."""


class DownloadFailed(OrchestratorError):
    """Fetching the release index or the archive failed."""


class ExtractionFailed(OrchestratorError):
    """The downloaded archive could not be unpacked."""


class HealthCheckTimeout(OrchestratorError):
    """The backend did not answer its health endpoint before the deadline."""

    def __init__(self, url: str, timeout: float):
        super().__init__(f"Timed out after {timeout:.1f}s waiting for {url} to become ready")
        self.url = url
        self.timeout = timeout


class ProcessStartFailed(OrchestratorError):
    """The backend process has no OS process identifier."""


class DeployFailed(OrchestratorError):
    """The deploy subcommand could not be spawned, timed out, or exited non-zero."""

    def __init__(self, message: str, output: str = "", exit_code: Optional[int] = None):
        super().__init__(f"{message}\n{output}" if output else message)
        self.output = output
        self.exit_code = exit_code


class BackendNotStarted(OrchestratorError):
    """A control-plane or deploy operation was attempted before a port was assigned."""


class ControlPlaneError(OrchestratorError):
    """The backend rejected a control-plane request or answered with a malformed body."""

    def __init__(self, operation: str, status: int, body: str):
        super().__init__(f"{operation} failed ({status}): {body}")
        self.operation = operation
        self.status = status
        self.body = body


class StartupError(OrchestratorError):
    """A fatal failure during the post-spawn startup sequence."""


__all__ = [
    "OrchestratorError",
    "InvalidSecretLength",
    "InvalidAdminKey",
    "UnsupportedPlatform",
    "AssetNotFound",
    "DownloadFailed",
    "ExtractionFailed",
    "HealthCheckTimeout",
    "ProcessStartFailed",
    "DeployFailed",
    "BackendNotStarted",
    "ControlPlaneError",
    "StartupError",
]
