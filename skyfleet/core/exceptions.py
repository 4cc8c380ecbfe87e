"""Custom exception hierarchy for Skyfleet.

All skyfleet-specific exceptions inherit from SkyfleetError, enabling
users to catch all skyfleet exceptions with a single except clause.

Reaching a capacity cap is not an error and never raises; the
provisioner reports it as an empty or partial result.
"""

from __future__ import annotations


class SkyfleetError(Exception):
    """Base exception for all Skyfleet errors."""


class ConfigurationError(SkyfleetError):
    """Raised for invalid configuration or missing required settings."""


class ProviderError(SkyfleetError):
    """Raised when a cloud provider API call fails."""


class RemoteExecutionError(SkyfleetError):
    """Raised when a remote shell operation fails."""


class SSHConnectionError(RemoteExecutionError):
    """Raised when an SSH connection cannot be established."""

    def __init__(self, host: str, attempts: int, reason: str = "unknown") -> None:
        self.host = host
        self.attempts = attempts
        self.reason = reason
        super().__init__(f"Could not connect to {host} after {attempts} attempts: {reason}")


class ConnectionLostError(RemoteExecutionError):
    """Raised when the connection drops before a command reports its exit status."""

    def __init__(self, host: str, reason: str = "unknown") -> None:
        self.host = host
        self.reason = reason
        super().__init__(f"Connection lost to {host}: {reason}")


class CommandTimeoutError(RemoteExecutionError):
    """Raised when a remote command exceeds its timeout."""

    def __init__(self, command: str, timeout: float) -> None:
        self.command = command
        self.timeout = timeout
        super().__init__(f"Command {command!r} did not finish within {timeout:.0f}s")
