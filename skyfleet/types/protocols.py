"""Protocols for the collaborators the provisioner drives.

The provider API and the remote shell are injected, so the lifecycle and the
provisioner can be exercised against fakes.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from skyfleet.types.instance import InstanceInfo, InstanceRequest

__all__ = [
    "OutputSink",
    "Provider",
    "RemoteShell",
    "Session",
]

type OutputSink = Callable[[str], None]


@runtime_checkable
class Provider(Protocol):
    """Cloud provider API, bound to one credential.

    Implementations raise ProviderError on failure.
    """

    def list_instances(self) -> list[InstanceInfo]: ...

    def create_instance(self, request: InstanceRequest) -> InstanceInfo: ...

    def get_instance(self, instance_id: int) -> InstanceInfo: ...

    def destroy_instance(self, instance_id: int) -> None: ...


class Session(Protocol):
    """An authenticated remote shell session."""

    def run(self, command: str, timeout: float | None = None) -> int:
        """Run a command and return its exit status."""
        ...

    def copy_file(self, content: bytes, remote_path: str, mode: int) -> None: ...

    def execute(self, command: str, *, timeout: float, on_output: OutputSink) -> int:
        """Run a command under a PTY, streaming output lines to ``on_output``.

        Raises:
            ConnectionLostError: If the channel closes before an exit status.
            CommandTimeoutError: If no exit status arrives within ``timeout``.
        """
        ...

    def close(self) -> None: ...


@runtime_checkable
class RemoteShell(Protocol):
    """Factory for remote sessions."""

    def connect(
        self,
        host: str,
        port: int,
        username: str,
        private_key: str,
        *,
        attempts: int,
    ) -> Session:
        """Connect, retrying up to ``attempts`` times.

        Raises:
            SSHConnectionError: If every attempt fails.
        """
        ...
