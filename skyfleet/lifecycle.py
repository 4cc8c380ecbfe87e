"""Droplet lifecycle state machine.

A ``Droplet`` runs once through::

    not_created -> creating -> created -> initialized -> destroying -> destroyed

and drops to ``failed`` from any step that cannot proceed. Failure is final
for that droplet: the provisioner creates a fresh one (with a new name) on a
later cycle instead of retrying in place. Only an ``initialized`` droplet may
host containers.

Provider, remote shell, clock and sleep are injected so the polling and the
init script handling run against fakes in tests.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum

from loguru import logger
from tenacity import Retrying, retry_if_exception_type, wait_fixed

from skyfleet import naming
from skyfleet.constants import INIT_MARKER, INIT_SCRIPT_MODE, INIT_SCRIPT_PATH
from skyfleet.types.config import ContainerTemplate, DropletTemplate, Timeouts
from skyfleet.types.instance import InstanceInfo, InstanceRequest
from skyfleet.types.protocols import OutputSink, Provider, RemoteShell

__all__ = [
    "TERMINAL_STATES",
    "Container",
    "Droplet",
    "DropletState",
]


class DropletState(StrEnum):
    NOT_CREATED = "not_created"
    CREATING = "creating"
    CREATED = "created"
    INITIALIZED = "initialized"
    DESTROYING = "destroying"
    DESTROYED = "destroyed"
    FAILED = "failed"


TERMINAL_STATES = frozenset({DropletState.DESTROYED, DropletState.FAILED})


@dataclass(frozen=True, slots=True)
class Container:
    """A unit of work placed on an initialized droplet."""

    name: str
    template: ContainerTemplate
    droplet: str
    ssh_port: int

    @property
    def is_active(self) -> bool:
        return True


class _DropletPendingError(Exception):
    """Droplet not yet active - retry."""


def _ssh_key_ref(key: str) -> int | str:
    """Numeric key ids go over the wire as ints, fingerprints as strings."""
    return int(key) if key.isdigit() else key


class Droplet:
    """One droplet and its containers.

    Args:
        fleet: Name of the owning fleet.
        template: Droplet template to create from.
        provider: Provider API bound to the fleet's token.
        shell: Remote shell used for the init script.
        timeouts: Creation / SSH / init script timing.
        clock: Monotonic clock in seconds.
        sleep: Sleep function used between polls.
        output: Sink for init script output lines. Defaults to the log.
    """

    def __init__(
        self,
        fleet: str,
        template: DropletTemplate,
        provider: Provider,
        shell: RemoteShell,
        *,
        timeouts: Timeouts | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        output: OutputSink | None = None,
    ) -> None:
        self.name = naming.encode_droplet(fleet, template.name)
        self.fleet = fleet
        self.template = template
        self.state = DropletState.NOT_CREATED
        self.droplet_id: int | None = None
        self.ipv4: str | None = None
        self.failure: str | None = None

        self._provider = provider
        self._shell = shell
        self._timeouts = timeouts or Timeouts()
        self._clock = clock
        self._sleep = sleep
        self._log = logger.bind(droplet=self.name)
        self._output = output or self._log.bind(stream="init").info
        self._containers: list[Container] = []

    def __repr__(self) -> str:
        return f"Droplet(name={self.name!r}, state={self.state.value}, id={self.droplet_id})"

    @property
    def is_active(self) -> bool:
        return self.state not in TERMINAL_STATES

    @property
    def is_ready(self) -> bool:
        return self.state is DropletState.INITIALIZED

    @property
    def containers(self) -> tuple[Container, ...]:
        return tuple(self._containers)

    def attach(self, container: Container) -> None:
        self._containers.append(container)

    def detach(self, container_name: str) -> Container | None:
        for i, c in enumerate(self._containers):
            if c.name == container_name:
                return self._containers.pop(i)
        return None

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def initialize(self) -> bool:
        """Drive the droplet as far as ``initialized``.

        Returns:
            True if the droplet is ready to host containers.
        """
        self.create()
        self.wait_until_created()
        self.run_init_script()
        return self.is_ready

    def create(self) -> None:
        """not_created -> creating, or failed if the provider rejects it."""
        if self.state is not DropletState.NOT_CREATED:
            return

        t = self.template
        user_data = t.user_data if t.user_data and t.user_data.strip() else None
        request = InstanceRequest(
            name=self.name,
            region=t.region,
            size=t.size,
            image=t.image,
            ssh_keys=(_ssh_key_ref(t.ssh_key_id),),
            user_data=user_data,
        )

        self._log.info(f"Creating droplet (image={t.image}, size={t.size}, region={t.region})")
        try:
            info = self._provider.create_instance(request)
        except Exception as e:
            self._fail(f"couldn't create droplet: {e}")
            return

        self.droplet_id = info.id
        self._transition(DropletState.CREATING)

    def wait_until_created(self) -> None:
        """creating -> created once active with an address, else failed."""
        if self.state is not DropletState.CREATING:
            return
        assert self.droplet_id is not None

        timeout = self._timeouts.create
        deadline = self._clock() + timeout

        def check() -> InstanceInfo:
            info = self._provider.get_instance(self.droplet_id)
            if info.status == "new":
                raise _DropletPendingError()
            return info

        try:
            for attempt in Retrying(
                stop=lambda _: self._clock() >= deadline,
                wait=wait_fixed(self._timeouts.poll_interval),
                retry=retry_if_exception_type(_DropletPendingError),
                sleep=self._sleep,
                reraise=True,
            ):
                with attempt:
                    info = check()
        except _DropletPendingError:
            self._fail(f"droplet did not become active within {timeout:.0f}s")
            return
        except Exception as e:
            self._fail(f"status check failed: {e}")
            return

        if info.status != "active":
            self._fail(f"droplet has unexpected status: {info.status}")
            return

        if not info.ipv4:
            self._fail("droplet is active but has no usable address")
            return

        self.ipv4 = info.ipv4
        self._transition(DropletState.CREATED)

    def run_init_script(self) -> None:
        """created -> initialized, running the template's init script if any."""
        if self.state is not DropletState.CREATED:
            return
        assert self.ipv4 is not None

        t = self.template
        if not (t.init_script and t.init_script.strip()):
            self._transition(DropletState.INITIALIZED)
            return

        try:
            session = self._shell.connect(
                self.ipv4,
                t.ssh_port,
                t.username,
                t.ssh_private_key,
                attempts=self._timeouts.ssh_connect_attempts,
            )
        except Exception as e:
            self._fail(f"couldn't connect over SSH: {e}")
            return

        try:
            if session.run(f"test -e {INIT_MARKER}") == 0:
                self._log.info("Init script already ran on this droplet, skipping")
                self._transition(DropletState.INITIALIZED)
                return

            self._log.info("Executing init script")
            session.copy_file(t.init_script.encode("utf-8"), INIT_SCRIPT_PATH, INIT_SCRIPT_MODE)
            code = session.execute(
                INIT_SCRIPT_PATH,
                timeout=self._timeouts.init_script,
                on_output=self._output,
            )
            if code != 0:
                self._fail(f"init script failed: exit code={code}")
                return

            session.run(f"touch {INIT_MARKER}")
            self._transition(DropletState.INITIALIZED)
        except Exception as e:
            self._fail(f"init script failed: {e}")
        finally:
            session.close()

    def retire(self) -> bool:
        """initialized -> destroying, so no further containers land here."""
        if self.state is not DropletState.INITIALIZED:
            return False
        self._transition(DropletState.DESTROYING)
        return True

    def destroy(self) -> None:
        """initialized (or retired) -> destroying -> destroyed."""
        if not self.retire() and self.state is not DropletState.DESTROYING:
            return
        assert self.droplet_id is not None

        try:
            self._provider.destroy_instance(self.droplet_id)
        except Exception as e:
            self._fail(f"couldn't destroy droplet: {e}")
            return

        self._containers.clear()
        self._transition(DropletState.DESTROYED)

    def discard(self) -> bool:
        """Best-effort removal of a failed droplet's remote instance.

        The state stays ``failed``.

        Returns:
            True if a destroy call was issued and succeeded.
        """
        if self.state is not DropletState.FAILED or self.droplet_id is None:
            return False
        try:
            self._provider.destroy_instance(self.droplet_id)
        except Exception as e:
            self._log.warning(f"Couldn't destroy failed droplet {self.droplet_id}: {e}")
            return False
        self._log.info(f"Destroyed failed droplet {self.droplet_id}")
        return True

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _transition(self, state: DropletState) -> None:
        self._log.debug(f"{self.state.value} -> {state.value}")
        self.state = state

    def _fail(self, reason: str) -> None:
        self._log.warning(f"{self.state.value} -> failed: {reason}")
        self.failure = reason
        self.state = DropletState.FAILED
        self._containers.clear()
