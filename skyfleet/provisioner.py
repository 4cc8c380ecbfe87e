"""Capacity-aware provisioning for one fleet.

The host scheduler calls ``Provisioner.provision(label, excess_workload)``
whenever workloads requesting ``label`` are waiting. The provisioner first
places containers on droplets that are already initialized, then creates new
droplets for whatever remains, never exceeding the fleet, template or
per-droplet container caps.

Concurrency: the registry's lock is the fleet mutex. It guards every cap check
together with the create call (or container placement) that follows it, and
provisioners sharing a registry share it. The lock is released while a new
droplet waits to become active and runs its init script. Before each further
create the caps are checked again under the lock, against the tracked droplets
plus the untracked instances of the latest provider listing, so callers that
interleave during a wait cannot overshoot a local or remote cap.

Example:
    >>> provisioner = Provisioner.from_config(resolve_fleet("ci"))
    >>> pending = provisioner.provision("linux", excess_workload=3)
    >>> [p.name for p in pending]
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum

from loguru import logger

from skyfleet import allocator
from skyfleet.capacity import Scope, cap_reached, count_active, headroom
from skyfleet.lifecycle import Container, Droplet, DropletState
from skyfleet.registry import DropletRegistry
from skyfleet.types.config import DropletTemplate, FleetConfig
from skyfleet.types.instance import InstanceInfo
from skyfleet.types.protocols import OutputSink, Provider, RemoteShell

__all__ = [
    "Candidates",
    "PendingResource",
    "Provisioner",
    "Refusal",
    "RemoteBudget",
]


class Refusal(StrEnum):
    """Why a provisioning request cannot be served (not an error)."""

    FLEET_CAP = "fleet_cap"
    NO_TEMPLATE = "no_template"
    REMOTE_UNAVAILABLE = "remote_unavailable"
    REMOTE_FLEET_CAP = "remote_fleet_cap"
    REMOTE_TEMPLATE_CAP = "remote_template_cap"


@dataclass(frozen=True, slots=True)
class PendingResource:
    """A container handed to the scheduler, with the workload it absorbs."""

    container: Container
    count: int = 1

    @property
    def name(self) -> str:
        return self.container.name

    @property
    def droplet(self) -> str:
        return self.container.droplet


@dataclass(frozen=True, slots=True)
class Candidates:
    """Templates that can serve a label, based on local state."""

    reuse: tuple[DropletTemplate, ...] = ()
    create: tuple[DropletTemplate, ...] = ()
    refusal: Refusal | None = None


@dataclass(frozen=True, slots=True)
class RemoteBudget:
    """Templates still below their caps according to the provider."""

    templates: tuple[tuple[DropletTemplate, int], ...] = ()
    allowed: int = 0
    refusal: Refusal | None = None


class Provisioner:
    """Creates droplets and places containers for one fleet.

    Args:
        fleet: Fleet configuration.
        provider: Provider API bound to the fleet's token.
        shell: Remote shell for init scripts.
        registry: Droplets this fleet owns, and the fleet mutex. A fresh one
            by default.
        clock: Monotonic clock handed to droplets.
        sleep: Sleep handed to droplets.
        output: Sink for init script output.
    """

    def __init__(
        self,
        fleet: FleetConfig,
        provider: Provider,
        shell: RemoteShell,
        *,
        registry: DropletRegistry | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        output: OutputSink | None = None,
    ) -> None:
        self.fleet = fleet
        self.registry = registry if registry is not None else DropletRegistry()
        self._provider = provider
        self._shell = shell
        self._clock = clock
        self._sleep = sleep
        self._output = output
        self._lock = self.registry.lock
        self._log = logger.bind(fleet=fleet.name)

    @classmethod
    def from_config(cls, fleet: FleetConfig, **kwargs) -> Provisioner:
        """Build a provisioner backed by DigitalOcean and paramiko."""
        from skyfleet.providers.digitalocean import DigitalOceanClient
        from skyfleet.providers.ssh import ParamikoShell

        shell = ParamikoShell(
            connect_timeout=fleet.timeouts.ssh_connect_timeout,
            retry_delay=fleet.timeouts.ssh_retry_delay,
        )
        return cls(fleet, DigitalOceanClient(fleet.token), shell, **kwargs)

    # -------------------------------------------------------------------------
    # Scheduler boundary
    # -------------------------------------------------------------------------

    def provision(self, label: str | None, excess_workload: int) -> list[PendingResource]:
        """Provide capacity for up to ``excess_workload`` units of ``label``.

        Returns:
            The containers placed, possibly fewer than requested. Failures are
            logged and reduce the result; they never raise.
        """
        pending: list[PendingResource] = []

        with self._lock:
            candidates = self._local_candidates(label)
            if candidates.refusal is not None:
                self._refuse(candidates.refusal, label)
                return pending

            for template in candidates.reuse:
                if excess_workload <= 0:
                    break
                placed = self._place_on_existing(template, label, excess_workload)
                pending.extend(placed)
                excess_workload -= len(placed)

            if excess_workload <= 0 or not candidates.create:
                return pending

            self._log.info(f"Need new droplets to provision for label {label!r}")
            budget = self._remote_budget(candidates.create)
            if budget.refusal is not None:
                self._refuse(budget.refusal, label)
                return pending

        allowed = budget.allowed
        for template, template_allowed in budget.templates:
            if excess_workload <= 0 or allowed <= 0:
                break
            placed, launched = self._provision_new(
                template, label, excess_workload, min(allowed, template_allowed),
            )
            pending.extend(placed)
            excess_workload -= len(placed)
            allowed -= launched

        self._log.info(f"Provisioned {len(pending)} containers for label {label!r}")
        return pending

    def can_provision(self, label: str | None) -> bool:
        """Whether ``provision`` could currently serve ``label``.

        Checks local state first and only asks the provider when a new
        droplet would be needed. Creates nothing.
        """
        with self._lock:
            candidates = self._local_candidates(label)
            if candidates.refusal is not None:
                self._refuse(candidates.refusal, label)
                return False
            if candidates.reuse:
                self._log.info(f"Can provision for label {label!r} on an existing droplet")
                return True

            budget = self._remote_budget(candidates.create)
            if budget.refusal is not None:
                self._refuse(budget.refusal, label)
                return False
            return True

    def release(self, resource: PendingResource | str) -> bool:
        """Free a container once its workload completed."""
        name = resource.name if isinstance(resource, PendingResource) else resource
        with self._lock:
            droplet = self.registry.find_container(name)
            if droplet is None:
                return False
            return allocator.release(droplet, name)

    def terminate(self, droplet_name: str) -> bool:
        """Destroy an initialized droplet and forget it.

        The droplet is retired under the lock first, so a concurrent
        ``provision`` can no longer place containers on it, while it still
        counts against the caps until the provider confirms the destroy.

        Returns:
            True if the droplet reached ``destroyed``.
        """
        with self._lock:
            droplet = self.registry.get(droplet_name)
            if droplet is None or not droplet.retire():
                return False

        droplet.destroy()
        with self._lock:
            self.registry.remove(droplet.name)
        if droplet.state is DropletState.DESTROYED:
            return True
        self._discard(droplet)
        return False

    def prune(self) -> list[Droplet]:
        """Forget droplets in a terminal state."""
        with self._lock:
            return self.registry.prune()

    @property
    def droplets(self) -> tuple[Droplet, ...]:
        return self.registry.snapshot()

    # -------------------------------------------------------------------------
    # Decisions
    # -------------------------------------------------------------------------

    def _local_candidates(self, label: str | None) -> Candidates:
        fleet = self.fleet
        if cap_reached(fleet.instance_cap, self.registry.count_active(Scope.of_fleet(fleet.name))):
            return Candidates(refusal=Refusal.FLEET_CAP)

        reuse: list[DropletTemplate] = []
        create: list[DropletTemplate] = []
        for t in fleet.templates:
            if any(allocator.can_allocate(d, label) for d in self.registry.ready(fleet.name, t.name)):
                reuse.append(t)

            local = self.registry.count_active(Scope.of_template(fleet.name, t.name))
            if not cap_reached(t.instance_cap, local) and t.serves(label):
                create.append(t)

        if not reuse and not create:
            return Candidates(refusal=Refusal.NO_TEMPLATE)
        return Candidates(reuse=tuple(reuse), create=tuple(create))

    def _remote_budget(self, templates: tuple[DropletTemplate, ...]) -> RemoteBudget:
        fleet = self.fleet
        try:
            instances: list[InstanceInfo] = self._provider.list_instances()
        except Exception as e:
            self._log.warning(f"Couldn't list droplets: {e}")
            return RemoteBudget(refusal=Refusal.REMOTE_UNAVAILABLE)
        self.registry.observe(instances)

        remote = count_active(instances, Scope.of_fleet(fleet.name))
        if cap_reached(fleet.instance_cap, remote):
            return RemoteBudget(refusal=Refusal.REMOTE_FLEET_CAP)

        surviving: list[tuple[DropletTemplate, int]] = []
        for t in templates:
            active = count_active(instances, Scope.of_template(fleet.name, t.name))
            if not cap_reached(t.instance_cap, active):
                surviving.append((t, headroom(t.instance_cap, active)))

        if not surviving:
            return RemoteBudget(refusal=Refusal.REMOTE_TEMPLATE_CAP)
        return RemoteBudget(
            templates=tuple(surviving),
            allowed=headroom(fleet.instance_cap, remote),
        )

    def _refuse(self, refusal: Refusal, label: str | None) -> None:
        self._log.info(f"Can't provision for label {label!r}: {refusal.value}")

    # -------------------------------------------------------------------------
    # Placement
    # -------------------------------------------------------------------------

    def _place_on_existing(
        self, template: DropletTemplate, label: str | None, needed: int,
    ) -> list[PendingResource]:
        placed: list[PendingResource] = []
        for droplet in self.registry.ready(self.fleet.name, template.name):
            if len(placed) >= needed:
                break
            containers = allocator.allocate(droplet, label, needed - len(placed))
            placed.extend(PendingResource(c) for c in containers)
        return placed

    def _provision_new(
        self,
        template: DropletTemplate,
        label: str | None,
        needed: int,
        allowed: int,
    ) -> tuple[list[PendingResource], int]:
        """Create droplets from ``template`` until ``needed`` is covered.

        Returns:
            The containers placed and the number of droplets created.
        """
        placed: list[PendingResource] = []
        launched = 0

        while len(placed) < needed and launched < allowed:
            droplet = self._launch(template)
            if droplet is None:
                break
            launched += 1

            droplet.wait_until_created()
            droplet.run_init_script()
            if not droplet.is_ready:
                # Not retried within this call; a later cycle gets a fresh droplet.
                self._discard(droplet)
                break

            with self._lock:
                containers = allocator.allocate(droplet, label, needed - len(placed))
            if not containers:
                break
            placed.extend(PendingResource(c) for c in containers)

        return placed, launched

    def _launch(self, template: DropletTemplate) -> Droplet | None:
        """Re-check the caps and issue the create call, under the lock."""
        fleet = self.fleet
        with self._lock:
            if cap_reached(fleet.instance_cap, self.registry.count_known(Scope.of_fleet(fleet.name))):
                return None
            known = self.registry.count_known(Scope.of_template(fleet.name, template.name))
            if cap_reached(template.instance_cap, known):
                return None

            droplet = Droplet(
                fleet.name,
                template,
                self._provider,
                self._shell,
                timeouts=fleet.timeouts,
                clock=self._clock,
                sleep=self._sleep,
                output=self._output,
            )
            droplet.create()
            if droplet.state is DropletState.FAILED:
                return droplet
            self.registry.add(droplet)
            return droplet

    def _discard(self, droplet: Droplet) -> None:
        with self._lock:
            self.registry.remove(droplet.name)
        if self.fleet.destroy_failed:
            droplet.discard()
