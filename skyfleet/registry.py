"""In-memory registry of the droplets a fleet created."""

from __future__ import annotations

import threading
from collections.abc import Iterable, Iterator

from skyfleet.capacity import Scope, count_active
from skyfleet.lifecycle import Droplet
from skyfleet.types.instance import InstanceInfo

__all__ = ["DropletRegistry"]


class DropletRegistry:
    """Thread-safe registry of one fleet's droplets.

    Passed to a Provisioner explicitly, never global. Its ``lock`` is the
    fleet mutex: every provisioner handed the same registry serializes its cap
    decisions on it.

    Besides the droplets created here, the registry remembers the active
    instances the provider last reported that it does not track (created by
    another process, or by a previous run). ``count_known`` adds those to the
    local count, so a cap check made between two listings still sees them.
    """

    def __init__(self) -> None:
        self._droplets: dict[str, Droplet] = {}
        self._foreign: tuple[InstanceInfo, ...] = ()
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._droplets)

    def __iter__(self) -> Iterator[Droplet]:
        return iter(self.snapshot())

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._droplets

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    def add(self, droplet: Droplet) -> None:
        with self._lock:
            self._droplets[droplet.name] = droplet

    def remove(self, name: str) -> Droplet | None:
        with self._lock:
            return self._droplets.pop(name, None)

    def get(self, name: str) -> Droplet | None:
        with self._lock:
            return self._droplets.get(name)

    def snapshot(self) -> tuple[Droplet, ...]:
        with self._lock:
            return tuple(self._droplets.values())

    def count_active(self, scope: Scope) -> int:
        return count_active(self.snapshot(), scope)

    def observe(self, instances: Iterable[InstanceInfo]) -> None:
        """Remember the active listed instances this registry doesn't track."""
        with self._lock:
            self._foreign = tuple(
                i for i in instances if i.is_active and i.name not in self._droplets
            )

    def count_known(self, scope: Scope) -> int:
        """Active droplets in ``scope``: tracked ones plus the last listing's others."""
        with self._lock:
            return count_active(self._droplets.values(), scope) + count_active(self._foreign, scope)

    def ready(self, fleet: str, template: str) -> list[Droplet]:
        """Initialized droplets of a template, in creation order."""
        scope = Scope.of_template(fleet, template)
        return [d for d in self.snapshot() if d.is_ready and scope.owns(d.name)]

    def find_container(self, container_name: str) -> Droplet | None:
        """The droplet hosting ``container_name``, if any."""
        for droplet in self.snapshot():
            if any(c.name == container_name for c in droplet.containers):
                return droplet
        return None

    def prune(self) -> list[Droplet]:
        """Drop droplets in a terminal state and return them."""
        with self._lock:
            dead = [d for d in self._droplets.values() if not d.is_active]
            for d in dead:
                del self._droplets[d.name]
            return dead
