"""Container allocation on initialized droplets.

A droplet hosts at most ``container_instance_cap`` containers in total, and
at most ``instance_cap`` containers of each container template. Templates are
tried in configuration order; the first with headroom absorbs as many
containers as it can before the next is tried.

Callers serialize access per fleet; these functions do no locking.
"""

from __future__ import annotations

from skyfleet import naming
from skyfleet.capacity import Scope, allowance, cap_reached, count_active, headroom
from skyfleet.lifecycle import Container, Droplet
from skyfleet.types.config import ContainerTemplate

__all__ = ["allocate", "can_allocate", "release"]


def _template_active(droplet: Droplet, template: ContainerTemplate) -> int:
    scope = Scope.of_container(droplet.fleet, droplet.template.name, template.name)
    return count_active(droplet.containers, scope)


def _droplet_full(droplet: Droplet) -> bool:
    return cap_reached(droplet.template.container_instance_cap, len(droplet.containers))


def can_allocate(droplet: Droplet, label: str | None) -> bool:
    """Whether ``droplet`` could host one more container for ``label``."""
    if not droplet.is_ready or _droplet_full(droplet):
        return False

    return any(
        ct.matches(label) and not cap_reached(ct.instance_cap, _template_active(droplet, ct))
        for ct in droplet.template.containers
    )


def _next_port(droplet: Droplet) -> int:
    taken = {c.ssh_port for c in droplet.containers}
    port = droplet.template.container_starting_ssh_port
    while port in taken:
        port += 1
    return port


def allocate(droplet: Droplet, label: str | None, count: int) -> list[Container]:
    """Place up to ``count`` containers for ``label`` on ``droplet``.

    Returns:
        The containers created, possibly fewer than ``count`` (or none).
    """
    created: list[Container] = []
    if count <= 0 or not droplet.is_ready:
        return created

    t = droplet.template
    for ct in t.containers:
        needed = count - len(created)
        if needed <= 0:
            break
        if not ct.matches(label):
            continue

        n = allowance(
            needed,
            headroom(t.container_instance_cap, len(droplet.containers)),
            headroom(ct.instance_cap, _template_active(droplet, ct)),
        )
        for _ in range(n):
            container = Container(
                name=naming.encode_container(droplet.fleet, t.name, ct.name),
                template=ct,
                droplet=droplet.name,
                ssh_port=_next_port(droplet),
            )
            droplet.attach(container)
            created.append(container)

    return created


def release(droplet: Droplet, container_name: str) -> bool:
    """Remove a finished container, returning its capacity to the droplet."""
    return droplet.detach(container_name) is not None
