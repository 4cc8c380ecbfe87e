"""Capacity accounting across the fleet / template / container hierarchy.

A single counter serves every level and both views: the local view (droplets
and containers held in memory) and the remote view (instances listed by the
provider). Ownership is read from resource names, see ``skyfleet.naming``.
"""

from __future__ import annotations

import sys
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Protocol

from skyfleet import naming

__all__ = [
    "UNLIMITED",
    "Counted",
    "Scope",
    "allowance",
    "cap_reached",
    "count_active",
    "headroom",
]

UNLIMITED = sys.maxsize
"""Headroom of a scope whose cap is 0."""


class Counted(Protocol):
    @property
    def name(self) -> str: ...

    @property
    def is_active(self) -> bool: ...


@dataclass(frozen=True, slots=True)
class Scope:
    """A level of the ownership hierarchy.

    Fleet and template scopes own droplet names; a container scope owns
    container names.
    """

    fleet: str
    template: str | None = None
    container_template: str | None = None

    @classmethod
    def of_fleet(cls, fleet: str) -> Scope:
        return cls(fleet)

    @classmethod
    def of_template(cls, fleet: str, template: str) -> Scope:
        return cls(fleet, template)

    @classmethod
    def of_container(cls, fleet: str, template: str, container_template: str) -> Scope:
        return cls(fleet, template, container_template)

    def owns(self, name: str) -> bool:
        match self:
            case Scope(template=None):
                return naming.belongs_to_fleet(name, self.fleet)
            case Scope(template=str(template), container_template=None):
                return naming.belongs_to_template(name, self.fleet, template)
            case Scope(template=str(template), container_template=str(container)):
                return naming.belongs_to_container_template(name, self.fleet, template, container)
        return False


def count_active(resources: Iterable[Counted], scope: Scope) -> int:
    """Count active resources owned by ``scope``."""
    return sum(1 for r in resources if r.is_active and scope.owns(r.name))


def cap_reached(cap: int, active: int) -> bool:
    return cap != 0 and active >= cap


def headroom(cap: int, active: int) -> int:
    """Remaining capacity under ``cap``; UNLIMITED when cap is 0."""
    if cap == 0:
        return UNLIMITED
    return max(cap - active, 0)


def allowance(requested: int, *headrooms: int) -> int:
    """How many units may be created, bounded by every enclosing level.

    Headrooms are given outermost first; the result never exceeds any of them.
    """
    return max(min((requested, *headrooms)), 0)
