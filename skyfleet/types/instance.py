"""Provider-side view of droplets."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

__all__ = [
    "ACTIVE_STATUSES",
    "InstanceInfo",
    "InstanceRequest",
    "Network",
]

ACTIVE_STATUSES = frozenset({"new", "active"})
"""Provider statuses counted against caps."""


@dataclass(frozen=True, slots=True)
class Network:
    ip_address: str | None
    type: Literal["public", "private"] | str = "public"


@dataclass(frozen=True, slots=True)
class InstanceInfo:
    """A droplet as reported by the provider.

    The ``status`` field carries the provider status string ("new", "active",
    "off", "archive").
    """

    id: int
    name: str
    status: str
    networks: tuple[Network, ...] = ()

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def ipv4(self) -> str | None:
        """Public address if any, else any usable address."""
        usable = [n for n in self.networks if n.ip_address]
        for network in usable:
            if network.type == "public":
                return network.ip_address
        return usable[0].ip_address if usable else None


@dataclass(frozen=True, slots=True)
class InstanceRequest:
    """Everything the provider needs to create a droplet."""

    name: str
    region: str
    size: str
    image: str
    ssh_keys: tuple[int | str, ...] = ()
    user_data: str | None = None
    tags: tuple[str, ...] = field(default=())
