"""Skyfleet - capacity-aware droplet provisioning.

Example:

    from skyfleet import Provisioner, resolve_fleet

    provisioner = Provisioner.from_config(resolve_fleet("ci"))

    if provisioner.can_provision("linux"):
        for pending in provisioner.provision("linux", excess_workload=3):
            print(pending.name, pending.droplet)
"""

from skyfleet.allocator import allocate, can_allocate, release
from skyfleet.capacity import UNLIMITED, Scope, allowance, cap_reached, count_active, headroom
from skyfleet.config import build_fleet, load_config, resolve_fleet, resolve_fleets
from skyfleet.core.exceptions import (
    CommandTimeoutError,
    ConfigurationError,
    ConnectionLostError,
    ProviderError,
    RemoteExecutionError,
    SkyfleetError,
    SSHConnectionError,
)
from skyfleet.lifecycle import Container, Droplet, DropletState
from skyfleet.logging import LogConfig, setup_logging, teardown_logging
from skyfleet.provisioner import PendingResource, Provisioner, Refusal
from skyfleet.registry import DropletRegistry
from skyfleet.types import (
    ContainerTemplate,
    DropletTemplate,
    FleetConfig,
    InstanceInfo,
    InstanceRequest,
    Network,
    Provider,
    RemoteShell,
    Session,
    Timeouts,
)

__all__ = [
    "UNLIMITED",
    "CommandTimeoutError",
    "ConfigurationError",
    "ConnectionLostError",
    "Container",
    "ContainerTemplate",
    "Droplet",
    "DropletRegistry",
    "DropletState",
    "DropletTemplate",
    "FleetConfig",
    "InstanceInfo",
    "InstanceRequest",
    "LogConfig",
    "Network",
    "PendingResource",
    "Provider",
    "ProviderError",
    "Provisioner",
    "Refusal",
    "RemoteExecutionError",
    "RemoteShell",
    "SSHConnectionError",
    "Scope",
    "Session",
    "SkyfleetError",
    "Timeouts",
    "allocate",
    "allowance",
    "build_fleet",
    "can_allocate",
    "cap_reached",
    "count_active",
    "headroom",
    "load_config",
    "release",
    "resolve_fleet",
    "resolve_fleets",
    "setup_logging",
    "teardown_logging",
]
