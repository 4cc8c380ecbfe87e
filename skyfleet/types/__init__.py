"""Type definitions for skyfleet."""

from skyfleet.types.config import (
    ContainerTemplate,
    DropletTemplate,
    FleetConfig,
    Timeouts,
    parse_labels,
)
from skyfleet.types.instance import (
    ACTIVE_STATUSES,
    InstanceInfo,
    InstanceRequest,
    Network,
)
from skyfleet.types.protocols import (
    OutputSink,
    Provider,
    RemoteShell,
    Session,
)

__all__ = [
    "ACTIVE_STATUSES",
    "ContainerTemplate",
    "DropletTemplate",
    "FleetConfig",
    "InstanceInfo",
    "InstanceRequest",
    "Network",
    "OutputSink",
    "Provider",
    "RemoteShell",
    "Session",
    "Timeouts",
    "parse_labels",
]
