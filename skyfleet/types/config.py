"""Fleet, droplet template and container template configuration.

Immutable configuration dataclasses. Validation happens once, in
``__post_init__``, so an invalid fleet is rejected when it is loaded and never
reaches the provisioner.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from skyfleet.constants import (
    DEFAULT_CONTAINER_SSH_PORT,
    DEFAULT_CREATE_TIMEOUT,
    DEFAULT_INIT_SCRIPT_TIMEOUT,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_SSH_CONNECT_ATTEMPTS,
    DEFAULT_SSH_CONNECT_TIMEOUT,
    DEFAULT_SSH_PORT,
    DEFAULT_SSH_RETRY_DELAY,
)
from skyfleet.core.exceptions import ConfigurationError
from skyfleet.naming import is_valid_name

__all__ = [
    "ContainerTemplate",
    "DropletTemplate",
    "FleetConfig",
    "Timeouts",
    "parse_labels",
]


def parse_labels(labels: str | list[str] | tuple[str, ...] | frozenset[str] | None) -> frozenset[str]:
    """Parse a whitespace separated label string into a label set."""
    match labels:
        case None:
            return frozenset()
        case str():
            return frozenset(labels.split())
        case _:
            return frozenset(label.strip() for label in labels if label.strip())


def _require(kind: str, owner: str, **values: object) -> None:
    for key, value in values.items():
        if value is None or (isinstance(value, str) and not value.strip()):
            raise ConfigurationError(f"{kind} '{owner}': '{key}' must be set")


def _check_name(kind: str, name: str) -> None:
    if not is_valid_name(name):
        raise ConfigurationError(
            f"{kind} name {name!r} must consist of A-Z, a-z, 0-9 and . symbols"
        )


def _check_cap(kind: str, owner: str, **caps: int) -> None:
    for key, cap in caps.items():
        if not isinstance(cap, int) or isinstance(cap, bool) or cap < 0:
            raise ConfigurationError(f"{kind} '{owner}': '{key}' must be a non-negative integer")


def _check_port(kind: str, owner: str, **ports: int) -> None:
    for key, port in ports.items():
        if not isinstance(port, int) or isinstance(port, bool) or not 0 < port < 65536:
            raise ConfigurationError(f"{kind} '{owner}': '{key}' must be a valid port")


def _check_private_key(kind: str, owner: str, key: str) -> None:
    if "PRIVATE KEY-----" not in key:
        raise ConfigurationError(f"{kind} '{owner}': 'ssh_private_key' is not a PEM private key")


@dataclass(frozen=True, slots=True)
class Timeouts:
    """Lifecycle timing knobs.

    Attributes:
        create: Seconds to wait for a droplet to become active.
        poll_interval: Seconds between droplet status checks.
        ssh_connect_attempts: SSH connection attempts before giving up.
        ssh_connect_timeout: Per-attempt SSH connect timeout.
        ssh_retry_delay: Seconds between SSH connection attempts.
        init_script: Seconds the init script may run.
    """

    create: float = DEFAULT_CREATE_TIMEOUT
    poll_interval: float = DEFAULT_POLL_INTERVAL
    ssh_connect_attempts: int = DEFAULT_SSH_CONNECT_ATTEMPTS
    ssh_connect_timeout: float = DEFAULT_SSH_CONNECT_TIMEOUT
    ssh_retry_delay: float = DEFAULT_SSH_RETRY_DELAY
    init_script: float = DEFAULT_INIT_SCRIPT_TIMEOUT

    def __post_init__(self) -> None:
        for key in ("create", "poll_interval", "ssh_connect_timeout", "init_script"):
            if getattr(self, key) <= 0:
                raise ConfigurationError(f"Timeouts: '{key}' must be positive")
        if self.ssh_retry_delay < 0:
            raise ConfigurationError("Timeouts: 'ssh_retry_delay' must not be negative")
        if self.ssh_connect_attempts < 1:
            raise ConfigurationError("Timeouts: 'ssh_connect_attempts' must be at least 1")


@dataclass(frozen=True, slots=True)
class ContainerTemplate:
    """Blueprint for a unit of work placed on a droplet.

    Args:
        name: Template name, ``[A-Za-z0-9.]+``.
        labels: Whitespace separated labels this container satisfies.
        image: Container image to run.
        instance_cap: Containers of this template per droplet. 0 = unlimited.
        username: Login user inside the container.
        ssh_private_key: Key used to reach the container.
        ssh_port: SSH port inside the container.
        workspace_path: Working directory for the workload.
        init_script: Script run inside a fresh container.
    """

    name: str
    labels: str = ""
    image: str = ""
    instance_cap: int = 0
    username: str = "root"
    ssh_private_key: str | None = None
    ssh_port: int = DEFAULT_SSH_PORT
    workspace_path: str = "/workspace"
    init_script: str | None = None

    label_set: frozenset[str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        _check_name("Container template", self.name)
        _check_cap("Container template", self.name, instance_cap=self.instance_cap)
        _check_port("Container template", self.name, ssh_port=self.ssh_port)
        if self.ssh_private_key is not None:
            _check_private_key("Container template", self.name, self.ssh_private_key)
        object.__setattr__(self, "label_set", parse_labels(self.labels))

    def matches(self, label: str | None) -> bool:
        """Whether this template can serve workloads requesting ``label``.

        A request without a label is only served by templates that declare no
        labels at all.
        """
        if label is None:
            return not self.label_set
        return label in self.label_set


@dataclass(frozen=True, slots=True)
class DropletTemplate:
    """Blueprint for a droplet.

    Args:
        name: Template name, ``[A-Za-z0-9.]+``.
        image: Image slug or id.
        size: Size slug (e.g. "s-2vcpu-4gb").
        region: Region slug (e.g. "nyc3").
        ssh_key_id: Id or fingerprint of a key registered with the provider.
        ssh_private_key: Private key matching ``ssh_key_id``.
        username: SSH login user.
        ssh_port: SSH port on the droplet.
        instance_cap: Droplets of this template. 0 = unlimited.
        container_instance_cap: Containers per droplet. 0 = unlimited.
        container_starting_ssh_port: First host port mapped to containers.
        idle_termination_minutes: Idle time after which the host scheduler
            tears the droplet down. 0 = never.
        user_data: cloud-init user data passed on creation.
        init_script: Script run over SSH once the droplet is active.
        containers: Container templates, tried in order.
    """

    name: str
    image: str
    size: str
    region: str
    ssh_key_id: str
    ssh_private_key: str
    username: str = "root"
    ssh_port: int = DEFAULT_SSH_PORT
    instance_cap: int = 0
    container_instance_cap: int = 0
    container_starting_ssh_port: int = DEFAULT_CONTAINER_SSH_PORT
    idle_termination_minutes: int = 0
    user_data: str | None = None
    init_script: str | None = None
    containers: tuple[ContainerTemplate, ...] = ()

    def __post_init__(self) -> None:
        _check_name("Droplet template", self.name)
        _require(
            "Droplet template", self.name,
            image=self.image, size=self.size, region=self.region,
            ssh_key_id=self.ssh_key_id, ssh_private_key=self.ssh_private_key,
            username=self.username,
        )
        _check_private_key("Droplet template", self.name, self.ssh_private_key)
        _check_cap(
            "Droplet template", self.name,
            instance_cap=self.instance_cap,
            container_instance_cap=self.container_instance_cap,
            idle_termination_minutes=self.idle_termination_minutes,
        )
        _check_port(
            "Droplet template", self.name,
            ssh_port=self.ssh_port,
            container_starting_ssh_port=self.container_starting_ssh_port,
        )
        names = [c.name for c in self.containers]
        if len(names) != len(set(names)):
            raise ConfigurationError(f"Droplet template '{self.name}': duplicate container template names")
        object.__setattr__(self, "containers", tuple(self.containers))

    def serves(self, label: str | None) -> bool:
        """Whether any container template matches ``label``."""
        return any(c.matches(label) for c in self.containers)

    def container(self, name: str) -> ContainerTemplate | None:
        return next((c for c in self.containers if c.name == name), None)


@dataclass(frozen=True, slots=True)
class FleetConfig:
    """Top-level configuration scope.

    Args:
        name: Fleet name, first segment of every resource name it owns.
        token: DigitalOcean API token.
        instance_cap: Droplets across all templates. 0 = unlimited.
        templates: Droplet templates, tried in order.
        timeouts: Lifecycle timing knobs.
        destroy_failed: Destroy droplets that fail after the provider created
            them instead of leaving them for an external sweep.
    """

    name: str
    token: str = field(repr=False)
    instance_cap: int = 0
    templates: tuple[DropletTemplate, ...] = ()
    timeouts: Timeouts = field(default_factory=Timeouts)
    destroy_failed: bool = True

    def __post_init__(self) -> None:
        _check_name("Fleet", self.name)
        _require("Fleet", self.name, token=self.token)
        _check_cap("Fleet", self.name, instance_cap=self.instance_cap)
        names = [t.name for t in self.templates]
        if len(names) != len(set(names)):
            raise ConfigurationError(f"Fleet '{self.name}': duplicate droplet template names")
        object.__setattr__(self, "templates", tuple(self.templates))

    def template(self, name: str) -> DropletTemplate | None:
        return next((t for t in self.templates if t.name == name), None)
