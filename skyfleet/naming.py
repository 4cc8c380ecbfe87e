"""Name-encoded ownership for droplets and containers.

Every resource the fleet creates carries its ownership chain in its name, so
any droplet listed by the provider can be attributed back to the fleet and
template that created it without persisted state:

    jenkins-<fleet>-<template>-<uuid>               droplet
    jenkins-<fleet>-<template>-<container>-<uuid>   container

Each segment matches ``[A-Za-z0-9.]+``, so ``-`` only ever separates segments
and the segment count alone tells the two forms apart.

Example:
    >>> name = encode_droplet("ci", "build")
    >>> decode_droplet(name)
    DropletName(fleet='ci', template='build')
    >>> decode_container(name) is None
    True
"""

from __future__ import annotations

import re
import uuid
from typing import NamedTuple

__all__ = [
    "PREFIX",
    "ContainerName",
    "DropletName",
    "belongs_to_container_template",
    "belongs_to_fleet",
    "belongs_to_template",
    "container_belongs_to_template",
    "decode_container",
    "decode_droplet",
    "encode_container",
    "encode_droplet",
    "is_valid_name",
]

PREFIX = "jenkins"

_SEGMENT = r"([A-Za-z0-9.]+)"
_UUID = r"[0-9A-Fa-f]{8}-[0-9A-Fa-f]{4}-[0-9A-Fa-f]{4}-[0-9A-Fa-f]{4}-[0-9A-Fa-f]{12}"

_NAME_PATTERN = re.compile(rf"^{_SEGMENT}$")
_DROPLET_PATTERN = re.compile(rf"^{PREFIX}-{_SEGMENT}-{_SEGMENT}-{_UUID}$")
_CONTAINER_PATTERN = re.compile(rf"^{PREFIX}-{_SEGMENT}-{_SEGMENT}-{_SEGMENT}-{_UUID}$")


class DropletName(NamedTuple):
    fleet: str
    template: str


class ContainerName(NamedTuple):
    fleet: str
    template: str
    container_template: str


def is_valid_name(name: object) -> bool:
    """Whether ``name`` may be used as a fleet or template name."""
    return isinstance(name, str) and _NAME_PATTERN.fullmatch(name) is not None


def encode_droplet(fleet: str, template: str) -> str:
    return f"{PREFIX}-{fleet}-{template}-{uuid.uuid4()}"


def encode_container(fleet: str, template: str, container_template: str) -> str:
    return f"{PREFIX}-{fleet}-{template}-{container_template}-{uuid.uuid4()}"


def decode_droplet(name: object) -> DropletName | None:
    """Decode a droplet name. Foreign or malformed names yield None."""
    if not isinstance(name, str):
        return None
    m = _DROPLET_PATTERN.fullmatch(name)
    return DropletName(m[1], m[2]) if m else None


def decode_container(name: object) -> ContainerName | None:
    """Decode a container name. Foreign or malformed names yield None."""
    if not isinstance(name, str):
        return None
    m = _CONTAINER_PATTERN.fullmatch(name)
    return ContainerName(m[1], m[2], m[3]) if m else None


def belongs_to_fleet(name: str, fleet: str) -> bool:
    decoded = decode_droplet(name)
    return decoded is not None and decoded.fleet == fleet


def belongs_to_template(name: str, fleet: str, template: str) -> bool:
    return decode_droplet(name) == (fleet, template)


def container_belongs_to_template(name: str, fleet: str, template: str) -> bool:
    """Whether a container was placed by the given droplet template."""
    decoded = decode_container(name)
    return decoded is not None and decoded[:2] == (fleet, template)


def belongs_to_container_template(
    name: str, fleet: str, template: str, container_template: str,
) -> bool:
    return decode_container(name) == (fleet, template, container_template)
