"""TOML-based fleet configuration.

Loads ~/.skyfleet/defaults.toml (global) and skyfleet.toml (project),
merges them, and resolves named fleets into FleetConfig instances::

    [fleets.ci]
    instance_cap = 4              # token falls back to DIGITALOCEAN_TOKEN

    [[fleets.ci.templates]]
    name = "build"
    image = "ubuntu-22-04-x64"
    size = "s-2vcpu-4gb"
    region = "nyc3"
    ssh_key_id = "123456"
    ssh_private_key_file = "~/.ssh/id_ed25519"
    instance_cap = 2

    [[fleets.ci.templates.containers]]
    name = "jdk17"
    labels = "linux java"
"""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any

from skyfleet.core.exceptions import ConfigurationError
from skyfleet.types.config import ContainerTemplate, DropletTemplate, FleetConfig, Timeouts

type RawConfig = dict[str, Any]

GLOBAL_CONFIG_PATH = Path.home() / ".skyfleet" / "defaults.toml"
PROJECT_CONFIG_NAME = "skyfleet.toml"
TOKEN_ENV = "DIGITALOCEAN_TOKEN"


def _deep_merge(base: RawConfig, override: RawConfig) -> RawConfig:
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_toml(path: Path) -> RawConfig:
    if not path.is_file():
        return {}
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Invalid TOML in {path}: {e}") from e


def load_config(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> RawConfig:
    global_cfg = _read_toml(global_path or GLOBAL_CONFIG_PATH)
    project_path = (project_dir or Path.cwd()) / PROJECT_CONFIG_NAME
    project_cfg = _read_toml(project_path)

    merged = _deep_merge(global_cfg, project_cfg)
    merged.setdefault("fleets", {})
    return merged


def _construct[T](cls: type[T], owner: str, raw: RawConfig) -> T:
    try:
        return cls(**raw)
    except TypeError as e:
        raise ConfigurationError(f"{owner}: {e}") from e


def _read_key(owner: str, raw: RawConfig) -> RawConfig:
    key_file = raw.pop("ssh_private_key_file", None)
    if key_file is None:
        return raw
    if raw.get("ssh_private_key"):
        raise ConfigurationError(f"{owner}: set either 'ssh_private_key' or 'ssh_private_key_file'")
    path = Path(key_file).expanduser()
    try:
        raw["ssh_private_key"] = path.read_text()
    except OSError as e:
        raise ConfigurationError(f"{owner}: can't read private key {path}: {e}") from e
    return raw


def _build_container(raw: RawConfig) -> ContainerTemplate:
    raw = dict(raw)
    owner = f"Container template '{raw.get('name', '?')}'"
    return _construct(ContainerTemplate, owner, _read_key(owner, raw))


def _build_template(raw: RawConfig) -> DropletTemplate:
    raw = dict(raw)
    owner = f"Droplet template '{raw.get('name', '?')}'"
    containers = tuple(_build_container(c) for c in raw.pop("containers", []))
    return _construct(DropletTemplate, owner, {**_read_key(owner, raw), "containers": containers})


def build_fleet(name: str, raw: RawConfig) -> FleetConfig:
    """Build a FleetConfig from its raw TOML table."""
    raw = dict(raw)
    owner = f"Fleet '{name}'"
    token = raw.pop("token", None) or os.environ.get(TOKEN_ENV)
    if not token:
        raise ConfigurationError(f"{owner} has no 'token' and {TOKEN_ENV} is not set")

    templates = tuple(_build_template(t) for t in raw.pop("templates", []))
    timeouts = _construct(Timeouts, f"{owner} timeouts", raw.pop("timeouts", {}))
    return _construct(
        FleetConfig,
        owner,
        {**raw, "name": name, "token": token, "templates": templates, "timeouts": timeouts},
    )


def resolve_fleet(
    name: str,
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> FleetConfig:
    config = load_config(project_dir=project_dir, global_path=global_path)

    fleets = config["fleets"]
    if name not in fleets:
        raise ConfigurationError(f"Fleet '{name}' not found. Available: {', '.join(fleets) or 'none'}")

    return build_fleet(name, fleets[name])


def resolve_fleets(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> list[FleetConfig]:
    """Every fleet defined in the merged configuration."""
    config = load_config(project_dir=project_dir, global_path=global_path)
    return [build_fleet(name, raw) for name, raw in config["fleets"].items()]
