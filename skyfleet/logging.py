"""Log sinks for skyfleet.

skyfleet logs through loguru and stays silent until the embedding
application calls ``setup_logging``. Every record is tagged with the resource
it concerns:

- provisioner records carry ``extra["fleet"]``
- droplet records carry ``extra["droplet"]`` (the full droplet name)
- lines streamed from an init script also carry ``extra["stream"] == "init"``

The console shows the tag in front of the message, and the file sink keeps the
whole ``extra`` mapping. ``LogConfig.fleets`` narrows both sinks to some
fleets, and ``LogConfig.init_output`` keeps init-script chatter out of the
console while the file still records it.

Example:
    from skyfleet.logging import LogConfig, setup_logging, teardown_logging

    handler_ids = setup_logging(LogConfig(level="DEBUG", file="skyfleet.log", fleets=("ci",)))
    ...
    teardown_logging(handler_ids)
"""

from __future__ import annotations

import sys
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Literal

from loguru import logger

from skyfleet.naming import decode_droplet

logger.disable("skyfleet")

type LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR"]
type RecordFilter = Callable[[dict[str, Any]], bool]

INIT_STREAM = "init"

FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | "
    "{name}:{function}:{line} | {extra} - {message}"
)


@dataclass(frozen=True, slots=True)
class LogConfig:
    """Where skyfleet records go.

    Attributes:
        level: Minimum console level. The file sink records everything.
        file: Log file path. No file sink when unset.
        console: Whether to log to stderr.
        rotation: File rotation policy (e.g. "50 MB", "1 day").
        retention: Number of rotated files to keep.
        fleets: Only keep records of these fleets. Empty keeps all.
        init_output: Whether init-script lines reach the console.
    """

    level: LogLevel = "INFO"
    file: str | None = None
    console: bool = True
    rotation: str = "50 MB"
    retention: int = 10
    fleets: tuple[str, ...] = ()
    init_output: bool = True


def record_fleet(record: dict[str, Any]) -> str | None:
    """The fleet a record concerns, from its ``fleet`` or ``droplet`` tag."""
    extra = record["extra"]
    if fleet := extra.get("fleet"):
        return fleet
    if (decoded := decode_droplet(extra.get("droplet"))) is not None:
        return decoded.fleet
    return None


def _console_format(record: dict[str, Any]) -> str:
    extra = record["extra"]
    if "droplet" in extra:
        tag = "<magenta>{extra[droplet]}</magenta> "
    elif "fleet" in extra:
        tag = "<magenta>[{extra[fleet]}]</magenta> "
    else:
        tag = ""
    return (
        "<green>{time:HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
        + tag
        + "<level>{message}</level>\n{exception}"
    )


def _record_filter(config: LogConfig, *, console: bool) -> RecordFilter:
    fleets = frozenset(config.fleets)
    drop_init = console and not config.init_output

    def keep(record: dict[str, Any]) -> bool:
        name = record["name"] or ""
        if name != "skyfleet" and not name.startswith("skyfleet."):
            return False
        if drop_init and record["extra"].get("stream") == INIT_STREAM:
            return False
        return not fleets or record_fleet(record) in fleets

    return keep


def setup_logging(config: LogConfig) -> list[int]:
    """Enable skyfleet's records and add its sinks.

    Returns:
        Handler ids to hand back to ``teardown_logging``.
    """
    logger.enable("skyfleet")
    handler_ids: list[int] = []

    if config.console:
        handler_ids.append(
            logger.add(
                sys.stderr,
                level=config.level,
                format=_console_format,
                colorize=True,
                filter=_record_filter(config, console=True),
            )
        )

    if config.file:
        handler_ids.append(
            logger.add(
                config.file,
                level="DEBUG",
                format=FILE_FORMAT,
                rotation=config.rotation,
                retention=config.retention,
                compression="zip",
                diagnose=False,  # tracebacks must not carry private keys
                enqueue=True,
                filter=_record_filter(config, console=False),
            )
        )

    return handler_ids


def teardown_logging(handler_ids: list[int]) -> None:
    for hid in handler_ids:
        logger.remove(hid)
    logger.disable("skyfleet")
