"""DigitalOcean API client wrapper using pydo SDK.

Bound to a single API token at construction. Returns ``InstanceInfo``
values and raises ``DigitalOceanError`` for every SDK failure, so callers only
ever handle one exception type.
"""

from __future__ import annotations

import os
from typing import Any

from loguru import logger
from pydo import Client
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from skyfleet.core.exceptions import ProviderError
from skyfleet.types.instance import InstanceInfo, InstanceRequest, Network

__all__ = [
    "DigitalOceanClient",
    "DigitalOceanError",
    "get_token",
    "parse_droplet",
]

PAGE_SIZE = 200


class DigitalOceanError(ProviderError):
    """Error from DigitalOcean API."""


def _is_rate_limited(e: BaseException) -> bool:
    return getattr(e, "status_code", None) == 429


# Listing and status reads are safe to repeat; creation is not.
_retry_rate_limited = retry(
    retry=retry_if_exception(_is_rate_limited),
    stop=stop_after_attempt(4),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    reraise=True,
)


def parse_droplet(data: dict[str, Any]) -> InstanceInfo:
    """Build an InstanceInfo from a droplet API payload."""
    networks = (data.get("networks") or {}).get("v4") or []
    return InstanceInfo(
        id=int(data["id"]),
        name=data.get("name", ""),
        status=data.get("status", ""),
        networks=tuple(
            Network(ip_address=n.get("ip_address"), type=n.get("type", "public"))
            for n in networks
        ),
    )


class DigitalOceanClient:
    """Synchronous client for the droplet endpoints.

    Example:
        >>> client = DigitalOceanClient(token="dop_v1_...")
        >>> [d.name for d in client.list_instances()]
    """

    def __init__(self, token: str | None = None, *, client: Any = None) -> None:
        self._client = client if client is not None else Client(token=token or get_token())

    def list_instances(self) -> list[InstanceInfo]:
        """List every droplet on the account."""
        droplets: list[InstanceInfo] = []
        page = 1

        try:
            while True:
                result = self._list_page(page)
                page_droplets = result.get("droplets", [])
                droplets.extend(parse_droplet(d) for d in page_droplets)

                if len(page_droplets) < PAGE_SIZE:
                    break
                page += 1
        except Exception as e:
            raise DigitalOceanError(f"Failed to list droplets: {e}") from e

        logger.debug(f"DigitalOcean: listed {len(droplets)} droplets")
        return droplets

    def create_instance(self, request: InstanceRequest) -> InstanceInfo:
        """Create a new droplet."""
        body: dict[str, Any] = {
            "name": request.name,
            "region": request.region,
            "size": request.size,
            "image": request.image,
            "ssh_keys": list(request.ssh_keys),
        }

        if request.user_data:
            body["user_data"] = request.user_data
        if request.tags:
            body["tags"] = list(request.tags)

        try:
            result = self._client.droplets.create(body=body)
            droplet = result.get("droplet")
            if not droplet:
                raise DigitalOceanError("Failed to create droplet: empty response")
            return parse_droplet(droplet)
        except DigitalOceanError:
            raise
        except Exception as e:
            raise DigitalOceanError(f"Failed to create droplet: {e}") from e

    def get_instance(self, instance_id: int) -> InstanceInfo:
        """Get droplet details."""
        try:
            result = self._get(instance_id)
            droplet = result.get("droplet")
            if not droplet:
                raise DigitalOceanError(f"Droplet {instance_id} not found")
            return parse_droplet(droplet)
        except DigitalOceanError:
            raise
        except Exception as e:
            raise DigitalOceanError(f"Failed to get droplet: {e}") from e

    def destroy_instance(self, instance_id: int) -> None:
        """Delete a droplet."""
        try:
            self._client.droplets.destroy(droplet_id=instance_id)
        except Exception as e:
            raise DigitalOceanError(f"Failed to delete droplet: {e}") from e

    @_retry_rate_limited
    def _list_page(self, page: int) -> dict[str, Any]:
        return self._client.droplets.list(page=page, per_page=PAGE_SIZE)

    @_retry_rate_limited
    def _get(self, instance_id: int) -> dict[str, Any]:
        return self._client.droplets.get(droplet_id=instance_id)


def get_token() -> str:
    """Get DigitalOcean API token from environment."""
    token = os.environ.get("DIGITALOCEAN_TOKEN")
    if not token:
        raise DigitalOceanError(
            "DigitalOcean API token not found. "
            "Set DIGITALOCEAN_TOKEN environment variable."
        )
    return token
