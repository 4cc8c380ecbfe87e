"""DigitalOcean provider for Skyfleet.

Example:
    from skyfleet.providers.digitalocean import DigitalOceanClient

    provider = DigitalOceanClient(token="dop_v1_...")
"""

from skyfleet.providers.digitalocean.client import (
    DigitalOceanClient,
    DigitalOceanError,
    get_token,
)

__all__ = ["DigitalOceanClient", "DigitalOceanError", "get_token"]
