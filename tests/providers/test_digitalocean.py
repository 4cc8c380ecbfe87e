from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from skyfleet.core.exceptions import ProviderError
from skyfleet.providers.digitalocean import DigitalOceanClient, DigitalOceanError, get_token
from skyfleet.providers.digitalocean.client import PAGE_SIZE, parse_droplet
from skyfleet.types.instance import InstanceRequest

pytestmark = [pytest.mark.xdist_group("unit")]


def _droplet(id: int, name: str = "jenkins-ci-build-x", status: str = "active", **extra) -> dict:
    return {"id": id, "name": name, "status": status, **extra}


class _RateLimited(Exception):
    status_code = 429


@pytest.fixture
def sdk() -> MagicMock:
    return MagicMock()


@pytest.fixture
def client(sdk: MagicMock) -> DigitalOceanClient:
    return DigitalOceanClient(client=sdk)


class TestParseDroplet:
    def test_prefers_public_address(self):
        info = parse_droplet(
            _droplet(
                7,
                networks={
                    "v4": [
                        {"ip_address": "10.0.0.2", "type": "private"},
                        {"ip_address": "203.0.113.7", "type": "public"},
                    ],
                },
            )
        )
        assert info.id == 7
        assert info.ipv4 == "203.0.113.7"
        assert info.is_active

    def test_private_only(self):
        info = parse_droplet(_droplet(7, networks={"v4": [{"ip_address": "10.0.0.2", "type": "private"}]}))
        assert info.ipv4 == "10.0.0.2"

    def test_no_networks(self):
        info = parse_droplet(_droplet(7, status="new", networks=None))
        assert info.ipv4 is None
        assert info.is_active

    def test_inactive_status(self):
        assert not parse_droplet(_droplet(7, status="off")).is_active


class TestListInstances:
    def test_single_page(self, client, sdk):
        sdk.droplets.list.return_value = {"droplets": [_droplet(1), _droplet(2)]}

        assert [i.id for i in client.list_instances()] == [1, 2]
        sdk.droplets.list.assert_called_once_with(page=1, per_page=PAGE_SIZE)

    def test_paginates(self, client, sdk):
        first = [_droplet(i) for i in range(PAGE_SIZE)]
        sdk.droplets.list.side_effect = [{"droplets": first}, {"droplets": [_droplet(PAGE_SIZE)]}]

        assert len(client.list_instances()) == PAGE_SIZE + 1
        assert sdk.droplets.list.call_count == 2

    def test_wraps_errors(self, client, sdk):
        sdk.droplets.list.side_effect = RuntimeError("401 Unauthorized")

        with pytest.raises(DigitalOceanError, match="Failed to list droplets"):
            client.list_instances()

    def test_retries_rate_limit(self, client, sdk, monkeypatch):
        monkeypatch.setattr(DigitalOceanClient._list_page.retry, "sleep", lambda _: None)
        sdk.droplets.list.side_effect = [_RateLimited(), {"droplets": [_droplet(1)]}]

        assert len(client.list_instances()) == 1
        assert sdk.droplets.list.call_count == 2


class TestCreateInstance:
    def test_request_body(self, client, sdk):
        sdk.droplets.create.return_value = {"droplet": _droplet(9, status="new")}
        request = InstanceRequest(
            name="jenkins-ci-build-x",
            region="nyc3",
            size="s-2vcpu-4gb",
            image="ubuntu-22-04-x64",
            ssh_keys=(123,),
            user_data="#cloud-config",
        )

        info = client.create_instance(request)

        assert info.id == 9
        sdk.droplets.create.assert_called_once_with(
            body={
                "name": "jenkins-ci-build-x",
                "region": "nyc3",
                "size": "s-2vcpu-4gb",
                "image": "ubuntu-22-04-x64",
                "ssh_keys": [123],
                "user_data": "#cloud-config",
            }
        )

    def test_empty_response(self, client, sdk):
        sdk.droplets.create.return_value = {}
        with pytest.raises(DigitalOceanError, match="empty response"):
            client.create_instance(InstanceRequest("n", "r", "s", "i"))

    def test_not_retried(self, client, sdk):
        sdk.droplets.create.side_effect = _RateLimited()
        with pytest.raises(ProviderError):
            client.create_instance(InstanceRequest("n", "r", "s", "i"))
        assert sdk.droplets.create.call_count == 1


class TestGetAndDestroy:
    def test_get(self, client, sdk):
        sdk.droplets.get.return_value = {"droplet": _droplet(3, status="new")}
        assert client.get_instance(3).status == "new"
        sdk.droplets.get.assert_called_once_with(droplet_id=3)

    def test_get_missing(self, client, sdk):
        sdk.droplets.get.return_value = {}
        with pytest.raises(DigitalOceanError, match="not found"):
            client.get_instance(3)

    def test_destroy(self, client, sdk):
        client.destroy_instance(3)
        sdk.droplets.destroy.assert_called_once_with(droplet_id=3)

    def test_destroy_failure(self, client, sdk):
        sdk.droplets.destroy.side_effect = RuntimeError("boom")
        with pytest.raises(DigitalOceanError, match="Failed to delete droplet"):
            client.destroy_instance(3)


class TestToken:
    def test_from_environment(self, monkeypatch):
        monkeypatch.setenv("DIGITALOCEAN_TOKEN", "dop_v1_env")
        assert get_token() == "dop_v1_env"

    def test_missing(self, monkeypatch):
        monkeypatch.delenv("DIGITALOCEAN_TOKEN", raising=False)
        with pytest.raises(DigitalOceanError, match="DIGITALOCEAN_TOKEN"):
            get_token()
