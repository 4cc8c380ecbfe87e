from __future__ import annotations

import pytest

from skyfleet.constants import INIT_MARKER, INIT_SCRIPT_MODE, INIT_SCRIPT_PATH
from skyfleet.core.exceptions import CommandTimeoutError, ConnectionLostError
from skyfleet.lifecycle import Droplet, DropletState
from skyfleet.naming import decode_droplet
from skyfleet.types.config import Timeouts
from tests.fakes import FakeClock, FakeProvider, FakeSession, FakeShell, droplet_template

pytestmark = [pytest.mark.xdist_group("unit")]

SCRIPT = "#!/bin/sh\napt-get update\n"
TIMEOUTS = Timeouts(create=30, poll_interval=10, ssh_connect_attempts=3, init_script=60)


def _droplet(
    provider: FakeProvider,
    shell: FakeShell,
    clock: FakeClock,
    output: list[str] | None = None,
    **template,
) -> Droplet:
    return Droplet(
        "ci",
        droplet_template(**template),
        provider,
        shell,
        timeouts=TIMEOUTS,
        clock=clock,
        sleep=clock.sleep,
        output=output.append if output is not None else None,
    )


class TestCreate:
    def test_starts_not_created_with_owned_name(self, provider, shell, clock):
        droplet = _droplet(provider, shell, clock)
        assert droplet.state is DropletState.NOT_CREATED
        assert decode_droplet(droplet.name) == ("ci", "build")
        assert droplet.is_active
        assert not droplet.is_ready

    def test_issues_create_call(self, provider, shell, clock):
        droplet = _droplet(provider, shell, clock, user_data="#cloud-config\n")
        droplet.create()

        assert droplet.state is DropletState.CREATING
        assert droplet.droplet_id is not None
        request = provider.requests[0]
        assert request.name == droplet.name
        assert (request.image, request.size, request.region) == ("ubuntu-22-04-x64", "s-2vcpu-4gb", "nyc3")
        assert request.ssh_keys == (123456,)
        assert request.user_data == "#cloud-config\n"

    def test_fingerprint_key_passed_as_string(self, provider, shell, clock):
        droplet = _droplet(provider, shell, clock, ssh_key_id="3b:16:bf:e4:8b:00:8b:b8")
        droplet.create()
        assert provider.requests[0].ssh_keys == ("3b:16:bf:e4:8b:00:8b:b8",)

    def test_blank_user_data_omitted(self, provider, shell, clock):
        droplet = _droplet(provider, shell, clock, user_data="   ")
        droplet.create()
        assert provider.requests[0].user_data is None

    def test_provider_failure_marks_failed(self, shell, clock):
        provider = FakeProvider(fail_create=True)
        droplet = _droplet(provider, shell, clock)
        droplet.create()

        assert droplet.state is DropletState.FAILED
        assert droplet.droplet_id is None
        assert "create failed" in droplet.failure
        assert not droplet.is_active

    def test_create_only_from_not_created(self, provider, shell, clock):
        droplet = _droplet(provider, shell, clock)
        droplet.create()
        droplet.create()
        assert len(provider.requests) == 1


class TestWaitUntilCreated:
    def test_polls_until_active(self, shell, clock):
        provider = FakeProvider(boot_polls=2)
        droplet = _droplet(provider, shell, clock)
        droplet.create()
        droplet.wait_until_created()

        assert droplet.state is DropletState.CREATED
        assert droplet.ipv4 == "203.0.113.10"
        assert provider.polls[droplet.droplet_id] == 3
        assert clock.sleeps == [10, 10]

    def test_timeout_marks_failed_without_address(self, shell, clock):
        provider = FakeProvider(boot_polls=1_000)
        droplet = _droplet(provider, shell, clock)
        droplet.create()
        droplet.wait_until_created()

        assert droplet.state is DropletState.FAILED
        assert droplet.ipv4 is None
        assert "did not become active" in droplet.failure
        assert clock.now == pytest.approx(30)

    def test_unexpected_status_marks_failed(self, shell, clock):
        provider = FakeProvider(final_status="off")
        droplet = _droplet(provider, shell, clock)
        droplet.create()
        droplet.wait_until_created()

        assert droplet.state is DropletState.FAILED
        assert "off" in droplet.failure

    def test_active_without_address_marks_failed(self, shell, clock):
        provider = FakeProvider(address=None)
        droplet = _droplet(provider, shell, clock)
        droplet.create()
        droplet.wait_until_created()

        assert droplet.state is DropletState.FAILED
        assert droplet.ipv4 is None

    def test_noop_unless_creating(self, provider, shell, clock):
        droplet = _droplet(provider, shell, clock)
        droplet.wait_until_created()
        assert droplet.state is DropletState.NOT_CREATED
        assert provider.polls == {}


class TestRunInitScript:
    def test_no_script_skips_remote_shell(self, provider, shell, clock):
        droplet = _droplet(provider, shell, clock)
        assert droplet.initialize()
        assert droplet.state is DropletState.INITIALIZED
        assert shell.connects == []

    def test_blank_script_skips_remote_shell(self, provider, shell, clock):
        droplet = _droplet(provider, shell, clock, init_script="  \n")
        assert droplet.initialize()
        assert shell.connects == []

    def test_runs_script_and_writes_marker(self, provider, shell, clock):
        output: list[str] = []
        droplet = _droplet(provider, shell, clock, output, init_script=SCRIPT, username="ubuntu")
        assert droplet.initialize()

        assert shell.connects == [("203.0.113.10", 22, "ubuntu", 3)]
        session = shell.sessions[0]
        assert session.copied == [(SCRIPT.encode(), INIT_SCRIPT_PATH, INIT_SCRIPT_MODE)]
        assert session.executed == [INIT_SCRIPT_PATH]
        assert session.commands == [f"test -e {INIT_MARKER}", f"touch {INIT_MARKER}"]
        assert session.closed
        assert output == ["Reading package lists...", "done"]

    def test_marker_present_skips_script(self, provider, clock):
        shell = FakeShell(FakeSession(marker_present=True))
        droplet = _droplet(provider, shell, clock, init_script=SCRIPT)
        assert droplet.initialize()

        session = shell.sessions[0]
        assert session.copied == []
        assert session.executed == []
        assert session.closed

    def test_connection_failure_marks_failed(self, provider, clock):
        shell = FakeShell(refuse=True)
        droplet = _droplet(provider, shell, clock, init_script=SCRIPT)
        assert not droplet.initialize()

        assert droplet.state is DropletState.FAILED
        assert "SSH" in droplet.failure

    def test_non_zero_exit_marks_failed(self, provider, clock):
        shell = FakeShell(FakeSession(exit_code=2))
        droplet = _droplet(provider, shell, clock, init_script=SCRIPT)
        assert not droplet.initialize()

        assert droplet.state is DropletState.FAILED
        assert "exit code=2" in droplet.failure
        assert f"touch {INIT_MARKER}" not in shell.sessions[0].commands

    @pytest.mark.parametrize(
        "error",
        [ConnectionLostError("203.0.113.10", "EOF"), CommandTimeoutError(INIT_SCRIPT_PATH, 60)],
    )
    def test_execution_error_marks_failed(self, provider, clock, error):
        shell = FakeShell(FakeSession(execute_error=error))
        droplet = _droplet(provider, shell, clock, init_script=SCRIPT)
        assert not droplet.initialize()

        assert droplet.state is DropletState.FAILED
        assert shell.sessions[0].closed


class TestDestroy:
    def test_destroys_initialized_droplet(self, provider, shell, clock):
        droplet = _droplet(provider, shell, clock)
        droplet.initialize()
        droplet.destroy()

        assert droplet.state is DropletState.DESTROYED
        assert provider.destroyed == [droplet.droplet_id]
        assert not droplet.is_active

    def test_destroy_failure_marks_failed(self, shell, clock):
        provider = FakeProvider(fail_destroy=True)
        droplet = _droplet(provider, shell, clock)
        droplet.initialize()
        droplet.destroy()

        assert droplet.state is DropletState.FAILED

    def test_destroy_requires_initialized(self, provider, shell, clock):
        droplet = _droplet(provider, shell, clock)
        droplet.create()
        droplet.destroy()

        assert droplet.state is DropletState.CREATING
        assert provider.destroyed == []

    def test_retired_droplet_takes_no_containers(self, provider, shell, clock):
        droplet = _droplet(provider, shell, clock)
        droplet.initialize()

        assert droplet.retire()
        assert droplet.state is DropletState.DESTROYING
        assert droplet.is_active
        assert not droplet.is_ready
        assert not droplet.retire()
        assert provider.destroyed == []

        droplet.destroy()
        assert droplet.state is DropletState.DESTROYED
        assert provider.destroyed == [droplet.droplet_id]


class TestDiscard:
    def test_removes_remote_instance_of_failed_droplet(self, shell, clock):
        provider = FakeProvider(boot_polls=1_000)
        droplet = _droplet(provider, shell, clock)
        droplet.initialize()

        assert droplet.discard()
        assert provider.destroyed == [droplet.droplet_id]
        assert droplet.state is DropletState.FAILED

    def test_nothing_to_discard_without_id(self, shell, clock):
        provider = FakeProvider(fail_create=True)
        droplet = _droplet(provider, shell, clock)
        droplet.initialize()

        assert not droplet.discard()
        assert provider.destroyed == []

    def test_ignores_live_droplets(self, provider, shell, clock):
        droplet = _droplet(provider, shell, clock)
        droplet.initialize()

        assert not droplet.discard()
        assert droplet.state is DropletState.INITIALIZED
