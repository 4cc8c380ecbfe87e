from __future__ import annotations

import pytest

from skyfleet import allocator
from skyfleet.lifecycle import Droplet
from skyfleet.naming import decode_container
from tests.fakes import FakeClock, FakeProvider, FakeShell, container_template, droplet_template

pytestmark = [pytest.mark.xdist_group("unit")]


def _ready(**template) -> Droplet:
    clock = FakeClock()
    droplet = Droplet(
        "ci", droplet_template(**template), FakeProvider(), FakeShell(), clock=clock, sleep=clock.sleep,
    )
    assert droplet.initialize()
    return droplet


class TestCanAllocate:
    def test_matching_label(self):
        assert allocator.can_allocate(_ready(), "linux")

    def test_unknown_label(self):
        assert not allocator.can_allocate(_ready(), "windows")

    def test_no_label_needs_unlabelled_template(self):
        assert not allocator.can_allocate(_ready(), None)
        droplet = _ready(containers=(container_template(labels=""),))
        assert allocator.can_allocate(droplet, None)

    def test_droplet_cap_reached(self):
        droplet = _ready(container_instance_cap=1)
        allocator.allocate(droplet, "linux", 1)
        assert not allocator.can_allocate(droplet, "linux")

    def test_template_cap_reached(self):
        droplet = _ready(containers=(container_template(instance_cap=1),))
        allocator.allocate(droplet, "linux", 1)
        assert not allocator.can_allocate(droplet, "linux")

    def test_falls_through_to_next_template(self):
        droplet = _ready(
            containers=(
                container_template("jdk17", instance_cap=1),
                container_template("jdk21"),
            ),
        )
        allocator.allocate(droplet, "linux", 1)
        assert allocator.can_allocate(droplet, "linux")

    def test_not_ready(self):
        clock = FakeClock()
        droplet = Droplet("ci", droplet_template(), FakeProvider(), FakeShell(), clock=clock, sleep=clock.sleep)
        assert not allocator.can_allocate(droplet, "linux")


class TestAllocate:
    def test_unlimited_caps_allocate_everything(self):
        droplet = _ready()
        containers = allocator.allocate(droplet, "java", 4)

        assert len(containers) == 4
        assert droplet.containers == tuple(containers)
        for c in containers:
            assert decode_container(c.name) == ("ci", "build", "jdk17")
            assert c.droplet == droplet.name

    def test_bounded_by_droplet_cap(self):
        droplet = _ready(container_instance_cap=3)
        assert len(allocator.allocate(droplet, "linux", 5)) == 3
        assert allocator.allocate(droplet, "linux", 5) == []

    def test_bounded_by_template_cap(self):
        droplet = _ready(containers=(container_template(instance_cap=2),))
        assert len(allocator.allocate(droplet, "linux", 5)) == 2

    def test_smallest_cap_wins(self):
        droplet = _ready(container_instance_cap=4, containers=(container_template(instance_cap=2),))
        allocator.allocate(droplet, "linux", 1)
        assert len(allocator.allocate(droplet, "linux", 10)) == 1

    def test_templates_tried_in_order(self):
        droplet = _ready(
            container_instance_cap=4,
            containers=(
                container_template("jdk17", instance_cap=1),
                container_template("jdk21", instance_cap=2),
                container_template("jdk8"),
            ),
        )
        containers = allocator.allocate(droplet, "linux", 10)

        assert [c.template.name for c in containers] == ["jdk17", "jdk21", "jdk21", "jdk8"]

    def test_skips_non_matching_templates(self):
        droplet = _ready(
            containers=(
                container_template("win", labels="windows"),
                container_template("jdk17"),
            ),
        )
        containers = allocator.allocate(droplet, "linux", 2)
        assert {c.template.name for c in containers} == {"jdk17"}

    def test_assigns_distinct_ports(self):
        droplet = _ready(container_starting_ssh_port=22100)
        containers = allocator.allocate(droplet, "linux", 3)
        assert [c.ssh_port for c in containers] == [22100, 22101, 22102]

    def test_released_port_reused(self):
        droplet = _ready(container_starting_ssh_port=22100)
        first, *_ = allocator.allocate(droplet, "linux", 3)
        allocator.release(droplet, first.name)

        (replacement,) = allocator.allocate(droplet, "linux", 1)
        assert replacement.ssh_port == 22100

    def test_zero_count(self):
        assert allocator.allocate(_ready(), "linux", 0) == []


class TestRelease:
    def test_returns_capacity(self):
        droplet = _ready(container_instance_cap=1)
        (container,) = allocator.allocate(droplet, "linux", 1)

        assert allocator.release(droplet, container.name)
        assert droplet.containers == ()
        assert allocator.can_allocate(droplet, "linux")

    def test_unknown_container(self):
        assert not allocator.release(_ready(), "jenkins-ci-build-jdk17-nope")
