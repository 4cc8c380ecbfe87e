from __future__ import annotations

import pytest

from tests.fakes import FakeClock, FakeProvider, FakeShell


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def shell() -> FakeShell:
    return FakeShell()
