"""Shared pytest fixtures for fleetpool tests."""
import sys
sys.dont_write_bytecode = True

import pytest  # noqa: E402

from tests.helpers import FakeFleet, install_fake_fleet  # noqa: E402


@pytest.fixture
def fleet(monkeypatch):
    """In-memory fleet patched over every repository used by the domain layer.

    Seed it with ``fleet.add_group()`` / ``fleet.add_unit()`` /
    ``fleet.add_booking()``; domain functions then read and write it as if
    it were Postgres.
    """
    return install_fake_fleet(monkeypatch, FakeFleet())


@pytest.fixture
def uuid_fleet(monkeypatch):
    """Like ``fleet``, but every id is a canonical UUID string."""
    return install_fake_fleet(monkeypatch, FakeFleet(uuid_ids=True))


@pytest.fixture(autouse=True)
def _quiet_engine_env(monkeypatch):
    """Keep FLEETPOOL_* settings from the developer shell out of tests."""
    for name in (
        "FLEETPOOL_BOOK_MAX_ATTEMPTS",
        "FLEETPOOL_BOOK_TIMEOUT_SECONDS",
        "FLEETPOOL_RANDOM_SEED",
        "FLEETPOOL_DEFAULT_STRATEGY",
    ):
        monkeypatch.delenv(name, raising=False)
