"""Shared fixtures for bouncer tests."""

import os

import pytest

from bouncer.denylist import DenylistStore
from bouncer.schemas.denylist import DENYLIST_COLUMNS
from bouncer.storage import MemoryRowStore
from fakes import FakeClock


@pytest.fixture(autouse=True)
def _no_sops(monkeypatch):
    """Ensure tests never try to invoke SOPS."""
    monkeypatch.setenv("BOUNCER_USE_SOPS", "false")


@pytest.fixture()
def project_root():
    """Return the project root path."""
    return os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def rows():
    return MemoryRowStore(DENYLIST_COLUMNS)


@pytest.fixture()
def store(rows, clock):
    return DenylistStore(rows, grace_period_days=7, clock=clock)
