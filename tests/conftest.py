"""Shared test fixtures."""

import pytest

from tests.fakes import FakeSession, Marketplace


@pytest.fixture
def market() -> Marketplace:
    """Engines wired around in-memory collaborators, clock pinned at T0."""
    return Marketplace()


@pytest.fixture
def db(market: Marketplace) -> FakeSession:
    return market.db
