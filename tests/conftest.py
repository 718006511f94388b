"""Pytest configuration and shared fixtures."""

import pytest

from tests.fakes import FakeModelService


@pytest.fixture
def fake_service_factory():
    """Build a FakeModelService with scripted chunks."""
    return FakeModelService
