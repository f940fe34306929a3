"""Shared fixtures for marketplace tests."""

import pytest

from support import Market


@pytest.fixture
def market():
    return Market()
