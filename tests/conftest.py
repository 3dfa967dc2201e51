"""Shared fixtures for Apsara tests."""

from __future__ import annotations

import pytest

from fakes import FakeGenaiClient


@pytest.fixture
def fake_client():
    return FakeGenaiClient()
