"""
Shared fixtures for the Dandy Notifier relay test suite.
"""
from __future__ import annotations

import os
import sys

import pytest

# Ensure the scripts directory and tests directory are on sys.path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))
sys.path.insert(0, os.path.dirname(__file__))

from action_registry import ActionRegistry
from helpers import FakeOpener, FakePresenter, FakeSpawner
from notification_manager import NotificationManager


@pytest.fixture
def opener():
    return FakeOpener()


@pytest.fixture
def spawner():
    return FakeSpawner()


@pytest.fixture
def presenter():
    return FakePresenter()


@pytest.fixture
def registry(opener, spawner):
    """ActionRegistry wired to in-memory capabilities."""
    reg = ActionRegistry(opener=opener, spawner=spawner)
    yield reg
    reg.shutdown(wait=True)


@pytest.fixture
def manager(presenter, registry):
    return NotificationManager(presenter, registry)


@pytest.fixture
def session_token():
    """Random 32-byte hex auth token."""
    return os.urandom(32).hex()
