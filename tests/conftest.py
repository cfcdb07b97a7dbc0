"""Shared test fixtures for devboard tests."""

import sys
from pathlib import Path

import pytest

# Ensure the package is importable without installation
sys.path.insert(0, str(Path(__file__).parent.parent))

from devboard.store import ProjectStore
from devboard.sync_slot import MemorySyncSlot


@pytest.fixture
def slot():
    return MemorySyncSlot()


@pytest.fixture
def store(tmp_path, slot):
    return ProjectStore(tmp_path / "storage", slot)
