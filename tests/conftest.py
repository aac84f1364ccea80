"""Shared test fixtures for the task tracker tests."""

import sys
from pathlib import Path

import pytest

# Ensure the project root (pkg/, tracker_server.py) is importable
sys.path.insert(0, str(Path(__file__).parent.parent))

from pkg.tracker.json_store import JSONRepository
from pkg.tracker.store import SQLiteRepository


@pytest.fixture(params=["sqlite", "json"])
def make_repo(request, tmp_path):
    """Factory for a repository of each backend.

    Calling it again opens a fresh instance over the same storage, which is
    how the tests simulate a restart.
    """
    def factory():
        if request.param == "sqlite":
            return SQLiteRepository(str(tmp_path / "todo.db"))
        return JSONRepository(str(tmp_path / "data"))
    return factory


@pytest.fixture
def repo(make_repo):
    r = make_repo()
    yield r
    r.close()
