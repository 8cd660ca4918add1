import os

import pytest

# Select the testing profile (in-memory store, no rate limiting) before the
# application modules read their settings.
os.environ.setdefault("APP_ENV", "testing")

from main import app
from repositories import get_balance_repository, reset_repositories


@pytest.fixture(autouse=True)
def memory_store():
    """Give every test a fresh in-memory balance store."""
    store = reset_repositories()
    yield store
    app.dependency_overrides.clear()


@pytest.fixture
def override_store():
    """Route the API at a custom balance repository for one test."""
    def _override(repo):
        app.dependency_overrides[get_balance_repository] = lambda: repo
        return repo
    return _override
