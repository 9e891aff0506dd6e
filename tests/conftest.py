"""
Shared test fixtures for entdoc.

Every test runs against a fresh in-memory SQLite client that is
registered as the process-wide client and forgotten afterwards.
"""

import pytest

from entdoc.client import reset_client, set_client
from entdoc.config import reset_settings
from entdoc.sqlite_client import SqliteClient


@pytest.fixture(autouse=True)
def client():
    """Register a fresh in-memory client for each test."""
    reset_client()
    reset_settings()
    db = SqliteClient(None)
    set_client(db)
    yield db
    reset_client()
    reset_settings()
    db.driver().close()
