"""
Pytest fixtures and test configuration for mindmate tests.
"""

from datetime import datetime, timezone

import pytest

from mindmate.client.local_store import LocalStore
from mindmate.crypto import Cipher, generate_key
from mindmate.reconciler import Reconciler
from mindmate.storage import SQLiteRecordStore


@pytest.fixture
def base_time():
    """Fixed reference time for ordering tests."""
    return datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def key_hex():
    return generate_key()


@pytest.fixture
def cipher(key_hex):
    return Cipher.from_hex(key_hex)


@pytest.fixture
def temp_db(tmp_path):
    """Create a temporary database path."""
    return tmp_path / "mindmate.db"


@pytest.fixture
def store(temp_db):
    """Create a SQLiteRecordStore for testing."""
    store = SQLiteRecordStore(temp_db)
    yield store
    store.close()


@pytest.fixture
def reconciler(store, cipher):
    """Reconciler over a real SQLite store."""
    return Reconciler(store, cipher)


@pytest.fixture
def local_store(tmp_path):
    """Client-side durable store."""
    return LocalStore(tmp_path / "client" / "client.db")
