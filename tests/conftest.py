# Pytest configuration and fixtures for lineintel tests
import os
import sys
from pathlib import Path

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

# API keys must exist before the HTTP layer is exercised.
os.environ.setdefault("API_KEY_USER1", "test-admin-key")
os.environ.setdefault("API_KEY_USER2", "test-user-key")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from lineintel.models import init_db
from lineintel.repository import LineRepository


@pytest.fixture
def engine():
    """Fresh in-memory SQLite database per test, shared across threads."""
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    yield session
    session.close()


@pytest.fixture
def repo(db):
    return LineRepository(db)
