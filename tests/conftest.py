"""
Pytest configuration and shared fixtures for all tests.
"""
import os
import sys

import pytest
from cachelib import SimpleCache

# Add project root to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

os.environ["FLASK_CONFIG"] = "testing"

from predictor import create_app  # noqa: E402
from predictor import db as _db  # noqa: E402
from predictor.services import install_engine  # noqa: E402
from predictor.services.leaderboard_cache import LayeredCache  # noqa: E402

from tests.factories import SEASON, OrganizationFactory, UserFactory  # noqa: E402


@pytest.fixture(scope="session")
def app():
    """Create application for testing."""
    app = create_app("testing")

    ctx = app.app_context()
    ctx.push()

    yield app

    ctx.pop()


@pytest.fixture
def db(app):
    """Fresh tables for each test."""
    _db.create_all()

    yield _db

    _db.session.remove()
    _db.drop_all()


@pytest.fixture
def local_tier():
    return SimpleCache()


@pytest.fixture
def shared_tier():
    return SimpleCache()


@pytest.fixture
def layered_cache(local_tier, shared_tier):
    return LayeredCache(local_tier, shared_tier, stale_after=300)


@pytest.fixture
def engine(app, db, layered_cache):
    """Leaderboard engine wired to per-test in-memory cache tiers."""
    return install_engine(app, layered_cache)


@pytest.fixture
def client(app, engine):
    return app.test_client()


@pytest.fixture
def runner(app, engine):
    return app.test_cli_runner()


@pytest.fixture
def season():
    return SEASON


@pytest.fixture
def organization(db):
    return OrganizationFactory(name="Office League", slug="office")


@pytest.fixture
def users(db):
    """Three players: Alice (U1), Bob (U2) and Cara (U3)."""
    return [
        UserFactory(username="alice", display_name="Alice"),
        UserFactory(username="bob", display_name="Bob"),
        UserFactory(username="cara", display_name="Cara"),
    ]
