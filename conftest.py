"""Pytest configuration: set test env before any gitfolder imports so DB, storage and JWT use test values."""

import asyncio
import os
import tempfile

import pytest

# Set before gitfolder.db.session or gitfolder.config are used so engine and settings use test paths
_tmp = tempfile.mkdtemp(prefix="gitfolder_test_")
os.environ.setdefault("GITFOLDER_DB_PATH", os.path.join(_tmp, "test.db"))
os.environ.setdefault("GITFOLDER_REPOS_BASE_PATH", os.path.join(_tmp, "repos"))
os.environ.setdefault("GITFOLDER_UPLOAD_TEMP_PATH", os.path.join(_tmp, "uploads"))
os.environ.setdefault("GITFOLDER_SSH_KEY_PATH", os.path.join(_tmp, "ssh"))
os.environ.setdefault("GITFOLDER_SECRET_KEY", "test-secret-key-at-least-32-characters-long")
# API tests run as the auto-provisioned dev user
os.environ.setdefault("GITFOLDER_AUTH_MODE", "dev")
os.environ.setdefault("GITFOLDER_ENVIRONMENT", "test")


@pytest.fixture(scope="session", autouse=True)
def _register_models():
    """Import every model so string relationships resolve even in tests that build models directly."""
    from gitfolder.db.session import _import_models

    _import_models()


@pytest.fixture(scope="session")
def init_test_db():
    """Create tables once per test session."""
    from gitfolder.db.session import init_db

    asyncio.run(init_db())


@pytest.fixture
def session_factory(init_test_db):
    """Yield get_session so tests can use async with session_factory() as session."""
    from gitfolder.db.session import get_session
    return get_session
