import os
import sys

import pytest
from fastapi.testclient import TestClient

# Ensure the package is importable without installation
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from unified_api.actions import MANIFEST
from unified_api.bootstrap import build_container
from unified_api.config import Settings
from unified_api.main import create_app

from sample_actions import TEST_ACTIONS

USER_PASSWORD = "password123"


@pytest.fixture
def settings(tmp_path):
    # A file, not :memory:, so every worker thread sees the same data
    return Settings(
        env="dev",
        db_path=str(tmp_path / "unified_api.db"),
        dispatch_rpm=1000,
        audit_sink="sqlite",
    )


@pytest.fixture
def container(settings):
    c = build_container(settings, manifest=MANIFEST + TEST_ACTIONS)
    yield c
    c.close()


@pytest.fixture
def client(container):
    return TestClient(create_app(container=container))


@pytest.fixture
def user(container):
    return container.users.create("Test User", "user@acme.io", USER_PASSWORD)


@pytest.fixture
def admin(container):
    return container.users.create("Admin User", "admin@acme.io", USER_PASSWORD, is_admin=True)


@pytest.fixture
def token(container, user):
    token, _ = container.credentials.issue(user.id, "test token")
    return token


@pytest.fixture
def admin_token(container, admin):
    token, _ = container.credentials.issue(admin.id, "admin token")
    return token


@pytest.fixture
def auth(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_auth(admin_token):
    return {"Authorization": f"Bearer {admin_token}"}
