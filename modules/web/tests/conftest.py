"""
Pytest Configuration for the Web module tests.
"""

import pytest


@pytest.fixture
def make_web_admin():
    """Factory for an Admin with a fresh WebModule registered."""
    from core.admin import Admin
    from core.config import AdminConfig, Features
    from modules.web.web_module import WebModule

    def _make(features=None, users=None):
        config = AdminConfig(title="Site Admin", base_path="/admin")
        if features is not None:
            config = AdminConfig(title="Site Admin", base_path="/admin", features=Features.of(features))
        module = WebModule(users=users)
        admin = Admin(config)
        admin.register_module(module)
        return admin, module

    return _make


@pytest.fixture
def make_client():
    """Build a TestClient over an Admin (initializes it)."""
    from fastapi.testclient import TestClient

    from core.server import create_base_app

    def _make(admin):
        return TestClient(create_base_app(admin))

    return _make


@pytest.fixture
def client(make_web_admin, make_client):
    admin, _ = make_web_admin()
    return make_client(admin)
