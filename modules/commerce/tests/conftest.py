"""
Pytest Configuration for the Commerce module tests.
"""

import pytest


@pytest.fixture
def commerce_module():
    """Fresh CommerceModule with its seeded catalog."""
    from modules.commerce.commerce_module import CommerceModule

    return CommerceModule()


@pytest.fixture
def commerce_admin(commerce_module):
    """Admin with the commerce module registered."""
    from core.admin import Admin
    from core.config import AdminConfig

    admin = Admin(AdminConfig(title="Store Admin", base_path="/admin"))
    admin.register_module(commerce_module)
    return admin


@pytest.fixture
def client(commerce_admin):
    """TestClient over the initialized commerce admin."""
    from fastapi.testclient import TestClient

    from core.server import create_base_app

    return TestClient(create_base_app(commerce_admin))
