"""
Pytest Configuration and Shared Fixtures.

Provides common test fixtures for the admin core unit tests.
"""

from typing import Any, Callable

import pytest


# =============================================================================
# Admin Fixtures
# =============================================================================


@pytest.fixture
def admin_config():
    """Admin configuration with every feature enabled."""
    from core.config import AdminConfig

    return AdminConfig(title="Test Admin", base_path="/admin")


@pytest.fixture
def admin(admin_config):
    """Fresh, unconfigured Admin instance."""
    from core.admin import Admin

    return Admin(admin_config)


@pytest.fixture
def jwt_authenticator():
    """JWT authenticator with a fixed test secret."""
    from core.auth import JWTAuthenticator

    return JWTAuthenticator("test-secret-key-12345")


@pytest.fixture
def make_client() -> Callable[[Any], Any]:
    """Build a TestClient over an Admin (initializes it)."""
    from fastapi.testclient import TestClient

    from core.server import create_base_app

    def _make(admin) -> TestClient:
        return TestClient(create_base_app(admin))

    return _make


# =============================================================================
# Repository & Panel Fixtures
# =============================================================================


@pytest.fixture
def note_fields():
    """Field set of a small notes panel."""
    from core.descriptors import Field, Option

    return (
        Field(name="title", label="Title", required=True),
        Field(name="body", label="Body", type="textarea"),
        Field(name="priority", label="Priority", type="integer"),
        Field(
            name="status",
            label="Status",
            type="select",
            options=(Option(value="open", label="Open"), Option(value="closed", label="Closed")),
        ),
    )


@pytest.fixture
def notes_repository(note_fields):
    """In-memory repository seeded with three notes."""
    from core.records import RecordSchema
    from core.repository import InMemoryRepository

    return InMemoryRepository(
        schema=RecordSchema.from_fields(note_fields),
        search_fields=("title", "body"),
        seed=(
            {"title": "Alpha", "body": "first note", "priority": 3, "status": "open"},
            {"title": "Beta", "body": "second note", "priority": 1, "status": "closed"},
            {"title": "Gamma", "body": "third entry", "priority": 2, "status": "open"},
        ),
    )


@pytest.fixture
def notes_builder(note_fields, notes_repository):
    """PanelBuilder for the notes panel."""
    from core.descriptors import Filter, PanelPermissions
    from core.panel import PanelBuilder

    return (
        PanelBuilder("Notes")
        .with_repository(notes_repository)
        .list_fields(*note_fields)
        .form_fields(*note_fields)
        .filters(Filter(name="_search", label="Search"), Filter(name="status", label="Status"))
        .permissions(PanelPermissions.for_resource("notes"))
    )


# =============================================================================
# Module Fixtures
# =============================================================================


@pytest.fixture
def mock_module_factory():
    """Factory for minimal IAdminModule implementations."""
    from core.descriptors import MenuItem, ModuleManifest
    from core.interface import IAdminModule

    def _create(module_id: str = "mock_module", feature_flags: frozenset = frozenset(), menu: tuple = ()):
        class MockModule(IAdminModule):
            def __init__(self) -> None:
                self.registered_with = None
                self.started = False
                self.stopped = False

            def manifest(self) -> ModuleManifest:
                return ModuleManifest(id=module_id, feature_flags=feature_flags)

            def register(self, ctx) -> None:
                self.registered_with = ctx

            def menu_items(self, locale: str) -> list[MenuItem]:
                return list(menu)

            async def on_startup(self) -> None:
                self.started = True

            async def on_shutdown(self) -> None:
                self.stopped = True

        return MockModule()

    return _create


@pytest.fixture
def mock_module(mock_module_factory):
    """Single mock module instance."""
    return mock_module_factory()
