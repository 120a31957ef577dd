"""Core module - Admin composition kernel."""
from core.admin import Admin
from core.auth import AuthConfig, Authenticator, Authorizer, DefaultAuthorizer, JWTAuthenticator, RolePolicyAuthorizer
from core.commands import CommandBus, CommandHandler, GenericCommand
from core.config import AdminConfig, AdminSettings, Feature, Features, get_admin_settings
from core.context import AdminContext, Scope, get_admin_context
from core.dashboard import DashboardEngine, WidgetProvider, validate_widget_payload
from core.descriptors import (
    SEARCH_FILTER,
    Action,
    Field,
    Filter,
    MenuItem,
    MenuTarget,
    ModuleManifest,
    Option,
    PanelPermissions,
    PanelTab,
    WidgetSpec,
)
from core.interface import IAdminModule, ModuleContext
from core.jobs import Job, JobRegistry
from core.logging_config import setup_logging
from core.navigation import NavigationService
from core.panel import Panel, PanelBuilder, PanelRegistry
from core.registry import ModuleRegistry
from core.repository import InMemoryRepository, ListOptions, Repository
from core.search import RepositorySearchAdapter, SearchAdapter, SearchEngine, SearchResult
from core.server import create_base_app
from core.settings import SettingDefinition, SettingsService

__all__ = [
    # Composition root
    "Admin", "AdminConfig", "AdminSettings", "Feature", "Features", "get_admin_settings",
    "create_base_app", "setup_logging",
    # Context
    "AdminContext", "Scope", "get_admin_context",
    # Descriptors
    "SEARCH_FILTER", "Action", "Field", "Filter", "MenuItem", "MenuTarget",
    "ModuleManifest", "Option", "PanelPermissions", "PanelTab", "WidgetSpec",
    # Panels & repositories
    "Panel", "PanelBuilder", "PanelRegistry",
    "Repository", "InMemoryRepository", "ListOptions",
    # Modules
    "IAdminModule", "ModuleContext", "ModuleRegistry",
    # Services
    "CommandBus", "CommandHandler", "GenericCommand",
    "DashboardEngine", "WidgetProvider", "validate_widget_payload",
    "SearchEngine", "SearchAdapter", "SearchResult", "RepositorySearchAdapter",
    "Job", "JobRegistry", "NavigationService", "SettingDefinition", "SettingsService",
    # Auth
    "AuthConfig", "Authenticator", "Authorizer", "DefaultAuthorizer",
    "JWTAuthenticator", "RolePolicyAuthorizer",
]
