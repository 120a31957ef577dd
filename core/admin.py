"""
Admin Instance.

The composition root. An Admin accepts registrations (modules, panels,
widgets, commands, search adapters, settings, menu items, auth) while
configuring, and freezes them when ``initialize(router)`` binds its routes.

Sub-registrars for disabled features are null objects whose methods
succeed without effect.
"""

import logging
import threading
from typing import Optional

from fastapi import APIRouter

from core.auth import AuthConfig, Authenticator, Authorizer, DefaultAuthorizer
from core.cms import CMSBackend, cms_backend_for
from core.commands import CommandBus, NullCommandBus
from core.config import AdminConfig, Feature
from core.context import AdminContext
from core.dashboard import DashboardEngine, NullDashboard
from core.descriptors import MenuItem
from core.errors import AdminInitializedError, ForbiddenError, RegistrationClosedError
from core.interface import IAdminModule
from core.jobs import JobRegistry, NullJobRegistry
from core.navigation import NavigationService
from core.notifications import NotificationService
from core.panel import Panel, PanelBuilder, PanelRegistry
from core.registry import ModuleRegistry
from core.search import NullSearchEngine, SearchEngine
from core.settings import SettingsService

logger = logging.getLogger(__name__)


class Admin:
    """
    Central registrar of one admin back office.

    Lifecycle:
        configuring -> initialized (after ``initialize``). A second
        ``initialize`` raises AdminInitializedError and leaves routes as they are.
    """

    def __init__(self, config: Optional[AdminConfig] = None) -> None:
        self._config = config or AdminConfig()
        features = self._config.features

        self._panels = PanelRegistry()
        self._modules = ModuleRegistry(features)
        self._dashboard = DashboardEngine() if features.is_enabled(Feature.DASHBOARD) else NullDashboard()
        self._commands = CommandBus() if features.is_enabled(Feature.COMMANDS) else NullCommandBus()
        self._search = SearchEngine() if features.is_enabled(Feature.SEARCH) else NullSearchEngine()
        self._jobs = JobRegistry() if features.is_enabled(Feature.JOBS) else NullJobRegistry()
        self._cms: Optional[CMSBackend] = cms_backend_for("memory") if features.is_enabled(Feature.CMS) else None
        self._settings = SettingsService()
        self._notifications = NotificationService()
        self._navigation = NavigationService(self._config.nav_menu_code)

        self._authenticator: Optional[Authenticator] = None
        self._auth_config = AuthConfig(login_path=f"{self._config.normalized_base_path()}/login")
        self._authorizer: Authorizer = DefaultAuthorizer()

        self._initialized = False
        self._lock = threading.Lock()

    # =========================================================================
    # Accessors
    # =========================================================================

    @property
    def config(self) -> AdminConfig:
        return self._config

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def dashboard(self) -> DashboardEngine:
        return self._dashboard

    @property
    def commands(self) -> CommandBus:
        return self._commands

    @property
    def search(self) -> SearchEngine:
        return self._search

    @property
    def jobs(self) -> JobRegistry:
        return self._jobs

    @property
    def settings(self) -> SettingsService:
        return self._settings

    @property
    def notifications(self) -> NotificationService:
        return self._notifications

    @property
    def navigation(self) -> NavigationService:
        return self._navigation

    @property
    def cms(self) -> Optional[CMSBackend]:
        return self._cms

    @property
    def modules(self) -> ModuleRegistry:
        return self._modules

    @property
    def authenticator(self) -> Optional[Authenticator]:
        return self._authenticator

    @property
    def auth_config(self) -> AuthConfig:
        return self._auth_config

    @property
    def authorizer(self) -> Authorizer:
        return self._authorizer

    def feature_enabled(self, name: str | Feature) -> bool:
        return self._config.features.is_enabled(name)

    # =========================================================================
    # Registration
    # =========================================================================

    def _ensure_configuring(self, what: str) -> None:
        if self._initialized:
            raise RegistrationClosedError(f"Cannot register {what} after initialization")

    def register_module(self, module: IAdminModule) -> bool:
        """
        Register a module if its required features are enabled.

        Returns:
            True when the module registered, False when it was skipped.
        """
        self._ensure_configuring("modules")
        return self._modules.register(module, self, self._config.default_locale)

    def register_panel(self, slug: str, builder: PanelBuilder) -> Panel:
        self._ensure_configuring(f"panel '{slug}'")
        return self._panels.register(slug, builder)

    def add_menu_items(self, *items: MenuItem) -> None:
        self._ensure_configuring("menu items")
        self._navigation.add_items(list(items))

    def panel(self, slug: str) -> Optional[Panel]:
        return self._panels.get(slug)

    def panels(self) -> list[tuple[str, Panel]]:
        return self._panels.items()

    def with_auth(self, authenticator: Authenticator, auth_config: Optional[AuthConfig] = None) -> "Admin":
        self._ensure_configuring("authentication")
        self._authenticator = authenticator
        if auth_config is not None:
            self._auth_config = auth_config
        return self

    def with_authorizer(self, authorizer: Authorizer) -> "Admin":
        self._ensure_configuring("authorizer")
        self._authorizer = authorizer
        return self

    # =========================================================================
    # Authorization
    # =========================================================================

    def can(self, ctx: AdminContext, action: str, resource: str) -> bool:
        return self._authorizer.can(ctx, action, resource)

    def authorize(self, ctx: AdminContext, action: str, resource: str) -> None:
        """
        Raises:
            ForbiddenError: The authorizer denied ``action`` on ``resource``.
        """
        if not self._authorizer.can(ctx, action, resource):
            logger.info(f"Denied '{action}' on '{resource}' for user '{ctx.user_id}' ({ctx.role})")
            raise ForbiddenError(f"Not allowed to {action} on {resource}")

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def initialize(self, router: APIRouter) -> None:
        """
        Freeze registrations and bind routes onto ``router``.

        Raises:
            AdminInitializedError: Called a second time.
        """
        from core.routes import AdminRoutes

        with self._lock:
            if self._initialized:
                raise AdminInitializedError("Admin is already initialized")

            menu_items = self._modules.collect_menu_items(self._config.default_locale)
            self._navigation.ensure_main_group()
            self._navigation.add_items(menu_items)
            self._bind_scheduled_commands()

            for registrar in (
                self._panels, self._modules, self._dashboard, self._commands,
                self._search, self._jobs, self._settings, self._navigation,
            ):
                registrar.freeze()

            AdminRoutes(self).bind(router)
            self._initialized = True

        logger.info(
            f"Admin '{self._config.title}' initialized: {len(self._panels)} panel(s), "
            f"modules={self._modules.get_module_ids()}, features={self._config.features.enabled()}"
        )

    def _bind_scheduled_commands(self) -> None:
        from core.jobs import Job

        for handler in self._commands.scheduled():
            name = handler.message_type
            if self._jobs.get(name) is not None:
                continue

            async def run(ctx: AdminContext, _name: str = name) -> None:
                await self._commands.dispatch_by_name(ctx, _name, {})

            self._jobs.register(Job(
                name=name,
                schedule=getattr(handler, "cron_schedule", ""),
                description=getattr(handler, "description", ""),
                handler=run,
            ))

    async def startup(self) -> None:
        await self._modules.startup_all()

    async def shutdown(self) -> None:
        await self._modules.shutdown_all()
