"""
Web Module Entry Point.

Generic site back office: users, CMS pages (when the cms feature is on),
site settings, a user statistics widget and user search.
"""

import logging
from typing import Any, Iterable, Mapping, Optional

from core.cms import PageRepository
from core.context import AdminContext
from core.descriptors import (
    Action,
    Field,
    Filter,
    MenuItem,
    MenuTarget,
    ModuleManifest,
    Option,
    PanelPermissions,
    WidgetSpec,
)
from core.interface import IAdminModule, ModuleContext
from core.panel import PanelBuilder
from core.records import RecordSchema
from core.repository import InMemoryRepository, ListOptions
from core.search import RepositorySearchAdapter, SearchResult
from core.settings import SettingDefinition

logger = logging.getLogger(__name__)

USER_ROLES = ("admin", "editor", "viewer")
USER_STATUSES = ("active", "invited", "disabled")

USER_FIELDS = (
    Field(name="name", label="Name", required=True),
    Field(name="email", label="Email", type="email", required=True),
    Field(name="role", label="Role", type="select", options=tuple(Option(value=r, label=r.title()) for r in USER_ROLES)),
    Field(name="status", label="Status", type="select", options=tuple(Option(value=s, label=s.title()) for s in USER_STATUSES)),
)

DEFAULT_USERS = (
    {"name": "Ada Admin", "email": "ada@example.test", "role": "admin", "status": "active"},
    {"name": "Eddie Editor", "email": "eddie@example.test", "role": "editor", "status": "active"},
    {"name": "Vera Viewer", "email": "vera@example.test", "role": "viewer", "status": "invited"},
)

SITE_SETTINGS = (
    SettingDefinition(key="site.name", title="Site name", default="Example Site", group="site"),
    SettingDefinition(key="site.theme", title="Theme", default="light", allowed_values=("light", "dark"), group="site"),
    SettingDefinition(key="site.maintenance_mode", title="Maintenance mode", default=False, type="boolean", group="site"),
    SettingDefinition(key="site.items_per_page", title="Items per page", default=10, type="integer", group="site"),
)


class WebModule(IAdminModule):
    """
    Web example module.

    Args:
        users: Seed users; defaults to three demo accounts.
    """

    def __init__(self, users: Optional[Iterable[Mapping[str, Any]]] = None) -> None:
        self._users = InMemoryRepository(
            schema=RecordSchema.from_fields(USER_FIELDS),
            search_fields=("name", "email"),
            seed=DEFAULT_USERS if users is None else users,
        )
        self._base_path = "/admin"
        self._pages_enabled = False

    @property
    def users(self) -> InMemoryRepository:
        return self._users

    def manifest(self) -> ModuleManifest:
        return ModuleManifest(
            id="web",
            name_key="modules.web.name",
            description_key="modules.web.description",
        )

    def register(self, ctx: ModuleContext) -> None:
        admin = ctx.admin
        self._base_path = admin.config.normalized_base_path()

        admin.register_panel("users", self._users_panel())

        if admin.cms is not None:
            admin.register_panel("pages", self._pages_panel(PageRepository(admin.cms)))
            self._pages_enabled = True

        for definition in SITE_SETTINGS:
            admin.settings.register_definition(definition)

        admin.dashboard.register_provider(
            WidgetSpec(
                code="web.user_stats",
                name="Users",
                required_keys=("total", "active", "by_role"),
                permission="users.view",
            ),
            self._user_stats,
        )
        admin.search.register("users", RepositorySearchAdapter(
            self._users,
            "user",
            lambda r: SearchResult(
                type="user",
                id=r["id"],
                title=r.get("name") or r["id"],
                description=r.get("email", ""),
                url=f"{self._base_path}/users/{r['id']}",
                icon="user",
            ),
            permission="users.view",
        ))
        logger.info(f"Web module registered (pages={'on' if self._pages_enabled else 'off'})")

    def menu_items(self, locale: str) -> list[MenuItem]:
        children = [
            MenuItem(id="web.users", label="Users", label_key="menu.users", icon="users", position=1,
                     target=MenuTarget(path=f"{self._base_path}/users", key="users"), permissions=("users.view",)),
        ]
        if self._pages_enabled:
            children.append(
                MenuItem(id="web.pages", label="Pages", label_key="menu.pages", icon="file", position=2,
                         target=MenuTarget(path=f"{self._base_path}/pages", key="pages"), permissions=("pages.view",))
            )
        return [
            MenuItem(id="web.dashboard", label="Dashboard", label_key="menu.dashboard", icon="home", position=0,
                     target=MenuTarget(path=f"{self._base_path}", key="dashboard")),
            MenuItem(id="web.content", type="group", label="Content", label_key="menu.content",
                     position=10, children=tuple(children)),
            MenuItem(id="web.settings", label="Settings", label_key="menu.settings", icon="settings", position=90,
                     target=MenuTarget(path=f"{self._base_path}/settings", key="settings")),
        ]

    def _users_panel(self) -> PanelBuilder:
        async def deactivate(ctx: AdminContext, payload: dict[str, Any]) -> dict[str, Any]:
            ids = [str(i) for i in payload.get("ids") or []]
            for user_id in ids:
                await self._users.update(user_id, {"status": "disabled"})
            logger.info(f"Deactivated {len(ids)} user(s) by '{ctx.user_id}'")
            return {"updated": len(ids)}

        return (
            PanelBuilder("Users")
            .with_repository(self._users)
            .list_fields(*USER_FIELDS, Field(name="created_at", label="Created", type="datetime", read_only=True))
            .form_fields(*USER_FIELDS)
            .filters(
                Filter(name="_search", label="Search"),
                Filter(name="role", label="Role", type="select", options=USER_FIELDS[2].options),
                Filter(name="status", label="Status", type="select", options=USER_FIELDS[3].options),
            )
            .bulk_actions(Action(name="deactivate", label="Deactivate", icon="user-x", scope="bulk",
                                 permission="users.edit", confirm="Deactivate the selected users?"))
            .permissions(PanelPermissions.for_resource("users"))
            .on_action("deactivate", deactivate)
        )

    def _pages_panel(self, repository: PageRepository) -> PanelBuilder:
        fields = (
            Field(name="title", label="Title", required=True),
            Field(name="slug", label="Slug", required=True),
            Field(name="status", label="Status", type="select",
                  options=(Option(value="draft", label="Draft"), Option(value="published", label="Published"))),
        )
        return (
            PanelBuilder("Pages")
            .with_repository(repository)
            .list_fields(*fields)
            .form_fields(
                *fields,
                Field(name="blocks", label="Blocks", type="block-library-picker"),
                Field(name="meta_title", label="Meta title"),
                Field(name="meta_description", label="Meta description", type="textarea"),
            )
            .filters(Filter(name="_search", label="Search"), Filter(name="status", label="Status"))
            .use_blocks()
            .use_seo()
            .tree_view()
            .permissions(PanelPermissions.for_resource("pages"))
        )

    async def _user_stats(self, ctx: AdminContext, config: dict[str, Any]) -> dict[str, Any]:
        records, total = await self._users.list(ListOptions(page=1, per_page=200))
        by_role = {role: 0 for role in USER_ROLES}
        active = 0
        for record in records:
            by_role[record.get("role") or "viewer"] = by_role.get(record.get("role") or "viewer", 0) + 1
            if record.get("status") == "active":
                active += 1
        return {"total": total, "active": active, "by_role": by_role}
