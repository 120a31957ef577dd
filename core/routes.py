"""
Admin HTTP Surface.

Binds an Admin's panels and services onto a FastAPI router under the
configured base path. Every request is handled in the same order:
authenticate -> resolve entity -> authorize -> dispatch. Handlers return
JSON; failures use the envelope ``{"error": {"code", "message"}}``.
"""

import json
import logging
from typing import Any, Awaitable, Callable, TYPE_CHECKING

from fastapi import APIRouter, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, RedirectResponse, Response

from core.auth import is_delete_action
from core.context import AdminContext, reset_admin_context, set_admin_context
from core.descriptors import SEARCH_FILTER
from core.errors import AdminError, NotFoundError, UnauthorizedError, ValidationError
from core.panel import Panel, validate_action_payload
from core.repository import ListOptions, require_record_id

if TYPE_CHECKING:
    from core.admin import Admin

logger = logging.getLogger(__name__)

Operation = Callable[[Request, AdminContext], Awaitable[Any]]

RESERVED_QUERY = frozenset({
    "page", "per_page", "sort", "sort_by", "sort_desc", "order",
    "search", SEARCH_FILTER, "query", "q", "locale",
})


def error_response(exc: AdminError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def _wants_html(request: Request) -> bool:
    accept = request.headers.get("accept", "")
    return "text/html" in accept and "application/json" not in accept


def _int_param(request: Request, name: str, default: int) -> int:
    raw = request.query_params.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValidationError(f"Query parameter '{name}' must be an integer") from e


async def _json_body(request: Request, default: Any = None) -> Any:
    raw = await request.body()
    if not raw:
        if default is not None:
            return default
        raise ValidationError("Request body is required")
    try:
        return json.loads(raw)
    except ValueError as e:
        raise ValidationError("Request body is not valid JSON") from e


class AdminRoutes:
    """Route binder for one Admin instance."""

    def __init__(self, admin: "Admin") -> None:
        self._admin = admin
        self._base = admin.config.normalized_base_path()

    # =========================================================================
    # Request pipeline
    # =========================================================================

    async def _authenticate(self, request: Request) -> AdminContext:
        locale = (
            request.query_params.get("locale")
            or request.headers.get("accept-language", "").split(",")[0].split(";")[0].strip()
            or self._admin.config.default_locale
        )
        authenticator = self._admin.authenticator
        if authenticator is None:
            return AdminContext(locale=locale)
        ctx = await authenticator.authenticate(request)
        if ctx is None:
            raise UnauthorizedError("Authentication required")
        if request.query_params.get("locale"):
            ctx = ctx.with_locale(locale)
        return ctx

    async def _handle(self, request: Request, operation: Operation) -> Response:
        try:
            ctx = await self._authenticate(request)
        except UnauthorizedError as exc:
            if _wants_html(request):
                return RedirectResponse(self._admin.auth_config.login_path, status_code=302)
            return error_response(exc)

        token = set_admin_context(ctx)
        try:
            payload = await operation(request, ctx)
        except AdminError as exc:
            if exc.status_code >= 500:
                logger.error(f"{request.method} {request.url.path} failed: {exc}")
            return error_response(exc)
        except Exception:
            logger.exception(f"{request.method} {request.url.path} raised an unexpected error")
            return JSONResponse(
                status_code=500,
                content={"error": {"code": "INTERNAL", "message": "Internal server error"}},
            )
        finally:
            reset_admin_context(token)

        if isinstance(payload, Response):
            return payload
        return JSONResponse(content=jsonable_encoder(payload))

    def _endpoint(self, operation: Operation) -> Callable[[Request], Awaitable[Response]]:
        async def endpoint(request: Request) -> Response:
            return await self._handle(request, operation)
        endpoint.__name__ = operation.__name__
        return endpoint

    def _route(self, router: APIRouter, path: str, method: str, operation: Operation, tag: str) -> None:
        router.add_api_route(
            f"{self._base}/api/{path}" if path else f"{self._base}/api",
            self._endpoint(operation),
            methods=[method],
            tags=[tag],
            name=f"{method.lower()}_{path or 'root'}".replace("/", "_").replace("{", "").replace("}", ""),
        )

    # =========================================================================
    # Binding
    # =========================================================================

    def bind(self, router: APIRouter) -> None:
        """Register every admin route on ``router``."""
        self._route(router, "dashboard", "GET", self.dashboard, "admin:dashboard")
        self._route(router, "search", "GET", self.search, "admin:search")
        self._route(router, "jobs", "GET", self.list_jobs, "admin:jobs")
        self._route(router, "jobs/{name}/trigger", "POST", self.trigger_job, "admin:jobs")
        self._route(router, "navigation", "GET", self.navigation, "admin:navigation")
        self._route(router, "settings", "GET", self.get_settings, "admin:settings")
        self._route(router, "settings", "PATCH", self.update_settings, "admin:settings")
        self._route(router, "notifications", "GET", self.list_notifications, "admin:notifications")
        self._route(router, "notifications/{notification_id}/read", "POST", self.read_notification, "admin:notifications")

        for slug, panel in self._admin.panels():
            self._bind_panel(router, slug, panel)

        logger.info(f"Admin routes bound under '{self._base or '/'}'.")

    def _bind_panel(self, router: APIRouter, slug: str, panel: Panel) -> None:
        ops = PanelOperations(self._admin, slug, panel)
        tag = f"admin:{slug}"
        self._route(router, slug, "GET", ops.list, tag)
        self._route(router, slug, "POST", ops.create, tag)
        self._route(router, f"{slug}/actions/{{action}}", "POST", ops.action, tag)
        self._route(router, f"{slug}/{{record_id}}", "GET", ops.detail, tag)
        self._route(router, f"{slug}/{{record_id}}", "PATCH", ops.update, tag)
        self._route(router, f"{slug}/{{record_id}}", "DELETE", ops.delete, tag)

    # =========================================================================
    # Service endpoints
    # =========================================================================

    async def dashboard(self, request: Request, ctx: AdminContext) -> dict[str, Any]:
        area = request.query_params.get("area") or None
        rendered = await self._admin.dashboard.render(ctx, area=area, authorizer=self._admin.authorizer)
        return rendered.to_dict()

    async def search(self, request: Request, ctx: AdminContext) -> dict[str, Any]:
        query = request.query_params.get("query") or request.query_params.get("q") or ""
        limit = _int_param(request, "limit", 10)
        results = await self._admin.search.query(ctx, query, limit=limit, authorizer=self._admin.authorizer)
        return {"query": query, "results": [r.model_dump() for r in results], "total": len(results)}

    async def list_jobs(self, request: Request, ctx: AdminContext) -> dict[str, Any]:
        self._admin.authorize(ctx, "jobs.view", "jobs")
        return {"jobs": self._admin.jobs.list_jobs()}

    async def trigger_job(self, request: Request, ctx: AdminContext) -> dict[str, Any]:
        name = request.path_params["name"]
        if self._admin.jobs.get(name) is None:
            raise NotFoundError(f"Job '{name}' is not registered")
        self._admin.authorize(ctx, "jobs.trigger", name)
        return {"data": await self._admin.jobs.trigger(name, ctx)}

    async def navigation(self, request: Request, ctx: AdminContext) -> dict[str, Any]:
        menu_code = request.query_params.get("menu_code") or self._admin.navigation.default_menu_code
        items = self._admin.navigation.compose(
            ctx, menu_code=menu_code, locale=ctx.locale, authorizer=self._admin.authorizer
        )
        return {"menu_code": menu_code, "locale": ctx.locale, "items": items}

    async def get_settings(self, request: Request, ctx: AdminContext) -> dict[str, Any]:
        self._admin.authorize(ctx, "settings.view", "settings")
        settings = self._admin.settings
        return {
            "values": settings.resolve_all(ctx.scope),
            "definitions": [
                {"key": d.key, "title": d.title, "description": d.description, "type": d.type,
                 "default": d.default, "allowed_values": list(d.allowed_values), "group": d.group}
                for d in settings.definitions()
            ],
        }

    async def update_settings(self, request: Request, ctx: AdminContext) -> dict[str, Any]:
        self._admin.authorize(ctx, "settings.edit", "settings")
        body = await _json_body(request)
        if not isinstance(body, dict):
            raise ValidationError("Settings body must be an object")
        return {"values": self._admin.settings.update(body, ctx.scope)}

    async def list_notifications(self, request: Request, ctx: AdminContext) -> dict[str, Any]:
        unread_only = request.query_params.get("unread", "").lower() in ("1", "true", "yes")
        items = self._admin.notifications.list(ctx.user_id, unread_only=unread_only)
        return {"data": [n.to_dict() for n in items], "unread": self._admin.notifications.unread_count(ctx.user_id)}

    async def read_notification(self, request: Request, ctx: AdminContext) -> dict[str, Any]:
        notification = self._admin.notifications.mark_read(ctx.user_id, request.path_params["notification_id"])
        return {"data": notification.to_dict()}


class PanelOperations:
    """CRUD and action endpoints of one panel."""

    def __init__(self, admin: "Admin", slug: str, panel: Panel) -> None:
        self._admin = admin
        self._slug = slug
        self._panel = panel

    def _authorize(self, ctx: AdminContext, operation: str) -> None:
        self._admin.authorize(ctx, self._panel.permission_for(operation), self._slug)

    def _list_options(self, request: Request) -> ListOptions:
        params = request.query_params
        declared = {f.name for f in self._panel.filters}
        filters: dict[str, Any] = {}
        for key in params.keys():
            if key in RESERVED_QUERY:
                continue
            if declared and key not in declared:
                continue
            values = params.getlist(key)
            filters[key] = values if len(values) > 1 else values[0]
        search = params.get(SEARCH_FILTER) or params.get("search") or ""
        if search:
            filters[SEARCH_FILTER] = search
        sort_by = params.get("sort_by") or params.get("sort") or ""
        sort_desc = params.get("sort_desc", "").lower() in ("1", "true", "yes") or params.get("order", "").lower() == "desc"
        if sort_by.startswith("-"):
            sort_by, sort_desc = sort_by[1:], True
        return ListOptions(
            page=_int_param(request, "page", 1),
            per_page=_int_param(request, "per_page", 10),
            filters=filters,
            sort_by=sort_by,
            sort_desc=sort_desc,
        ).normalized()

    async def list(self, request: Request, ctx: AdminContext) -> dict[str, Any]:
        opts = self._list_options(request)
        self._authorize(ctx, "view")
        records, total = await self._panel.repository.list(opts)
        return {"data": records, "meta": {"total": total, "page": opts.page, "per_page": opts.per_page}}

    async def create(self, request: Request, ctx: AdminContext) -> dict[str, Any]:
        body = await _json_body(request)
        self._authorize(ctx, "create")
        payload = self._panel.prepare_payload(body, partial=False)
        record = await self._panel.repository.create(payload)
        logger.info(f"Panel '{self._slug}': created record '{record.get('id')}' by '{ctx.user_id}'")
        return {"data": record}

    async def detail(self, request: Request, ctx: AdminContext) -> dict[str, Any]:
        record_id = require_record_id(request.path_params["record_id"])
        self._authorize(ctx, "view")
        return {"data": await self._panel.repository.get(record_id)}

    async def update(self, request: Request, ctx: AdminContext) -> dict[str, Any]:
        record_id = require_record_id(request.path_params["record_id"])
        body = await _json_body(request)
        self._authorize(ctx, "edit")
        payload = self._panel.prepare_payload(body, partial=True)
        return {"data": await self._panel.repository.update(record_id, payload)}

    async def delete(self, request: Request, ctx: AdminContext) -> dict[str, Any]:
        record_id = require_record_id(request.path_params["record_id"])
        permission = self._panel.permission_for("delete")
        self._admin.authorize(ctx, permission, self._slug)
        if not is_delete_action(permission):
            # A custom token must still pass the authorizer's delete rule.
            self._admin.authorize(ctx, f"{self._slug}.delete", self._slug)
        await self._panel.repository.delete(record_id)
        logger.info(f"Panel '{self._slug}': deleted record '{record_id}' by '{ctx.user_id}'")
        return {"data": {"id": record_id, "deleted": True}}

    async def action(self, request: Request, ctx: AdminContext) -> dict[str, Any]:
        name = request.path_params["action"]
        action = self._panel.find_action(name)
        if action is None:
            raise NotFoundError(f"Action '{name}' not found on panel '{self._slug}'")
        payload = await _json_body(request, default={})
        self._admin.authorize(ctx, action.permission or name, self._slug)
        validate_action_payload(action, payload)
        if action.command_name:
            result = await self._admin.commands.dispatch_by_name(ctx, action.command_name, payload)
        else:
            result = await self._panel.run_inline_action(ctx, action, payload)
        return {"data": result if result is not None else {"action": name, "status": "ok"}}
