"""
Dashboard Engine.

Widget providers are plain callables registered with a WidgetSpec. At render
time every provider of an area is invoked with the request's AdminContext and
its payload is checked against the canonical widget contract:

- the payload is a JSON object,
- every key in ``required_keys`` is present and not None,
- no string anywhere in the payload contains raw page markup.

Violating widgets are dropped and reported; providers that raise are
reported as unavailable. Neither fails the dashboard response.
"""

import inspect
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, TYPE_CHECKING

from core.context import AdminContext
from core.descriptors import WidgetSpec
from core.errors import ConflictError, RegistrationClosedError, WidgetContractViolation

if TYPE_CHECKING:
    from core.auth import Authorizer

logger = logging.getLogger(__name__)

FORBIDDEN_MARKUP = ("<script", "<html", "<!doctype", "<head", "<body")

WidgetHandler = Callable[[AdminContext, dict[str, Any]], Awaitable[dict[str, Any]] | dict[str, Any]]


@dataclass(frozen=True)
class WidgetProvider:
    """A widget definition plus the function producing its payload."""

    spec: WidgetSpec
    handler: WidgetHandler

    @property
    def code(self) -> str:
        return self.spec.code


@dataclass
class WidgetPayload:
    code: str
    name: str
    area: str
    position: int
    config: dict[str, Any]
    data: dict[str, Any]
    command_name: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "name": self.name,
            "area": self.area,
            "position": self.position,
            "config": self.config,
            "data": self.data,
            "command_name": self.command_name,
        }


@dataclass
class DashboardRender:
    """Result of one dashboard render."""

    widgets: list[WidgetPayload] = field(default_factory=list)
    unavailable: list[dict[str, str]] = field(default_factory=list)
    violations: list[dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "widgets": [w.to_dict() for w in self.widgets],
            "unavailable": self.unavailable,
            "errors": self.violations,
        }


def validate_widget_payload(spec: WidgetSpec, payload: Any) -> dict[str, Any]:
    """
    Check a provider payload against the canonical widget contract.

    Raises:
        WidgetContractViolation: If the payload breaks the contract.
    """
    if not isinstance(payload, dict):
        raise WidgetContractViolation(f"Widget '{spec.code}' payload must be an object")
    missing = [key for key in spec.required_keys if payload.get(key) is None]
    if missing:
        raise WidgetContractViolation(
            f"Widget '{spec.code}' payload is missing required key(s): {', '.join(missing)}"
        )
    offending = _find_markup(payload)
    if offending is not None:
        raise WidgetContractViolation(
            f"Widget '{spec.code}' payload contains raw markup at '{offending}'"
        )
    return payload


def _find_markup(value: Any, path: str = "$") -> Optional[str]:
    if isinstance(value, str):
        lowered = value.lower()
        return path if any(marker in lowered for marker in FORBIDDEN_MARKUP) else None
    if isinstance(value, dict):
        for key, item in value.items():
            found = _find_markup(str(key), f"{path}.{key}") or _find_markup(item, f"{path}.{key}")
            if found:
                return found
    elif isinstance(value, (list, tuple)):
        for index, item in enumerate(value):
            found = _find_markup(item, f"{path}[{index}]")
            if found:
                return found
    return None


class DashboardEngine:
    """Provider registry with per-area composition."""

    def __init__(self) -> None:
        self._providers: dict[str, WidgetProvider] = {}
        self._layouts: dict[str, list[str]] = {}
        self._overrides: dict[tuple[str, str], dict[str, Any]] = {}
        self._lock = threading.Lock()
        self._frozen = False

    @property
    def enabled(self) -> bool:
        return True

    def register_provider(self, spec: WidgetSpec, handler: WidgetHandler) -> WidgetProvider:
        """
        Register a widget provider.

        Raises:
            ConflictError: A provider with the same code exists.
            RegistrationClosedError: Engine frozen.
        """
        provider = WidgetProvider(spec=spec, handler=handler)
        with self._lock:
            if self._frozen:
                raise RegistrationClosedError(f"Cannot register widget '{spec.code}' after initialization")
            if spec.code in self._providers:
                raise ConflictError(f"Widget '{spec.code}' is already registered", code="WIDGET_DUPLICATE")
            self._providers[spec.code] = provider
            self._layouts.setdefault(spec.default_area, []).append(spec.code)
        logger.debug(f"Widget '{spec.code}' registered in area '{spec.default_area}'.")
        return provider

    def configure_area(self, area: str, codes: list[str], overrides: Optional[dict[str, dict[str, Any]]] = None) -> None:
        """Set the ordered widgets of an area and optional per-widget config overrides."""
        with self._lock:
            if self._frozen:
                raise RegistrationClosedError("Cannot change dashboard layout after initialization")
            self._layouts[area] = list(codes)
            for code, config in (overrides or {}).items():
                self._overrides[(area, code)] = dict(config)

    def freeze(self) -> None:
        self._frozen = True

    def providers(self) -> list[WidgetProvider]:
        return list(self._providers.values())

    def areas(self) -> list[str]:
        return list(self._layouts)

    async def render(
        self,
        ctx: AdminContext,
        area: Optional[str] = None,
        authorizer: Optional["Authorizer"] = None,
    ) -> DashboardRender:
        """
        Render the widgets of one area, or of every area.

        Args:
            ctx: Request context passed to providers.
            area: Area to render; all areas when None.
            authorizer: Used to hide widgets whose permission is denied.
        """
        result = DashboardRender()
        areas = [area] if area else list(self._layouts)
        for area_name in areas:
            for position, code in enumerate(self._layouts.get(area_name, [])):
                provider = self._providers.get(code)
                if provider is None:
                    continue
                spec = provider.spec
                if spec.permission and authorizer is not None and not authorizer.can(ctx, spec.permission, code):
                    continue
                config = {**spec.default_config, **self._overrides.get((area_name, code), {})}
                try:
                    payload = provider.handler(ctx, config)
                    if inspect.isawaitable(payload):
                        payload = await payload
                except Exception as exc:
                    logger.warning(f"Widget '{code}' unavailable: {exc}")
                    result.unavailable.append({"code": code, "area": area_name, "error": str(exc)})
                    continue
                try:
                    data = validate_widget_payload(spec, payload)
                except WidgetContractViolation as exc:
                    logger.error(f"Widget '{code}' dropped: {exc.message}")
                    result.violations.append({"code": exc.code, "widget": code, "message": exc.message})
                    continue
                result.widgets.append(
                    WidgetPayload(
                        code=code,
                        name=spec.name or code,
                        area=area_name,
                        position=position,
                        config=config,
                        data=data,
                        command_name=spec.command_name,
                    )
                )
        return result


class NullDashboard(DashboardEngine):
    """Dashboard used when the dashboard feature is disabled."""

    @property
    def enabled(self) -> bool:
        return False

    def register_provider(self, spec: WidgetSpec, handler: WidgetHandler) -> WidgetProvider:
        return WidgetProvider(spec=spec, handler=handler)

    def configure_area(self, area: str, codes: list[str], overrides: Optional[dict[str, dict[str, Any]]] = None) -> None:
        return None

    async def render(self, ctx: AdminContext, area: Optional[str] = None, authorizer: Optional["Authorizer"] = None) -> DashboardRender:
        return DashboardRender()
