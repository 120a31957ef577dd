"""
Panel Builder & Registry.

PanelBuilder composes descriptors fluently; ``build()`` validates them and
returns an immutable Panel. PanelRegistry addresses panels by slug.
"""

import inspect
import logging
import re
import threading
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Iterable, Mapping, Optional, TYPE_CHECKING

from core.descriptors import Action, Field, Filter, PanelPermissions, PanelTab
from core.errors import (
    NotFoundError,
    PanelDuplicateError,
    PanelRepositoryMissingError,
    PanelValidationError,
    RegistrationClosedError,
    ValidationError,
)
from core.records import RecordSchema
from core.repository import Repository

if TYPE_CHECKING:
    from core.context import AdminContext

logger = logging.getLogger(__name__)

SLUG_PATTERN = re.compile(r"^[a-z0-9][a-z0-9_-]*$")
RESERVED_SLUGS = frozenset({"dashboard", "search", "jobs", "navigation", "settings", "notifications"})

# form fields exempt from the list-subset rule
MEDIA_FIELD_TYPES = frozenset({"media", "image", "file", "block-library-picker", "blocks", "block"})
BLOCK_FIELD_NAMES = frozenset({"blocks", "content_blocks"})
SEO_FIELD_NAMES = frozenset({"seo", "meta_title", "meta_description", "meta_keywords", "og_image"})

InlineActionHandler = Callable[["AdminContext", dict[str, Any]], Awaitable[Any] | Any]

JSON_TYPES = {
    "number": "number",
    "integer": "integer",
    "boolean": "boolean",
    "toggle": "boolean",
    "json": "object",
    "object": "object",
    "seo": "object",
    "tags": "array",
    "blocks": "array",
    "block-library-picker": "array",
    "multiselect": "array",
}

WIDGETS = {
    "textarea": "textarea",
    "select": "select",
    "email": "email",
    "datetime": "datetime",
    "date": "date",
    "media": "media-picker",
    "block-library-picker": "block-library-picker",
    "boolean": "toggle",
    "number": "number",
    "integer": "number",
    "json": "json-editor",
}


@dataclass(frozen=True, eq=False)
class Panel:
    """
    A validated, immutable CRUD surface for one entity kind.

    Panels are produced by PanelBuilder.build() and never mutated afterwards.
    """

    name: str
    repository: Repository
    list_fields: tuple[Field, ...] = ()
    form_fields: tuple[Field, ...] = ()
    detail_fields: tuple[Field, ...] = ()
    filters: tuple[Filter, ...] = ()
    actions: tuple[Action, ...] = ()
    bulk_actions: tuple[Action, ...] = ()
    tabs: tuple[PanelTab, ...] = ()
    permissions: PanelPermissions = PanelPermissions()
    uses_blocks: bool = False
    uses_seo: bool = False
    tree_view: bool = False
    action_handlers: Mapping[str, InlineActionHandler] = field(default_factory=dict, repr=False)
    record_schema: RecordSchema = field(init=False, repr=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "action_handlers", MappingProxyType(dict(self.action_handlers)))
        object.__setattr__(
            self,
            "record_schema",
            RecordSchema.from_fields(self.form_fields, self.list_fields, self.detail_fields),
        )

    def find_action(self, name: str) -> Optional[Action]:
        for action in self.actions + self.bulk_actions:
            if action.name == name:
                return action
        return None

    def permission_for(self, operation: str) -> str:
        return self.permissions.for_operation(operation)

    def writable_fields(self) -> list[Field]:
        return [f for f in self.form_fields if not f.read_only]

    def prepare_payload(self, payload: dict[str, Any], *, partial: bool) -> dict[str, Any]:
        """
        Restrict an incoming create/update body to the panel's form.

        Read-only and unknown keys are dropped when form fields are declared.
        Missing required fields are reported on create.
        """
        if not isinstance(payload, dict):
            raise ValidationError("Request body must be a JSON object")
        if not self.form_fields:
            return dict(payload)
        writable = {f.name: f for f in self.writable_fields()}
        cleaned = {k: v for k, v in payload.items() if k in writable}
        if not partial:
            missing = [
                f.name for f in writable.values()
                if f.required and (cleaned.get(f.name) is None or cleaned.get(f.name) == "")
            ]
            if missing:
                raise ValidationError(
                    f"Missing required field(s): {', '.join(missing)}",
                    metadata={"fields": missing},
                )
        for name, value in cleaned.items():
            f = writable[name]
            if f.type == "select" and value not in (None, "") and f.options:
                allowed = {o.value for o in f.options}
                if str(value) not in allowed:
                    raise ValidationError(
                        f"Field '{name}' must be one of: {', '.join(sorted(allowed))}"
                    )
        return cleaned

    async def run_inline_action(self, ctx: "AdminContext", action: Action, payload: dict[str, Any]) -> Any:
        handler = self.action_handlers.get(action.name)
        if handler is None:
            raise NotFoundError(f"Action '{action.name}' has no handler on panel '{self.name}'")
        result = handler(ctx, payload)
        if inspect.isawaitable(result):
            result = await result
        return result

    def schema(self) -> dict[str, Any]:
        """Export the panel descriptors for UI rendering."""
        return {
            "name": self.name,
            "list_fields": [f.model_dump() for f in self.list_fields],
            "form_fields": [f.model_dump() for f in self.form_fields],
            "detail_fields": [f.model_dump() for f in self.detail_fields],
            "filters": [f.model_dump() for f in self.filters],
            "actions": [a.model_dump() for a in self.actions],
            "bulk_actions": [a.model_dump() for a in self.bulk_actions],
            "tabs": [t.model_dump() for t in self.tabs],
            "permissions": self.permissions.model_dump(),
            "use_blocks": self.uses_blocks,
            "use_seo": self.uses_seo,
            "tree_view": self.tree_view,
            "form_schema": build_form_schema(self.form_fields),
        }


def build_form_schema(fields: Iterable[Field]) -> dict[str, Any]:
    """Translate form fields into a JSON-schema object with widget hints."""
    properties: dict[str, Any] = {}
    required: list[str] = []
    for f in fields:
        prop: dict[str, Any] = {
            "type": JSON_TYPES.get(f.type, "string"),
            "title": f.label or f.name,
        }
        widget = WIDGETS.get(f.type)
        if widget:
            prop["x-formgen:widget"] = widget
        if f.type == "email":
            prop["format"] = "email"
        if f.type in ("datetime", "date"):
            prop["format"] = "date-time" if f.type == "datetime" else "date"
        if f.options:
            prop["enum"] = [o.value for o in f.options]
        if f.read_only:
            prop["readOnly"] = True
        if f.validation:
            prop.update(f.validation)
        properties[f.name] = prop
        if f.required:
            required.append(f.name)
    schema: dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return schema


class PanelBuilder:
    """
    Fluent composer of panel descriptors.

    Each setter replaces what an earlier call set and returns the builder.

    Example:
        panel = (
            PanelBuilder("products")
            .with_repository(repo)
            .list_fields(Field(name="name"), Field(name="price", type="number"))
            .form_fields(Field(name="name", required=True))
            .build()
        )
    """

    def __init__(self, name: str = "") -> None:
        self._name = name
        self._repository: Optional[Repository] = None
        self._list: tuple[Field, ...] = ()
        self._form: tuple[Field, ...] = ()
        self._detail: tuple[Field, ...] = ()
        self._filters: tuple[Filter, ...] = ()
        self._actions: tuple[Action, ...] = ()
        self._bulk: tuple[Action, ...] = ()
        self._tabs: tuple[PanelTab, ...] = ()
        self._permissions = PanelPermissions()
        self._blocks = False
        self._seo = False
        self._tree = False
        self._handlers: dict[str, InlineActionHandler] = {}

    @property
    def name(self) -> str:
        return self._name

    def named(self, name: str) -> "PanelBuilder":
        self._name = name
        return self

    def with_repository(self, repository: Repository) -> "PanelBuilder":
        self._repository = repository
        return self

    def list_fields(self, *fields: Field) -> "PanelBuilder":
        self._list = tuple(fields)
        return self

    def form_fields(self, *fields: Field) -> "PanelBuilder":
        self._form = tuple(fields)
        return self

    def detail_fields(self, *fields: Field) -> "PanelBuilder":
        self._detail = tuple(fields)
        return self

    def filters(self, *filters: Filter) -> "PanelBuilder":
        self._filters = tuple(filters)
        return self

    def actions(self, *actions: Action) -> "PanelBuilder":
        self._actions = tuple(actions)
        return self

    def bulk_actions(self, *actions: Action) -> "PanelBuilder":
        self._bulk = tuple(actions)
        return self

    def tabs(self, *tabs: PanelTab) -> "PanelBuilder":
        self._tabs = tuple(tabs)
        return self

    def permissions(self, permissions: PanelPermissions) -> "PanelBuilder":
        self._permissions = permissions
        return self

    def use_blocks(self, enabled: bool = True) -> "PanelBuilder":
        self._blocks = enabled
        return self

    def use_seo(self, enabled: bool = True) -> "PanelBuilder":
        self._seo = enabled
        return self

    def tree_view(self, enabled: bool = True) -> "PanelBuilder":
        self._tree = enabled
        return self

    def on_action(self, name: str, handler: InlineActionHandler) -> "PanelBuilder":
        """Attach an in-line handler for an action without a command name."""
        self._handlers[name] = handler
        return self

    def build(self) -> Panel:
        """
        Validate descriptors and freeze the panel.

        Raises:
            PanelRepositoryMissingError: No repository bound.
            PanelValidationError: Descriptors contradict each other.
        """
        if self._repository is None:
            raise PanelRepositoryMissingError(f"Panel '{self._name}' has no repository")

        problems = self._validate()
        if problems:
            raise PanelValidationError(
                f"Panel '{self._name}' is invalid: {'; '.join(problems)}",
                metadata={"panel": self._name, "problems": problems},
            )

        list_fields = self._list or self._form
        return Panel(
            name=self._name,
            repository=self._repository,
            list_fields=list_fields,
            form_fields=self._form,
            detail_fields=self._detail or list_fields,
            filters=self._filters,
            actions=self._actions,
            bulk_actions=self._bulk,
            tabs=tuple(sorted(self._tabs, key=lambda t: t.position)),
            permissions=self._permissions,
            uses_blocks=self._blocks,
            uses_seo=self._seo,
            tree_view=self._tree,
            action_handlers=self._handlers,
        )

    def _validate(self) -> list[str]:
        problems: list[str] = []

        for f in self._list + self._form + self._detail:
            if f.type == "select" and not f.options:
                problems.append(f"select field '{f.name}' has no options")

        for action in self._actions + self._bulk:
            if action.command_name and not action.permission.strip():
                problems.append(f"action '{action.name}' dispatches a command without a permission")
            problems.extend(_validate_payload_contract(action))

        for action in self._bulk:
            if not (action.label.strip() or action.label_key.strip()):
                problems.append(f"bulk action '{action.name}' has no label")

        if self._list:
            allowed = {f.name for f in self._list}
            for f in self._form:
                if f.name in allowed or self._is_derived(f):
                    continue
                problems.append(f"form field '{f.name}' is not a list field")

        if self._permissions.create:
            for f in self._form:
                if f.required and f.read_only:
                    problems.append(f"form field '{f.name}' is both required and read-only")

        names = [a.name for a in self._actions]
        for name in sorted({n for n in names if names.count(n) > 1}):
            problems.append(f"action '{name}' declared more than once")

        return problems

    def _is_derived(self, f: Field) -> bool:
        if f.type in MEDIA_FIELD_TYPES:
            return True
        if self._blocks and f.name in BLOCK_FIELD_NAMES:
            return True
        if self._seo and (f.name in SEO_FIELD_NAMES or f.name.startswith("seo_")):
            return True
        return False


def _validate_payload_contract(action: Action) -> list[str]:
    if not action.payload_required:
        return []
    schema = action.payload_schema
    if not schema:
        return [f"action '{action.name}' requires payload keys but has no payload_schema"]
    problems: list[str] = []
    properties = schema.get("properties") or {}
    for key in action.payload_required:
        if key not in properties:
            problems.append(f"action '{action.name}' payload_schema does not declare '{key}'")
    additional = schema.get("additionalProperties", schema.get("additional_properties"))
    if additional is not False:
        problems.append(f"action '{action.name}' payload_schema must set additionalProperties=false")
    return problems


def validate_action_payload(action: Action, payload: dict[str, Any]) -> dict[str, Any]:
    """
    Check an action payload against the action's declared contract.

    Raises:
        ValidationError: Missing required keys or undeclared keys.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Action payload must be a JSON object")
    missing = [k for k in action.payload_required if payload.get(k) in (None, "")]
    if missing:
        raise ValidationError(f"Action '{action.name}' requires: {', '.join(missing)}")
    schema = action.payload_schema or {}
    additional = schema.get("additionalProperties", schema.get("additional_properties"))
    if schema and additional is False:
        declared = set((schema.get("properties") or {}).keys()) | {"ids"}
        extra = sorted(k for k in payload if k not in declared)
        if extra:
            raise ValidationError(f"Action '{action.name}' does not accept: {', '.join(extra)}")
    return payload


class PanelRegistry:
    """Panels of one Admin instance, addressable by slug."""

    def __init__(self) -> None:
        self._panels: dict[str, Panel] = {}
        self._lock = threading.Lock()
        self._frozen = False

    def register(self, slug: str, builder: PanelBuilder) -> Panel:
        """
        Build and register a panel.

        Raises:
            PanelValidationError: Invalid slug or descriptors.
            PanelDuplicateError: Slug already registered.
            RegistrationClosedError: Registry frozen.
        """
        slug = (slug or "").strip()
        if not SLUG_PATTERN.match(slug):
            raise PanelValidationError(f"Invalid panel slug '{slug}'")
        if slug in RESERVED_SLUGS:
            raise PanelValidationError(f"Panel slug '{slug}' is reserved")
        if not builder.name:
            builder.named(slug)

        with self._lock:
            if self._frozen:
                raise RegistrationClosedError(f"Cannot register panel '{slug}' after initialization")
            if slug in self._panels:
                raise PanelDuplicateError(f"Panel '{slug}' is already registered")
            panel = builder.build()
            self._panels[slug] = panel

        logger.info(f"Panel '{slug}' registered.")
        return panel

    def freeze(self) -> None:
        self._frozen = True

    def get(self, slug: str) -> Optional[Panel]:
        return self._panels.get(slug)

    def slugs(self) -> list[str]:
        return list(self._panels)

    def items(self) -> list[tuple[str, Panel]]:
        return list(self._panels.items())

    def __contains__(self, slug: object) -> bool:
        return slug in self._panels

    def __len__(self) -> int:
        return len(self._panels)
