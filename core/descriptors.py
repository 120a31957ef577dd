"""
Descriptor Model.

Immutable value types that describe panels, menus, widgets and modules.
Descriptors are plain data: the panel builder, navigation service and
dashboard engine interpret them.
"""

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict

SEARCH_FILTER = "_search"

FieldType = str
MenuItemType = Literal["item", "group", "separator"]


class _Descriptor(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


# =============================================================================
# Panel Descriptors
# =============================================================================


class Option(_Descriptor):
    """A selectable value of a select field or filter."""

    value: str
    label: str = ""
    label_key: str = ""


class Field(_Descriptor):
    """
    A record attribute shown by a panel.

    ``type`` is one of text, email, number, integer, select, textarea,
    datetime, date, boolean, media, block-library-picker, json, tags
    (unknown types are treated as text).
    """

    name: str
    label: str = ""
    label_key: str = ""
    type: FieldType = "text"
    required: bool = False
    read_only: bool = False
    hidden: bool = False
    options: tuple[Option, ...] = ()
    validation: Optional[dict[str, Any]] = None


class Filter(_Descriptor):
    name: str
    label: str = ""
    label_key: str = ""
    type: str = "text"
    operators: tuple[str, ...] = ("eq",)
    options: tuple[Option, ...] = ()

    @property
    def is_search(self) -> bool:
        return self.name == SEARCH_FILTER


class Action(_Descriptor):
    """
    An operation offered on rows, selections or the detail view.

    Actions with a command_name are dispatched through the command bus,
    others are handled in-line by the panel.
    """

    name: str
    label: str = ""
    label_key: str = ""
    icon: str = ""
    command_name: str = ""
    permission: str = ""
    confirm: str = ""
    variant: str = ""
    overflow: bool = False
    scope: str = "row"
    payload_required: tuple[str, ...] = ()
    payload_schema: Optional[dict[str, Any]] = None


class PanelPermissions(_Descriptor):
    """Permission tokens consulted by the authorizer per CRUD operation."""

    view: str = ""
    create: str = ""
    edit: str = ""
    delete: str = ""

    def for_operation(self, operation: str) -> str:
        """Return the token guarding ``operation`` (falls back to the operation name)."""
        token = getattr(self, operation, "") if operation in ("view", "create", "edit", "delete") else ""
        return token or operation

    @classmethod
    def for_resource(cls, resource: str) -> "PanelPermissions":
        return cls(
            view=f"{resource}.view",
            create=f"{resource}.create",
            edit=f"{resource}.edit",
            delete=f"{resource}.delete",
        )


class PanelTab(_Descriptor):
    id: str
    label: str = ""
    label_key: str = ""
    icon: str = ""
    position: int = 0
    target: str = ""


# =============================================================================
# Navigation Descriptors
# =============================================================================


class MenuTarget(_Descriptor):
    type: str = "url"
    path: str = ""
    key: str = ""


class MenuItem(_Descriptor):
    """A node of a navigation menu; children are flattened on registration."""

    id: str
    type: MenuItemType = "item"
    label: str = ""
    label_key: str = ""
    icon: str = ""
    position: Optional[int] = None
    parent_id: str = ""
    target: MenuTarget = MenuTarget()
    permissions: tuple[str, ...] = ()
    locale: str = ""
    menu_code: str = ""
    collapsible: bool = False
    collapsed: bool = False
    children: tuple["MenuItem", ...] = ()


# =============================================================================
# Module / Widget Descriptors
# =============================================================================


class ModuleManifest(_Descriptor):
    """Identity of a module and the features it requires."""

    id: str
    name_key: str = ""
    description_key: str = ""
    feature_flags: frozenset[str] = frozenset()


class WidgetSpec(_Descriptor):
    """Static definition of a dashboard widget."""

    code: str
    name: str = ""
    default_area: str = "main"
    default_config: dict[str, Any] = {}
    command_name: str = ""
    required_keys: tuple[str, ...] = ()
    permission: str = ""
    description: str = ""


__all__ = [
    "SEARCH_FILTER",
    "Option",
    "Field",
    "Filter",
    "Action",
    "PanelPermissions",
    "PanelTab",
    "MenuTarget",
    "MenuItem",
    "ModuleManifest",
    "WidgetSpec",
]
