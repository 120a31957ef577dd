"""
Navigation Service.

Menu items are kept in an arena keyed by id per menu code; parent links are
ids. Composition turns the arena into a forest:

- a node whose parent is itself, or whose ancestry loops back to it, is
  re-parented under the canonical Main group and a RepairEvent is recorded;
- a node whose parent is unknown becomes a root;
- siblings are ordered by position (unset last), then registration order;
- locale and permission filters hide nodes (and their subtrees).
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Optional, TYPE_CHECKING

from core.context import AdminContext
from core.descriptors import MenuItem
from core.errors import RegistrationClosedError, ValidationError

if TYPE_CHECKING:
    from core.auth import Authorizer

logger = logging.getLogger(__name__)

MAIN_GROUP_SUFFIX = "nav-group-main"


def main_group_id(menu_code: str) -> str:
    return f"{menu_code}.{MAIN_GROUP_SUFFIX}"


@dataclass(frozen=True)
class RepairEvent:
    menu_code: str
    item_id: str
    reason: str
    previous_parent: str
    new_parent: str


@dataclass(frozen=True)
class NavigationIntegrityReport:
    node_count: int = 0
    root_count: int = 0
    orphan_count: int = 0
    cycle_count: int = 0
    self_parent_count: int = 0
    repaired_count: int = 0


@dataclass
class _Node:
    item: MenuItem
    order: int
    parent_id: str


class NavigationService:
    """Menu arena per menu code with cycle repair on composition."""

    def __init__(self, default_menu_code: str = "admin_main") -> None:
        self._default_menu_code = default_menu_code
        self._arenas: dict[str, dict[str, MenuItem]] = {}
        self._order: dict[str, int] = {}
        self._counter = 0
        self._repairs: list[RepairEvent] = []
        self._lock = threading.Lock()
        self._frozen = False

    @property
    def default_menu_code(self) -> str:
        return self._default_menu_code

    def add_item(self, item: MenuItem) -> None:
        """
        Add an item (and its nested children) to its menu.

        Raises:
            ValidationError: Item id is empty.
            RegistrationClosedError: Service frozen.
        """
        if not item.id.strip():
            raise ValidationError("Menu item id is required")
        menu_code = item.menu_code or self._default_menu_code
        with self._lock:
            if self._frozen:
                raise RegistrationClosedError(f"Cannot add menu item '{item.id}' after initialization")
            self._add_locked(item, menu_code, item.parent_id)

    def add_items(self, items: list[MenuItem]) -> None:
        for item in items:
            self.add_item(item)

    def _add_locked(self, item: MenuItem, menu_code: str, parent_id: str) -> None:
        arena = self._arenas.setdefault(menu_code, {})
        flat = item.model_copy(update={"children": (), "menu_code": menu_code, "parent_id": parent_id})
        if item.id in arena:
            logger.warning(f"Menu item '{item.id}' in '{menu_code}' replaced.")
        else:
            self._order[f"{menu_code}:{item.id}"] = self._counter
            self._counter += 1
        arena[item.id] = flat
        for child in item.children:
            self._add_locked(child, menu_code, child.parent_id or item.id)

    def ensure_main_group(self, menu_code: Optional[str] = None, label: str = "Main") -> None:
        menu_code = menu_code or self._default_menu_code
        group_id = main_group_id(menu_code)
        if group_id not in self._arenas.get(menu_code, {}):
            self.add_item(
                MenuItem(id=group_id, type="group", label=label, label_key="menu.main",
                         position=0, menu_code=menu_code)
            )

    def freeze(self) -> None:
        self._frozen = True

    def items(self, menu_code: Optional[str] = None) -> list[MenuItem]:
        return list(self._arenas.get(menu_code or self._default_menu_code, {}).values())

    def repair_events(self) -> list[RepairEvent]:
        with self._lock:
            return list(self._repairs)

    def compose(
        self,
        ctx: AdminContext,
        menu_code: Optional[str] = None,
        locale: Optional[str] = None,
        authorizer: Optional["Authorizer"] = None,
    ) -> list[dict[str, Any]]:
        """
        Build the visible menu forest for a user and locale.

        Returns:
            Root nodes as dicts with nested ``children``.
        """
        menu_code = menu_code or self._default_menu_code
        locale = locale or ctx.locale
        nodes, _report = self._resolve(menu_code, record=True)

        children: dict[str, list[_Node]] = {}
        roots: list[_Node] = []
        for node in nodes.values():
            if node.parent_id:
                children.setdefault(node.parent_id, []).append(node)
            else:
                roots.append(node)

        def visible(item: MenuItem) -> bool:
            if item.locale and locale and item.locale != locale:
                return False
            if authorizer is not None:
                return all(authorizer.can(ctx, perm, item.id) for perm in item.permissions)
            return True

        def render(node: _Node) -> Optional[dict[str, Any]]:
            if not visible(node.item):
                return None
            kids = [r for r in (render(c) for c in _sorted(children.get(node.item.id, []))) if r]
            if node.item.type == "group" and not kids and children.get(node.item.id):
                return None
            data = node.item.model_dump(exclude={"children"})
            data["parent_id"] = node.parent_id
            data["children"] = kids
            return data

        return [r for r in (render(n) for n in _sorted(roots)) if r]

    def integrity_report(self, menu_code: Optional[str] = None) -> NavigationIntegrityReport:
        """Count structural problems of a menu without recording repairs."""
        _nodes, report = self._resolve(menu_code or self._default_menu_code, record=False)
        return report

    def _resolve(self, menu_code: str, record: bool) -> tuple[dict[str, _Node], NavigationIntegrityReport]:
        arena = dict(self._arenas.get(menu_code, {}))
        main_id = main_group_id(menu_code)
        nodes = {
            item_id: _Node(item=item, order=self._order.get(f"{menu_code}:{item_id}", 0), parent_id=item.parent_id)
            for item_id, item in arena.items()
        }
        self_parents = orphans = cycles = 0
        repairs: list[RepairEvent] = []

        def reparent(node: _Node, reason: str) -> None:
            new_parent = main_id if node.item.id != main_id else ""
            repairs.append(RepairEvent(menu_code, node.item.id, reason, node.parent_id, new_parent))
            node.parent_id = new_parent

        for node in nodes.values():
            if node.parent_id and node.parent_id == node.item.id:
                self_parents += 1
                reparent(node, "self_parent")

        for node in nodes.values():
            if node.parent_id and node.parent_id not in nodes and node.parent_id != main_id:
                orphans += 1
                node.parent_id = ""

        for node in nodes.values():
            seen = {node.item.id}
            current = node.parent_id
            while current and current in nodes:
                if current == node.item.id:
                    cycles += 1
                    reparent(node, "cycle")
                    break
                if current in seen:
                    # loop above this node; repaired when its members are visited
                    break
                seen.add(current)
                current = nodes[current].parent_id

        needs_main = any(n.parent_id == main_id for n in nodes.values())
        if needs_main and main_id not in nodes:
            nodes[main_id] = _Node(
                item=MenuItem(id=main_id, type="group", label="Main", label_key="menu.main",
                              position=0, menu_code=menu_code),
                order=-1,
                parent_id="",
            )

        if record and repairs:
            with self._lock:
                known = {(r.menu_code, r.item_id, r.reason) for r in self._repairs}
                for event in repairs:
                    if (event.menu_code, event.item_id, event.reason) not in known:
                        self._repairs.append(event)
                        logger.warning(
                            f"Menu '{menu_code}': item '{event.item_id}' re-parented "
                            f"from '{event.previous_parent}' to '{event.new_parent}' ({event.reason})"
                        )

        report = NavigationIntegrityReport(
            node_count=len(arena),
            root_count=sum(1 for n in nodes.values() if not n.parent_id),
            orphan_count=orphans,
            cycle_count=cycles,
            self_parent_count=self_parents,
            repaired_count=len(repairs),
        )
        return nodes, report


def _sorted(nodes: list[_Node]) -> list[_Node]:
    return sorted(
        nodes,
        key=lambda n: (n.item.position is None, n.item.position or 0, n.order),
    )
