"""
Commerce Module Entry Point.

Example store back office: products, orders and customers panels, product
search, sales and low-stock widgets, a restock command bound to a bulk
action and an hourly inventory sync job.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

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
from core.errors import ValidationError
from core.interface import IAdminModule, ModuleContext
from core.jobs import Job
from core.panel import PanelBuilder
from core.records import RecordSchema
from core.repository import InMemoryRepository, ListOptions
from core.search import RepositorySearchAdapter, SearchResult

logger = logging.getLogger(__name__)

LOW_STOCK_THRESHOLD = 5
DEFAULT_RESTOCK_QUANTITY = 10
SCAN_PAGE_SIZE = 200


def _options(*values: str) -> tuple[Option, ...]:
    return tuple(Option(value=v, label=v.replace("_", " ").title()) for v in values)


PRODUCT_FIELDS = (
    Field(name="name", label="Name", required=True),
    Field(name="sku", label="SKU", required=True),
    Field(name="price", label="Price", type="number", validation={"minimum": 0}),
    Field(name="inventory", label="Inventory", type="integer", validation={"minimum": 0}),
    Field(name="status", label="Status", type="select", options=_options("active", "draft", "archived")),
)

ORDER_FIELDS = (
    Field(name="number", label="Order #", required=True),
    Field(name="customer_email", label="Customer", type="email", required=True),
    Field(name="total", label="Total", type="number"),
    Field(name="status", label="Status", type="select",
          options=_options("pending", "paid", "shipped", "cancelled")),
)

CUSTOMER_FIELDS = (
    Field(name="name", label="Name", required=True),
    Field(name="email", label="Email", type="email", required=True),
    Field(name="orders_count", label="Orders", type="integer", read_only=True),
)

DEFAULT_PRODUCTS = (
    {"name": "Hoodie", "sku": "HD-001", "price": 49.0, "inventory": 12, "status": "active"},
    {"name": "T-Shirt", "sku": "TS-001", "price": 19.5, "inventory": 3, "status": "active"},
    {"name": "Cap", "sku": "CP-001", "price": 15.0, "inventory": 0, "status": "draft"},
)

DEFAULT_ORDERS = (
    {"number": "1001", "customer_email": "ann@example.test", "total": 68.5, "status": "paid"},
    {"number": "1002", "customer_email": "bob@example.test", "total": 49.0, "status": "shipped"},
    {"number": "1003", "customer_email": "ann@example.test", "total": 15.0, "status": "pending"},
)

DEFAULT_CUSTOMERS = (
    {"name": "Ann Example", "email": "ann@example.test", "orders_count": 2},
    {"name": "Bob Example", "email": "bob@example.test", "orders_count": 1},
)


# =============================================================================
# Commands
# =============================================================================


@dataclass
class RestockProductsMsg:
    message_type = "commerce.products.restock"

    product_ids: list[str] = field(default_factory=list)
    quantity: int = DEFAULT_RESTOCK_QUANTITY


class RestockProductsCommand:
    """Adds stock to the selected products."""

    message_type = RestockProductsMsg.message_type
    description = "Restock the selected products"

    def __init__(self, products: InMemoryRepository) -> None:
        self._products = products

    def build_message(self, payload: dict[str, Any]) -> RestockProductsMsg:
        ids = [str(i) for i in payload.get("ids") or [] if str(i).strip()]
        if not ids:
            raise ValidationError("Select at least one product to restock")
        raw = payload.get("quantity", DEFAULT_RESTOCK_QUANTITY)
        try:
            quantity = int(raw)
        except (TypeError, ValueError):
            raise ValidationError(f"quantity must be an integer, got {raw!r}")
        if quantity <= 0:
            raise ValidationError("quantity must be positive")
        return RestockProductsMsg(product_ids=ids, quantity=quantity)

    async def execute(self, ctx: AdminContext, message: RestockProductsMsg) -> dict[str, Any]:
        restocked = []
        for product_id in message.product_ids:
            product = await self._products.get(product_id)
            inventory = int(product.get("inventory") or 0) + message.quantity
            await self._products.update(product_id, {"inventory": inventory})
            restocked.append({"id": product_id, "inventory": inventory})
        logger.info(f"Restocked {len(restocked)} product(s) by {message.quantity} for '{ctx.user_id}'")
        return {"restocked": restocked}


# =============================================================================
# Module
# =============================================================================


class CommerceModule(IAdminModule):
    """Commerce example module."""

    def __init__(self) -> None:
        self._products = InMemoryRepository(
            schema=RecordSchema.from_fields(PRODUCT_FIELDS),
            search_fields=("name", "sku"),
            seed=DEFAULT_PRODUCTS,
        )
        self._orders = InMemoryRepository(
            schema=RecordSchema.from_fields(ORDER_FIELDS),
            search_fields=("number", "customer_email"),
            seed=DEFAULT_ORDERS,
        )
        self._customers = InMemoryRepository(
            schema=RecordSchema.from_fields(CUSTOMER_FIELDS),
            search_fields=("name", "email"),
            seed=DEFAULT_CUSTOMERS,
        )
        self._base_path = "/admin"
        self.sync_runs = 0

    @property
    def products(self) -> InMemoryRepository:
        return self._products

    @property
    def orders(self) -> InMemoryRepository:
        return self._orders

    @property
    def customers(self) -> InMemoryRepository:
        return self._customers

    def manifest(self) -> ModuleManifest:
        return ModuleManifest(
            id="commerce",
            name_key="modules.commerce.name",
            description_key="modules.commerce.description",
        )

    def register(self, ctx: ModuleContext) -> None:
        admin = ctx.admin
        self._base_path = admin.config.normalized_base_path()

        admin.commands.register(RestockProductsCommand(self._products))

        admin.register_panel("products", self._products_panel())
        admin.register_panel("orders", (
            PanelBuilder("Orders")
            .with_repository(self._orders)
            .list_fields(*ORDER_FIELDS, Field(name="created_at", label="Placed", type="datetime", read_only=True))
            .form_fields(*ORDER_FIELDS)
            .filters(Filter(name="_search", label="Search"),
                     Filter(name="status", label="Status", type="select", options=ORDER_FIELDS[3].options))
            .permissions(PanelPermissions.for_resource("orders"))
        ))
        admin.register_panel("customers", (
            PanelBuilder("Customers")
            .with_repository(self._customers)
            .list_fields(*CUSTOMER_FIELDS)
            .form_fields(*CUSTOMER_FIELDS[:2])
            .filters(Filter(name="_search", label="Search"))
            .permissions(PanelPermissions.for_resource("customers"))
        ))

        admin.dashboard.register_provider(
            WidgetSpec(
                code="commerce.sales_overview",
                name="Sales overview",
                required_keys=("orders", "revenue", "by_status"),
                permission="orders.view",
            ),
            self._sales_overview,
        )
        admin.dashboard.register_provider(
            WidgetSpec(
                code="commerce.low_stock",
                name="Low stock",
                default_area="sidebar",
                default_config={"threshold": LOW_STOCK_THRESHOLD},
                required_keys=("threshold", "items"),
                permission="products.view",
            ),
            self._low_stock,
        )

        admin.search.register("products", RepositorySearchAdapter(
            self._products,
            "product",
            lambda r: SearchResult(
                type="product",
                id=r["id"],
                title=r.get("name") or r["id"],
                description=f"SKU {r.get('sku', '')}",
                url=f"{self._base_path}/products/{r['id']}",
                icon="package",
            ),
            permission="products.view",
        ))

        admin.jobs.register(Job(
            name="commerce.inventory_sync",
            schedule="0 * * * *",
            description="Reconcile product status with inventory levels",
            handler=self._inventory_sync,
        ))
        logger.info("Commerce module registered")

    def menu_items(self, locale: str) -> list[MenuItem]:
        def entry(slug: str, label: str, icon: str, position: int) -> MenuItem:
            return MenuItem(
                id=f"commerce.{slug}",
                label=label,
                label_key=f"menu.{slug}",
                icon=icon,
                position=position,
                target=MenuTarget(path=f"{self._base_path}/{slug}", key=slug),
                permissions=(f"{slug}.view",),
            )

        return [
            MenuItem(
                id="commerce",
                type="group",
                label="Store",
                label_key="menu.store",
                position=20,
                collapsible=True,
                children=(
                    entry("products", "Products", "package", 1),
                    entry("orders", "Orders", "shopping-cart", 2),
                    entry("customers", "Customers", "users", 3),
                ),
            )
        ]

    def _products_panel(self) -> PanelBuilder:
        return (
            PanelBuilder("Products")
            .with_repository(self._products)
            .list_fields(*PRODUCT_FIELDS)
            .form_fields(*PRODUCT_FIELDS)
            .filters(
                Filter(name="_search", label="Search"),
                Filter(name="status", label="Status", type="select", options=PRODUCT_FIELDS[4].options),
            )
            .bulk_actions(Action(
                name="restock",
                label="Restock",
                icon="refresh",
                scope="bulk",
                command_name=RestockProductsMsg.message_type,
                permission="products.edit",
                payload_schema={
                    "type": "object",
                    "properties": {"quantity": {"type": "integer", "minimum": 1}},
                    "additionalProperties": False,
                },
            ))
            .permissions(PanelPermissions.for_resource("products"))
        )

    async def _all(self, repository: InMemoryRepository) -> list[dict[str, Any]]:
        records, _ = await repository.list(ListOptions(page=1, per_page=SCAN_PAGE_SIZE))
        return records

    async def _sales_overview(self, ctx: AdminContext, config: dict[str, Any]) -> dict[str, Any]:
        orders = await self._all(self._orders)
        by_status: dict[str, int] = {}
        revenue = 0.0
        for order in orders:
            status = order.get("status") or "pending"
            by_status[status] = by_status.get(status, 0) + 1
            if status in ("paid", "shipped"):
                revenue += float(order.get("total") or 0)
        return {"orders": len(orders), "revenue": round(revenue, 2), "by_status": by_status}

    async def _low_stock(self, ctx: AdminContext, config: dict[str, Any]) -> dict[str, Any]:
        threshold = int(config.get("threshold", LOW_STOCK_THRESHOLD))
        items = [
            {"id": p["id"], "name": p.get("name"), "sku": p.get("sku"), "inventory": int(p.get("inventory") or 0)}
            for p in await self._all(self._products)
            if p.get("status") != "archived" and int(p.get("inventory") or 0) < threshold
        ]
        items.sort(key=lambda i: i["inventory"])
        return {"threshold": threshold, "items": items}

    async def _inventory_sync(self, ctx: AdminContext) -> None:
        self.sync_runs += 1
        drafted = 0
        for product in await self._all(self._products):
            if product.get("status") == "active" and int(product.get("inventory") or 0) <= 0:
                await self._products.update(product["id"], {"status": "draft"})
                drafted += 1
        logger.info(f"Inventory sync #{self.sync_runs}: {drafted} product(s) moved to draft")
