"""
CMS Backends.

A narrow interface over pages, content entries and blocks. Backends are
chosen by name through a registry of factories.
"""

import threading
from typing import Any, Callable, Optional, Protocol, runtime_checkable

from core.descriptors import SEARCH_FILTER
from core.errors import NotFoundError, ValidationError
from core.repository import InMemoryRepository, ListOptions
from core.records import CellKind, RecordSchema


@runtime_checkable
class CMSBackend(Protocol):
    name: str

    async def list_pages(self, opts: ListOptions) -> tuple[list[dict[str, Any]], int]: ...

    async def get_page(self, page_id: str) -> dict[str, Any]: ...

    async def save_page(self, page: dict[str, Any]) -> dict[str, Any]: ...

    async def list_content(self, content_type: str, opts: ListOptions) -> tuple[list[dict[str, Any]], int]: ...

    async def list_blocks(self) -> list[dict[str, Any]]: ...


PAGE_SCHEMA = RecordSchema(
    {
        "title": CellKind.STRING,
        "slug": CellKind.STRING,
        "status": CellKind.STRING,
        "parent_id": CellKind.STRING,
        "blocks": CellKind.LIST,
        "seo": CellKind.MAP,
        "published_at": CellKind.TIMESTAMP,
    },
    required=("title", "slug"),
)


class InMemoryCMSBackend:
    """CMS backend keeping pages, typed content and a block library in memory."""

    name = "memory"

    def __init__(self, blocks: Optional[list[dict[str, Any]]] = None) -> None:
        self.pages = InMemoryRepository(schema=PAGE_SCHEMA, search_fields=("title", "slug"))
        self._content: dict[str, InMemoryRepository] = {}
        self._blocks = list(blocks or [
            {"code": "hero", "name": "Hero", "fields": ["heading", "subheading", "image"]},
            {"code": "rich_text", "name": "Rich Text", "fields": ["body"]},
        ])
        self._lock = threading.Lock()

    async def list_pages(self, opts: ListOptions) -> tuple[list[dict[str, Any]], int]:
        return await self.pages.list(opts)

    async def get_page(self, page_id: str) -> dict[str, Any]:
        return await self.pages.get(page_id)

    async def save_page(self, page: dict[str, Any]) -> dict[str, Any]:
        page_id = page.get("id")
        if page_id:
            return await self.pages.update(page_id, page)
        slug = str(page.get("slug", "")).strip()
        if slug:
            existing, _ = await self.pages.list(ListOptions(filters={"slug": slug}))
            if existing:
                raise ValidationError(f"Page slug '{slug}' is already used")
        return await self.pages.create(page)

    def content_repository(self, content_type: str) -> InMemoryRepository:
        with self._lock:
            return self._content.setdefault(content_type, InMemoryRepository())

    async def list_content(self, content_type: str, opts: ListOptions) -> tuple[list[dict[str, Any]], int]:
        if content_type not in self._content:
            raise NotFoundError(f"Content type '{content_type}' not found")
        return await self._content[content_type].list(opts)

    async def list_blocks(self) -> list[dict[str, Any]]:
        return list(self._blocks)

    async def search_pages(self, query: str, limit: int) -> list[dict[str, Any]]:
        records, _ = await self.pages.list(ListOptions(per_page=limit, filters={SEARCH_FILTER: query}))
        return records


class PageRepository:
    """Adapts a CMS backend's pages to the repository contract."""

    def __init__(self, backend: CMSBackend) -> None:
        self._backend = backend

    async def list(self, opts: ListOptions) -> tuple[list[dict[str, Any]], int]:
        return await self._backend.list_pages(opts)

    async def get(self, record_id: str) -> dict[str, Any]:
        return await self._backend.get_page(record_id)

    async def create(self, record: dict[str, Any]) -> dict[str, Any]:
        return await self._backend.save_page({k: v for k, v in record.items() if k != "id"})

    async def update(self, record_id: str, patch: dict[str, Any]) -> dict[str, Any]:
        await self._backend.get_page(record_id)
        return await self._backend.save_page({**patch, "id": record_id})

    async def delete(self, record_id: str) -> None:
        pages = getattr(self._backend, "pages", None)
        if pages is None:
            raise ValidationError(f"CMS backend '{self._backend.name}' does not delete pages")
        await pages.delete(record_id)


_BACKENDS: dict[str, Callable[[], CMSBackend]] = {
    "memory": InMemoryCMSBackend,
}


def register_cms_backend(name: str, factory: Callable[[], CMSBackend]) -> None:
    _BACKENDS[name.strip().lower()] = factory


def cms_backend_for(name: str = "memory") -> CMSBackend:
    """
    Create the CMS backend registered under ``name``.

    Raises:
        NotFoundError: No backend with that name.
    """
    factory = _BACKENDS.get((name or "memory").strip().lower())
    if factory is None:
        raise NotFoundError(f"CMS backend '{name}' is not registered")
    return factory()
