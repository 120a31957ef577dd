"""
Federated Search.

Adapters are queried in registration order; results of adapters whose
permission the caller lacks are hidden. A failing adapter is logged and
skipped so one broken source does not empty the whole result list.
"""

import logging
import threading
from typing import Any, Callable, Optional, Protocol, TYPE_CHECKING, runtime_checkable

from pydantic import BaseModel, ConfigDict

from core.context import AdminContext
from core.descriptors import SEARCH_FILTER
from core.errors import ConflictError, RegistrationClosedError
from core.repository import ListOptions, Repository

if TYPE_CHECKING:
    from core.auth import Authorizer

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 10


class SearchResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: str
    id: str
    title: str
    description: str = ""
    url: str = ""
    icon: Optional[str] = None
    thumbnail: Optional[str] = None


@runtime_checkable
class SearchAdapter(Protocol):
    async def search(self, ctx: AdminContext, query: str, limit: int) -> list[SearchResult]: ...

    def permission(self) -> str: ...


class RepositorySearchAdapter:
    """
    Search adapter over any repository's ``_search`` filter.

    Args:
        repository: Repository to query.
        result_type: Value of SearchResult.type.
        to_result: Maps a record to a SearchResult.
        permission: Token required to see results.
    """

    def __init__(
        self,
        repository: Repository,
        result_type: str,
        to_result: Callable[[dict[str, Any]], SearchResult],
        permission: str = "",
    ) -> None:
        self._repository = repository
        self._type = result_type
        self._to_result = to_result
        self._permission = permission

    def permission(self) -> str:
        return self._permission

    async def search(self, ctx: AdminContext, query: str, limit: int) -> list[SearchResult]:
        records, _ = await self._repository.list(
            ListOptions(page=1, per_page=limit, filters={SEARCH_FILTER: query})
        )
        return [self._to_result(r) for r in records]


class SearchEngine:
    def __init__(self) -> None:
        self._adapters: dict[str, SearchAdapter] = {}
        self._lock = threading.Lock()
        self._frozen = False

    @property
    def enabled(self) -> bool:
        return True

    def register(self, name: str, adapter: SearchAdapter) -> None:
        with self._lock:
            if self._frozen:
                raise RegistrationClosedError(f"Cannot register search adapter '{name}' after initialization")
            if name in self._adapters:
                raise ConflictError(f"Search adapter '{name}' is already registered", code="SEARCH_ADAPTER_DUPLICATE")
            self._adapters[name] = adapter

    def freeze(self) -> None:
        self._frozen = True

    def adapter_names(self) -> list[str]:
        return list(self._adapters)

    async def query(
        self,
        ctx: AdminContext,
        query: str,
        limit: int = DEFAULT_LIMIT,
        authorizer: Optional["Authorizer"] = None,
    ) -> list[SearchResult]:
        """
        Run ``query`` against every permitted adapter.

        Args:
            ctx: Request context.
            query: Free-text query; blank queries return nothing.
            limit: Maximum results per adapter.
            authorizer: Consulted with each adapter's permission token.
        """
        query = (query or "").strip()
        if not query:
            return []
        limit = limit if limit > 0 else DEFAULT_LIMIT

        results: list[SearchResult] = []
        for name, adapter in self._adapters.items():
            permission = adapter.permission()
            if permission and authorizer is not None and not authorizer.can(ctx, permission, name):
                continue
            try:
                found = await adapter.search(ctx, query, limit)
            except Exception as exc:
                logger.warning(f"Search adapter '{name}' failed: {exc}")
                continue
            results.extend(found[:limit])
        return results


class NullSearchEngine(SearchEngine):
    """Search engine used when the search feature is disabled."""

    @property
    def enabled(self) -> bool:
        return False

    def register(self, name: str, adapter: SearchAdapter) -> None:
        return None

    async def query(self, ctx: AdminContext, query: str, limit: int = DEFAULT_LIMIT, authorizer: Optional["Authorizer"] = None) -> list[SearchResult]:
        return []
