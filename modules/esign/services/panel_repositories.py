"""
E-Sign Panel Repositories.

Adapters exposing the E-Sign stores through the admin Repository contract.
The scope of every call is read from the AdminContext bound to the request.
Job runs and email logs are read-only; audit events are append-only.
"""

import logging
from typing import Any, Awaitable, Callable, Iterable, Mapping

from core.context import Scope, get_admin_context
from core.errors import AuditEventsAppendOnlyError, ImmutableError, NotFoundError, ValidationError
from core.records import infer_cell
from core.repository import ListOptions, paginate, sort_key
from modules.esign.models.records import record_to_dict
from modules.esign.services.agreements import AgreementService
from modules.esign.stores.contracts import AgreementStore

logger = logging.getLogger(__name__)

RecordLoader = Callable[[Scope], Awaitable[list[Any]]]


def _current_scope() -> Scope:
    return get_admin_context().scope.normalized()


class StoreRecordRepository:
    """
    Read-only repository over a store listing.

    Args:
        loader: Returns every record of the caller's scope.
        search_fields: Fields matched by ``_search``.
        entity: Entity name used in error messages.
    """

    def __init__(self, loader: RecordLoader, search_fields: Iterable[str] = (), entity: str = "record") -> None:
        self._loader = loader
        self._search_fields = tuple(search_fields)
        self._entity = entity

    async def _rows(self) -> list[dict[str, Any]]:
        return [record_to_dict(r) for r in await self._loader(_current_scope())]

    async def list(self, opts: ListOptions) -> tuple[list[dict[str, Any]], int]:
        opts = opts.normalized()
        rows = await self._rows()

        query = opts.search.lower()
        if query:
            rows = [r for r in rows if self._matches_search(r, query)]
        for name, expected in opts.filters.items():
            if name.startswith("_") or expected is None or expected == "":
                continue
            wanted = {infer_cell(v).as_text().lower() for v in (expected if isinstance(expected, (list, tuple)) else [expected])}
            rows = [r for r in rows if infer_cell(r.get(name)).as_text().lower() in wanted]
        if opts.sort_by:
            rows.sort(key=lambda r: sort_key(infer_cell(r.get(opts.sort_by))), reverse=opts.sort_desc)
        return paginate(rows, opts), len(rows)

    async def get(self, record_id: str) -> dict[str, Any]:
        for row in await self._rows():
            if row.get("id") == record_id:
                return row
        raise NotFoundError(f"{self._entity.capitalize()} '{record_id}' not found")

    async def create(self, record: Mapping[str, Any]) -> dict[str, Any]:
        raise ImmutableError(f"{self._entity} records are written by the job orchestrator", code="READ_ONLY")

    async def update(self, record_id: str, patch: Mapping[str, Any]) -> dict[str, Any]:
        raise ImmutableError(f"{self._entity} records are written by the job orchestrator", code="READ_ONLY")

    async def delete(self, record_id: str) -> None:
        raise ImmutableError(f"{self._entity} records are written by the job orchestrator", code="READ_ONLY")

    def _matches_search(self, row: dict[str, Any], query: str) -> bool:
        names = self._search_fields or [k for k, v in row.items() if isinstance(v, str)]
        return any(query in str(row.get(name) or "").lower() for name in names)


class AuditEventRepository(StoreRecordRepository):
    """Audit trail; any mutation fails with AUDIT_EVENTS_APPEND_ONLY."""

    async def create(self, record: Mapping[str, Any]) -> dict[str, Any]:
        raise AuditEventsAppendOnlyError("audit events are appended by the system only")

    async def update(self, record_id: str, patch: Mapping[str, Any]) -> dict[str, Any]:
        raise AuditEventsAppendOnlyError("audit events are append-only")

    async def delete(self, record_id: str) -> None:
        raise AuditEventsAppendOnlyError("audit events are append-only")


class AgreementRepository(StoreRecordRepository):
    """Agreements panel: drafts are created and edited, never deleted."""

    def __init__(self, store: AgreementStore, service: AgreementService) -> None:
        super().__init__(store.list_agreements, ("title", "message", "status"), "agreement")
        self._store = store
        self._service = service

    async def get(self, record_id: str) -> dict[str, Any]:
        return record_to_dict(await self._store.get_agreement(_current_scope(), record_id))

    async def create(self, record: Mapping[str, Any]) -> dict[str, Any]:
        ctx = get_admin_context()
        agreement = await self._service.create_draft(
            _current_scope(),
            title=str(record.get("title") or ""),
            document_id=str(record.get("document_id") or ""),
            message=str(record.get("message") or ""),
            created_by_user_id=ctx.user_id,
        )
        return record_to_dict(agreement)

    async def update(self, record_id: str, patch: Mapping[str, Any]) -> dict[str, Any]:
        changes = {k: v for k, v in patch.items() if k in ("title", "message", "document_id")}
        if not changes:
            raise ValidationError("no editable agreement fields in update")
        return record_to_dict(await self._service.update_draft(_current_scope(), record_id, changes))

    async def delete(self, record_id: str) -> None:
        raise ImmutableError("agreements cannot be deleted", code="AGREEMENT_IMMUTABLE")
