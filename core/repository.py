"""
Repository Contract.

Panels, search adapters and commands consume data through this uniform CRUD
contract. ``filters["_search"]`` is a full-text match every repository must
accept. InMemoryRepository is the reference implementation used by the
example modules and tests.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Mapping, Optional, Protocol, runtime_checkable
from uuid import uuid4

from core.descriptors import SEARCH_FILTER
from core.errors import NotFoundError, ValidationError
from core.records import Cell, CellKind, Record, RecordSchema, infer_cell

logger = logging.getLogger(__name__)

DEFAULT_PER_PAGE = 10
MAX_PER_PAGE = 200


@dataclass
class ListOptions:
    """Pagination, filtering and sorting for a list call."""

    page: int = 1
    per_page: int = DEFAULT_PER_PAGE
    filters: dict[str, Any] = field(default_factory=dict)
    sort_by: str = ""
    sort_desc: bool = False

    def normalized(self) -> "ListOptions":
        page = self.page if self.page > 0 else 1
        per_page = self.per_page if self.per_page > 0 else DEFAULT_PER_PAGE
        return ListOptions(
            page=page,
            per_page=min(per_page, MAX_PER_PAGE),
            filters=dict(self.filters),
            sort_by=self.sort_by.strip(),
            sort_desc=self.sort_desc,
        )

    @property
    def search(self) -> str:
        value = self.filters.get(SEARCH_FILTER)
        return str(value).strip() if value is not None else ""

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.per_page


@runtime_checkable
class Repository(Protocol):
    """Uniform CRUD contract. Records cross it as JSON-ready dicts."""

    async def list(self, opts: ListOptions) -> tuple[list[dict[str, Any]], int]: ...

    async def get(self, record_id: str) -> dict[str, Any]: ...

    async def create(self, record: Mapping[str, Any]) -> dict[str, Any]: ...

    async def update(self, record_id: str, patch: Mapping[str, Any]) -> dict[str, Any]: ...

    async def delete(self, record_id: str) -> None: ...


class InMemoryRepository:
    """
    Thread-safe in-memory repository over typed records.

    Args:
        schema: Schema used to coerce values at the boundary.
        search_fields: Fields matched by ``_search`` (defaults to every string cell).
        seed: Initial records.
        id_factory: Generator for new record ids.
    """

    def __init__(
        self,
        schema: Optional[RecordSchema] = None,
        search_fields: Iterable[str] = (),
        seed: Iterable[Mapping[str, Any]] = (),
        id_factory: Optional[Callable[[], str]] = None,
    ) -> None:
        self._schema = schema or RecordSchema()
        self._search_fields = tuple(search_fields)
        self._id_factory = id_factory or (lambda: str(uuid4()))
        self._records: dict[str, Record] = {}
        self._lock = threading.RLock()
        for raw in seed:
            self._insert(raw)

    @property
    def schema(self) -> RecordSchema:
        return self._schema

    def _insert(self, raw: Mapping[str, Any]) -> Record:
        record = self._schema.coerce(raw)
        record_id = str(raw.get("id") or self._id_factory())
        now = datetime.now(timezone.utc)
        stamps = {"id": Cell(CellKind.STRING, record_id)}
        if "created_at" not in record:
            stamps["created_at"] = Cell(CellKind.TIMESTAMP, now)
        stamps["updated_at"] = Cell(CellKind.TIMESTAMP, now)
        record = record.merged(Record(stamps))
        with self._lock:
            self._records[record_id] = record
        return record

    async def list(self, opts: ListOptions) -> tuple[list[dict[str, Any]], int]:
        opts = opts.normalized()
        with self._lock:
            records = list(self._records.values())

        query = opts.search.lower()
        if query:
            records = [r for r in records if self._matches_search(r, query)]

        for name, expected in opts.filters.items():
            if name == SEARCH_FILTER or expected is None or expected == "":
                continue
            records = [r for r in records if self._matches_filter(r, name, expected)]

        if opts.sort_by:
            records.sort(
                key=lambda r: sort_key(r.get(opts.sort_by)),
                reverse=opts.sort_desc,
            )

        total = len(records)
        page = records[opts.offset:opts.offset + opts.per_page]
        return [r.to_dict() for r in page], total

    async def get(self, record_id: str) -> dict[str, Any]:
        with self._lock:
            record = self._records.get(record_id)
        if record is None:
            raise NotFoundError(f"Record '{record_id}' not found")
        return record.to_dict()

    async def create(self, record: Mapping[str, Any]) -> dict[str, Any]:
        payload = {k: v for k, v in record.items() if k != "id"}
        return self._insert(payload).to_dict()

    async def update(self, record_id: str, patch: Mapping[str, Any]) -> dict[str, Any]:
        changes = self._schema.coerce({k: v for k, v in patch.items() if k != "id"}, partial=True)
        with self._lock:
            current = self._records.get(record_id)
            if current is None:
                raise NotFoundError(f"Record '{record_id}' not found")
            stamp = Record({"updated_at": Cell(CellKind.TIMESTAMP, datetime.now(timezone.utc))})
            updated = current.merged(changes).merged(stamp)
            self._records[record_id] = updated
        return updated.to_dict()

    async def delete(self, record_id: str) -> None:
        with self._lock:
            if self._records.pop(record_id, None) is None:
                raise NotFoundError(f"Record '{record_id}' not found")

    def count(self) -> int:
        with self._lock:
            return len(self._records)

    def _matches_search(self, record: Record, query: str) -> bool:
        names = self._search_fields or [
            k for k, c in record.items() if c.kind == CellKind.STRING and k != "id"
        ]
        for name in names:
            cell = record.get(name)
            if cell is not None and query in cell.as_text().lower():
                return True
        return False

    def _matches_filter(self, record: Record, name: str, expected: Any) -> bool:
        cell = record.get(name)
        if cell is None:
            return False
        if isinstance(expected, (list, tuple, set)):
            wanted = {infer_cell(v).as_text().lower() for v in expected}
            return cell.as_text().lower() in wanted
        return cell.as_text().lower() == infer_cell(expected).as_text().lower()


def sort_key(cell: Optional[Cell]) -> tuple[int, float, str]:
    # nulls sort last, numbers before text
    if cell is None or cell.kind == CellKind.NULL:
        return (2, 0.0, "")
    if cell.kind in (CellKind.INTEGER, CellKind.FLOAT, CellKind.BOOLEAN):
        return (0, float(cell.value), "")
    if cell.kind == CellKind.TIMESTAMP:
        return (0, cell.value.timestamp(), "")
    return (1, 0.0, cell.as_text().lower())


def paginate(items: list[Any], opts: ListOptions) -> list[Any]:
    opts = opts.normalized()
    return items[opts.offset:opts.offset + opts.per_page]


def require_record_id(record_id: str) -> str:
    record_id = (record_id or "").strip()
    if not record_id:
        raise ValidationError("Record id is required")
    return record_id
