"""
Typed Records.

A RecordSchema is derived from a panel's fields and coerces raw input into
typed cells at the repository boundary. Each cell is a tagged union of
string, integer, float, boolean, timestamp, nested map, list or null.
"""

from dataclasses import dataclass
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Iterable, Iterator, Mapping, Optional

from core.descriptors import Field
from core.errors import ValidationError


class CellKind(str, Enum):
    STRING = "string"
    INTEGER = "integer"
    FLOAT = "float"
    NUMBER = "number"
    BOOLEAN = "boolean"
    TIMESTAMP = "timestamp"
    MAP = "map"
    LIST = "list"
    NULL = "null"

    def __str__(self) -> str:
        return self.value


FIELD_TYPE_KINDS: dict[str, CellKind] = {
    "number": CellKind.NUMBER,
    "integer": CellKind.INTEGER,
    "int": CellKind.INTEGER,
    "float": CellKind.FLOAT,
    "decimal": CellKind.FLOAT,
    "boolean": CellKind.BOOLEAN,
    "bool": CellKind.BOOLEAN,
    "toggle": CellKind.BOOLEAN,
    "checkbox": CellKind.BOOLEAN,
    "datetime": CellKind.TIMESTAMP,
    "date": CellKind.TIMESTAMP,
    "timestamp": CellKind.TIMESTAMP,
    "json": CellKind.MAP,
    "object": CellKind.MAP,
    "seo": CellKind.MAP,
    "blocks": CellKind.LIST,
    "block-library-picker": CellKind.LIST,
    "tags": CellKind.LIST,
    "array": CellKind.LIST,
    "multiselect": CellKind.LIST,
}

_TRUE = {"true", "1", "yes", "on", "y", "t"}
_FALSE = {"false", "0", "no", "off", "n", "f", ""}


@dataclass(frozen=True)
class Cell:
    """A single typed value."""

    kind: CellKind
    value: Any = None

    def to_json(self) -> Any:
        if self.kind == CellKind.TIMESTAMP and isinstance(self.value, datetime):
            return self.value.isoformat()
        if self.kind == CellKind.MAP and isinstance(self.value, dict):
            return {k: v.to_json() if isinstance(v, Cell) else v for k, v in self.value.items()}
        if self.kind == CellKind.LIST and isinstance(self.value, list):
            return [v.to_json() if isinstance(v, Cell) else v for v in self.value]
        return self.value

    def as_text(self) -> str:
        value = self.to_json()
        if value is None:
            return ""
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value)


def infer_cell(value: Any) -> Cell:
    """Tag an untyped value with its natural kind."""
    if isinstance(value, Cell):
        return value
    if value is None:
        return Cell(CellKind.NULL)
    if isinstance(value, bool):
        return Cell(CellKind.BOOLEAN, value)
    if isinstance(value, int):
        return Cell(CellKind.INTEGER, value)
    if isinstance(value, float):
        return Cell(CellKind.FLOAT, value)
    if isinstance(value, datetime):
        return Cell(CellKind.TIMESTAMP, _as_utc(value))
    if isinstance(value, date):
        return Cell(CellKind.TIMESTAMP, datetime(value.year, value.month, value.day, tzinfo=timezone.utc))
    if isinstance(value, Mapping):
        return Cell(CellKind.MAP, {str(k): infer_cell(v) for k, v in value.items()})
    if isinstance(value, (list, tuple, set)):
        return Cell(CellKind.LIST, [infer_cell(v) for v in value])
    return Cell(CellKind.STRING, str(value))


def coerce_cell(kind: CellKind, value: Any, field_name: str = "") -> Cell:
    """
    Coerce ``value`` to ``kind``.

    Raises:
        ValidationError: If the value cannot be represented as ``kind``.
    """
    if value is None or isinstance(value, Cell) and value.kind == CellKind.NULL:
        return Cell(CellKind.NULL)
    if isinstance(value, Cell):
        value = value.to_json()

    try:
        if kind == CellKind.STRING:
            if isinstance(value, (dict, list)):
                raise ValueError("expected a scalar")
            return Cell(CellKind.STRING, value if isinstance(value, str) else str(value))
        if kind == CellKind.INTEGER:
            return Cell(CellKind.INTEGER, _to_int(value))
        if kind == CellKind.FLOAT:
            return Cell(CellKind.FLOAT, _to_float(value))
        if kind == CellKind.NUMBER:
            if isinstance(value, bool):
                raise ValueError("booleans are not numbers")
            if isinstance(value, int):
                return Cell(CellKind.INTEGER, value)
            if isinstance(value, str) and value.strip().lstrip("-").isdigit():
                return Cell(CellKind.INTEGER, int(value.strip()))
            return Cell(CellKind.FLOAT, _to_float(value))
        if kind == CellKind.BOOLEAN:
            return Cell(CellKind.BOOLEAN, _to_bool(value))
        if kind == CellKind.TIMESTAMP:
            return Cell(CellKind.TIMESTAMP, _to_datetime(value))
        if kind == CellKind.MAP:
            if not isinstance(value, Mapping):
                raise ValueError("expected an object")
            return infer_cell(value)
        if kind == CellKind.LIST:
            if isinstance(value, str):
                value = [part.strip() for part in value.split(",") if part.strip()]
            if not isinstance(value, (list, tuple, set)):
                raise ValueError("expected a list")
            return infer_cell(list(value))
    except (TypeError, ValueError) as exc:
        raise ValidationError(
            f"Field '{field_name}' expects {kind.value}: {exc}",
            metadata={"field": field_name, "kind": kind.value},
        ) from exc
    return infer_cell(value)


def _to_int(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError("booleans are not integers")
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError(f"{value!r} is not integral")
        return int(value)
    return int(str(value).strip())


def _to_float(value: Any) -> float:
    if isinstance(value, bool):
        raise ValueError("booleans are not numbers")
    return float(str(value).strip()) if isinstance(value, str) else float(value)


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ValueError(f"{value!r} is not a boolean")


def _to_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return _as_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return _as_utc(datetime.fromisoformat(text))


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Record(Mapping[str, Cell]):
    """An immutable mapping of field name to typed cell."""

    __slots__ = ("_cells",)

    def __init__(self, cells: Optional[Mapping[str, Cell]] = None) -> None:
        self._cells: dict[str, Cell] = dict(cells or {})

    def __getitem__(self, key: str) -> Cell:
        return self._cells[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._cells)

    def __len__(self) -> int:
        return len(self._cells)

    def __repr__(self) -> str:
        return f"Record({self.to_dict()!r})"

    def value(self, key: str, default: Any = None) -> Any:
        cell = self._cells.get(key)
        return default if cell is None else cell.value

    def merged(self, other: "Record") -> "Record":
        cells = dict(self._cells)
        cells.update(other._cells)
        return Record(cells)

    def to_dict(self) -> dict[str, Any]:
        return {key: cell.to_json() for key, cell in self._cells.items()}


class RecordSchema:
    """
    Declared shape of the records a repository stores.

    Unknown keys are inferred rather than rejected so repositories can carry
    bookkeeping columns (id, timestamps) that no panel field declares.
    """

    def __init__(self, kinds: Optional[Mapping[str, CellKind]] = None, required: Iterable[str] = ()) -> None:
        self._kinds: dict[str, CellKind] = dict(kinds or {})
        self._required = tuple(required)

    @classmethod
    def from_fields(cls, *field_groups: Iterable[Field]) -> "RecordSchema":
        kinds: dict[str, CellKind] = {}
        required: list[str] = []
        for group in field_groups:
            for f in group:
                if f.name in kinds:
                    continue
                kinds[f.name] = FIELD_TYPE_KINDS.get(f.type.lower(), CellKind.STRING)
                if f.required and not f.read_only:
                    required.append(f.name)
        return cls(kinds, required)

    @property
    def field_names(self) -> list[str]:
        return list(self._kinds)

    @property
    def required(self) -> tuple[str, ...]:
        return self._required

    def kind_of(self, name: str) -> Optional[CellKind]:
        return self._kinds.get(name)

    def coerce(self, raw: Mapping[str, Any], *, partial: bool = False) -> Record:
        """
        Coerce a raw mapping into a Record.

        Args:
            raw: Untyped input (e.g. a decoded JSON body).
            partial: Skip required-field checks (used for patches).

        Raises:
            ValidationError: On a missing required field or uncoercible value.
        """
        if not isinstance(raw, Mapping):
            raise ValidationError("Record payload must be an object")
        if not partial:
            missing = [
                name for name in self._required
                if raw.get(name) is None or (isinstance(raw.get(name), str) and not raw[name].strip())
            ]
            if missing:
                raise ValidationError(
                    f"Missing required field(s): {', '.join(missing)}",
                    metadata={"fields": missing},
                )
        cells: dict[str, Cell] = {}
        for key, value in raw.items():
            kind = self._kinds.get(key)
            cells[key] = coerce_cell(kind, value, key) if kind else infer_cell(value)
        return Record(cells)
