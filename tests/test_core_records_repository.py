"""
Unit Tests for core.records and core.repository modules.
"""

from datetime import datetime, timezone

import pytest


class TestCoerceCell:
    """Tests for coerce_cell()."""

    def test_none_is_null(self):
        """Test None coerces to a NULL cell for any kind."""
        from core.records import CellKind, coerce_cell

        assert coerce_cell(CellKind.INTEGER, None).kind == CellKind.NULL

    def test_integer(self):
        """Test integers accept digit strings and integral floats."""
        from core.records import CellKind, coerce_cell

        assert coerce_cell(CellKind.INTEGER, " 42 ").value == 42
        assert coerce_cell(CellKind.INTEGER, 3.0).value == 3

    @pytest.mark.parametrize("value", [True, 2.5, "abc"])
    def test_integer_rejects(self, value):
        """Test booleans, fractions and text are not integers."""
        from core.errors import ValidationError
        from core.records import CellKind, coerce_cell

        with pytest.raises(ValidationError) as exc_info:
            coerce_cell(CellKind.INTEGER, value, "qty")

        assert exc_info.value.metadata == {"field": "qty", "kind": "integer"}

    def test_number_keeps_integers_integral(self):
        """Test NUMBER resolves to INTEGER or FLOAT."""
        from core.records import CellKind, coerce_cell

        assert coerce_cell(CellKind.NUMBER, "7").kind == CellKind.INTEGER
        assert coerce_cell(CellKind.NUMBER, "7.5") == coerce_cell(CellKind.FLOAT, 7.5)

    @pytest.mark.parametrize("raw,expected", [("yes", True), ("off", False), (1, True), ("", False)])
    def test_boolean(self, raw, expected):
        """Test boolean spellings."""
        from core.records import CellKind, coerce_cell

        assert coerce_cell(CellKind.BOOLEAN, raw).value is expected

    def test_timestamp_from_iso_z(self):
        """Test ISO strings with a Z suffix become aware UTC datetimes."""
        from core.records import CellKind, coerce_cell

        cell = coerce_cell(CellKind.TIMESTAMP, "2024-05-01T10:00:00Z")

        assert cell.value == datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)
        assert cell.to_json() == "2024-05-01T10:00:00+00:00"

    def test_list_from_comma_string(self):
        """Test comma-separated text splits into a list."""
        from core.records import CellKind, coerce_cell

        assert coerce_cell(CellKind.LIST, "a, b,,c").to_json() == ["a", "b", "c"]

    def test_map_requires_mapping(self):
        """Test MAP rejects scalars."""
        from core.errors import ValidationError
        from core.records import CellKind, coerce_cell

        with pytest.raises(ValidationError):
            coerce_cell(CellKind.MAP, "not an object")

    def test_boolean_text(self):
        """Test booleans render as lowercase text."""
        from core.records import CellKind, coerce_cell

        assert coerce_cell(CellKind.BOOLEAN, True).as_text() == "true"


class TestRecordSchema:
    """Tests for RecordSchema."""

    def test_from_fields(self, note_fields):
        """Test kinds and required fields are derived from descriptors."""
        from core.descriptors import Field
        from core.records import CellKind, RecordSchema

        schema = RecordSchema.from_fields(note_fields, (Field(name="locked", required=True, read_only=True),))

        assert schema.kind_of("priority") == CellKind.INTEGER
        assert schema.kind_of("status") == CellKind.STRING
        assert schema.required == ("title",)

    def test_coerce_reports_missing_required(self, note_fields):
        """Test full coercion enforces required fields."""
        from core.errors import ValidationError
        from core.records import RecordSchema

        with pytest.raises(ValidationError):
            RecordSchema.from_fields(note_fields).coerce({"title": "  "})

    def test_coerce_partial_and_unknown_keys(self, note_fields):
        """Test partial coercion skips required checks and infers unknown keys."""
        from core.records import Cell, CellKind, RecordSchema

        record = RecordSchema.from_fields(note_fields).coerce({"priority": "5", "extra": 1.5}, partial=True)

        assert record["priority"] == Cell(CellKind.INTEGER, 5)
        assert record["extra"].kind == CellKind.FLOAT
        assert record.to_dict() == {"priority": 5, "extra": 1.5}

    def test_coerce_non_mapping(self):
        """Test non-object payloads are rejected."""
        from core.errors import ValidationError
        from core.records import RecordSchema

        with pytest.raises(ValidationError):
            RecordSchema().coerce(["a"])


class TestInMemoryRepository:
    """Tests for InMemoryRepository."""

    @pytest.mark.asyncio
    async def test_list_defaults(self, notes_repository):
        """Test listing returns stamped records and the total."""
        from core.repository import ListOptions

        records, total = await notes_repository.list(ListOptions())

        assert total == 3
        assert {"id", "created_at", "updated_at"} <= set(records[0])

    @pytest.mark.asyncio
    async def test_search_filter_and_sort(self, notes_repository):
        """Test search, field filters and sorting compose."""
        from core.repository import ListOptions

        records, total = await notes_repository.list(
            ListOptions(filters={"_search": "NOTE", "status": "open"})
        )
        assert total == 1
        assert records[0]["title"] == "Alpha"

        records, _ = await notes_repository.list(ListOptions(sort_by="priority", sort_desc=True))
        assert [r["title"] for r in records] == ["Alpha", "Gamma", "Beta"]

    @pytest.mark.asyncio
    async def test_filter_any_of(self, notes_repository):
        """Test list filter values match any of the values."""
        from core.repository import ListOptions

        _, total = await notes_repository.list(ListOptions(filters={"status": ["open", "closed"]}))

        assert total == 3

    @pytest.mark.asyncio
    async def test_pagination(self, notes_repository):
        """Test pages are sliced after filtering."""
        from core.repository import ListOptions

        records, total = await notes_repository.list(ListOptions(page=2, per_page=2, sort_by="title"))

        assert total == 3
        assert [r["title"] for r in records] == ["Gamma"]

    @pytest.mark.asyncio
    async def test_create_update_delete(self, notes_repository):
        """Test the CRUD cycle with coercion at the boundary."""
        from core.errors import NotFoundError

        created = await notes_repository.create({"id": "ignored", "title": "Delta", "priority": "4"})
        assert created["id"] != "ignored"
        assert created["priority"] == 4

        updated = await notes_repository.update(created["id"], {"status": "closed"})
        assert updated["status"] == "closed"
        assert updated["title"] == "Delta"

        await notes_repository.delete(created["id"])
        with pytest.raises(NotFoundError):
            await notes_repository.get(created["id"])
        with pytest.raises(NotFoundError):
            await notes_repository.delete(created["id"])

    @pytest.mark.asyncio
    async def test_create_rejects_bad_value(self, notes_repository):
        """Test invalid typed values are rejected on create."""
        from core.errors import ValidationError

        with pytest.raises(ValidationError):
            await notes_repository.create({"title": "Bad", "priority": "high"})

    @pytest.mark.asyncio
    async def test_update_unknown(self, notes_repository):
        """Test updating a missing record raises NotFoundError."""
        from core.errors import NotFoundError

        with pytest.raises(NotFoundError):
            await notes_repository.update("missing", {"title": "x"})


class TestRepositoryHelpers:
    """Tests for ListOptions, sort_key and require_record_id."""

    def test_normalized_caps_per_page(self):
        """Test per_page is capped and non-positive values reset."""
        from core.repository import ListOptions

        opts = ListOptions(page=0, per_page=1000).normalized()

        assert opts.page == 1
        assert opts.per_page == 200
        assert ListOptions(per_page=-1).normalized().per_page == 10

    def test_sort_key_orders_numbers_text_nulls(self):
        """Test numbers sort before text and nulls last."""
        from core.records import infer_cell
        from core.repository import sort_key

        cells = [infer_cell(None), infer_cell("b"), infer_cell(2), infer_cell("a"), infer_cell(1)]

        ordered = sorted(cells, key=sort_key)

        assert [c.value for c in ordered] == [1, 2, "a", "b", None]

    def test_require_record_id(self):
        """Test blank record ids are rejected."""
        from core.errors import ValidationError
        from core.repository import require_record_id

        assert require_record_id(" 42 ") == "42"
        with pytest.raises(ValidationError):
            require_record_id("  ")
