"""
Unit Tests for core.commands, core.search and core.jobs modules.
"""

from dataclasses import dataclass

import pytest

from core.context import AdminContext


@dataclass
class ArchiveMsg:
    message_type = "notes.archive"

    note_id: str = ""


class ArchiveHandler:
    message_type = "notes.archive"

    def __init__(self):
        self.seen = []

    def build_message(self, payload):
        return ArchiveMsg(note_id=payload["id"])

    async def execute(self, ctx, message):
        self.seen.append((ctx.user_id, message))
        return {"archived": message.note_id}


class TestCommandBus:
    """Tests for CommandBus."""

    def test_handler_without_message_type(self):
        """Test handlers must declare their message type."""
        from core.commands import CommandBus
        from core.errors import ValidationError

        class Nameless:
            async def execute(self, ctx, message):
                return None

        with pytest.raises(ValidationError):
            CommandBus().register(Nameless())

    def test_duplicate_handler(self):
        """Test one handler per message type."""
        from core.commands import CommandBus
        from core.errors import ConflictError

        bus = CommandBus()
        bus.register(ArchiveHandler())

        with pytest.raises(ConflictError) as exc_info:
            bus.register(ArchiveHandler())

        assert exc_info.value.code == "COMMAND_DUPLICATE"

    def test_frozen_bus(self):
        """Test registration after freeze fails."""
        from core.commands import CommandBus
        from core.errors import RegistrationClosedError

        bus = CommandBus()
        bus.freeze()

        with pytest.raises(RegistrationClosedError):
            bus.register(ArchiveHandler())

    @pytest.mark.asyncio
    async def test_dispatch_by_name_uses_build_message(self):
        """Test payloads are turned into typed messages by the handler."""
        from core.commands import CommandBus

        handler = ArchiveHandler()
        bus = CommandBus()
        bus.register(handler)

        result = await bus.dispatch_by_name(AdminContext(user_id="u1"), "notes.archive", {"id": "n1"})

        assert result == {"archived": "n1"}
        assert handler.seen == [("u1", ArchiveMsg(note_id="n1"))]

    @pytest.mark.asyncio
    async def test_dispatch_by_name_generic_message(self):
        """Test handlers without a factory receive a GenericCommand."""
        from core.commands import CommandBus, GenericCommand

        received = []

        class Ping:
            message_type = "ping"

            async def execute(self, ctx, message):
                received.append(message)

        bus = CommandBus()
        bus.register(Ping())
        await bus.dispatch_by_name(AdminContext(), "ping", {"n": 1})

        assert received == [GenericCommand(name="ping", payload={"n": 1})]
        assert received[0].message_type == "ping"

    @pytest.mark.asyncio
    async def test_dispatch_unknown(self):
        """Test unknown message types raise NotFoundError."""
        from core.commands import CommandBus
        from core.errors import NotFoundError

        with pytest.raises(NotFoundError):
            await CommandBus().dispatch(AdminContext(), ArchiveMsg())

    def test_scheduled_handlers(self):
        """Test handlers with a cron schedule are listed as scheduled."""
        from core.commands import CommandBus

        class Nightly(ArchiveHandler):
            message_type = "nightly"
            cron_schedule = "0 0 * * *"

        bus = CommandBus()
        bus.register(ArchiveHandler())
        bus.register(Nightly())

        assert [h.message_type for h in bus.scheduled()] == ["nightly"]

    @pytest.mark.asyncio
    async def test_null_bus(self):
        """Test the disabled bus ignores registrations and dispatches."""
        from core.commands import NullCommandBus

        bus = NullCommandBus()
        bus.register(ArchiveHandler())

        assert bus.enabled is False
        assert await bus.dispatch_by_name(AdminContext(), "notes.archive", {"id": "1"}) is None


class TestSearchEngine:
    """Tests for SearchEngine and RepositorySearchAdapter."""

    def _adapter(self, repository, permission=""):
        from core.search import RepositorySearchAdapter, SearchResult

        return RepositorySearchAdapter(
            repository,
            "note",
            lambda r: SearchResult(type="note", id=r["id"], title=r["title"]),
            permission=permission,
        )

    @pytest.mark.asyncio
    async def test_query_repository(self, notes_repository):
        """Test repository adapters search their search fields."""
        from core.search import SearchEngine

        engine = SearchEngine()
        engine.register("notes", self._adapter(notes_repository))

        results = await engine.query(AdminContext(), "note")

        assert sorted(r.title for r in results) == ["Alpha", "Beta"]
        assert all(r.type == "note" for r in results)

    @pytest.mark.asyncio
    async def test_blank_query(self, notes_repository):
        """Test blank queries return nothing."""
        from core.search import SearchEngine

        engine = SearchEngine()
        engine.register("notes", self._adapter(notes_repository))

        assert await engine.query(AdminContext(), "   ") == []

    @pytest.mark.asyncio
    async def test_limit_per_adapter(self, notes_repository):
        """Test results are capped per adapter."""
        from core.search import SearchEngine

        engine = SearchEngine()
        engine.register("notes", self._adapter(notes_repository))

        assert len(await engine.query(AdminContext(), "e", limit=1)) == 1

    @pytest.mark.asyncio
    async def test_permission_and_failures(self, notes_repository):
        """Test denied adapters are hidden and failing adapters skipped."""
        from core.search import SearchEngine

        class Broken:
            def permission(self):
                return ""

            async def search(self, ctx, query, limit):
                raise RuntimeError("index offline")

        class DenySecret:
            def can(self, ctx, action, resource):
                return action != "secret.view"

        engine = SearchEngine()
        engine.register("broken", Broken())
        engine.register("secret", self._adapter(notes_repository, permission="secret.view"))
        engine.register("notes", self._adapter(notes_repository))

        results = await engine.query(AdminContext(), "Alpha", authorizer=DenySecret())

        assert [r.title for r in results] == ["Alpha"]

    def test_duplicate_adapter(self, notes_repository):
        """Test adapter names are unique."""
        from core.errors import ConflictError
        from core.search import SearchEngine

        engine = SearchEngine()
        engine.register("notes", self._adapter(notes_repository))

        with pytest.raises(ConflictError) as exc_info:
            engine.register("notes", self._adapter(notes_repository))

        assert exc_info.value.code == "SEARCH_ADAPTER_DUPLICATE"


class TestJobRegistry:
    """Tests for JobRegistry."""

    def test_duplicate_job(self):
        """Test job names are unique."""
        from core.errors import ConflictError
        from core.jobs import Job, JobRegistry

        registry = JobRegistry()
        registry.register(Job(name="sync"))

        with pytest.raises(ConflictError):
            registry.register(Job(name="sync"))

    def test_list_jobs_initial_state(self):
        """Test jobs start pending with no runs."""
        from core.jobs import Job, JobRegistry

        registry = JobRegistry()
        registry.register(Job(name="sync", schedule="0 * * * *", description="Sync"))

        assert registry.list_jobs() == [{
            "name": "sync",
            "schedule": "0 * * * *",
            "description": "Sync",
            "status": "pending",
            "last_run": None,
            "last_error": "",
            "run_count": 0,
        }]

    @pytest.mark.asyncio
    async def test_trigger_success(self):
        """Test a successful trigger records the run."""
        from core.jobs import Job, JobRegistry

        ran = []
        registry = JobRegistry()
        registry.register(Job(name="sync", handler=lambda ctx: ran.append(ctx.user_id)))

        state = await registry.trigger("sync", AdminContext(user_id="ops"))

        assert ran == ["ops"]
        assert state["status"] == "ok"
        assert state["run_count"] == 1
        assert state["last_run"] is not None

    @pytest.mark.asyncio
    async def test_trigger_failure_is_recorded_and_raised(self):
        """Test job errors are recorded then re-raised."""
        from core.jobs import Job, JobRegistry

        async def broken(ctx):
            raise RuntimeError("upstream timeout")

        registry = JobRegistry()
        registry.register(Job(name="sync", handler=broken))

        with pytest.raises(RuntimeError):
            await registry.trigger("sync", AdminContext())

        job = registry.list_jobs()[0]
        assert job["status"] == "failed"
        assert job["last_error"] == "upstream timeout"

    @pytest.mark.asyncio
    async def test_trigger_unknown(self):
        """Test triggering an unknown job raises NotFoundError."""
        from core.errors import NotFoundError
        from core.jobs import JobRegistry

        with pytest.raises(NotFoundError):
            await JobRegistry().trigger("missing", AdminContext())

    def test_null_registry(self):
        """Test the disabled registry ignores jobs."""
        from core.jobs import Job, NullJobRegistry

        registry = NullJobRegistry()
        registry.register(Job(name="sync"))

        assert registry.enabled is False
        assert registry.list_jobs() == []
