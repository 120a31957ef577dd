"""
Unit Tests for the Google Drive import: service, HTTP client, job handler,
job queue and GoogleImportCommand.
"""

import asyncio

import httpx
import pytest

from core.context import AdminContext

PDF = b"%PDF-1.4\n% imported\n%%EOF\n"


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def drive_client():
    from modules.esign.services.google import StaticGoogleDriveClient

    return StaticGoogleDriveClient({"file-1": ("Services Agreement", PDF)})


@pytest.fixture
def credentials(scope):
    from modules.esign.services.google import GoogleCredentialStore

    creds = GoogleCredentialStore()
    creds.connect(scope, "u1", "ya29.access")
    return creds


@pytest.fixture
def importer(drive_client, credentials, store, metrics):
    from modules.esign.services.google import GoogleImportService

    return GoogleImportService(
        client=drive_client,
        credentials=credentials,
        documents=store,
        agreements=store,
        metrics=metrics,
    )


def _drive_transport(mime_type="application/vnd.google-apps.document", status_code=200):
    """Mock Drive v3 API recording every request."""
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if status_code != 200:
            return httpx.Response(status_code, json={"error": {"code": status_code}})
        if request.url.path.endswith("/export"):
            return httpx.Response(200, content=b"%PDF-exported")
        if request.url.params.get("alt") == "media":
            return httpx.Response(200, content=b"%PDF-media")
        return httpx.Response(200, json={
            "id": "file-1",
            "name": "Quarterly Plan",
            "mimeType": mime_type,
            "modifiedTime": "2024-05-01T10:00:00Z",
        })

    return httpx.MockTransport(handler), seen


class TestGoogleImportService:
    """Tests for GoogleImportService.import_document()."""

    @pytest.mark.asyncio
    async def test_import_creates_document_and_draft(self, importer, store, scope, metrics):
        """Test a Drive file becomes a stored document and a draft agreement."""
        from modules.esign.models.records import AgreementStatus
        from modules.esign.services.google import GoogleImportInput

        result = await importer.import_document(scope, GoogleImportInput(user_id="u1", google_file_id="file-1"))

        assert result.empty is False
        assert result.document.title == "Services Agreement"
        assert result.document.source_type == "google_drive"
        assert result.document.source_google_file_id == "file-1"
        assert await importer.objects.get(result.document.source_object_key) == PDF
        assert result.agreement.document_id == result.document.id
        assert result.agreement.status == AgreementStatus.DRAFT
        assert result.agreement.created_by_user_id == "u1"
        assert [a.id for a in await store.list_agreements(scope)] == [result.agreement.id]

        snapshot = metrics.snapshot()
        assert snapshot.google_import_total == {"success": 1}
        assert snapshot.provider_result_total == {"google_drive:success": 1}

    @pytest.mark.asyncio
    async def test_titles_override_drive_name(self, importer, scope):
        """Test explicit titles win over the Drive file name."""
        from modules.esign.services.google import GoogleImportInput

        result = await importer.import_document(scope, GoogleImportInput(
            user_id="u1", google_file_id="file-1", document_title="Source", agreement_title="Contract 2024",
        ))

        assert result.document.title == "Source"
        assert result.agreement.title == "Contract 2024"

    @pytest.mark.asyncio
    async def test_not_connected(self, importer, scope, metrics):
        """Test users without Drive credentials are rejected."""
        from modules.esign.services.google import GoogleImportInput, GoogleNotConnectedError

        with pytest.raises(GoogleNotConnectedError) as exc_info:
            await importer.import_document(scope, GoogleImportInput(user_id="u2", google_file_id="file-1"))

        assert exc_info.value.code == "GOOGLE_NOT_CONNECTED"
        assert exc_info.value.status_code == 401
        assert metrics.snapshot().google_import_total == {"failure": 1}

    @pytest.mark.asyncio
    async def test_missing_file(self, importer, scope, metrics):
        """Test provider errors are counted and propagated."""
        from core.errors import NotFoundError
        from modules.esign.services.google import GoogleImportInput

        with pytest.raises(NotFoundError):
            await importer.import_document(scope, GoogleImportInput(user_id="u1", google_file_id="missing"))

        assert metrics.snapshot().provider_result_total == {"google_drive:failure": 1}

    @pytest.mark.asyncio
    async def test_required_inputs(self, importer, scope):
        """Test file and user ids are required."""
        from core.errors import ValidationError
        from modules.esign.services.google import GoogleImportInput

        with pytest.raises(ValidationError):
            await importer.import_document(scope, GoogleImportInput(user_id="u1", google_file_id=" "))
        with pytest.raises(ValidationError):
            await importer.import_document(scope, GoogleImportInput(user_id="", google_file_id="file-1"))

    @pytest.mark.asyncio
    async def test_credentials_are_scoped(self, credentials, scope):
        """Test credentials of one tenant are invisible to another."""
        from core.context import Scope
        from modules.esign.services.google import GoogleNotConnectedError

        assert await credentials.access_token(scope, "u1") == "ya29.access"
        with pytest.raises(GoogleNotConnectedError):
            await credentials.access_token(Scope("t2", "o1"), "u1")

        credentials.disconnect(scope, "u1")
        with pytest.raises(GoogleNotConnectedError):
            await credentials.access_token(scope, "u1")


class TestHttpGoogleDriveClient:
    """Tests for HttpGoogleDriveClient against a mocked Drive API."""

    @pytest.mark.asyncio
    async def test_exports_workspace_document(self):
        """Test Google Docs are exported as PDF with the bearer token."""
        from modules.esign.services.google import HttpGoogleDriveClient

        transport, seen = _drive_transport()
        async with httpx.AsyncClient(transport=transport) as http_client:
            client = HttpGoogleDriveClient("https://drive.test/", http_client=http_client)
            snapshot = await client.export_file_pdf("ya29.token", "file-1")

        assert snapshot.pdf == b"%PDF-exported"
        assert snapshot.file.name == "Quarterly Plan"
        assert snapshot.file.modified_time.year == 2024
        assert [r.url.path for r in seen] == ["/drive/v3/files/file-1", "/drive/v3/files/file-1/export"]
        assert seen[1].url.params["mimeType"] == "application/pdf"
        assert all(r.headers["Authorization"] == "Bearer ya29.token" for r in seen)

    @pytest.mark.asyncio
    async def test_downloads_pdf(self):
        """Test PDF files are downloaded as media."""
        from modules.esign.services.google import HttpGoogleDriveClient

        transport, _ = _drive_transport(mime_type="application/pdf")
        async with httpx.AsyncClient(transport=transport) as http_client:
            snapshot = await HttpGoogleDriveClient("https://drive.test", http_client=http_client).export_file_pdf(
                "tok", "file-1"
            )

        assert snapshot.pdf == b"%PDF-media"

    @pytest.mark.asyncio
    async def test_rejects_unsupported_type(self):
        """Test files that cannot become a PDF are rejected."""
        from core.errors import ValidationError
        from modules.esign.services.google import HttpGoogleDriveClient

        transport, _ = _drive_transport(mime_type="image/png")
        async with httpx.AsyncClient(transport=transport) as http_client:
            with pytest.raises(ValidationError):
                await HttpGoogleDriveClient("https://drive.test", http_client=http_client).export_file_pdf("t", "file-1")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code,error_code", [
        (401, "GOOGLE_ACCESS_REVOKED"),
        (404, "NOT_FOUND"),
        (429, "GOOGLE_PROVIDER_ERROR"),
        (503, "GOOGLE_PROVIDER_ERROR"),
        (400, "VALIDATION"),
    ])
    async def test_status_mapping(self, status_code, error_code):
        """Test Drive HTTP errors map to admin errors."""
        from core.errors import AdminError
        from modules.esign.services.google import HttpGoogleDriveClient

        transport, _ = _drive_transport(status_code=status_code)
        async with httpx.AsyncClient(transport=transport) as http_client:
            with pytest.raises(AdminError) as exc_info:
                await HttpGoogleDriveClient("https://drive.test", http_client=http_client).export_file_pdf("t", "file-1")

        assert exc_info.value.code == error_code

    @pytest.mark.asyncio
    async def test_network_error_is_transient(self):
        """Test transport failures become GoogleProviderError."""
        from core.errors import TransientError
        from modules.esign.services.google import GoogleProviderError, HttpGoogleDriveClient

        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
            with pytest.raises(GoogleProviderError) as exc_info:
                await HttpGoogleDriveClient("https://drive.test", http_client=http_client).export_file_pdf("t", "file-1")

        assert isinstance(exc_info.value, TransientError)


class TestGoogleDriveImportJob:
    """Tests for execute_google_drive_import()."""

    @pytest.mark.asyncio
    async def test_replay_returns_empty_result(self, make_handlers, importer, drive_client, store, scope, metrics):
        """Test an import runs once per user and file."""
        from modules.esign.jobs.messages import GoogleDriveImportMsg

        handlers = make_handlers(google_importer=importer)
        msg = GoogleDriveImportMsg("u1", "file-1", scope)

        first = await handlers.execute_google_drive_import(msg)
        second = await handlers.execute_google_drive_import(msg)

        assert first.agreement is not None
        assert second.empty is True
        assert drive_client.export_calls == 1
        assert len(await store.list_agreements(scope)) == 1
        assert metrics.snapshot().google_import_total == {"success": 1, "deduped": 1}

        [run] = await store.list_job_runs(scope)
        assert run.dedupe_key == "u1|file-1"
        [event] = [e for e in await store.list_events(scope) if e.event_type == "job.succeeded"]
        assert event.agreement_id == first.agreement.id

    @pytest.mark.asyncio
    async def test_missing_importer(self, handlers, scope):
        """Test the job refuses to run without an importer."""
        from core.errors import DependencyMissingError
        from modules.esign.jobs.messages import GoogleDriveImportMsg

        with pytest.raises(DependencyMissingError):
            await handlers.execute_google_drive_import(GoogleDriveImportMsg("u1", "file-1", scope))


class TestAsyncJobQueue:
    """Tests for AsyncJobQueue."""

    @pytest.mark.asyncio
    async def test_processes_messages(self):
        """Test accepted messages are handled by the workers."""
        from modules.esign.jobs.queue import AsyncJobQueue

        handled = []

        async def handler(message):
            handled.append(message)

        queue = AsyncJobQueue(handler, workers=2, capacity=4)
        try:
            for index in range(5):
                await queue.enqueue(index)
            await queue.join()
        finally:
            await queue.close()

        assert sorted(handled) == [0, 1, 2, 3, 4]
        assert queue.processed == 5
        assert queue.pending() == 0

    @pytest.mark.asyncio
    async def test_failures_do_not_reach_enqueuer(self):
        """Test a failing job is counted and the worker keeps running."""
        from modules.esign.jobs.queue import AsyncJobQueue

        async def handler(message):
            if message == "bad":
                raise RuntimeError("boom")

        queue = AsyncJobQueue(handler)
        try:
            await queue.enqueue("bad")
            await queue.enqueue("good")
            await queue.join()
        finally:
            await queue.close()

        assert (queue.processed, queue.failed) == (1, 1)

    @pytest.mark.asyncio
    async def test_closed_queue_rejects(self):
        """Test enqueue after close raises QueueClosedError."""
        from core.errors import QueueClosedError
        from modules.esign.jobs.queue import AsyncJobQueue

        queue = AsyncJobQueue(lambda message: asyncio.sleep(0))
        await queue.close()

        assert queue.closed is True
        with pytest.raises(QueueClosedError):
            await queue.enqueue("late")

    @pytest.mark.asyncio
    async def test_cancelled_enqueue_on_full_queue(self):
        """Test an enqueue waiting on a full queue is cancellable and leaves the queue intact."""
        from modules.esign.jobs.queue import AsyncJobQueue

        started = asyncio.Event()
        release = asyncio.Event()
        handled = []

        async def handler(message):
            started.set()
            await release.wait()
            handled.append(message)

        queue = AsyncJobQueue(handler, workers=1, capacity=1)
        try:
            await queue.enqueue("first")
            await started.wait()
            await queue.enqueue("second")

            blocked = asyncio.create_task(queue.enqueue("third"))
            await asyncio.sleep(0)
            assert not blocked.done()

            blocked.cancel()
            with pytest.raises(asyncio.CancelledError):
                await blocked
            assert blocked.cancelled()
            assert queue.pending() == 1
        finally:
            release.set()
            await queue.close()

        assert handled == ["first", "second"]
        assert queue.processed == 2


class TestGoogleImportCommand:
    """Tests for GoogleImportCommand."""

    def test_build_message(self):
        """Test the payload maps onto an import message."""
        from core.errors import ValidationError
        from modules.esign.jobs.commands import GoogleImportCommand

        command = GoogleImportCommand(queue=None)

        msg = command.build_message({"google_file_id": "file-1", "agreement_title": "Contract"})

        assert (msg.google_file_id, msg.agreement_title, msg.user_id) == ("file-1", "Contract", "")
        with pytest.raises(ValidationError):
            command.build_message({"document_title": "x"})

    @pytest.mark.asyncio
    async def test_execute_queues_import_for_caller(self, make_handlers, importer, store, scope):
        """Test the import runs in the caller's scope on behalf of the caller."""
        from modules.esign.jobs.commands import GoogleImportCommand
        from modules.esign.jobs.queue import AsyncJobQueue

        queue = AsyncJobQueue(make_handlers(google_importer=importer).dispatch)
        command = GoogleImportCommand(queue)
        ctx = AdminContext(user_id="u1", tenant_id="t1", org_id="o1")
        try:
            result = await command.execute(ctx, command.build_message({"google_file_id": "file-1"}))
            await queue.join()
        finally:
            await queue.close()

        assert result == {"status": "queued", "google_file_id": "file-1"}
        assert queue.processed == 1
        [agreement] = await store.list_agreements(scope)
        assert agreement.created_by_user_id == "u1"

    @pytest.mark.asyncio
    async def test_execute_requires_user(self):
        """Test anonymous callers cannot import."""
        from core.errors import ValidationError
        from modules.esign.jobs.commands import GoogleImportCommand

        command = GoogleImportCommand(queue=None)

        with pytest.raises(ValidationError):
            await command.execute(AdminContext(), command.build_message({"google_file_id": "file-1"}))
