"""
Unit Tests for the E-Sign stores.

Tests the in-memory store (agreements, artifacts, audit trail, job runs)
and the SQL job store on an in-memory SQLite database.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from core.context import Scope

NOW = datetime(2024, 5, 1, 9, 30, tzinfo=timezone.utc)


def _job(name="pdf_render_pages", key="agr-1", **kwargs):
    from modules.esign.models.records import JobRunInput

    kwargs.setdefault("attempted_at", NOW)
    return JobRunInput(job_name=name, dedupe_key=key, **kwargs)


@pytest.fixture
async def sql_store():
    """SqlJobStore over a fresh in-memory SQLite database."""
    from core.database import create_engine_for, create_session_factory, init_database
    from modules.esign.stores.sql import SqlJobStore

    engine = create_engine_for("sqlite+aiosqlite:///:memory:")
    await init_database(engine)
    yield SqlJobStore(create_session_factory(engine))
    await engine.dispose()


# =============================================================================
# Agreements, recipients, artifacts
# =============================================================================


class TestInMemoryAgreements:
    """Tests for agreement and recipient storage."""

    @pytest.mark.asyncio
    async def test_lifecycle_transitions(self, store, scope, make_agreement):
        """Test draft -> sent -> completed and the timestamps set on the way."""
        from modules.esign.models.records import AgreementStatus

        agreement, _, _ = await make_agreement(status="completed")

        assert agreement.status == AgreementStatus.COMPLETED
        assert agreement.sent_at is not None
        assert agreement.completed_at is not None

    @pytest.mark.asyncio
    async def test_skipping_a_state_is_invalid(self, store, scope, make_agreement):
        """Test a draft cannot jump to completed."""
        from core.errors import ValidationError
        from modules.esign.models.records import AgreementStatus

        agreement, _, _ = await make_agreement()

        with pytest.raises(ValidationError) as exc_info:
            await store.transition(scope, agreement.id, AgreementStatus.COMPLETED, NOW)

        assert exc_info.value.code == "AGREEMENT_TRANSITION_INVALID"

    @pytest.mark.asyncio
    async def test_completed_is_terminal(self, store, scope, make_agreement):
        """Test completed agreements never transition again."""
        from core.errors import AgreementImmutableError
        from modules.esign.models.records import AgreementStatus

        agreement, _, _ = await make_agreement(status="completed")

        with pytest.raises(AgreementImmutableError) as exc_info:
            await store.transition(scope, agreement.id, AgreementStatus.SENT, NOW)

        assert exc_info.value.status_code == 409

    @pytest.mark.asyncio
    async def test_draft_only_edits(self, store, scope, make_agreement):
        """Test drafts accept edits and recipients until sent."""
        from core.errors import AgreementImmutableError, ValidationError
        from modules.esign.models.records import RecipientRecord

        agreement, _, _ = await make_agreement()

        updated = await store.update_draft(scope, agreement.id, {"title": "Renamed"})
        assert updated.title == "Renamed"
        with pytest.raises(ValidationError):
            await store.update_draft(scope, agreement.id, {"status": "completed"})

        await store.transition(scope, agreement.id, "sent", NOW)

        with pytest.raises(AgreementImmutableError):
            await store.update_draft(scope, agreement.id, {"title": "Too late"})
        with pytest.raises(AgreementImmutableError):
            await store.add_recipient(scope, RecipientRecord(id="", agreement_id=agreement.id, email="late@example.com"))

    @pytest.mark.asyncio
    async def test_recipients_sorted_by_signing_order(self, store, scope):
        """Test recipients are listed in signing order."""
        from modules.esign.models.records import AgreementRecord, RecipientRecord

        agreement = await store.create_agreement(scope, AgreementRecord(id="", title="Order"))
        await store.add_recipient(scope, RecipientRecord(id="r2", agreement_id=agreement.id, email="b@x.test", signing_order=2))
        await store.add_recipient(scope, RecipientRecord(id="r1", agreement_id=agreement.id, email="a@x.test", signing_order=1))

        assert [r.id for r in await store.list_recipients(scope, agreement.id)] == ["r1", "r2"]

    @pytest.mark.asyncio
    async def test_scope_isolation_and_copies(self, store, scope, make_agreement):
        """Test records are invisible to other scopes and returned as copies."""
        from core.errors import NotFoundError

        agreement, _, _ = await make_agreement()

        with pytest.raises(NotFoundError):
            await store.get_agreement(Scope("t2", "o1"), agreement.id)

        agreement.title = "mutated"
        assert (await store.get_agreement(scope, agreement.id)).title == "Mutual NDA"
        assert agreement.tenant_id == "t1"

    @pytest.mark.asyncio
    async def test_artifact_slots_are_write_once(self, store, scope):
        """Test a filled artifact slot rejects a different object."""
        from core.errors import ArtifactImmutableError
        from modules.esign.models.records import AgreementArtifactRecord

        await store.save_artifacts(scope, AgreementArtifactRecord("a1", executed_object_key="k1", executed_sha256="h1"))
        merged = await store.save_artifacts(scope, AgreementArtifactRecord("a1", certificate_object_key="c1"))
        same = await store.save_artifacts(scope, AgreementArtifactRecord("a1", executed_object_key="k1", executed_sha256="h1"))

        assert (merged.executed_object_key, merged.certificate_object_key) == ("k1", "c1")
        assert same.executed_sha256 == "h1"
        with pytest.raises(ArtifactImmutableError):
            await store.save_artifacts(scope, AgreementArtifactRecord("a1", executed_object_key="k2"))

    @pytest.mark.asyncio
    async def test_empty_artifacts(self, store, scope):
        """Test agreements without artifacts return empty slots."""
        artifacts = await store.get_artifacts(scope, "a1")

        assert (artifacts.agreement_id, artifacts.executed_object_key, artifacts.tenant_id) == ("a1", "", "t1")


# =============================================================================
# Job runs, email logs, audit events
# =============================================================================


class TestInMemoryJobRuns:
    """Tests for the dedupe slot of the in-memory store."""

    @pytest.mark.asyncio
    async def test_begin_job_run_lifecycle(self, store, scope):
        """Test first run, dedupe while running, re-run after failure, dedupe after success."""
        from modules.esign.models.records import JobRunStatus

        run, should_run = await store.begin_job_run(scope, _job(correlation_id="c1"))
        assert should_run is True
        assert (run.status, run.attempt_count, run.attempted_at) == (JobRunStatus.RUNNING, 1, NOW)

        assert (await store.begin_job_run(scope, _job()))[1] is False

        await store.mark_job_run_failed(scope, run.id, "boom", NOW + timedelta(seconds=2), NOW)
        rerun, should_run = await store.begin_job_run(scope, _job())
        assert should_run is True
        assert rerun.attempt_count == 2
        assert rerun.correlation_id == "c1"
        assert rerun.next_retry_at is None

        await store.mark_job_run_succeeded(scope, run.id, NOW)
        done, should_run = await store.begin_job_run(scope, _job())
        assert should_run is False
        assert done.status == JobRunStatus.SUCCEEDED

    @pytest.mark.asyncio
    async def test_dedupe_is_scoped(self, store, scope):
        """Test the same key in another tenant is a separate slot."""
        await store.begin_job_run(scope, _job())

        assert (await store.begin_job_run(Scope("t2"), _job()))[1] is True
        assert await store.get_job_run_by_dedupe(scope, "pdf_render_pages", "agr-1") is not None
        assert await store.get_job_run_by_dedupe(scope, "pdf_render_pages", "other") is None

    @pytest.mark.asyncio
    async def test_stale_running_run_is_reclaimed(self, store, scope):
        """Test a run left running is only re-run once its lease expired."""
        from modules.esign.models.records import JobRunStatus
        from modules.esign.stores.contracts import RUNNING_LEASE

        run, _ = await store.begin_job_run(scope, _job())

        held, should_run = await store.begin_job_run(scope, _job(attempted_at=NOW + timedelta(minutes=1)))
        assert should_run is False
        assert held.attempt_count == 1

        later = NOW + RUNNING_LEASE + timedelta(minutes=1)
        reclaimed, should_run = await store.begin_job_run(scope, _job(attempted_at=later))
        assert should_run is True
        assert reclaimed.id == run.id
        assert (reclaimed.status, reclaimed.attempt_count, reclaimed.attempted_at) == (JobRunStatus.RUNNING, 2, later)

    @pytest.mark.asyncio
    async def test_concurrent_begin_runs_once(self, store, scope):
        """Test concurrent begins for one dedupe key start exactly one run."""
        results = await asyncio.gather(*(store.begin_job_run(scope, _job()) for _ in range(8)))

        assert sum(should_run for _, should_run in results) == 1
        assert len({run.id for run, _ in results}) == 1
        assert len(await store.list_job_runs(scope)) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name,key", [("", "k"), ("job", "  ")])
    async def test_begin_requires_name_and_key(self, store, scope, name, key):
        """Test blank job names and dedupe keys are rejected."""
        from core.errors import ValidationError

        with pytest.raises(ValidationError):
            await store.begin_job_run(scope, _job(name, key))

    @pytest.mark.asyncio
    async def test_mark_unknown_run(self, store, scope):
        """Test marking a missing run raises NotFoundError."""
        from core.errors import NotFoundError

        with pytest.raises(NotFoundError):
            await store.mark_job_run_succeeded(scope, "missing", NOW)

    @pytest.mark.asyncio
    async def test_audit_events_are_append_only(self, store, scope):
        """Test audit events can be appended and listed but never changed."""
        from core.errors import AuditEventsAppendOnlyError
        from modules.esign.models.records import AuditEventRecord

        event = await store.append(scope, AuditEventRecord(id="", agreement_id="a1", event_type="agreement.sent"))

        assert [e.id for e in await store.list_events(scope, "a1")] == [event.id]
        assert await store.list_events(Scope("t2"), "a1") == []
        with pytest.raises(AuditEventsAppendOnlyError) as exc_info:
            await store.update_event(scope, event.id, {"event_type": "x"})
        assert exc_info.value.code == "AUDIT_EVENTS_APPEND_ONLY"
        with pytest.raises(AuditEventsAppendOnlyError):
            await store.delete_event(scope, event.id)


class TestSqlJobStore:
    """Tests for SqlJobStore on SQLite."""

    @pytest.mark.asyncio
    async def test_begin_job_run_lifecycle(self, sql_store, scope):
        """Test the dedupe slot behaves like the in-memory store."""
        from modules.esign.models.records import JobRunStatus

        run, should_run = await sql_store.begin_job_run(scope, _job(agreement_id="agr-1", correlation_id="c1"))
        assert should_run is True
        assert (run.status, run.attempt_count, run.tenant_id) == (JobRunStatus.RUNNING, 1, "t1")

        assert (await sql_store.begin_job_run(scope, _job()))[1] is False

        failed = await sql_store.mark_job_run_failed(scope, run.id, " boom ", NOW + timedelta(seconds=4), NOW)
        assert failed.status == JobRunStatus.RETRYING
        assert failed.last_error == "boom"
        assert failed.next_retry_at == NOW + timedelta(seconds=4)

        rerun, should_run = await sql_store.begin_job_run(scope, _job())
        assert should_run is True
        assert rerun.id == run.id
        assert rerun.attempt_count == 2
        assert rerun.correlation_id == "c1"

        await sql_store.mark_job_run_succeeded(scope, run.id, NOW)
        assert (await sql_store.begin_job_run(scope, _job()))[1] is False
        assert [r.id for r in await sql_store.list_job_runs(scope, "agr-1")] == [run.id]
        assert await sql_store.list_job_runs(Scope("t2"), "agr-1") == []

    @pytest.mark.asyncio
    async def test_terminal_failure(self, sql_store, scope):
        """Test a failure without a next retry is terminal until re-run."""
        from modules.esign.models.records import JobRunStatus

        run, _ = await sql_store.begin_job_run(scope, _job())

        failed = await sql_store.mark_job_run_failed(scope, run.id, "fatal", None, NOW)

        assert failed.status == JobRunStatus.FAILED
        assert (await sql_store.get_job_run_by_dedupe(scope, "pdf_render_pages", "agr-1")).status == JobRunStatus.FAILED

    @pytest.mark.asyncio
    async def test_stale_running_run_is_reclaimed(self, sql_store, scope):
        """Test a running row is only re-run once its lease expired."""
        from modules.esign.models.records import JobRunStatus
        from modules.esign.stores.contracts import RUNNING_LEASE

        run, _ = await sql_store.begin_job_run(scope, _job())

        held, should_run = await sql_store.begin_job_run(scope, _job(attempted_at=NOW + timedelta(minutes=1)))
        assert should_run is False
        assert (held.status, held.attempt_count) == (JobRunStatus.RUNNING, 1)

        later = NOW + RUNNING_LEASE + timedelta(minutes=1)
        reclaimed, should_run = await sql_store.begin_job_run(scope, _job(attempted_at=later))
        assert should_run is True
        assert reclaimed.id == run.id
        assert (reclaimed.status, reclaimed.attempt_count, reclaimed.attempted_at) == (JobRunStatus.RUNNING, 2, later)

        # The reclaimed row holds a fresh lease.
        assert (await sql_store.begin_job_run(scope, _job(attempted_at=later + timedelta(minutes=1))))[1] is False

    @pytest.mark.asyncio
    async def test_concurrent_begin_runs_once(self, tmp_path, scope):
        """Test concurrent begins on separate connections start exactly one run."""
        from core.database import create_engine_for, create_session_factory, init_database
        from modules.esign.stores.sql import SqlJobStore

        engine = create_engine_for(f"sqlite+aiosqlite:///{tmp_path / 'jobs.db'}")
        await init_database(engine)
        try:
            store = SqlJobStore(create_session_factory(engine))

            results = await asyncio.gather(*(store.begin_job_run(scope, _job()) for _ in range(4)))

            assert sum(should_run for _, should_run in results) == 1
            assert len({run.id for run, _ in results}) == 1
            assert len(await store.list_job_runs(scope)) == 1
        finally:
            await engine.dispose()

    @pytest.mark.asyncio
    async def test_mark_unknown_run(self, sql_store, scope):
        """Test marking a missing run raises NotFoundError."""
        from core.errors import NotFoundError

        with pytest.raises(NotFoundError):
            await sql_store.mark_job_run_failed(scope, "missing", "x", None, NOW)

    @pytest.mark.asyncio
    async def test_email_logs(self, sql_store, scope):
        """Test email logs are created, updated and found by job run."""
        from core.errors import NotFoundError
        from modules.esign.models.records import EmailLogRecord, EmailLogStatus

        log = await sql_store.create_email_log(scope, EmailLogRecord(
            id="", agreement_id="agr-1", recipient_id="rec-1", template_code="esign.sign_request_invitation",
            attempt_count=1, job_run_id="run-1",
        ))
        updated = await sql_store.update_email_log(scope, log.id, {
            "status": EmailLogStatus.SENT, "provider_message_id": "msg_1", "sent_at": NOW,
        })

        assert log.status == EmailLogStatus.QUEUED
        assert updated.status == EmailLogStatus.SENT
        assert updated.sent_at == NOW
        assert (await sql_store.get_email_log_for_run(scope, "run-1")).provider_message_id == "msg_1"
        assert await sql_store.get_email_log_for_run(scope, "run-2") is None
        assert len(await sql_store.list_email_logs(scope, "agr-1")) == 1
        with pytest.raises(NotFoundError):
            await sql_store.update_email_log(scope, "missing", {"status": EmailLogStatus.FAILED})

    @pytest.mark.asyncio
    async def test_audit_events(self, sql_store, scope):
        """Test audit events are appended and never changed."""
        from core.errors import AuditEventsAppendOnlyError
        from modules.esign.models.records import AuditEventRecord

        event = await sql_store.append(scope, AuditEventRecord(
            id="", agreement_id="a1", event_type="job.succeeded", metadata_json='{"job_name": "x"}', created_at=NOW,
        ))

        [listed] = await sql_store.list_events(scope, "a1")
        assert listed.id == event.id
        assert listed.created_at == NOW
        assert listed.tenant_id == "t1"
        with pytest.raises(AuditEventsAppendOnlyError):
            await sql_store.delete_event(scope, event.id)

    @pytest.mark.asyncio
    async def test_handlers_on_sql_store(self, make_handlers, sql_store, scope, make_agreement, link_observer):
        """Test email delivery and dedupe with the SQL job store."""
        from modules.esign.jobs.messages import EmailSendSigningRequestMsg
        from modules.esign.models.records import EmailLogStatus, JobRunStatus

        handlers = make_handlers(job_runs=sql_store, email_logs=sql_store, audits=sql_store)
        agreement, signer, _ = await make_agreement(status="sent")
        msg = EmailSendSigningRequestMsg(agreement.id, signer.id, scope, signer_token="tok", correlation_id="corr-sql")

        first = await handlers.execute_email_send_signing_request(msg)
        second = await handlers.execute_email_send_signing_request(msg)

        assert first == second
        assert len(link_observer.links()) == 1
        [run] = await sql_store.list_job_runs(scope)
        assert run.status == JobRunStatus.SUCCEEDED
        [log] = await sql_store.list_email_logs(scope)
        assert (log.status, log.job_run_id) == (EmailLogStatus.SENT, run.id)
        assert [e.event_type for e in await sql_store.list_events(scope, agreement.id)] == ["job.succeeded"]
