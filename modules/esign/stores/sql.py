"""
SQL Job Store.

SQLAlchemy async implementation of JobRunStore, EmailLogStore and
AuditEventStore. The host owns the engine; the store only receives a
session factory and never disposes it.
"""

import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Optional

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.context import Scope
from core.database.base import as_utc
from core.errors import AuditEventsAppendOnlyError, NotFoundError, ValidationError
from modules.esign.models.records import (
    AuditEventRecord,
    EmailLogRecord,
    EmailLogStatus,
    JobRunInput,
    JobRunRecord,
    JobRunStatus,
    utc_now,
)
from modules.esign.models.tables import AuditEvent, EmailLog, JobRun
from modules.esign.stores.contracts import RUNNING_LEASE

logger = logging.getLogger(__name__)

_RERUNNABLE = (JobRunStatus.FAILED.value, JobRunStatus.RETRYING.value)


def _run_record(row: JobRun) -> JobRunRecord:
    return JobRunRecord(
        id=row.id,
        job_name=row.job_name,
        dedupe_key=row.dedupe_key,
        agreement_id=row.agreement_id or "",
        recipient_id=row.recipient_id or "",
        correlation_id=row.correlation_id or "",
        status=JobRunStatus(row.status),
        attempt_count=row.attempt_count,
        max_attempts=row.max_attempts,
        last_error=row.last_error or "",
        next_retry_at=as_utc(row.next_retry_at),
        attempted_at=as_utc(row.attempted_at),
        tenant_id=row.tenant_id,
        org_id=row.org_id,
        created_at=as_utc(row.created_at) or utc_now(),
        updated_at=as_utc(row.updated_at) or utc_now(),
    )


def _email_record(row: EmailLog) -> EmailLogRecord:
    return EmailLogRecord(
        id=row.id,
        agreement_id=row.agreement_id or "",
        recipient_id=row.recipient_id or "",
        template_code=row.template_code or "",
        status=EmailLogStatus(row.status),
        provider_message_id=row.provider_message_id or "",
        attempt_count=row.attempt_count,
        max_attempts=row.max_attempts,
        correlation_id=row.correlation_id or "",
        failure_reason=row.failure_reason or "",
        next_retry_at=as_utc(row.next_retry_at),
        sent_at=as_utc(row.sent_at),
        job_run_id=row.job_run_id or "",
        tenant_id=row.tenant_id,
        org_id=row.org_id,
        created_at=as_utc(row.created_at) or utc_now(),
        updated_at=as_utc(row.updated_at) or utc_now(),
    )


def _audit_record(row: AuditEvent) -> AuditEventRecord:
    return AuditEventRecord(
        id=row.id,
        agreement_id=row.agreement_id or "",
        event_type=row.event_type,
        actor_type=row.actor_type or "",
        actor_id=row.actor_id or "",
        metadata_json=row.metadata_json or "{}",
        tenant_id=row.tenant_id,
        org_id=row.org_id,
        created_at=as_utc(row.created_at) or utc_now(),
    )


def _column_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


class SqlJobStore:
    """
    Job runs, email logs and audit events on SQLAlchemy async sessions.

    Args:
        session_factory: Factory from ``core.database.create_session_factory``.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], running_lease: timedelta = RUNNING_LEASE) -> None:
        self._session_factory = session_factory
        self._running_lease = running_lease

    # =========================================================================
    # Job runs
    # =========================================================================

    async def begin_job_run(self, scope: Scope, data: JobRunInput) -> tuple[JobRunRecord, bool]:
        """
        Acquire the dedupe slot.

        A concurrent insert of the same key loses on the unique constraint
        and re-reads the winner's row; a concurrent re-run loses the
        conditional status update and receives ``should_run=False``. A
        running row is reclaimed once its lease on ``attempted_at`` expired.
        """
        job_name = data.job_name.strip()
        dedupe_key = data.dedupe_key.strip()
        if not job_name or not dedupe_key:
            raise ValidationError("job_name and dedupe_key are required")
        tenant_id, org_id = scope.key()
        attempted_at = as_utc(data.attempted_at) or utc_now()
        stale_before = attempted_at - self._running_lease
        reclaimable = or_(
            JobRun.status.in_(_RERUNNABLE),
            and_(JobRun.status == JobRunStatus.RUNNING.value, JobRun.attempted_at <= stale_before),
        )

        for _ in range(3):
            try:
                async with self._session_factory() as session:
                    async with session.begin():
                        row = await self._find_run(session, tenant_id, org_id, job_name, dedupe_key)
                        if row is None:
                            row = JobRun(
                                tenant_id=tenant_id,
                                org_id=org_id,
                                job_name=job_name,
                                dedupe_key=dedupe_key,
                                agreement_id=data.agreement_id.strip(),
                                recipient_id=data.recipient_id.strip(),
                                correlation_id=data.correlation_id.strip(),
                                status=JobRunStatus.RUNNING.value,
                                attempt_count=1,
                                max_attempts=max(data.max_attempts, 1),
                                last_error="",
                                attempted_at=attempted_at,
                            )
                            session.add(row)
                            await session.flush()
                            return _run_record(row), True

                        values: dict[str, Any] = {
                            "status": JobRunStatus.RUNNING.value,
                            "attempt_count": JobRun.attempt_count + 1,
                            "last_error": "",
                            "next_retry_at": None,
                            "max_attempts": max(data.max_attempts, 1),
                            "attempted_at": attempted_at,
                            "updated_at": attempted_at,
                        }
                        if data.correlation_id.strip():
                            values["correlation_id"] = data.correlation_id.strip()
                        previous_status, previous_attempts = row.status, row.attempt_count
                        result = await session.execute(
                            update(JobRun)
                            .where(JobRun.id == row.id, reclaimable)
                            .values(**values)
                            .execution_options(synchronize_session=False)
                        )
                        if result.rowcount == 1 and previous_status == JobRunStatus.RUNNING.value:
                            logger.warning(
                                f"Reclaiming stale run {row.id} of {job_name} '{dedupe_key}' "
                                f"(attempt {previous_attempts})"
                            )
                        fresh = await self._reload_run(session, row.id)
                        return _run_record(fresh), result.rowcount == 1
            except IntegrityError:
                logger.info(f"Dedupe slot race for {job_name} '{dedupe_key}', re-reading")
                continue
        raise ValidationError(f"Could not acquire dedupe slot for {job_name} '{dedupe_key}'")

    async def mark_job_run_succeeded(self, scope: Scope, run_id: str, at: datetime) -> JobRunRecord:
        return await self._update_run(scope, run_id, {
            "status": JobRunStatus.SUCCEEDED.value,
            "last_error": "",
            "next_retry_at": None,
            "updated_at": at,
        })

    async def mark_job_run_failed(
        self,
        scope: Scope,
        run_id: str,
        error: str,
        next_retry_at: Optional[datetime],
        at: datetime,
    ) -> JobRunRecord:
        status = JobRunStatus.RETRYING if next_retry_at is not None else JobRunStatus.FAILED
        return await self._update_run(scope, run_id, {
            "status": status.value,
            "last_error": error.strip(),
            "next_retry_at": next_retry_at,
            "updated_at": at,
        })

    async def get_job_run_by_dedupe(self, scope: Scope, job_name: str, dedupe_key: str) -> Optional[JobRunRecord]:
        tenant_id, org_id = scope.key()
        async with self._session_factory() as session:
            row = await self._find_run(session, tenant_id, org_id, job_name.strip(), dedupe_key.strip())
            return _run_record(row) if row is not None else None

    async def list_job_runs(self, scope: Scope, agreement_id: str = "") -> list[JobRunRecord]:
        tenant_id, org_id = scope.key()
        query = select(JobRun).where(JobRun.tenant_id == tenant_id, JobRun.org_id == org_id)
        if agreement_id:
            query = query.where(JobRun.agreement_id == agreement_id)
        async with self._session_factory() as session:
            result = await session.execute(query.order_by(JobRun.created_at))
            return [_run_record(row) for row in result.scalars().all()]

    async def _find_run(
        self,
        session: AsyncSession,
        tenant_id: str,
        org_id: str,
        job_name: str,
        dedupe_key: str,
    ) -> Optional[JobRun]:
        result = await session.execute(
            select(JobRun).where(
                JobRun.tenant_id == tenant_id,
                JobRun.org_id == org_id,
                JobRun.job_name == job_name,
                JobRun.dedupe_key == dedupe_key,
            )
        )
        return result.scalar_one_or_none()

    async def _reload_run(self, session: AsyncSession, run_id: str) -> JobRun:
        result = await session.execute(
            select(JobRun).where(JobRun.id == run_id).execution_options(populate_existing=True)
        )
        return result.scalar_one()

    async def _update_run(self, scope: Scope, run_id: str, values: dict[str, Any]) -> JobRunRecord:
        tenant_id, org_id = scope.key()
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(JobRun)
                    .where(JobRun.id == run_id, JobRun.tenant_id == tenant_id, JobRun.org_id == org_id)
                    .values(**values)
                )
                if result.rowcount == 0:
                    raise NotFoundError(f"Job run '{run_id}' not found")
                row = await self._reload_run(session, run_id)
                return _run_record(row)

    # =========================================================================
    # Email logs
    # =========================================================================

    async def create_email_log(self, scope: Scope, record: EmailLogRecord) -> EmailLogRecord:
        tenant_id, org_id = scope.key()
        row = EmailLog(
            tenant_id=tenant_id,
            org_id=org_id,
            agreement_id=record.agreement_id,
            recipient_id=record.recipient_id,
            template_code=record.template_code,
            status=_column_value(record.status),
            provider_message_id=record.provider_message_id,
            attempt_count=record.attempt_count,
            max_attempts=record.max_attempts,
            correlation_id=record.correlation_id,
            failure_reason=record.failure_reason,
            next_retry_at=record.next_retry_at,
            sent_at=record.sent_at,
            job_run_id=record.job_run_id,
        )
        if record.id:
            row.id = record.id
        async with self._session_factory() as session:
            async with session.begin():
                session.add(row)
                await session.flush()
                return _email_record(row)

    async def update_email_log(self, scope: Scope, log_id: str, changes: dict[str, Any]) -> EmailLogRecord:
        tenant_id, org_id = scope.key()
        values = {key: _column_value(value) for key, value in changes.items()}
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(EmailLog)
                    .where(EmailLog.id == log_id, EmailLog.tenant_id == tenant_id, EmailLog.org_id == org_id)
                    .values(**values)
                )
                if result.rowcount == 0:
                    raise NotFoundError(f"Email log '{log_id}' not found")
                fresh = await session.execute(
                    select(EmailLog).where(EmailLog.id == log_id).execution_options(populate_existing=True)
                )
                return _email_record(fresh.scalar_one())

    async def get_email_log_for_run(self, scope: Scope, job_run_id: str) -> Optional[EmailLogRecord]:
        tenant_id, org_id = scope.key()
        async with self._session_factory() as session:
            result = await session.execute(
                select(EmailLog).where(
                    EmailLog.tenant_id == tenant_id,
                    EmailLog.org_id == org_id,
                    EmailLog.job_run_id == job_run_id,
                )
            )
            row = result.scalars().first()
            return _email_record(row) if row is not None else None

    async def list_email_logs(self, scope: Scope, agreement_id: str = "") -> list[EmailLogRecord]:
        tenant_id, org_id = scope.key()
        query = select(EmailLog).where(EmailLog.tenant_id == tenant_id, EmailLog.org_id == org_id)
        if agreement_id:
            query = query.where(EmailLog.agreement_id == agreement_id)
        async with self._session_factory() as session:
            result = await session.execute(query.order_by(EmailLog.created_at))
            return [_email_record(row) for row in result.scalars().all()]

    # =========================================================================
    # Audit events (append-only)
    # =========================================================================

    async def append(self, scope: Scope, event: AuditEventRecord) -> AuditEventRecord:
        tenant_id, org_id = scope.key()
        row = AuditEvent(
            tenant_id=tenant_id,
            org_id=org_id,
            agreement_id=event.agreement_id,
            event_type=event.event_type,
            actor_type=event.actor_type,
            actor_id=event.actor_id,
            metadata_json=event.metadata_json,
            created_at=event.created_at,
        )
        if event.id:
            row.id = event.id
        async with self._session_factory() as session:
            async with session.begin():
                session.add(row)
                await session.flush()
                return _audit_record(row)

    async def list_events(self, scope: Scope, agreement_id: str = "") -> list[AuditEventRecord]:
        tenant_id, org_id = scope.key()
        query = select(AuditEvent).where(AuditEvent.tenant_id == tenant_id, AuditEvent.org_id == org_id)
        if agreement_id:
            query = query.where(AuditEvent.agreement_id == agreement_id)
        async with self._session_factory() as session:
            result = await session.execute(query.order_by(AuditEvent.created_at))
            return [_audit_record(row) for row in result.scalars().all()]

    async def update_event(self, scope: Scope, event_id: str, changes: dict[str, Any]) -> AuditEventRecord:
        raise AuditEventsAppendOnlyError(f"Audit event '{event_id}' cannot be updated")

    async def delete_event(self, scope: Scope, event_id: str) -> None:
        raise AuditEventsAppendOnlyError(f"Audit event '{event_id}' cannot be deleted")
