"""
E-Sign Store Contracts.

Narrow async interfaces consumed by the job handlers and services. Every
operation takes the caller's Scope; records of another scope are invisible.
"""

from datetime import datetime, timedelta
from typing import Any, Optional, Protocol, runtime_checkable

from core.context import Scope
from modules.esign.models.records import (
    AgreementArtifactRecord,
    AgreementRecord,
    AuditEventRecord,
    DocumentRecord,
    EmailLogRecord,
    JobRunInput,
    JobRunRecord,
    RecipientRecord,
    SigningTokenRecord,
)

# A run left `running` longer than this (crashed worker, lost bookkeeping)
# may be reclaimed by the next begin_job_run.
RUNNING_LEASE = timedelta(minutes=15)


@runtime_checkable
class JobRunStore(Protocol):
    async def begin_job_run(self, scope: Scope, data: JobRunInput) -> tuple[JobRunRecord, bool]:
        """
        Acquire the dedupe slot of ``(job_name, dedupe_key)`` atomically.

        A succeeded run is never re-run. Failed and retrying runs are
        re-attempted; a running run only once its lease has expired.

        Returns:
            The run and whether the caller should execute the job.
        """
        ...

    async def mark_job_run_succeeded(self, scope: Scope, run_id: str, at: datetime) -> JobRunRecord: ...

    async def mark_job_run_failed(
        self,
        scope: Scope,
        run_id: str,
        error: str,
        next_retry_at: Optional[datetime],
        at: datetime,
    ) -> JobRunRecord: ...

    async def get_job_run_by_dedupe(self, scope: Scope, job_name: str, dedupe_key: str) -> Optional[JobRunRecord]: ...

    async def list_job_runs(self, scope: Scope, agreement_id: str = "") -> list[JobRunRecord]: ...


@runtime_checkable
class EmailLogStore(Protocol):
    async def create_email_log(self, scope: Scope, record: EmailLogRecord) -> EmailLogRecord: ...

    async def update_email_log(self, scope: Scope, log_id: str, changes: dict[str, Any]) -> EmailLogRecord: ...

    async def get_email_log_for_run(self, scope: Scope, job_run_id: str) -> Optional[EmailLogRecord]: ...

    async def list_email_logs(self, scope: Scope, agreement_id: str = "") -> list[EmailLogRecord]: ...


@runtime_checkable
class AuditEventStore(Protocol):
    async def append(self, scope: Scope, event: AuditEventRecord) -> AuditEventRecord: ...

    async def list_events(self, scope: Scope, agreement_id: str = "") -> list[AuditEventRecord]: ...

    async def update_event(self, scope: Scope, event_id: str, changes: dict[str, Any]) -> AuditEventRecord:
        """Always fails with AuditEventsAppendOnlyError."""
        ...

    async def delete_event(self, scope: Scope, event_id: str) -> None:
        """Always fails with AuditEventsAppendOnlyError."""
        ...


@runtime_checkable
class AgreementStore(Protocol):
    async def create_agreement(self, scope: Scope, record: AgreementRecord) -> AgreementRecord: ...

    async def get_agreement(self, scope: Scope, agreement_id: str) -> AgreementRecord: ...

    async def list_agreements(self, scope: Scope) -> list[AgreementRecord]: ...

    async def update_draft(self, scope: Scope, agreement_id: str, changes: dict[str, Any]) -> AgreementRecord: ...

    async def transition(self, scope: Scope, agreement_id: str, status: Any, at: datetime) -> AgreementRecord: ...

    async def add_recipient(self, scope: Scope, record: RecipientRecord) -> RecipientRecord: ...

    async def list_recipients(self, scope: Scope, agreement_id: str) -> list[RecipientRecord]: ...


@runtime_checkable
class AgreementArtifactStore(Protocol):
    async def get_artifacts(self, scope: Scope, agreement_id: str) -> AgreementArtifactRecord: ...

    async def save_artifacts(self, scope: Scope, record: AgreementArtifactRecord) -> AgreementArtifactRecord: ...


@runtime_checkable
class DocumentStore(Protocol):
    async def create_document(self, scope: Scope, record: DocumentRecord) -> DocumentRecord: ...

    async def list_documents(self, scope: Scope) -> list[DocumentRecord]: ...


@runtime_checkable
class SigningTokenStore(Protocol):
    async def create_token(self, scope: Scope, record: SigningTokenRecord) -> SigningTokenRecord: ...

    async def replace_active_token(self, scope: Scope, record: SigningTokenRecord, at: datetime) -> SigningTokenRecord: ...

    async def get_token_by_hash(self, scope: Scope, token_hash: str) -> Optional[SigningTokenRecord]: ...

    async def revoke_active_tokens(self, scope: Scope, agreement_id: str, recipient_id: str, at: datetime) -> int: ...
