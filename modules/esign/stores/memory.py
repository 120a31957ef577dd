"""
In-Memory E-Sign Store.

Implements every E-Sign store contract behind one lock. Records are copied
on the way in and out so callers never alias stored state.
"""

import logging
import threading
import uuid
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, Optional

from core.context import Scope
from core.errors import (
    AgreementImmutableError,
    ArtifactImmutableError,
    AuditEventsAppendOnlyError,
    NotFoundError,
    ValidationError,
)
from modules.esign.models.records import (
    AgreementArtifactRecord,
    AgreementRecord,
    AgreementStatus,
    AuditEventRecord,
    DocumentRecord,
    EmailLogRecord,
    JobRunInput,
    JobRunRecord,
    JobRunStatus,
    RecipientRecord,
    SigningTokenRecord,
    utc_now,
)
from modules.esign.stores.contracts import RUNNING_LEASE

logger = logging.getLogger(__name__)

_AGREEMENT_TRANSITIONS = {
    AgreementStatus.DRAFT: {AgreementStatus.SENT},
    AgreementStatus.SENT: {AgreementStatus.COMPLETED},
    AgreementStatus.COMPLETED: set(),
}

_ARTIFACT_SLOTS = (
    ("executed_object_key", "executed_sha256"),
    ("certificate_object_key", "certificate_sha256"),
)


def new_id() -> str:
    return str(uuid.uuid4())


class InMemoryStore:
    """
    Process-local store for agreements, recipients, documents, artifacts,
    signing tokens, job runs, email logs and audit events.
    """

    def __init__(self, running_lease: timedelta = RUNNING_LEASE) -> None:
        self._lock = threading.RLock()
        self._running_lease = running_lease
        self._agreements: dict[tuple[str, str, str], AgreementRecord] = {}
        self._recipients: dict[tuple[str, str, str], list[RecipientRecord]] = {}
        self._documents: dict[tuple[str, str, str], DocumentRecord] = {}
        self._artifacts: dict[tuple[str, str, str], AgreementArtifactRecord] = {}
        self._tokens: dict[tuple[str, str, str], SigningTokenRecord] = {}
        self._job_runs: dict[tuple[str, str, str], JobRunRecord] = {}
        self._job_dedupe: dict[tuple[str, str, str, str], str] = {}
        self._email_logs: dict[tuple[str, str, str], EmailLogRecord] = {}
        self._audit_events: list[AuditEventRecord] = []

    @staticmethod
    def _key(scope: Scope, record_id: str) -> tuple[str, str, str]:
        tenant_id, org_id = scope.key()
        return (tenant_id, org_id, record_id.strip())

    # =========================================================================
    # Job runs
    # =========================================================================

    async def begin_job_run(self, scope: Scope, data: JobRunInput) -> tuple[JobRunRecord, bool]:
        job_name = data.job_name.strip()
        dedupe_key = data.dedupe_key.strip()
        if not job_name or not dedupe_key:
            raise ValidationError("job_name and dedupe_key are required")
        attempted_at = data.attempted_at or utc_now()
        tenant_id, org_id = scope.key()
        dedupe = (tenant_id, org_id, job_name, dedupe_key)

        with self._lock:
            run_id = self._job_dedupe.get(dedupe)
            if run_id is None:
                run = JobRunRecord(
                    id=new_id(),
                    job_name=job_name,
                    dedupe_key=dedupe_key,
                    agreement_id=data.agreement_id.strip(),
                    recipient_id=data.recipient_id.strip(),
                    correlation_id=data.correlation_id.strip(),
                    status=JobRunStatus.RUNNING,
                    attempt_count=1,
                    max_attempts=max(data.max_attempts, 1),
                    attempted_at=attempted_at,
                    tenant_id=tenant_id,
                    org_id=org_id,
                    created_at=attempted_at,
                    updated_at=attempted_at,
                )
                self._job_runs[self._key(scope, run.id)] = run
                self._job_dedupe[dedupe] = run.id
                return replace(run), True

            run = self._job_runs[self._key(scope, run_id)]
            if run.status == JobRunStatus.SUCCEEDED:
                return replace(run), False
            if run.status == JobRunStatus.RUNNING:
                if run.attempted_at is not None and attempted_at - run.attempted_at < self._running_lease:
                    return replace(run), False
                logger.warning(
                    f"Reclaiming stale run {run.id} of {job_name} '{dedupe_key}' (attempt {run.attempt_count})"
                )

            run.attempt_count += 1
            run.status = JobRunStatus.RUNNING
            run.last_error = ""
            run.next_retry_at = None
            run.max_attempts = max(data.max_attempts, 1)
            run.attempted_at = attempted_at
            run.updated_at = attempted_at
            if data.correlation_id.strip():
                run.correlation_id = data.correlation_id.strip()
            return replace(run), True

    async def mark_job_run_succeeded(self, scope: Scope, run_id: str, at: datetime) -> JobRunRecord:
        with self._lock:
            run = self._require_run(scope, run_id)
            run.status = JobRunStatus.SUCCEEDED
            run.last_error = ""
            run.next_retry_at = None
            run.updated_at = at
            return replace(run)

    async def mark_job_run_failed(
        self,
        scope: Scope,
        run_id: str,
        error: str,
        next_retry_at: Optional[datetime],
        at: datetime,
    ) -> JobRunRecord:
        with self._lock:
            run = self._require_run(scope, run_id)
            run.status = JobRunStatus.RETRYING if next_retry_at is not None else JobRunStatus.FAILED
            run.last_error = error.strip()
            run.next_retry_at = next_retry_at
            run.updated_at = at
            return replace(run)

    async def get_job_run_by_dedupe(self, scope: Scope, job_name: str, dedupe_key: str) -> Optional[JobRunRecord]:
        tenant_id, org_id = scope.key()
        with self._lock:
            run_id = self._job_dedupe.get((tenant_id, org_id, job_name.strip(), dedupe_key.strip()))
            if run_id is None:
                return None
            return replace(self._job_runs[self._key(scope, run_id)])

    async def list_job_runs(self, scope: Scope, agreement_id: str = "") -> list[JobRunRecord]:
        with self._lock:
            return [
                replace(run)
                for key, run in self._job_runs.items()
                if key[:2] == scope.key() and (not agreement_id or run.agreement_id == agreement_id)
            ]

    def _require_run(self, scope: Scope, run_id: str) -> JobRunRecord:
        run = self._job_runs.get(self._key(scope, run_id))
        if run is None:
            raise NotFoundError(f"Job run '{run_id}' not found")
        return run

    # =========================================================================
    # Email logs
    # =========================================================================

    async def create_email_log(self, scope: Scope, record: EmailLogRecord) -> EmailLogRecord:
        tenant_id, org_id = scope.key()
        stored = replace(record, id=record.id or new_id(), tenant_id=tenant_id, org_id=org_id)
        with self._lock:
            self._email_logs[self._key(scope, stored.id)] = stored
            return replace(stored)

    async def update_email_log(self, scope: Scope, log_id: str, changes: dict[str, Any]) -> EmailLogRecord:
        with self._lock:
            key = self._key(scope, log_id)
            current = self._email_logs.get(key)
            if current is None:
                raise NotFoundError(f"Email log '{log_id}' not found")
            updated = replace(current, **changes)
            self._email_logs[key] = updated
            return replace(updated)

    async def get_email_log_for_run(self, scope: Scope, job_run_id: str) -> Optional[EmailLogRecord]:
        with self._lock:
            for key, log in self._email_logs.items():
                if key[:2] == scope.key() and log.job_run_id == job_run_id:
                    return replace(log)
        return None

    async def list_email_logs(self, scope: Scope, agreement_id: str = "") -> list[EmailLogRecord]:
        with self._lock:
            return [
                replace(log)
                for key, log in self._email_logs.items()
                if key[:2] == scope.key() and (not agreement_id or log.agreement_id == agreement_id)
            ]

    # =========================================================================
    # Audit events (append-only)
    # =========================================================================

    async def append(self, scope: Scope, event: AuditEventRecord) -> AuditEventRecord:
        tenant_id, org_id = scope.key()
        stored = replace(event, id=event.id or new_id(), tenant_id=tenant_id, org_id=org_id)
        with self._lock:
            self._audit_events.append(stored)
        return stored

    async def list_events(self, scope: Scope, agreement_id: str = "") -> list[AuditEventRecord]:
        tenant_id, org_id = scope.key()
        with self._lock:
            return [
                event
                for event in self._audit_events
                if event.tenant_id == tenant_id
                and event.org_id == org_id
                and (not agreement_id or event.agreement_id == agreement_id)
            ]

    async def update_event(self, scope: Scope, event_id: str, changes: dict[str, Any]) -> AuditEventRecord:
        raise AuditEventsAppendOnlyError(f"Audit event '{event_id}' cannot be updated")

    async def delete_event(self, scope: Scope, event_id: str) -> None:
        raise AuditEventsAppendOnlyError(f"Audit event '{event_id}' cannot be deleted")

    # =========================================================================
    # Agreements & recipients
    # =========================================================================

    async def create_agreement(self, scope: Scope, record: AgreementRecord) -> AgreementRecord:
        tenant_id, org_id = scope.key()
        stored = replace(record, id=record.id or new_id(), tenant_id=tenant_id, org_id=org_id)
        with self._lock:
            self._agreements[self._key(scope, stored.id)] = stored
            self._recipients.setdefault(self._key(scope, stored.id), [])
            return replace(stored)

    async def get_agreement(self, scope: Scope, agreement_id: str) -> AgreementRecord:
        with self._lock:
            return replace(self._require_agreement(scope, agreement_id))

    async def list_agreements(self, scope: Scope) -> list[AgreementRecord]:
        with self._lock:
            return [replace(a) for key, a in self._agreements.items() if key[:2] == scope.key()]

    async def update_draft(self, scope: Scope, agreement_id: str, changes: dict[str, Any]) -> AgreementRecord:
        """
        Apply draft changes (title, message, document_id).

        Raises:
            AgreementImmutableError: The agreement has left the draft state.
        """
        allowed = {"title", "message", "document_id"}
        unknown = set(changes) - allowed
        if unknown:
            raise ValidationError(f"Fields not editable on a draft: {sorted(unknown)}")
        with self._lock:
            current = self._require_agreement(scope, agreement_id)
            if current.status != AgreementStatus.DRAFT:
                raise AgreementImmutableError(
                    f"Agreement '{agreement_id}' is {current.status.value} and can no longer be edited"
                )
            updated = replace(current, **changes, updated_at=utc_now())
            self._agreements[self._key(scope, agreement_id)] = updated
            return replace(updated)

    async def transition(
        self,
        scope: Scope,
        agreement_id: str,
        status: AgreementStatus,
        at: datetime,
    ) -> AgreementRecord:
        status = AgreementStatus(status)
        with self._lock:
            current = self._require_agreement(scope, agreement_id)
            if current.status == AgreementStatus.COMPLETED:
                raise AgreementImmutableError(f"Agreement '{agreement_id}' is completed")
            if status not in _AGREEMENT_TRANSITIONS[current.status]:
                raise ValidationError(
                    f"Agreement '{agreement_id}' cannot move from {current.status.value} to {status.value}",
                    code="AGREEMENT_TRANSITION_INVALID",
                )
            changes: dict[str, Any] = {"status": status, "updated_at": at}
            if status == AgreementStatus.SENT:
                changes["sent_at"] = at
            elif status == AgreementStatus.COMPLETED:
                changes["completed_at"] = at
            updated = replace(current, **changes)
            self._agreements[self._key(scope, agreement_id)] = updated
            logger.info(f"Agreement {agreement_id} transitioned to {status.value}")
            return replace(updated)

    async def add_recipient(self, scope: Scope, record: RecipientRecord) -> RecipientRecord:
        tenant_id, org_id = scope.key()
        with self._lock:
            agreement = self._require_agreement(scope, record.agreement_id)
            if agreement.status != AgreementStatus.DRAFT:
                raise AgreementImmutableError(f"Agreement '{agreement.id}' no longer accepts recipients")
            stored = replace(record, id=record.id or new_id(), tenant_id=tenant_id, org_id=org_id)
            self._recipients[self._key(scope, record.agreement_id)].append(stored)
            return replace(stored)

    async def list_recipients(self, scope: Scope, agreement_id: str) -> list[RecipientRecord]:
        with self._lock:
            self._require_agreement(scope, agreement_id)
            recipients = self._recipients.get(self._key(scope, agreement_id), [])
            return [replace(r) for r in sorted(recipients, key=lambda r: r.signing_order)]

    def _require_agreement(self, scope: Scope, agreement_id: str) -> AgreementRecord:
        agreement = self._agreements.get(self._key(scope, agreement_id))
        if agreement is None:
            raise NotFoundError(f"Agreement '{agreement_id}' not found")
        return agreement

    # =========================================================================
    # Artifacts (write-once slots)
    # =========================================================================

    async def get_artifacts(self, scope: Scope, agreement_id: str) -> AgreementArtifactRecord:
        tenant_id, org_id = scope.key()
        with self._lock:
            current = self._artifacts.get(self._key(scope, agreement_id))
            if current is None:
                return AgreementArtifactRecord(agreement_id=agreement_id, tenant_id=tenant_id, org_id=org_id)
            return replace(current)

    async def save_artifacts(self, scope: Scope, record: AgreementArtifactRecord) -> AgreementArtifactRecord:
        """
        Merge non-empty artifact slots.

        Raises:
            ArtifactImmutableError: A slot already holds a different object.
        """
        tenant_id, org_id = scope.key()
        key = self._key(scope, record.agreement_id)
        with self._lock:
            current = self._artifacts.get(key) or AgreementArtifactRecord(
                agreement_id=record.agreement_id, tenant_id=tenant_id, org_id=org_id
            )
            changes: dict[str, Any] = {}
            for object_field, hash_field in _ARTIFACT_SLOTS:
                incoming = getattr(record, object_field)
                if not incoming:
                    continue
                existing = getattr(current, object_field)
                if existing and existing != incoming:
                    raise ArtifactImmutableError(
                        f"Artifact slot '{object_field}' of agreement '{record.agreement_id}' is already set"
                    )
                changes[object_field] = incoming
                changes[hash_field] = getattr(record, hash_field)
            merged = replace(current, **changes, updated_at=utc_now())
            self._artifacts[key] = merged
            return replace(merged)

    # =========================================================================
    # Documents
    # =========================================================================

    async def create_document(self, scope: Scope, record: DocumentRecord) -> DocumentRecord:
        tenant_id, org_id = scope.key()
        stored = replace(record, id=record.id or new_id(), tenant_id=tenant_id, org_id=org_id)
        with self._lock:
            self._documents[self._key(scope, stored.id)] = stored
        return replace(stored)

    async def list_documents(self, scope: Scope) -> list[DocumentRecord]:
        with self._lock:
            return [replace(d) for key, d in self._documents.items() if key[:2] == scope.key()]

    # =========================================================================
    # Signing tokens
    # =========================================================================

    async def create_token(self, scope: Scope, record: SigningTokenRecord) -> SigningTokenRecord:
        tenant_id, org_id = scope.key()
        stored = replace(record, id=record.id or new_id(), tenant_id=tenant_id, org_id=org_id, status="active")
        with self._lock:
            self._tokens[self._key(scope, stored.id)] = stored
        return replace(stored)

    async def replace_active_token(self, scope: Scope, record: SigningTokenRecord, at: datetime) -> SigningTokenRecord:
        """Revoke the recipient's active tokens and store ``record`` in one step."""
        tenant_id, org_id = scope.key()
        stored = replace(record, id=record.id or new_id(), tenant_id=tenant_id, org_id=org_id, status="active")
        with self._lock:
            self._revoke_locked(scope, record.agreement_id, record.recipient_id, at)
            self._tokens[self._key(scope, stored.id)] = stored
        return replace(stored)

    async def get_token_by_hash(self, scope: Scope, token_hash: str) -> Optional[SigningTokenRecord]:
        with self._lock:
            for key, token in self._tokens.items():
                if key[:2] == scope.key() and token.token_hash == token_hash:
                    return replace(token)
        return None

    async def revoke_active_tokens(self, scope: Scope, agreement_id: str, recipient_id: str, at: datetime) -> int:
        with self._lock:
            return self._revoke_locked(scope, agreement_id, recipient_id, at)

    def _revoke_locked(self, scope: Scope, agreement_id: str, recipient_id: str, at: datetime) -> int:
        revoked = 0
        for key, token in self._tokens.items():
            if (
                key[:2] == scope.key()
                and token.agreement_id == agreement_id
                and token.recipient_id == recipient_id
                and token.status == "active"
            ):
                token.status = "revoked"
                token.revoked_at = at
                revoked += 1
        return revoked
