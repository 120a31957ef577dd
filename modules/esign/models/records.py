"""
E-Sign Domain Records.

Plain dataclasses exchanged between the stores, services and job handlers.
Every record carries the tenant/org scope it belongs to.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AgreementStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    COMPLETED = "completed"


class RecipientRole(str, Enum):
    SIGNER = "signer"
    CC = "cc"


class JobRunStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    RETRYING = "retrying"


class EmailLogStatus(str, Enum):
    QUEUED = "queued"
    SENT = "sent"
    FAILED = "failed"
    RETRYING = "retrying"


class Notification(str, Enum):
    SIGNING_INVITATION = "signing_invitation"
    SIGNING_REMINDER = "signing_reminder"
    COMPLETION_PACKAGE = "completion_package"


# =============================================================================
# Agreements
# =============================================================================


@dataclass
class AgreementRecord:
    id: str
    title: str = ""
    message: str = ""
    document_id: str = ""
    status: AgreementStatus = AgreementStatus.DRAFT
    tenant_id: str = ""
    org_id: str = ""
    created_by_user_id: str = ""
    sent_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)


@dataclass
class RecipientRecord:
    id: str
    agreement_id: str
    email: str
    name: str = ""
    role: RecipientRole = RecipientRole.SIGNER
    signing_order: int = 1
    tenant_id: str = ""
    org_id: str = ""
    completed_at: Optional[datetime] = None


@dataclass
class DocumentRecord:
    id: str
    title: str
    source_type: str = "upload"
    source_google_file_id: str = ""
    source_object_key: str = ""
    sha256: str = ""
    created_by_user_id: str = ""
    tenant_id: str = ""
    org_id: str = ""
    created_at: datetime = field(default_factory=utc_now)


@dataclass
class AgreementArtifactRecord:
    """Artifact slots of an agreement; each slot is written once."""

    agreement_id: str
    executed_object_key: str = ""
    executed_sha256: str = ""
    certificate_object_key: str = ""
    certificate_sha256: str = ""
    tenant_id: str = ""
    org_id: str = ""
    updated_at: datetime = field(default_factory=utc_now)


# =============================================================================
# Signing tokens
# =============================================================================


@dataclass
class SigningTokenRecord:
    id: str
    agreement_id: str
    recipient_id: str
    token_hash: str
    status: str = "active"
    expires_at: Optional[datetime] = None
    revoked_at: Optional[datetime] = None
    tenant_id: str = ""
    org_id: str = ""
    created_at: datetime = field(default_factory=utc_now)


@dataclass(frozen=True)
class IssuedSigningToken:
    """Raw token returned once to the caller; only its hash is persisted."""

    token: str
    record: SigningTokenRecord


# =============================================================================
# Job orchestration
# =============================================================================


@dataclass(frozen=True)
class JobRunInput:
    job_name: str
    dedupe_key: str
    agreement_id: str = ""
    recipient_id: str = ""
    correlation_id: str = ""
    max_attempts: int = 3
    attempted_at: Optional[datetime] = None


@dataclass
class JobRunRecord:
    id: str
    job_name: str
    dedupe_key: str
    agreement_id: str = ""
    recipient_id: str = ""
    correlation_id: str = ""
    status: JobRunStatus = JobRunStatus.QUEUED
    attempt_count: int = 0
    max_attempts: int = 3
    last_error: str = ""
    next_retry_at: Optional[datetime] = None
    attempted_at: Optional[datetime] = None
    tenant_id: str = ""
    org_id: str = ""
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)


@dataclass
class EmailLogRecord:
    id: str
    agreement_id: str
    recipient_id: str
    template_code: str
    status: EmailLogStatus = EmailLogStatus.QUEUED
    provider_message_id: str = ""
    attempt_count: int = 0
    max_attempts: int = 3
    correlation_id: str = ""
    failure_reason: str = ""
    next_retry_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    job_run_id: str = ""
    tenant_id: str = ""
    org_id: str = ""
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)


@dataclass(frozen=True)
class AuditEventRecord:
    id: str
    agreement_id: str
    event_type: str
    actor_type: str = "system_job"
    actor_id: str = ""
    metadata_json: str = "{}"
    tenant_id: str = ""
    org_id: str = ""
    created_at: datetime = field(default_factory=utc_now)


def record_to_dict(record: Any) -> dict[str, Any]:
    """Render a record as JSON-friendly values for panels and API payloads."""
    out: dict[str, Any] = {}
    for key, value in vars(record).items():
        if isinstance(value, Enum):
            value = value.value
        elif isinstance(value, datetime):
            value = value.isoformat()
        elif isinstance(value, IssuedSigningToken):
            continue
        out[key] = value
    return out
