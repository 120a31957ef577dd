"""
E-Sign ORM Models.

SQL persistence for the job orchestration records: job runs, email logs and
audit events. The unique constraint on job runs is the dedupe slot; a second
insert for the same ``(tenant_id, org_id, job_name, dedupe_key)`` fails.
"""

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from core.database.base import Base, TimestampMixin, UUIDPrimaryKey


class JobRun(Base, TimestampMixin):
    """
    One logical job attempt series keyed by its dedupe key.

    Attributes:
        status: queued, running, succeeded, failed or retrying.
        attempt_count: Attempts made so far; incremented on every re-run.
        next_retry_at: Advisory earliest retry time; None when terminal.
    """

    __tablename__ = "esign_job_runs"
    __table_args__ = (
        UniqueConstraint("tenant_id", "org_id", "job_name", "dedupe_key", name="uq_esign_job_runs_dedupe"),
    )

    id: Mapped[UUIDPrimaryKey]
    tenant_id: Mapped[str] = mapped_column(String(64), default="", nullable=False)
    org_id: Mapped[str] = mapped_column(String(64), default="", nullable=False)
    job_name: Mapped[str] = mapped_column(String(100), nullable=False)
    dedupe_key: Mapped[str] = mapped_column(String(512), nullable=False)
    agreement_id: Mapped[str] = mapped_column(String(64), default="", index=True)
    recipient_id: Mapped[str] = mapped_column(String(64), default="")
    correlation_id: Mapped[str] = mapped_column(String(128), default="")
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    attempt_count: Mapped[int] = mapped_column(Integer, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, default=3)
    last_error: Mapped[str] = mapped_column(Text, default="")
    next_retry_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    attempted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class EmailLog(Base, TimestampMixin):
    """Delivery record of one email job run, reused across its retries."""

    __tablename__ = "esign_email_logs"

    id: Mapped[UUIDPrimaryKey]
    tenant_id: Mapped[str] = mapped_column(String(64), default="", nullable=False)
    org_id: Mapped[str] = mapped_column(String(64), default="", nullable=False)
    agreement_id: Mapped[str] = mapped_column(String(64), default="", index=True)
    recipient_id: Mapped[str] = mapped_column(String(64), default="")
    template_code: Mapped[str] = mapped_column(String(100), default="")
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    provider_message_id: Mapped[str] = mapped_column(String(128), default="")
    attempt_count: Mapped[int] = mapped_column(Integer, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, default=3)
    correlation_id: Mapped[str] = mapped_column(String(128), default="")
    failure_reason: Mapped[str] = mapped_column(Text, default="")
    next_retry_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    job_run_id: Mapped[str] = mapped_column(String(36), default="", index=True)


class AuditEvent(Base):
    """Append-only audit trail entry."""

    __tablename__ = "esign_audit_events"

    id: Mapped[UUIDPrimaryKey]
    tenant_id: Mapped[str] = mapped_column(String(64), default="", nullable=False)
    org_id: Mapped[str] = mapped_column(String(64), default="", nullable=False)
    agreement_id: Mapped[str] = mapped_column(String(64), default="", index=True)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    actor_type: Mapped[str] = mapped_column(String(50), default="system_job")
    actor_id: Mapped[str] = mapped_column(String(64), default="")
    metadata_json: Mapped[str] = mapped_column(Text, default="{}")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
