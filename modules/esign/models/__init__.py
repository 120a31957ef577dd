"""
E-Sign Module Models.

Domain records exchanged between stores and services, and the SQLAlchemy
tables of the optional SQL job store.
"""

from modules.esign.models.records import (
    AgreementArtifactRecord,
    AgreementRecord,
    AgreementStatus,
    AuditEventRecord,
    DocumentRecord,
    EmailLogRecord,
    EmailLogStatus,
    IssuedSigningToken,
    JobRunInput,
    JobRunRecord,
    JobRunStatus,
    Notification,
    RecipientRecord,
    RecipientRole,
    SigningTokenRecord,
)
from modules.esign.models.tables import AuditEvent, EmailLog, JobRun

__all__ = [
    "AgreementArtifactRecord",
    "AgreementRecord",
    "AgreementStatus",
    "AuditEventRecord",
    "DocumentRecord",
    "EmailLogRecord",
    "EmailLogStatus",
    "IssuedSigningToken",
    "JobRunInput",
    "JobRunRecord",
    "JobRunStatus",
    "Notification",
    "RecipientRecord",
    "RecipientRole",
    "SigningTokenRecord",
    "AuditEvent",
    "EmailLog",
    "JobRun",
]
