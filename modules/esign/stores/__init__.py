"""
E-Sign Stores.

Persistence contracts plus the in-memory and SQL implementations.
"""

from modules.esign.stores.contracts import (
    AgreementArtifactStore,
    AgreementStore,
    AuditEventStore,
    DocumentStore,
    EmailLogStore,
    JobRunStore,
    SigningTokenStore,
)
from modules.esign.stores.memory import InMemoryStore
from modules.esign.stores.sql import SqlJobStore

__all__ = [
    "AgreementArtifactStore",
    "AgreementStore",
    "AuditEventStore",
    "DocumentStore",
    "EmailLogStore",
    "JobRunStore",
    "SigningTokenStore",
    "InMemoryStore",
    "SqlJobStore",
]
