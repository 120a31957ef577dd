"""
E-Sign Services Package.

Agreement lifecycle, signing tokens, artifact rendering and Google Drive
imports.
"""

from modules.esign.services.agreements import AgreementService
from modules.esign.services.artifacts import DeterministicArtifactPipeline, InMemoryObjectStore
from modules.esign.services.google import (
    GoogleCredentialStore,
    GoogleImportInput,
    GoogleImportResult,
    GoogleImportService,
    HttpGoogleDriveClient,
    StaticGoogleDriveClient,
)
from modules.esign.services.tokens import TokenInvalidError, TokenService

__all__ = [
    "AgreementService",
    "DeterministicArtifactPipeline",
    "InMemoryObjectStore",
    "GoogleCredentialStore",
    "GoogleImportInput",
    "GoogleImportResult",
    "GoogleImportService",
    "HttpGoogleDriveClient",
    "StaticGoogleDriveClient",
    "TokenInvalidError",
    "TokenService",
]
