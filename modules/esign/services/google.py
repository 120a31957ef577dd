"""
Google Drive Import.

Imports a Drive file as a PDF document and opens a draft agreement on it.
``HttpGoogleDriveClient`` talks to the Drive v3 REST API with httpx;
``StaticGoogleDriveClient`` serves fixed files for local runtimes and tests.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Protocol, runtime_checkable
from urllib.parse import quote

import httpx

from core.context import Scope
from core.errors import NotFoundError, TransientError, UnauthorizedError, ValidationError
from modules.esign.models.records import AgreementRecord, DocumentRecord
from modules.esign.observability.metrics import InMemoryMetrics, get_metrics
from modules.esign.services.artifacts import InMemoryObjectStore, ObjectStore, object_key
from modules.esign.stores.contracts import AgreementStore, DocumentStore

logger = logging.getLogger(__name__)

GOOGLE_PROVIDER_NAME = "google_drive"
GOOGLE_WORKSPACE_MIME_PREFIX = "application/vnd.google-apps."


class GoogleProviderError(TransientError):
    """Drive API failure that may succeed on retry."""

    code = "GOOGLE_PROVIDER_ERROR"


class GoogleNotConnectedError(UnauthorizedError):
    """No Drive credentials stored for the user."""

    code = "GOOGLE_NOT_CONNECTED"


# =============================================================================
# Types
# =============================================================================


@dataclass(frozen=True)
class GoogleDriveFile:
    id: str
    name: str
    mime_type: str = "application/pdf"
    modified_time: Optional[datetime] = None


@dataclass(frozen=True)
class GoogleExportSnapshot:
    file: GoogleDriveFile
    pdf: bytes


@dataclass(frozen=True)
class GoogleImportInput:
    user_id: str
    google_file_id: str
    document_title: str = ""
    agreement_title: str = ""
    created_by_user_id: str = ""


@dataclass(frozen=True)
class GoogleImportResult:
    document: Optional[DocumentRecord] = None
    agreement: Optional[AgreementRecord] = None

    @property
    def empty(self) -> bool:
        return self.document is None and self.agreement is None


@runtime_checkable
class GoogleDriveClient(Protocol):
    async def export_file_pdf(self, access_token: str, file_id: str) -> GoogleExportSnapshot: ...


# =============================================================================
# Credentials
# =============================================================================


class GoogleCredentialStore:
    """Per-scope, per-user Drive access tokens."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._tokens: dict[tuple[str, str, str], str] = {}

    def connect(self, scope: Scope, user_id: str, access_token: str) -> None:
        with self._lock:
            self._tokens[(*scope.key(), user_id.strip())] = access_token

    def disconnect(self, scope: Scope, user_id: str) -> None:
        with self._lock:
            self._tokens.pop((*scope.key(), user_id.strip()), None)

    async def access_token(self, scope: Scope, user_id: str) -> str:
        with self._lock:
            token = self._tokens.get((*scope.key(), user_id.strip()))
        if not token:
            raise GoogleNotConnectedError(f"Google Drive is not connected for user '{user_id}'")
        return token


# =============================================================================
# Drive clients
# =============================================================================


class HttpGoogleDriveClient:
    """
    Drive v3 client.

    Args:
        base_url: API root, e.g. https://www.googleapis.com.
        http_client: Shared client owned by the host; one is opened per call when omitted.
        timeout: Per-request timeout in seconds.
    """

    def __init__(
        self,
        base_url: str = "https://www.googleapis.com",
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ) -> None:
        self._drive_url = base_url.rstrip("/") + "/drive/v3"
        self._http_client = http_client
        self._timeout = timeout

    async def export_file_pdf(self, access_token: str, file_id: str) -> GoogleExportSnapshot:
        if self._http_client is not None:
            return await self._export(self._http_client, access_token, file_id)
        async with httpx.AsyncClient(timeout=self._timeout, follow_redirects=True) as client:
            return await self._export(client, access_token, file_id)

    async def _export(self, client: httpx.AsyncClient, access_token: str, file_id: str) -> GoogleExportSnapshot:
        headers = {"Authorization": f"Bearer {access_token}"}
        file_path = f"{self._drive_url}/files/{quote(file_id, safe='')}"

        meta = await self._request(client, file_path, headers, {"fields": "id,name,mimeType,modifiedTime"})
        payload = meta.json()
        drive_file = GoogleDriveFile(
            id=payload.get("id", file_id),
            name=payload.get("name", ""),
            mime_type=payload.get("mimeType", ""),
            modified_time=_parse_google_time(payload.get("modifiedTime", "")),
        )

        if drive_file.mime_type.startswith(GOOGLE_WORKSPACE_MIME_PREFIX):
            content = await self._request(client, f"{file_path}/export", headers, {"mimeType": "application/pdf"})
        elif drive_file.mime_type == "application/pdf":
            content = await self._request(client, file_path, headers, {"alt": "media"})
        else:
            raise ValidationError(f"Drive file '{file_id}' of type {drive_file.mime_type} cannot be imported as PDF")
        return GoogleExportSnapshot(file=drive_file, pdf=content.content)

    async def _request(
        self,
        client: httpx.AsyncClient,
        url: str,
        headers: dict[str, str],
        params: dict[str, str],
    ) -> httpx.Response:
        try:
            response = await client.get(url, headers=headers, params=params, timeout=self._timeout)
        except httpx.HTTPError as e:
            raise GoogleProviderError(f"Google Drive request failed: {e}") from e
        if response.status_code in (401, 403):
            raise UnauthorizedError("Google Drive rejected the access token", code="GOOGLE_ACCESS_REVOKED")
        if response.status_code == 404:
            raise NotFoundError("Google Drive file not found")
        if response.status_code == 429 or response.status_code >= 500:
            raise GoogleProviderError(f"Google Drive returned HTTP {response.status_code}")
        if response.status_code >= 400:
            raise ValidationError(f"Google Drive returned HTTP {response.status_code}")
        return response


class StaticGoogleDriveClient:
    """Serves a fixed set of files; counts export calls."""

    def __init__(self, files: Optional[dict[str, tuple[str, bytes]]] = None) -> None:
        self._files = dict(files or {})
        self.export_calls = 0

    def add_file(self, file_id: str, name: str, pdf: bytes = b"%PDF-1.4\n%%EOF\n") -> None:
        self._files[file_id] = (name, pdf)

    async def export_file_pdf(self, access_token: str, file_id: str) -> GoogleExportSnapshot:
        self.export_calls += 1
        entry = self._files.get(file_id)
        if entry is None:
            raise NotFoundError("Google Drive file not found")
        name, pdf = entry
        return GoogleExportSnapshot(
            file=GoogleDriveFile(id=file_id, name=name, modified_time=datetime.now(timezone.utc)),
            pdf=pdf,
        )


# =============================================================================
# Import service
# =============================================================================


@dataclass
class GoogleImportService:
    """Exports a Drive file, stores it and opens a draft agreement."""

    client: GoogleDriveClient
    credentials: GoogleCredentialStore
    documents: DocumentStore
    agreements: AgreementStore
    objects: ObjectStore = field(default_factory=InMemoryObjectStore)
    metrics: InMemoryMetrics = field(default_factory=get_metrics)

    async def import_document(self, scope: Scope, data: GoogleImportInput) -> GoogleImportResult:
        file_id = data.google_file_id.strip()
        user_id = data.user_id.strip()
        if not file_id:
            raise ValidationError("google_file_id is required")
        if not user_id:
            raise ValidationError("user_id is required")

        try:
            access_token = await self.credentials.access_token(scope, user_id)
            try:
                snapshot = await self.client.export_file_pdf(access_token, file_id)
            except Exception:
                self.metrics.observe_provider_result(GOOGLE_PROVIDER_NAME, False)
                raise
            self.metrics.observe_provider_result(GOOGLE_PROVIDER_NAME, True)

            title = data.document_title.strip() or snapshot.file.name or file_id
            created_by = data.created_by_user_id.strip() or user_id
            key = object_key(scope, f"imports/{file_id}", "source.pdf")
            digest = await self.objects.put(key, snapshot.pdf, "application/pdf")
            document = await self.documents.create_document(scope, DocumentRecord(
                id="",
                title=title,
                source_type="google_drive",
                source_google_file_id=file_id,
                source_object_key=key,
                sha256=digest,
                created_by_user_id=created_by,
            ))
            agreement = await self.agreements.create_agreement(scope, AgreementRecord(
                id="",
                title=data.agreement_title.strip() or title,
                document_id=document.id,
                created_by_user_id=created_by,
            ))
        except Exception:
            self.metrics.observe_google_import("failure")
            raise
        self.metrics.observe_google_import("success")
        logger.info(f"Imported Drive file {file_id} as document {document.id}, agreement {agreement.id}")
        return GoogleImportResult(document=document, agreement=agreement)


def _parse_google_time(value: str) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
