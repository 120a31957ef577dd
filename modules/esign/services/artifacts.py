"""
Artifact Pipeline.

Renders the signed pages, the executed PDF and the certificate of completion
of an agreement into an object store. Artifact slots on the agreement are
populated only after the object has been written, and never overwritten.
"""

import hashlib
import logging
import threading
from typing import Optional, Protocol, runtime_checkable

from core.context import Scope
from core.errors import CompletionPreconditionError, NotFoundError
from modules.esign.models.records import AgreementArtifactRecord, AgreementRecord, AgreementStatus, RecipientRecord
from modules.esign.stores.contracts import AgreementArtifactStore, AgreementStore

logger = logging.getLogger(__name__)


@runtime_checkable
class ObjectStore(Protocol):
    async def put(self, key: str, content: bytes, content_type: str) -> str: ...

    async def get(self, key: str) -> bytes: ...


class InMemoryObjectStore:
    """Object store keeping blobs in process memory."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._objects: dict[str, tuple[bytes, str]] = {}

    async def put(self, key: str, content: bytes, content_type: str = "application/pdf") -> str:
        with self._lock:
            self._objects[key] = (content, content_type)
        return hashlib.sha256(content).hexdigest()

    async def get(self, key: str) -> bytes:
        with self._lock:
            entry = self._objects.get(key)
        if entry is None:
            raise NotFoundError(f"Object '{key}' not found")
        return entry[0]

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._objects)


@runtime_checkable
class ArtifactPipeline(Protocol):
    async def render_pages(self, scope: Scope, agreement_id: str, correlation_id: str) -> None: ...

    async def generate_executed(self, scope: Scope, agreement_id: str, correlation_id: str) -> AgreementArtifactRecord: ...

    async def generate_certificate(self, scope: Scope, agreement_id: str, correlation_id: str) -> AgreementArtifactRecord: ...


def object_key(scope: Scope, agreement_id: str, name: str) -> str:
    tenant_id, org_id = scope.key()
    return f"tenant/{tenant_id or 'default'}/org/{org_id or 'default'}/agreements/{agreement_id}/{name}"


class DeterministicArtifactPipeline:
    """
    Produces byte-stable PDFs from agreement data.

    Identical agreements render identical bytes, so the SHA-256 recorded per
    artifact is reproducible.
    """

    def __init__(
        self,
        agreements: AgreementStore,
        artifacts: AgreementArtifactStore,
        objects: Optional[ObjectStore] = None,
    ) -> None:
        self._agreements = agreements
        self._artifacts = artifacts
        self._objects = objects or InMemoryObjectStore()

    @property
    def objects(self) -> ObjectStore:
        return self._objects

    async def _completed_agreement(self, scope: Scope, agreement_id: str) -> tuple[AgreementRecord, list[RecipientRecord]]:
        agreement = await self._agreements.get_agreement(scope, agreement_id)
        if agreement.status != AgreementStatus.COMPLETED:
            raise CompletionPreconditionError(f"Agreement '{agreement_id}' is not completed")
        recipients = await self._agreements.list_recipients(scope, agreement_id)
        return agreement, recipients

    async def render_pages(self, scope: Scope, agreement_id: str, correlation_id: str) -> None:
        agreement, recipients = await self._completed_agreement(scope, agreement_id)
        lines = [f"Document: {agreement.document_id or agreement.id}", f"Agreement: {agreement.title}"]
        lines += [f"Signed by {r.email}" for r in recipients if r.role.value == "signer"]
        await self._objects.put(object_key(scope, agreement_id, "pages.pdf"), _pdf_bytes(lines), "application/pdf")
        logger.info(f"Rendered pages for agreement {agreement_id} (correlation {correlation_id})")

    async def generate_executed(self, scope: Scope, agreement_id: str, correlation_id: str) -> AgreementArtifactRecord:
        current = await self._artifacts.get_artifacts(scope, agreement_id)
        if current.executed_object_key:
            return current
        agreement, recipients = await self._completed_agreement(scope, agreement_id)
        lines = [f"Executed Agreement: {agreement.title}", f"Agreement ID: {agreement.id}"]
        lines += [f"{r.role.value}: {r.name or r.email} <{r.email}>" for r in recipients]
        key = object_key(scope, agreement_id, "executed.pdf")
        digest = await self._objects.put(key, _pdf_bytes(lines), "application/pdf")
        saved = await self._artifacts.save_artifacts(scope, AgreementArtifactRecord(
            agreement_id=agreement_id,
            executed_object_key=key,
            executed_sha256=digest,
        ))
        logger.info(f"Executed PDF generated for agreement {agreement_id} (correlation {correlation_id})")
        return saved

    async def generate_certificate(self, scope: Scope, agreement_id: str, correlation_id: str) -> AgreementArtifactRecord:
        current = await self._artifacts.get_artifacts(scope, agreement_id)
        if current.certificate_object_key:
            return current
        agreement, recipients = await self._completed_agreement(scope, agreement_id)
        completed = agreement.completed_at.isoformat() if agreement.completed_at else ""
        lines = [
            "Certificate of Completion",
            f"Agreement: {agreement.title}",
            f"Agreement ID: {agreement.id}",
            f"Completed At: {completed}",
            f"Executed SHA-256: {current.executed_sha256}",
        ]
        lines += [f"Recipient: {r.email} ({r.role.value})" for r in recipients]
        key = object_key(scope, agreement_id, "certificate.pdf")
        digest = await self._objects.put(key, _pdf_bytes(lines), "application/pdf")
        saved = await self._artifacts.save_artifacts(scope, AgreementArtifactRecord(
            agreement_id=agreement_id,
            certificate_object_key=key,
            certificate_sha256=digest,
        ))
        logger.info(f"Certificate generated for agreement {agreement_id} (correlation {correlation_id})")
        return saved


def _pdf_bytes(lines: list[str]) -> bytes:
    """Minimal single-page PDF with one text line per entry."""
    text_ops = []
    y = 760
    for line in lines:
        escaped = line.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")
        text_ops.append(f"BT /F1 11 Tf 50 {y} Td ({escaped}) Tj ET")
        y -= 16
    stream = "\n".join(text_ops).encode("latin-1", "replace")
    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        b"<< /Type /Pages /Kids [3 0 R] /Count 1 >>",
        b"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] /Contents 4 0 R "
        b"/Resources << /Font << /F1 5 0 R >> >> >>",
        b"<< /Length " + str(len(stream)).encode() + b" >>\nstream\n" + stream + b"\nendstream",
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
    ]
    out = bytearray(b"%PDF-1.4\n")
    offsets = []
    for number, body in enumerate(objects, start=1):
        offsets.append(len(out))
        out += f"{number} 0 obj\n".encode() + body + b"\nendobj\n"
    xref_at = len(out)
    out += f"xref\n0 {len(objects) + 1}\n0000000000 65535 f \n".encode()
    for offset in offsets:
        out += f"{offset:010d} 00000 n \n".encode()
    out += f"trailer\n<< /Size {len(objects) + 1} /Root 1 0 R >>\nstartxref\n{xref_at}\n%%EOF\n".encode()
    return bytes(out)
