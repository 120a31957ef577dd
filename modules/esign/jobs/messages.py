"""
E-Sign Job Messages.

One message type per job kind. Every message carries its Scope and optional
overrides for the dedupe key, correlation id and max attempts.
"""

from dataclasses import dataclass, field
from typing import ClassVar

from core.context import Scope

JOB_EMAIL_SEND_SIGNING_REQUEST = "email_send_signing_request"
JOB_PDF_RENDER_PAGES = "pdf_render_pages"
JOB_PDF_GENERATE_EXECUTED = "pdf_generate_executed"
JOB_PDF_GENERATE_CERTIFICATE = "pdf_generate_certificate"
JOB_TOKEN_ROTATE = "token_rotate"
JOB_GOOGLE_DRIVE_IMPORT = "google_drive_import"

JOB_NAMES = (
    JOB_EMAIL_SEND_SIGNING_REQUEST,
    JOB_PDF_RENDER_PAGES,
    JOB_PDF_GENERATE_EXECUTED,
    JOB_PDF_GENERATE_CERTIFICATE,
    JOB_TOKEN_ROTATE,
    JOB_GOOGLE_DRIVE_IMPORT,
)


@dataclass(frozen=True)
class EmailSendSigningRequestMsg:
    message_type: ClassVar[str] = "esign.email.send_signing_request"

    agreement_id: str
    recipient_id: str
    scope: Scope = field(default_factory=Scope)
    template_code: str = ""
    notification: str = ""
    signer_token: str = ""
    sign_url: str = ""
    completion_url: str = ""
    correlation_id: str = ""
    dedupe_key: str = ""
    max_attempts: int = 0


@dataclass(frozen=True)
class PDFRenderPagesMsg:
    message_type: ClassVar[str] = "esign.pdf.render_pages"

    agreement_id: str
    scope: Scope = field(default_factory=Scope)
    correlation_id: str = ""
    dedupe_key: str = ""
    max_attempts: int = 0


@dataclass(frozen=True)
class PDFGenerateExecutedMsg:
    message_type: ClassVar[str] = "esign.pdf.generate_executed"

    agreement_id: str
    scope: Scope = field(default_factory=Scope)
    correlation_id: str = ""
    dedupe_key: str = ""
    max_attempts: int = 0


@dataclass(frozen=True)
class PDFGenerateCertificateMsg:
    message_type: ClassVar[str] = "esign.pdf.generate_certificate"

    agreement_id: str
    scope: Scope = field(default_factory=Scope)
    correlation_id: str = ""
    dedupe_key: str = ""
    max_attempts: int = 0


@dataclass(frozen=True)
class TokenRotateMsg:
    message_type: ClassVar[str] = "esign.token.rotate"

    agreement_id: str
    recipient_id: str
    scope: Scope = field(default_factory=Scope)
    correlation_id: str = ""
    dedupe_key: str = ""
    max_attempts: int = 0


@dataclass(frozen=True)
class GoogleDriveImportMsg:
    message_type: ClassVar[str] = "esign.google.import"

    user_id: str
    google_file_id: str
    scope: Scope = field(default_factory=Scope)
    document_title: str = ""
    agreement_title: str = ""
    created_by_user_id: str = ""
    correlation_id: str = ""
    dedupe_key: str = ""
    max_attempts: int = 0


@dataclass(frozen=True)
class CompletionWorkflowMsg:
    message_type: ClassVar[str] = "esign.agreement.complete"

    agreement_id: str
    scope: Scope = field(default_factory=Scope)
    correlation_id: str = ""
