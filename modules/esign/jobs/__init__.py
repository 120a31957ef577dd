"""
E-Sign Jobs Package.

Job messages, the execution envelope, the async queue and email providers.
"""

from modules.esign.jobs.handlers import HandlerDependencies, JobHandlers
from modules.esign.jobs.messages import (
    CompletionWorkflowMsg,
    EmailSendSigningRequestMsg,
    GoogleDriveImportMsg,
    PDFGenerateCertificateMsg,
    PDFGenerateExecutedMsg,
    PDFRenderPagesMsg,
    TokenRotateMsg,
)
from modules.esign.jobs.providers import CapturingLinkObserver, DeterministicEmailProvider
from modules.esign.jobs.queue import AsyncJobQueue
from modules.esign.jobs.retry import RetryPolicy

__all__ = [
    "HandlerDependencies",
    "JobHandlers",
    "CompletionWorkflowMsg",
    "EmailSendSigningRequestMsg",
    "GoogleDriveImportMsg",
    "PDFGenerateCertificateMsg",
    "PDFGenerateExecutedMsg",
    "PDFRenderPagesMsg",
    "TokenRotateMsg",
    "CapturingLinkObserver",
    "DeterministicEmailProvider",
    "AsyncJobQueue",
    "RetryPolicy",
]
