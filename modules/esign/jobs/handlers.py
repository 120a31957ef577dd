"""
E-Sign Job Handlers.

Every job runs inside the same execution envelope:

1. resolve a correlation id that is stable across retries,
2. compute the dedupe key (message override or job-specific default),
3. acquire the dedupe slot with ``begin_job_run``; a succeeded run is not re-run,
4. execute the job action (all external side effects happen here),
5. on success mark the run succeeded, count it and append ``job.succeeded``,
6. on failure schedule a retry or fail terminally, update the email log,
   count it, append ``job.failed`` and re-raise the original exception.

The completion workflow chains the PDF jobs and fans out completion
packages to CC recipients under one correlation id.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Protocol

from core.context import Scope
from core.errors import (
    CancelledOperationError,
    CompletionPreconditionError,
    DependencyMissingError,
    NotFoundError,
    ValidationError,
)
from modules.esign.core.config import DEFAULT_PUBLIC_BASE_URL
from modules.esign.core.links import build_completion_link, build_sign_link
from modules.esign.jobs.messages import (
    JOB_EMAIL_SEND_SIGNING_REQUEST,
    JOB_GOOGLE_DRIVE_IMPORT,
    JOB_PDF_GENERATE_CERTIFICATE,
    JOB_PDF_GENERATE_EXECUTED,
    JOB_PDF_RENDER_PAGES,
    JOB_TOKEN_ROTATE,
    CompletionWorkflowMsg,
    EmailSendSigningRequestMsg,
    GoogleDriveImportMsg,
    PDFGenerateCertificateMsg,
    PDFGenerateExecutedMsg,
    PDFRenderPagesMsg,
    TokenRotateMsg,
)
from modules.esign.jobs.providers import DeterministicEmailProvider, EmailProvider, EmailSendInput
from modules.esign.jobs.retry import RetryPolicy
from modules.esign.jobs.templates import (
    TEMPLATE_COMPLETED_DELIVERY,
    is_signing_notification,
    resolve_notification,
    resolve_template_code,
)
from modules.esign.models.records import (
    AgreementStatus,
    AuditEventRecord,
    EmailLogRecord,
    EmailLogStatus,
    IssuedSigningToken,
    JobRunInput,
    JobRunRecord,
    Notification,
    RecipientRecord,
    RecipientRole,
)
from modules.esign.observability.metrics import InMemoryMetrics, get_metrics
from modules.esign.observability.operation_log import log_operation, resolve_correlation_id
from modules.esign.services.artifacts import ArtifactPipeline
from modules.esign.services.google import GoogleImportInput, GoogleImportResult
from modules.esign.services.tokens import TokenService
from modules.esign.stores.contracts import AgreementStore, AuditEventStore, EmailLogStore, JobRunStore

logger = logging.getLogger(__name__)

JobAction = Callable[[JobRunRecord, dict[str, Any]], Awaitable[Any]]
FailureHook = Callable[[JobRunRecord, BaseException, Optional[datetime]], Awaitable[None]]


class GoogleImporter(Protocol):
    async def import_document(self, scope: Scope, data: GoogleImportInput) -> GoogleImportResult: ...


@dataclass
class HandlerDependencies:
    """Collaborators of the job handlers; any may be omitted."""

    agreements: Optional[AgreementStore] = None
    job_runs: Optional[JobRunStore] = None
    email_logs: Optional[EmailLogStore] = None
    audits: Optional[AuditEventStore] = None
    tokens: Optional[TokenService] = None
    pipeline: Optional[ArtifactPipeline] = None
    email_provider: Optional[EmailProvider] = None
    google_importer: Optional[GoogleImporter] = None
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    metrics: Optional[InMemoryMetrics] = None
    public_base_url: str = DEFAULT_PUBLIC_BASE_URL
    now: Optional[Callable[[], datetime]] = None


class JobHandlers:
    """Executes the six E-Sign job kinds and the completion workflow."""

    def __init__(self, deps: HandlerDependencies) -> None:
        self._agreements = deps.agreements
        self._job_runs = deps.job_runs
        self._email_logs = deps.email_logs
        self._audits = deps.audits
        self._tokens = deps.tokens
        self._pipeline = deps.pipeline
        self._email_provider = deps.email_provider or DeterministicEmailProvider()
        self._google_importer = deps.google_importer
        self._retry = deps.retry_policy.normalized()
        self._metrics = deps.metrics or get_metrics()
        self._public_base_url = deps.public_base_url
        self._now = deps.now or (lambda: datetime.now(timezone.utc))

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry

    @property
    def email_provider(self) -> EmailProvider:
        return self._email_provider

    # =========================================================================
    # Dispatch (queue workers, command bus)
    # =========================================================================

    async def dispatch(self, message: Any) -> Any:
        """Execute ``message`` with the handler for its type."""
        if isinstance(message, EmailSendSigningRequestMsg):
            return await self.execute_email_send_signing_request(message)
        if isinstance(message, PDFRenderPagesMsg):
            return await self.execute_pdf_render_pages(message)
        if isinstance(message, PDFGenerateExecutedMsg):
            return await self.execute_pdf_generate_executed(message)
        if isinstance(message, PDFGenerateCertificateMsg):
            return await self.execute_pdf_generate_certificate(message)
        if isinstance(message, TokenRotateMsg):
            return await self.execute_token_rotate(message)
        if isinstance(message, GoogleDriveImportMsg):
            return await self.execute_google_drive_import(message)
        if isinstance(message, CompletionWorkflowMsg):
            return await self.run_completion_workflow(message.scope, message.agreement_id, message.correlation_id)
        raise NotFoundError(f"No E-Sign job handles {type(message).__name__}")

    # =========================================================================
    # Execution envelope
    # =========================================================================

    async def _execute(
        self,
        scope: Scope,
        data: JobRunInput,
        action: JobAction,
        *,
        audit_agreement_id: str = "",
        on_failure: Optional[FailureHook] = None,
        on_deduped: Optional[Callable[[JobRunRecord], Awaitable[Any]]] = None,
    ) -> Any:
        started = time.monotonic()
        run, should_run = await self._job_runs.begin_job_run(scope, data)
        if not should_run:
            log_operation(
                logger, logging.INFO, "job", data.job_name, "deduped", run.correlation_id,
                _elapsed_ms(started), job_name=data.job_name, dedupe_key=data.dedupe_key, status=run.status.value,
            )
            return await on_deduped(run) if on_deduped is not None else None

        log_operation(
            logger, logging.DEBUG, "job", data.job_name, "started", run.correlation_id,
            job_name=data.job_name, attempt_count=run.attempt_count,
        )
        audit_fields: dict[str, Any] = {}
        try:
            result = await action(run, audit_fields)
        except asyncio.CancelledError:
            try:
                await self._record_failure(
                    scope, run, CancelledOperationError("job cancelled"), audit_agreement_id or data.agreement_id,
                    audit_fields, on_failure,
                )
            except Exception as bookkeeping_error:
                logger.error(f"Run {run.id} left running after cancellation: {bookkeeping_error}")
            raise
        except Exception as exc:
            await self._record_failure(scope, run, exc, audit_agreement_id or data.agreement_id, audit_fields, on_failure)
            raise

        await self._job_runs.mark_job_run_succeeded(scope, run.id, self._now())
        self._metrics.observe_job_result(run.job_name, True)
        log_operation(
            logger, logging.INFO, "job", run.job_name, "success", run.correlation_id, _elapsed_ms(started),
            job_name=run.job_name, dedupe_key=run.dedupe_key, attempt_count=run.attempt_count,
        )
        await self._append_audit(scope, audit_fields.pop("_agreement_id", "") or audit_agreement_id or data.agreement_id,
                                 "job.succeeded", {
                                     "job_name": run.job_name,
                                     "dedupe_key": run.dedupe_key,
                                     "attempt_count": run.attempt_count,
                                     "correlation_id": run.correlation_id,
                                     **audit_fields,
                                 })
        return result

    async def _record_failure(
        self,
        scope: Scope,
        run: JobRunRecord,
        cause: BaseException,
        agreement_id: str,
        audit_fields: dict[str, Any],
        on_failure: Optional[FailureHook],
    ) -> None:
        """
        Persist a failed attempt.

        A run that cannot be marked failed raises the store error chained to
        ``cause``; the run stays claimed until its lease expires. Errors of
        the email log hook and the audit append are logged.
        """
        now = self._now()
        next_retry_at = self._retry.next_retry(run.attempt_count, run.max_attempts, now)
        error_text = str(cause).strip() or type(cause).__name__
        metadata: dict[str, Any] = {
            "job_name": run.job_name,
            "dedupe_key": run.dedupe_key,
            "attempt_count": run.attempt_count,
            "last_error": error_text,
            "correlation_id": run.correlation_id,
        }
        metadata.update({k: v for k, v in audit_fields.items() if not k.startswith("_")})
        if next_retry_at is not None:
            metadata["next_retry_at"] = _rfc3339(next_retry_at)
        try:
            await self._job_runs.mark_job_run_failed(scope, run.id, error_text, next_retry_at, now)
        except Exception as bookkeeping_error:
            logger.error(f"Marking job run {run.id} failed did not persist: {bookkeeping_error}")
            self._metrics.observe_job_result(run.job_name, False)
            raise bookkeeping_error from cause
        try:
            if on_failure is not None:
                await on_failure(run, cause, next_retry_at)
            await self._append_audit(scope, agreement_id, "job.failed", metadata)
        except Exception as bookkeeping_error:
            logger.error(f"Recording failure of job run {run.id} failed: {bookkeeping_error}")
        self._metrics.observe_job_result(run.job_name, False)
        if next_retry_at is not None:
            self._metrics.observe_job_retry(run.job_name)
        log_operation(
            logger, logging.WARNING, "job", run.job_name, "failure", run.correlation_id,
            error=cause if isinstance(cause, Exception) else None,
            dedupe_key=run.dedupe_key, attempt_count=run.attempt_count,
            next_retry_at=metadata.get("next_retry_at", ""),
        )

    async def _append_audit(self, scope: Scope, agreement_id: str, event_type: str, metadata: dict[str, Any]) -> None:
        if self._audits is None:
            return
        await self._audits.append(scope, AuditEventRecord(
            id="",
            agreement_id=agreement_id.strip(),
            event_type=event_type,
            actor_type="system_job",
            metadata_json=json.dumps(metadata, sort_keys=True, default=str),
            created_at=self._now(),
        ))

    def _require(self, job_name: str, **deps: Any) -> None:
        missing = sorted(name for name, dep in deps.items() if dep is None)
        if missing:
            logger.error(f"Job {job_name} dependencies not configured: {', '.join(missing)}")
            raise DependencyMissingError(f"{job_name} dependencies not configured: {', '.join(missing)}")

    # =========================================================================
    # Email
    # =========================================================================

    async def execute_email_send_signing_request(self, msg: EmailSendSigningRequestMsg) -> str:
        """
        Send an invitation, reminder or completion package.

        Returns:
            str: The provider message id; on dedupe the id persisted by the
            first successful run.
        """
        job_name = JOB_EMAIL_SEND_SIGNING_REQUEST
        self._require(
            job_name,
            agreements=self._agreements,
            job_runs=self._job_runs,
            email_logs=self._email_logs,
        )
        scope = msg.scope
        notification = resolve_notification(msg.notification, msg.template_code)
        template_code = resolve_template_code(msg.template_code, notification)
        is_completion = notification == Notification.COMPLETION_PACKAGE.value
        correlation_id = resolve_correlation_id(
            msg.correlation_id, msg.dedupe_key, msg.agreement_id, msg.recipient_id, job_name,
        )
        dedupe_key = msg.dedupe_key.strip() or "|".join((
            msg.agreement_id.strip(),
            msg.recipient_id.strip(),
            template_code,
            notification,
            msg.correlation_id.strip(),
        ))
        email_log: dict[str, EmailLogRecord] = {}

        async def action(run: JobRunRecord, audit: dict[str, Any]) -> str:
            audit.update(template_code=template_code, notification=notification)
            agreement = await self._agreements.get_agreement(scope, msg.agreement_id)
            recipient = await self._find_recipient(scope, msg.agreement_id, msg.recipient_id)
            email_log["current"] = await self._open_email_log(scope, run, template_code)

            sign_url = ""
            completion_url = ""
            if is_signing_notification(notification):
                sign_url = msg.sign_url.strip() or build_sign_link(self._public_base_url, msg.signer_token)
                if not sign_url:
                    raise ValidationError("missing sign link for signing notification")
            if is_completion:
                completion_url = await self._completion_url(scope, msg)

            try:
                provider_message_id = await self._email_provider.send(EmailSendInput(
                    agreement=agreement,
                    recipient=recipient,
                    template_code=template_code,
                    notification=notification,
                    correlation_id=run.correlation_id,
                    scope=scope,
                    sign_url=sign_url,
                    completion_url=completion_url,
                ))
            except Exception:
                self._metrics.observe_provider_result("email", False)
                if is_completion:
                    self._metrics.observe_completion_delivery(False)
                raise
            self._metrics.observe_provider_result("email", True)
            if is_completion:
                self._metrics.observe_completion_delivery(True)

            now = self._now()
            email_log["current"] = await self._email_logs.update_email_log(scope, email_log["current"].id, {
                "status": EmailLogStatus.SENT,
                "provider_message_id": provider_message_id,
                "attempt_count": run.attempt_count,
                "max_attempts": run.max_attempts,
                "correlation_id": run.correlation_id,
                "failure_reason": "",
                "next_retry_at": None,
                "sent_at": now,
                "updated_at": now,
            })
            self._metrics.observe_email("sent")
            return provider_message_id

        async def on_failure(run: JobRunRecord, cause: BaseException, next_retry_at: Optional[datetime]) -> None:
            current = email_log.get("current")
            if current is None:
                return
            status = EmailLogStatus.RETRYING if next_retry_at is not None else EmailLogStatus.FAILED
            email_log["current"] = await self._email_logs.update_email_log(scope, current.id, {
                "status": status,
                "failure_reason": str(cause).strip() or type(cause).__name__,
                "attempt_count": run.attempt_count,
                "max_attempts": run.max_attempts,
                "correlation_id": run.correlation_id,
                "next_retry_at": next_retry_at,
                "updated_at": self._now(),
            })
            self._metrics.observe_email("retry" if next_retry_at is not None else "failed")

        async def on_deduped(run: JobRunRecord) -> str:
            existing = await self._email_logs.get_email_log_for_run(scope, run.id)
            return existing.provider_message_id if existing is not None else ""

        return await self._execute(
            scope,
            JobRunInput(
                job_name=job_name,
                dedupe_key=dedupe_key,
                agreement_id=msg.agreement_id,
                recipient_id=msg.recipient_id,
                correlation_id=correlation_id,
                max_attempts=self._retry.resolve_max_attempts(msg.max_attempts),
                attempted_at=self._now(),
            ),
            action,
            on_failure=on_failure,
            on_deduped=on_deduped,
        )

    async def _open_email_log(self, scope: Scope, run: JobRunRecord, template_code: str) -> EmailLogRecord:
        """Return the run's email log, creating it on the first attempt."""
        now = self._now()
        existing = await self._email_logs.get_email_log_for_run(scope, run.id)
        if existing is not None:
            return await self._email_logs.update_email_log(scope, existing.id, {
                "attempt_count": run.attempt_count,
                "max_attempts": run.max_attempts,
                "correlation_id": run.correlation_id,
                "updated_at": now,
            })
        return await self._email_logs.create_email_log(scope, EmailLogRecord(
            id="",
            agreement_id=run.agreement_id,
            recipient_id=run.recipient_id,
            template_code=template_code,
            status=EmailLogStatus.QUEUED,
            attempt_count=run.attempt_count,
            max_attempts=run.max_attempts,
            correlation_id=run.correlation_id,
            job_run_id=run.id,
            created_at=now,
            updated_at=now,
        ))

    async def _completion_url(self, scope: Scope, msg: EmailSendSigningRequestMsg) -> str:
        completion_url = msg.completion_url.strip()
        if completion_url:
            return completion_url
        token = msg.signer_token.strip()
        if not token:
            if self._tokens is None:
                raise DependencyMissingError(
                    "completion delivery needs a token service or a completion URL"
                )
            issued = await self._tokens.issue(scope, msg.agreement_id, msg.recipient_id)
            token = issued.token
        completion_url = build_completion_link(self._public_base_url, token)
        if not completion_url:
            raise ValidationError("missing completion delivery link")
        return completion_url

    async def _find_recipient(self, scope: Scope, agreement_id: str, recipient_id: str) -> RecipientRecord:
        recipient_id = recipient_id.strip()
        for recipient in await self._agreements.list_recipients(scope, agreement_id):
            if recipient.id.strip() == recipient_id:
                return recipient
        raise NotFoundError(f"Recipient '{recipient_id}' not found for agreement '{agreement_id}'")

    # =========================================================================
    # PDF pipeline
    # =========================================================================

    async def execute_pdf_render_pages(self, msg: PDFRenderPagesMsg) -> None:
        job_name = JOB_PDF_RENDER_PAGES
        self._require(job_name, job_runs=self._job_runs, pipeline=self._pipeline)

        async def action(run: JobRunRecord, audit: dict[str, Any]) -> None:
            await self._pipeline.render_pages(msg.scope, msg.agreement_id, run.correlation_id)

        await self._execute(msg.scope, self._agreement_job_input(job_name, msg), action)

    async def execute_pdf_generate_executed(self, msg: PDFGenerateExecutedMsg) -> None:
        job_name = JOB_PDF_GENERATE_EXECUTED
        self._require(job_name, job_runs=self._job_runs, pipeline=self._pipeline)

        async def action(run: JobRunRecord, audit: dict[str, Any]) -> None:
            artifacts = await self._pipeline.generate_executed(msg.scope, msg.agreement_id, run.correlation_id)
            audit["executed_sha256"] = artifacts.executed_sha256

        await self._execute(msg.scope, self._agreement_job_input(job_name, msg), action)

    async def execute_pdf_generate_certificate(self, msg: PDFGenerateCertificateMsg) -> None:
        job_name = JOB_PDF_GENERATE_CERTIFICATE
        self._require(job_name, job_runs=self._job_runs, pipeline=self._pipeline)

        async def action(run: JobRunRecord, audit: dict[str, Any]) -> None:
            artifacts = await self._pipeline.generate_certificate(msg.scope, msg.agreement_id, run.correlation_id)
            audit["certificate_sha256"] = artifacts.certificate_sha256

        await self._execute(msg.scope, self._agreement_job_input(job_name, msg), action)

    def _agreement_job_input(
        self,
        job_name: str,
        msg: PDFRenderPagesMsg | PDFGenerateExecutedMsg | PDFGenerateCertificateMsg,
    ) -> JobRunInput:
        return JobRunInput(
            job_name=job_name,
            dedupe_key=msg.dedupe_key.strip() or msg.agreement_id.strip(),
            agreement_id=msg.agreement_id,
            correlation_id=resolve_correlation_id(msg.correlation_id, msg.dedupe_key, msg.agreement_id, job_name),
            max_attempts=self._retry.resolve_max_attempts(msg.max_attempts),
            attempted_at=self._now(),
        )

    # =========================================================================
    # Token rotation
    # =========================================================================

    async def execute_token_rotate(self, msg: TokenRotateMsg) -> Optional[IssuedSigningToken]:
        """
        Rotate a recipient's signing token.

        Returns:
            The new token, or None when the rotation already succeeded.
        """
        job_name = JOB_TOKEN_ROTATE
        self._require(job_name, tokens=self._tokens, job_runs=self._job_runs)

        async def action(run: JobRunRecord, audit: dict[str, Any]) -> IssuedSigningToken:
            issued = await self._tokens.rotate(msg.scope, msg.agreement_id, msg.recipient_id)
            audit.update(recipient_id=msg.recipient_id, token_id=issued.record.id)
            return issued

        return await self._execute(
            msg.scope,
            JobRunInput(
                job_name=job_name,
                dedupe_key=msg.dedupe_key.strip() or f"{msg.agreement_id.strip()}|{msg.recipient_id.strip()}",
                agreement_id=msg.agreement_id,
                recipient_id=msg.recipient_id,
                correlation_id=resolve_correlation_id(
                    msg.correlation_id, msg.dedupe_key, msg.agreement_id, msg.recipient_id, job_name,
                ),
                max_attempts=self._retry.resolve_max_attempts(msg.max_attempts),
                attempted_at=self._now(),
            ),
            action,
        )

    # =========================================================================
    # Google Drive import
    # =========================================================================

    async def execute_google_drive_import(self, msg: GoogleDriveImportMsg) -> GoogleImportResult:
        """
        Import a Drive file once per ``user_id|google_file_id``.

        A replay of a succeeded import returns an empty result without
        contacting Google.
        """
        job_name = JOB_GOOGLE_DRIVE_IMPORT
        self._require(job_name, google_importer=self._google_importer, job_runs=self._job_runs)

        async def action(run: JobRunRecord, audit: dict[str, Any]) -> GoogleImportResult:
            result = await self._google_importer.import_document(msg.scope, GoogleImportInput(
                user_id=msg.user_id,
                google_file_id=msg.google_file_id,
                document_title=msg.document_title,
                agreement_title=msg.agreement_title,
                created_by_user_id=msg.created_by_user_id,
            ))
            audit.update(google_file_id=msg.google_file_id.strip(), user_id=msg.user_id.strip())
            if result.agreement is not None:
                audit["_agreement_id"] = result.agreement.id
            return result

        async def on_deduped(run: JobRunRecord) -> GoogleImportResult:
            self._metrics.observe_google_import("deduped")
            return GoogleImportResult()

        return await self._execute(
            msg.scope,
            JobRunInput(
                job_name=job_name,
                dedupe_key=msg.dedupe_key.strip() or f"{msg.user_id.strip()}|{msg.google_file_id.strip()}",
                correlation_id=resolve_correlation_id(
                    msg.correlation_id, msg.dedupe_key, msg.google_file_id, msg.user_id, job_name,
                ),
                max_attempts=self._retry.resolve_max_attempts(msg.max_attempts),
                attempted_at=self._now(),
            ),
            action,
            on_deduped=on_deduped,
        )

    # =========================================================================
    # Completion workflow
    # =========================================================================

    async def run_completion_workflow(self, scope: Scope, agreement_id: str, correlation_id: str = "") -> None:
        """
        Render, execute and certify a completed agreement, then deliver the
        completion package to every CC recipient.

        Raises:
            CompletionPreconditionError: The agreement is not completed.
            Exception: The first failing PDF step, or the first CC delivery
                error after every CC has been attempted.
        """
        started = time.monotonic()
        correlation_id = resolve_correlation_id(correlation_id, agreement_id, "completion_workflow")

        try:
            self._require("completion_workflow", agreements=self._agreements)
            agreement = await self._agreements.get_agreement(scope, agreement_id)
            if agreement.status != AgreementStatus.COMPLETED:
                raise CompletionPreconditionError(
                    f"completion workflow requires a completed agreement (agreement '{agreement_id}' is {agreement.status.value})"
                )
            await self.execute_pdf_render_pages(PDFRenderPagesMsg(
                agreement_id=agreement_id, scope=scope, correlation_id=correlation_id,
            ))
            await self.execute_pdf_generate_executed(PDFGenerateExecutedMsg(
                agreement_id=agreement_id, scope=scope, correlation_id=correlation_id,
            ))
            await self.execute_pdf_generate_certificate(PDFGenerateCertificateMsg(
                agreement_id=agreement_id, scope=scope, correlation_id=correlation_id,
            ))
            recipients = await self._agreements.list_recipients(scope, agreement_id)
        except Exception as exc:
            self._metrics.observe_finalize(_elapsed_ms(started), False)
            log_operation(
                logger, logging.WARNING, "job", "completion_workflow", "failure", correlation_id,
                _elapsed_ms(started), exc, agreement_id=agreement_id,
            )
            raise

        first_error: Optional[Exception] = None
        for recipient in recipients:
            if recipient.role != RecipientRole.CC:
                continue
            try:
                await self.execute_email_send_signing_request(EmailSendSigningRequestMsg(
                    agreement_id=agreement_id,
                    recipient_id=recipient.id,
                    scope=scope,
                    notification=Notification.COMPLETION_PACKAGE.value,
                    template_code=TEMPLATE_COMPLETED_DELIVERY,
                    correlation_id=correlation_id,
                    dedupe_key="|".join((agreement_id, recipient.id, TEMPLATE_COMPLETED_DELIVERY, correlation_id)),
                ))
            except Exception as exc:
                if first_error is None:
                    first_error = exc

        if first_error is not None:
            self._metrics.observe_finalize(_elapsed_ms(started), False)
            log_operation(
                logger, logging.WARNING, "job", "completion_workflow", "failure", correlation_id,
                _elapsed_ms(started), first_error, agreement_id=agreement_id,
            )
            raise first_error

        self._metrics.observe_finalize(_elapsed_ms(started), True)
        log_operation(
            logger, logging.INFO, "job", "completion_workflow", "success", correlation_id,
            _elapsed_ms(started), agreement_id=agreement_id,
        )


def _elapsed_ms(started: float) -> float:
    return (time.monotonic() - started) * 1000.0


def _rfc3339(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
