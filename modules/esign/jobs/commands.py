"""
E-Sign Command Handlers.

Bridges the admin command bus to the job system. Messages built from panel
action payloads carry no scope; the caller's scope is applied at execution.
"""

import logging
from dataclasses import replace
from typing import Any, Optional

from core.context import AdminContext, Scope
from core.errors import JobFailedError, ValidationError
from modules.esign.jobs.handlers import JobHandlers
from modules.esign.jobs.messages import CompletionWorkflowMsg, GoogleDriveImportMsg
from modules.esign.jobs.queue import AsyncJobQueue
from modules.esign.models.records import AgreementStatus
from modules.esign.services.agreements import AgreementService
from modules.esign.stores.contracts import AgreementArtifactStore, AgreementStore

logger = logging.getLogger(__name__)


def _payload_id(payload: dict[str, Any], *keys: str) -> str:
    for key in keys:
        value = payload.get(key)
        if value:
            return str(value).strip()
    ids = payload.get("ids") or []
    return str(ids[0]).strip() if ids else ""


def _with_scope(message: Any, ctx: AdminContext) -> Any:
    if message.scope == Scope():
        return replace(message, scope=ctx.scope.normalized())
    return message


class CompleteAgreementCommand:
    """Completes a sent agreement and runs its completion workflow."""

    message_type = CompletionWorkflowMsg.message_type
    description = "Complete an agreement and deliver the completion package"

    def __init__(self, agreements: AgreementStore, service: AgreementService, handlers: JobHandlers) -> None:
        self._agreements = agreements
        self._service = service
        self._handlers = handlers

    def build_message(self, payload: dict[str, Any]) -> CompletionWorkflowMsg:
        agreement_id = _payload_id(payload, "agreement_id", "id")
        if not agreement_id:
            raise ValidationError("agreement_id is required")
        return CompletionWorkflowMsg(
            agreement_id=agreement_id,
            correlation_id=str(payload.get("correlation_id") or ""),
        )

    async def execute(self, ctx: AdminContext, message: CompletionWorkflowMsg) -> dict[str, Any]:
        message = _with_scope(message, ctx)
        agreement = await self._agreements.get_agreement(message.scope, message.agreement_id)
        if agreement.status == AgreementStatus.SENT:
            agreement = await self._service.complete(message.scope, agreement.id, actor_id=ctx.user_id)
        await self._handlers.run_completion_workflow(message.scope, agreement.id, message.correlation_id)
        return {"agreement_id": agreement.id, "status": agreement.status.value}


class GoogleImportCommand:
    """Queues a Google Drive import for the calling user."""

    message_type = GoogleDriveImportMsg.message_type
    description = "Import a Google Drive file as a draft agreement"

    def __init__(self, queue: AsyncJobQueue) -> None:
        self._queue = queue

    def build_message(self, payload: dict[str, Any]) -> GoogleDriveImportMsg:
        file_id = str(payload.get("google_file_id") or "").strip()
        if not file_id:
            raise ValidationError("google_file_id is required")
        return GoogleDriveImportMsg(
            user_id=str(payload.get("user_id") or ""),
            google_file_id=file_id,
            document_title=str(payload.get("document_title") or ""),
            agreement_title=str(payload.get("agreement_title") or ""),
        )

    async def execute(self, ctx: AdminContext, message: GoogleDriveImportMsg) -> dict[str, Any]:
        message = _with_scope(message, ctx)
        if not message.user_id:
            message = replace(message, user_id=ctx.user_id)
        if not message.created_by_user_id:
            message = replace(message, created_by_user_id=message.user_id)
        if not message.user_id:
            raise ValidationError("user_id is required for a Google Drive import")
        await self._queue.enqueue(message)
        logger.info(f"Queued Google Drive import of {message.google_file_id} for user {message.user_id}")
        return {"status": "queued", "google_file_id": message.google_file_id}


async def sweep_completed_agreements(
    agreements: AgreementStore,
    handlers: JobHandlers,
    scope: Scope,
    artifacts: Optional[AgreementArtifactStore] = None,
) -> dict[str, Any]:
    """
    Run the completion workflow for completed agreements still missing a
    certificate. Every agreement is attempted; failures are reported
    together as a JobFailedError chained to the first error.
    """
    processed: list[str] = []
    failed: list[str] = []
    first_error: Optional[Exception] = None
    for agreement in await agreements.list_agreements(scope):
        if agreement.status != AgreementStatus.COMPLETED:
            continue
        if artifacts is not None:
            current = await artifacts.get_artifacts(scope, agreement.id)
            if current.certificate_object_key:
                continue
        try:
            await handlers.run_completion_workflow(scope, agreement.id)
            processed.append(agreement.id)
        except Exception as exc:
            logger.warning(f"Completion sweep failed for agreement {agreement.id}: {exc}")
            failed.append(agreement.id)
            if first_error is None:
                first_error = exc
    if first_error is not None:
        raise JobFailedError(
            f"Completion sweep failed for {len(failed)} agreement(s)",
            metadata={"processed": processed, "failed": failed},
        ) from first_error
    return {"processed": processed}
