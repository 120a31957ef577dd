"""
Agreement Service.

Draft authoring and lifecycle transitions (draft -> sent -> completed).
Every transition is recorded in the audit trail.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from core.context import Scope
from core.errors import ValidationError
from modules.esign.models.records import (
    AgreementRecord,
    AgreementStatus,
    AuditEventRecord,
    RecipientRecord,
    RecipientRole,
)
from modules.esign.stores.contracts import AgreementStore, AuditEventStore

logger = logging.getLogger(__name__)


class AgreementService:
    def __init__(
        self,
        agreements: AgreementStore,
        audits: Optional[AuditEventStore] = None,
        now: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._agreements = agreements
        self._audits = audits
        self._now = now or (lambda: datetime.now(timezone.utc))

    async def create_draft(
        self,
        scope: Scope,
        title: str,
        document_id: str = "",
        message: str = "",
        created_by_user_id: str = "",
        agreement_id: str = "",
    ) -> AgreementRecord:
        if not title.strip():
            raise ValidationError("agreement title is required")
        agreement = await self._agreements.create_agreement(scope, AgreementRecord(
            id=agreement_id,
            title=title.strip(),
            message=message,
            document_id=document_id,
            created_by_user_id=created_by_user_id,
        ))
        await self._audit(scope, agreement.id, "agreement.created", created_by_user_id, {"title": agreement.title})
        return agreement

    async def add_recipient(
        self,
        scope: Scope,
        agreement_id: str,
        email: str,
        name: str = "",
        role: RecipientRole | str = RecipientRole.SIGNER,
        signing_order: int = 1,
        recipient_id: str = "",
    ) -> RecipientRecord:
        if "@" not in email:
            raise ValidationError(f"'{email}' is not a valid recipient email")
        return await self._agreements.add_recipient(scope, RecipientRecord(
            id=recipient_id,
            agreement_id=agreement_id,
            email=email.strip(),
            name=name.strip(),
            role=RecipientRole(role),
            signing_order=signing_order,
        ))

    async def update_draft(self, scope: Scope, agreement_id: str, changes: dict[str, Any]) -> AgreementRecord:
        """
        Raises:
            AgreementImmutableError: The agreement is no longer a draft.
        """
        return await self._agreements.update_draft(scope, agreement_id, changes)

    async def send(self, scope: Scope, agreement_id: str, actor_id: str = "") -> AgreementRecord:
        recipients = await self._agreements.list_recipients(scope, agreement_id)
        if not any(r.role == RecipientRole.SIGNER for r in recipients):
            raise ValidationError("an agreement needs at least one signer before it is sent")
        agreement = await self._agreements.transition(scope, agreement_id, AgreementStatus.SENT, self._now())
        await self._audit(scope, agreement_id, "agreement.sent", actor_id, {})
        return agreement

    async def complete(self, scope: Scope, agreement_id: str, actor_id: str = "") -> AgreementRecord:
        agreement = await self._agreements.transition(scope, agreement_id, AgreementStatus.COMPLETED, self._now())
        await self._audit(scope, agreement_id, "agreement.completed", actor_id, {})
        return agreement

    async def _audit(self, scope: Scope, agreement_id: str, event_type: str, actor_id: str, metadata: dict) -> None:
        if self._audits is None:
            return
        await self._audits.append(scope, AuditEventRecord(
            id="",
            agreement_id=agreement_id,
            event_type=event_type,
            actor_type="user" if actor_id else "system",
            actor_id=actor_id,
            metadata_json=json.dumps(metadata, sort_keys=True),
            created_at=self._now(),
        ))
        logger.debug(f"Audit {event_type} appended for agreement {agreement_id}")
