"""
Signing Token Service.

Tokens are random URL-safe strings handed to recipients inside links. Only
their SHA-256 hash is persisted; validation hashes the presented token and
returns the stored record bound to the recipient.
"""

import hashlib
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from core.context import Scope
from core.errors import UnauthorizedError, ValidationError
from modules.esign.models.records import IssuedSigningToken, SigningTokenRecord
from modules.esign.observability.metrics import InMemoryMetrics, get_metrics
from modules.esign.stores.contracts import SigningTokenStore

logger = logging.getLogger(__name__)

DEFAULT_TTL_HOURS = 720


class TokenInvalidError(UnauthorizedError):
    """Presented signing token is unknown, revoked or expired."""

    code = "TOKEN_INVALID"


def hash_token(token: str) -> str:
    return hashlib.sha256(token.strip().encode("utf-8")).hexdigest()


class TokenService:
    """
    Issues, rotates and validates recipient signing tokens.

    Args:
        store: Persistence for token hashes.
        ttl_hours: Token lifetime.
        metrics: Counter sink for validation failures.
        now: Clock, injectable for tests.
    """

    def __init__(
        self,
        store: SigningTokenStore,
        ttl_hours: int = DEFAULT_TTL_HOURS,
        metrics: Optional[InMemoryMetrics] = None,
        now: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._store = store
        self._ttl = timedelta(hours=ttl_hours if ttl_hours > 0 else DEFAULT_TTL_HOURS)
        self._metrics = metrics or get_metrics()
        self._now = now or (lambda: datetime.now(timezone.utc))

    def _new_record(self, agreement_id: str, recipient_id: str) -> tuple[str, SigningTokenRecord]:
        agreement_id = agreement_id.strip()
        recipient_id = recipient_id.strip()
        if not agreement_id or not recipient_id:
            raise ValidationError("agreement_id and recipient_id are required to issue a token")
        token = secrets.token_urlsafe(32)
        now = self._now()
        record = SigningTokenRecord(
            id="",
            agreement_id=agreement_id,
            recipient_id=recipient_id,
            token_hash=hash_token(token),
            expires_at=now + self._ttl,
            created_at=now,
        )
        return token, record

    async def issue(self, scope: Scope, agreement_id: str, recipient_id: str) -> IssuedSigningToken:
        """Issue an additional active token for the recipient."""
        token, record = self._new_record(agreement_id, recipient_id)
        stored = await self._store.create_token(scope, record)
        logger.info(f"Signing token {stored.id} issued for recipient {recipient_id}")
        return IssuedSigningToken(token=token, record=stored)

    async def rotate(self, scope: Scope, agreement_id: str, recipient_id: str) -> IssuedSigningToken:
        """
        Replace the recipient's active tokens with a new one.

        The previous tokens are revoked in the same store operation that
        persists the new one; a failure leaves them untouched.
        """
        token, record = self._new_record(agreement_id, recipient_id)
        stored = await self._store.replace_active_token(scope, record, self._now())
        logger.info(f"Signing token rotated for recipient {recipient_id} (new id {stored.id})")
        return IssuedSigningToken(token=token, record=stored)

    async def validate(self, scope: Scope, token: str) -> SigningTokenRecord:
        """
        Resolve a presented token to its record.

        Raises:
            TokenInvalidError: Unknown, revoked or expired token.
        """
        if not token or not token.strip():
            self._metrics.observe_token_validation_failure()
            raise TokenInvalidError("signing token is required")
        record = await self._store.get_token_by_hash(scope, hash_token(token))
        if record is None:
            self._metrics.observe_token_validation_failure()
            raise TokenInvalidError("signing token is not recognized")
        if record.status != "active":
            self._metrics.observe_token_validation_failure()
            raise TokenInvalidError("signing token has been revoked", code="TOKEN_REVOKED")
        if record.expires_at is not None and record.expires_at <= self._now():
            self._metrics.observe_token_validation_failure()
            raise TokenInvalidError("signing token has expired", code="TOKEN_EXPIRED")
        return record
