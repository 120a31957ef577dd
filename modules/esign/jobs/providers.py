"""
Email Providers.

``EmailProvider.send`` returns the provider message id or raises. The
deterministic provider derives the id from the send input, performs no I/O
and reports each recipient link to an injectable observer.
"""

import hashlib
import threading
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from core.context import Scope
from modules.esign.models.records import AgreementRecord, RecipientRecord


@dataclass(frozen=True)
class EmailSendInput:
    agreement: AgreementRecord
    recipient: RecipientRecord
    template_code: str
    notification: str
    correlation_id: str
    scope: Scope = field(default_factory=Scope)
    sign_url: str = ""
    completion_url: str = ""


@runtime_checkable
class EmailProvider(Protocol):
    name: str

    async def send(self, data: EmailSendInput) -> str: ...


# =============================================================================
# Recipient link observers
# =============================================================================


@dataclass(frozen=True)
class CapturedLink:
    agreement_id: str
    recipient_id: str
    recipient_email: str
    notification: str
    sign_url: str
    completion_url: str


class RecipientLinkObserver(Protocol):
    def observe(self, link: CapturedLink) -> None: ...


class NoopLinkObserver:
    """Observer for production deployments."""

    def observe(self, link: CapturedLink) -> None:
        return None


class CapturingLinkObserver:
    """Keeps every observed link; used by tests and local runtimes."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._links: list[CapturedLink] = []

    def observe(self, link: CapturedLink) -> None:
        with self._lock:
            self._links.append(link)

    def links(self) -> list[CapturedLink]:
        with self._lock:
            return list(self._links)

    def links_for(self, recipient_id: str) -> list[CapturedLink]:
        with self._lock:
            return [link for link in self._links if link.recipient_id == recipient_id]

    def clear(self) -> None:
        with self._lock:
            self._links.clear()


# =============================================================================
# Deterministic provider
# =============================================================================


class DeterministicEmailProvider:
    """
    Side-effect-free provider.

    The message id is ``"msg_"`` plus the hex of the first 8 bytes of the
    SHA-256 of the identifying send fields, so identical inputs always
    produce identical ids.
    """

    name = "deterministic"

    def __init__(self, observer: RecipientLinkObserver | None = None) -> None:
        self._observer = observer or NoopLinkObserver()

    @staticmethod
    def message_id_for(data: EmailSendInput) -> str:
        payload = "|".join(
            value.strip()
            for value in (
                data.template_code,
                data.agreement.id,
                data.recipient.id,
                data.recipient.email,
                data.correlation_id,
                data.notification,
                data.sign_url,
                data.completion_url,
            )
        )
        digest = hashlib.sha256(payload.encode("utf-8")).digest()
        return "msg_" + digest[:8].hex()

    async def send(self, data: EmailSendInput) -> str:
        self._observer.observe(CapturedLink(
            agreement_id=data.agreement.id,
            recipient_id=data.recipient.id,
            recipient_email=data.recipient.email,
            notification=data.notification,
            sign_url=data.sign_url,
            completion_url=data.completion_url,
        ))
        return self.message_id_for(data)
