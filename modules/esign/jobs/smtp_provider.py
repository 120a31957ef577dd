"""
SMTP Email Provider.

Sends multipart/alternative (plain + HTML) mail with aiosmtplib. STARTTLS is
used when the server offers it unless disabled; credentials enable AUTH.
Each send opens and closes its own connection and is bounded by a timeout.
"""

import asyncio
import hashlib
import logging
import time
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, formatdate

import aiosmtplib

from core.errors import TransientError, ValidationError
from modules.esign.core.config import (
    DETERMINISTIC_TRANSPORTS,
    SMTP_TRANSPORTS,
    EsignSettings,
)
from modules.esign.jobs.providers import (
    DeterministicEmailProvider,
    EmailProvider,
    EmailSendInput,
    RecipientLinkObserver,
)
from modules.esign.jobs.templates import EmailTemplates

logger = logging.getLogger(__name__)


class EmailSendError(TransientError):
    """Raised when the SMTP dialog fails or times out."""

    code = "EMAIL_SEND_FAILED"


@dataclass(frozen=True)
class SMTPConfig:
    host: str = "localhost"
    port: int = 1025
    username: str = ""
    password: str = ""
    from_name: str = "E-Sign"
    from_address: str = "no-reply@example.test"
    timeout_seconds: float = 10.0
    disable_starttls: bool = False
    insecure_tls: bool = False

    @classmethod
    def from_settings(cls, settings: EsignSettings) -> "SMTPConfig":
        return cls(
            host=settings.smtp_host.strip() or cls.host,
            port=settings.smtp_port if settings.smtp_port > 0 else cls.port,
            username=settings.smtp_username.strip(),
            password=settings.smtp_password.get_secret_value(),
            from_name=settings.from_name.strip(),
            from_address=settings.from_address.strip() or cls.from_address,
            timeout_seconds=settings.smtp_timeout_seconds if settings.smtp_timeout_seconds > 0 else cls.timeout_seconds,
            disable_starttls=settings.smtp_disable_starttls,
            insecure_tls=settings.smtp_insecure_tls,
        )


def _clean_header(value: str) -> str:
    return " ".join(value.replace("\r", " ").replace("\n", " ").split())


class SMTPEmailProvider:
    """EmailProvider backed by an SMTP server (Mailpit in local runtimes)."""

    name = "smtp"

    def __init__(self, config: SMTPConfig) -> None:
        self._config = config

    @property
    def config(self) -> SMTPConfig:
        return self._config

    def _message_id(self, data: EmailSendInput) -> str:
        payload = "|".join((
            data.template_code.strip(),
            data.agreement.id.strip(),
            data.recipient.id.strip(),
            data.recipient.email.strip(),
            data.correlation_id.strip(),
            self._config.host,
            str(time.time_ns()),
        ))
        return "smtp_" + hashlib.sha256(payload.encode("utf-8")).digest()[:8].hex()

    def build_message(self, data: EmailSendInput, provider_message_id: str) -> MIMEMultipart:
        rendered = EmailTemplates.render(
            data.template_code,
            data.agreement,
            data.recipient,
            data.correlation_id,
            sign_url=data.sign_url,
            completion_url=data.completion_url,
        )
        msg = MIMEMultipart("alternative")
        msg["Subject"] = _clean_header(rendered.subject)
        msg["From"] = formataddr((_clean_header(self._config.from_name), self._config.from_address))
        msg["To"] = _clean_header(data.recipient.email)
        msg["Date"] = formatdate(usegmt=True)
        msg["Message-ID"] = f"<{provider_message_id}@{self._config.host}>"
        msg.attach(MIMEText(rendered.text, "plain", "utf-8"))
        msg.attach(MIMEText(rendered.html, "html", "utf-8"))
        return msg

    async def send(self, data: EmailSendInput) -> str:
        """
        Send one message.

        Returns:
            str: ``smtp_`` + 8 hex bytes, unique per attempt.

        Raises:
            ValidationError: Recipient address missing.
            EmailSendError: SMTP failure or timeout.
            asyncio.CancelledError: Caller cancelled; propagated unchanged.
        """
        to_address = data.recipient.email.strip()
        if not to_address:
            raise ValidationError("recipient email is required")

        provider_message_id = self._message_id(data)
        message = self.build_message(data, provider_message_id)
        cfg = self._config

        try:
            await asyncio.wait_for(
                aiosmtplib.send(
                    message,
                    hostname=cfg.host,
                    port=cfg.port,
                    start_tls=False if cfg.disable_starttls else None,
                    validate_certs=not cfg.insecure_tls,
                    username=cfg.username or None,
                    password=cfg.password or None,
                ),
                timeout=cfg.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            logger.warning(f"SMTP send to {to_address} timed out after {cfg.timeout_seconds}s")
            raise EmailSendError(f"smtp send timed out after {cfg.timeout_seconds}s") from e
        except aiosmtplib.SMTPException as e:
            logger.warning(f"SMTP send to {to_address} failed: {e}")
            raise EmailSendError(f"smtp send failed: {e}") from e
        except OSError as e:
            logger.warning(f"SMTP connection to {cfg.host}:{cfg.port} failed: {e}")
            raise EmailSendError(f"smtp connection failed: {e}") from e

        logger.info(f"Email {provider_message_id} sent to {to_address}")
        return provider_message_id


def email_provider_from_settings(
    settings: EsignSettings,
    observer: RecipientLinkObserver | None = None,
) -> EmailProvider:
    """
    Resolve the email provider from ESIGN_EMAIL_TRANSPORT.

    ``smtp``/``mailpit`` select SMTP; empty, ``deterministic`` and ``mock``
    select the deterministic provider; other values fall back to it with a
    warning.
    """
    transport = settings.normalized_transport
    if transport in SMTP_TRANSPORTS:
        config = SMTPConfig.from_settings(settings)
        logger.info(f"E-Sign email transport: SMTP {config.host}:{config.port}")
        return SMTPEmailProvider(config)
    if transport not in DETERMINISTIC_TRANSPORTS:
        logger.warning(f"Unknown ESIGN_EMAIL_TRANSPORT '{transport}', using deterministic provider")
    return DeterministicEmailProvider(observer=observer)
