"""
Unit Tests for E-Sign email templates and providers.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import aiosmtplib
import pytest


@pytest.fixture
def send_input():
    """Factory for EmailSendInput with a signer recipient."""
    from modules.esign.jobs.providers import EmailSendInput
    from modules.esign.models.records import AgreementRecord, RecipientRecord

    def _make(email="signer@example.com", **overrides):
        data = dict(
            agreement=AgreementRecord(id="agr-1", title="Mutual NDA"),
            recipient=RecipientRecord(id="rec-1", agreement_id="agr-1", email=email, name="Sam Signer"),
            template_code="esign.sign_request_invitation",
            notification="signing_invitation",
            correlation_id="corr-1",
            sign_url="https://sign.example.test/sign/tok",
        )
        data.update(overrides)
        return EmailSendInput(**data)

    return _make


class TestTemplateResolution:
    """Tests for template and notification resolution."""

    @pytest.mark.parametrize("template_code,notification,expected", [
        ("", "", "esign.sign_request_invitation"),
        ("", "signing_reminder", "esign.sign_request_reminder"),
        ("", "completion_package", "esign.completed_delivery"),
        ("custom.code", "completion_package", "custom.code"),
    ])
    def test_resolve_template_code(self, template_code, notification, expected):
        """Test explicit codes win, otherwise the notification decides."""
        from modules.esign.jobs.templates import resolve_template_code

        assert resolve_template_code(template_code, notification) == expected

    @pytest.mark.parametrize("notification,template_code,expected", [
        ("", "esign.completed_delivery", "completion_package"),
        ("", "esign.sign_request_reminder", "signing_reminder"),
        ("", "", "signing_invitation"),
        ("signing_reminder", "esign.completed_delivery", "signing_reminder"),
    ])
    def test_resolve_notification(self, notification, template_code, expected):
        """Test explicit notifications win, otherwise the template decides."""
        from modules.esign.jobs.templates import resolve_notification

        assert resolve_notification(notification, template_code) == expected

    def test_is_signing_notification(self):
        """Test only invitations and reminders need a sign link."""
        from modules.esign.jobs.templates import is_signing_notification

        assert is_signing_notification("signing_invitation") is True
        assert is_signing_notification(" signing_reminder ") is True
        assert is_signing_notification("completion_package") is False


class TestEmailTemplates:
    """Tests for EmailTemplates.render()."""

    def test_invitation(self, send_input):
        """Test the invitation carries the sign link and correlation id."""
        from modules.esign.jobs.templates import EmailTemplates

        data = send_input()

        rendered = EmailTemplates.render(
            data.template_code, data.agreement, data.recipient, data.correlation_id, sign_url=data.sign_url
        )

        assert rendered.subject == "Signature Requested: Mutual NDA"
        assert "Hello Sam Signer," in rendered.text
        assert "Sign Now: https://sign.example.test/sign/tok" in rendered.text
        assert "Correlation ID: corr-1" in rendered.text
        assert 'href="https://sign.example.test/sign/tok"' in rendered.html

    def test_reminder_and_completion_subjects(self, send_input):
        """Test the reminder and completion templates."""
        from modules.esign.jobs.templates import EmailTemplates

        data = send_input()

        reminder = EmailTemplates.render("esign.sign_request_reminder", data.agreement, data.recipient, "c")
        completed = EmailTemplates.render(
            "esign.completed_delivery", data.agreement, data.recipient, "c",
            completion_url="https://sign.example.test/sign/tok/complete",
        )

        assert reminder.subject == "Reminder: Signature Requested: Mutual NDA"
        assert completed.subject == "Agreement Completed: Mutual NDA"
        assert "Completion Package Link: https://sign.example.test/sign/tok/complete" in completed.text

    def test_html_is_escaped(self):
        """Test interpolated values cannot inject markup."""
        from modules.esign.jobs.templates import EmailTemplates
        from modules.esign.models.records import AgreementRecord, RecipientRecord

        rendered = EmailTemplates.render(
            "esign.sign_request_invitation",
            AgreementRecord(id="a", title="<script>alert(1)</script>"),
            RecipientRecord(id="r", agreement_id="a", email="x@example.com", name="Bob & Co"),
            "corr",
            sign_url='https://sign.example.test/sign/a"b',
        )

        assert "<script>" not in rendered.html
        assert "&lt;script&gt;" in rendered.html
        assert "Bob &amp; Co" in rendered.html
        assert 'sign/a&quot;b"' in rendered.html

    def test_falls_back_to_ids_and_email(self):
        """Test missing titles and names fall back to ids and addresses."""
        from modules.esign.jobs.templates import EmailTemplates
        from modules.esign.models.records import AgreementRecord, RecipientRecord

        rendered = EmailTemplates.render(
            "esign.sign_request_invitation",
            AgreementRecord(id="agr-9"),
            RecipientRecord(id="r", agreement_id="agr-9", email="x@example.com"),
            "",
        )

        assert rendered.subject == "Signature Requested: agr-9"
        assert rendered.text.startswith("Hello x@example.com,")
        assert "Correlation ID" not in rendered.text


class TestDeterministicEmailProvider:
    """Tests for DeterministicEmailProvider."""

    @pytest.mark.asyncio
    async def test_stable_message_id(self, send_input):
        """Test identical inputs produce identical ids."""
        from modules.esign.jobs.providers import DeterministicEmailProvider

        provider = DeterministicEmailProvider()

        first = await provider.send(send_input())
        second = await provider.send(send_input())
        other = await provider.send(send_input(correlation_id="corr-2"))

        assert first == second
        assert first != other
        assert first.startswith("msg_")
        assert len(first) == len("msg_") + 16

    @pytest.mark.asyncio
    async def test_observer_captures_links(self, send_input, link_observer):
        """Test every send reports its links to the observer."""
        from modules.esign.jobs.providers import DeterministicEmailProvider

        provider = DeterministicEmailProvider(observer=link_observer)
        await provider.send(send_input())

        [link] = link_observer.links()
        assert (link.recipient_id, link.recipient_email) == ("rec-1", "signer@example.com")
        assert link.sign_url == "https://sign.example.test/sign/tok"

        link_observer.clear()
        assert link_observer.links() == []


class TestSMTPEmailProvider:
    """Tests for SMTPEmailProvider."""

    @pytest.fixture
    def provider(self):
        from modules.esign.jobs.smtp_provider import SMTPConfig, SMTPEmailProvider

        return SMTPEmailProvider(SMTPConfig(
            host="mail.test",
            port=2525,
            from_name="Acme\r\nBcc: evil@example.com",
            from_address="sign@acme.test",
            timeout_seconds=1,
            disable_starttls=True,
        ))

    def test_build_message(self, provider, send_input):
        """Test the message is multipart with sanitized headers."""
        message = provider.build_message(send_input(), "smtp_abc")

        assert message.get_content_type() == "multipart/alternative"
        assert [part.get_content_type() for part in message.get_payload()] == ["text/plain", "text/html"]
        assert message["Subject"] == "Signature Requested: Mutual NDA"
        assert message["To"] == "signer@example.com"
        assert message["Message-ID"] == "<smtp_abc@mail.test>"
        assert "\n" not in message["From"]
        assert message.get("Bcc") is None

    @pytest.mark.asyncio
    async def test_send(self, provider, send_input):
        """Test aiosmtplib is called with the configured transport options."""
        with patch("aiosmtplib.send", new_callable=AsyncMock) as mock_send:
            message_id = await provider.send(send_input())

        assert message_id.startswith("smtp_")
        mock_send.assert_awaited_once()
        kwargs = mock_send.call_args.kwargs
        assert kwargs["hostname"] == "mail.test"
        assert kwargs["port"] == 2525
        assert kwargs["start_tls"] is False
        assert kwargs["validate_certs"] is True
        assert kwargs["username"] is None
        assert mock_send.call_args.args[0]["Message-ID"] == f"<{message_id}@mail.test>"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        aiosmtplib.SMTPException("550 mailbox unavailable"),
        ConnectionRefusedError("refused"),
        asyncio.TimeoutError(),
    ])
    async def test_send_failures(self, provider, send_input, error):
        """Test SMTP, socket and timeout failures become EmailSendError."""
        from core.errors import TransientError
        from modules.esign.jobs.smtp_provider import EmailSendError

        with patch("aiosmtplib.send", new_callable=AsyncMock, side_effect=error):
            with pytest.raises(EmailSendError) as exc_info:
                await provider.send(send_input())

        assert exc_info.value.code == "EMAIL_SEND_FAILED"
        assert isinstance(exc_info.value, TransientError)

    @pytest.mark.asyncio
    async def test_blank_recipient(self, provider, send_input):
        """Test a recipient without an address is rejected before connecting."""
        from core.errors import ValidationError

        with patch("aiosmtplib.send", new_callable=AsyncMock) as mock_send:
            with pytest.raises(ValidationError):
                await provider.send(send_input(email="  "))

        mock_send.assert_not_called()


class TestEmailProviderFromSettings:
    """Tests for email_provider_from_settings() and SMTPConfig.from_settings()."""

    @pytest.mark.parametrize("transport,expected", [
        ("", "deterministic"),
        ("mock", "deterministic"),
        ("carrier-pigeon", "deterministic"),
        ("SMTP", "smtp"),
        ("mailpit", "smtp"),
    ])
    def test_transport_selection(self, monkeypatch, transport, expected):
        """Test ESIGN_EMAIL_TRANSPORT selects the provider."""
        from modules.esign.core.config import EsignSettings
        from modules.esign.jobs.smtp_provider import email_provider_from_settings

        monkeypatch.setenv("ESIGN_EMAIL_TRANSPORT", transport)

        assert email_provider_from_settings(EsignSettings()).name == expected

    def test_smtp_config_from_settings(self, monkeypatch):
        """Test SMTP settings are read with defaults for invalid values."""
        from modules.esign.core.config import EsignSettings
        from modules.esign.jobs.smtp_provider import SMTPConfig

        monkeypatch.setenv("ESIGN_EMAIL_SMTP_HOST", "smtp.acme.test")
        monkeypatch.setenv("ESIGN_EMAIL_SMTP_PORT", "0")
        monkeypatch.setenv("ESIGN_EMAIL_SMTP_PASSWORD", "s3cret")
        monkeypatch.setenv("ESIGN_EMAIL_SMTP_INSECURE_TLS", "true")

        config = SMTPConfig.from_settings(EsignSettings())

        assert config.host == "smtp.acme.test"
        assert config.port == 1025
        assert config.password == "s3cret"
        assert config.insecure_tls is True
        assert config.disable_starttls is False


class TestRetryPolicy:
    """Tests for RetryPolicy."""

    def test_exponential_backoff(self):
        """Test the delay doubles per attempt."""
        from modules.esign.jobs.retry import RetryPolicy

        now = datetime(2024, 1, 1, tzinfo=timezone.utc)
        policy = RetryPolicy(base_delay_seconds=2, max_attempts=4)

        assert policy.next_retry(1, 4, now) == now + timedelta(seconds=2)
        assert policy.next_retry(2, 4, now) == now + timedelta(seconds=4)
        assert policy.next_retry(3, 4, now) == now + timedelta(seconds=8)
        assert policy.next_retry(4, 4, now) is None

    def test_naive_now_is_utc(self):
        """Test naive clocks are treated as UTC."""
        from modules.esign.jobs.retry import RetryPolicy

        result = RetryPolicy().next_retry(1, 3, datetime(2024, 1, 1))

        assert result == datetime(2024, 1, 1, 0, 0, 2, tzinfo=timezone.utc)

    def test_resolve_max_attempts(self):
        """Test message override, then policy, then default."""
        from modules.esign.jobs.retry import RetryPolicy

        assert RetryPolicy(max_attempts=5).resolve_max_attempts(2) == 2
        assert RetryPolicy(max_attempts=5).resolve_max_attempts() == 5
        assert RetryPolicy(max_attempts=0).resolve_max_attempts() == 3
