"""
E-Sign Email Templates.

Subject and bodies per template code. Every body carries the action link and
the correlation id; all interpolated values are HTML-escaped in the HTML part.
"""

import html
from dataclasses import dataclass

from modules.esign.models.records import AgreementRecord, Notification, RecipientRecord

TEMPLATE_SIGNING_INVITATION = "esign.sign_request_invitation"
TEMPLATE_SIGNING_REMINDER = "esign.sign_request_reminder"
TEMPLATE_COMPLETED_DELIVERY = "esign.completed_delivery"


def resolve_template_code(template_code: str, notification: str) -> str:
    template_code = template_code.strip()
    if template_code:
        return template_code
    notification = notification.strip()
    if notification == Notification.SIGNING_REMINDER.value:
        return TEMPLATE_SIGNING_REMINDER
    if notification == Notification.COMPLETION_PACKAGE.value:
        return TEMPLATE_COMPLETED_DELIVERY
    return TEMPLATE_SIGNING_INVITATION


def resolve_notification(notification: str, template_code: str) -> str:
    notification = notification.strip()
    if notification:
        return notification
    template_code = template_code.strip()
    if template_code == TEMPLATE_COMPLETED_DELIVERY:
        return Notification.COMPLETION_PACKAGE.value
    if template_code == TEMPLATE_SIGNING_REMINDER:
        return Notification.SIGNING_REMINDER.value
    return Notification.SIGNING_INVITATION.value


def is_signing_notification(notification: str) -> bool:
    return notification.strip() in (
        Notification.SIGNING_INVITATION.value,
        Notification.SIGNING_REMINDER.value,
    )


@dataclass(frozen=True)
class RenderedEmail:
    subject: str
    text: str
    html: str


class EmailTemplates:
    """Renders the three E-Sign notifications."""

    @staticmethod
    def render(
        template_code: str,
        agreement: AgreementRecord,
        recipient: RecipientRecord,
        correlation_id: str,
        sign_url: str = "",
        completion_url: str = "",
    ) -> RenderedEmail:
        title = agreement.title.strip() or agreement.id
        name = recipient.name.strip() or recipient.email.strip()
        template_code = template_code.strip()

        if template_code == TEMPLATE_COMPLETED_DELIVERY:
            subject = f"Agreement Completed: {title}"
            intro = "An agreement has been completed. Your completion package is ready."
            link_label, link_text, url = "Completion Package Link", "Open Completion Package", completion_url
        elif template_code == TEMPLATE_SIGNING_REMINDER:
            subject = f"Reminder: Signature Requested: {title}"
            intro = "This is a reminder that an agreement is waiting for your signature."
            link_label, link_text, url = "Sign Now", "Review and Sign", sign_url
        else:
            subject = f"Signature Requested: {title}"
            intro = "You have a new agreement waiting for your signature."
            link_label, link_text, url = "Sign Now", "Review and Sign", sign_url

        url = url.strip()
        correlation_id = correlation_id.strip()

        text_lines = [f"Hello {name},", "", intro, f"Agreement: {title}"]
        if url:
            text_lines.append(f"{link_label}: {url}")
        if correlation_id:
            text_lines.extend(["", f"Correlation ID: {correlation_id}"])

        html_parts = [
            "<html><body>",
            f"<p>Hello {html.escape(name)},</p>",
            f"<p>{html.escape(intro)}</p>",
            f"<p><strong>Agreement:</strong> {html.escape(title)}</p>",
        ]
        if url:
            html_parts.append(f'<p><a href="{html.escape(url, quote=True)}">{link_text}</a></p>')
        if correlation_id:
            html_parts.append(f"<p><small>Correlation ID: {html.escape(correlation_id)}</small></p>")
        html_parts.append("</body></html>")

        return RenderedEmail(subject=subject, text="\n".join(text_lines), html="".join(html_parts))
