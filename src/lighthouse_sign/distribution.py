"""Signing links and outbound signing emails.

Links carry the signer token in the URL fragment
(``https://<host>/sign.html#<token>``) so browsers never send it to the
server; the signing page reads it client-side.

Emails are not sent from here. They are written to the outbound mail
queue and delivered by an external mailer. Queueing never touches the
Agreement, so a failed write can be retried on its own.
"""

import logging
from datetime import datetime
from html import escape
from typing import Optional

from .errors import MailQueueError, NoEmailError, NoSigningLinkError, PersistenceError
from .models import Agreement, MailContent, MailMessage, Signer, SigningLink
from .store import AgreementStore

logger = logging.getLogger("lighthouse_sign.distribution")

DEFAULT_SIGNING_BASE_URL = "https://app.glrecoveryservices.com/sign.html"

_HEADER = (
    '<div style="font-family: -apple-system, BlinkMacSystemFont, \'Segoe UI\', '
    'Roboto, sans-serif; max-width: 600px; margin: 0 auto; background: #ffffff;">'
    '<div style="background: linear-gradient(135deg, #0077CC 0%, #008B8B 100%); '
    'padding: 32px 24px; text-align: center;">'
    '<h1 style="font-size: 24px; font-weight: 700; color: white; margin: 0;">GLRS Lighthouse</h1>'
    '<p style="color: rgba(255,255,255,0.9); font-size: 14px; margin: 8px 0 0 0;">{tagline}</p>'
    "</div>"
)

_BUTTON = (
    '<div style="text-align: center; margin: 24px 0;">'
    '<a href="{link}" style="display: inline-block; background: #0077CC; color: white; '
    'text-decoration: none; padding: 14px 32px; border-radius: 8px; font-weight: 600;">'
    "{label}</a></div>"
)

_FOOTER = (
    '<div style="background: #F9FAFB; padding: 24px; border-top: 1px solid #E5E7EB;">'
    '<p style="font-size: 12px; color: #9CA3AF; text-align: center; margin: 0;">'
    "This email was sent by {organization}.{extra}</p></div></div>"
)


def link_for(signer: Signer, base_url: str = DEFAULT_SIGNING_BASE_URL) -> str:
    """Signing link for ``signer``.

    Raises:
        NoSigningLinkError: For signers without a token (GLRS).
    """
    if not signer.token:
        raise NoSigningLinkError(signer.name)
    return f"{base_url}#{signer.token}"


def signing_links(
    agreement: Agreement, base_url: str = DEFAULT_SIGNING_BASE_URL
) -> list[SigningLink]:
    """Links for every signer who signs outside the portal, in signing order."""
    return [
        SigningLink(role=s.role, name=s.name, email=s.email, link=link_for(s, base_url))
        for s in agreement.ordered_signers
        if s.token
    ]


def render_invitation_html(
    recipient_name: str,
    document_title: str,
    signing_link: str,
    sender_name: str,
    expiration_date: str,
    organization: str,
) -> str:
    """HTML body asking a signer to review and sign a document."""
    return (
        _HEADER.format(tagline=escape(organization))
        + '<div style="padding: 32px 24px;">'
        + f"<h2>Hello {escape(recipient_name)},</h2>"
        + f"<p>{escape(sender_name)} has sent you a document to review and sign. "
        + "Please review the document carefully before signing.</p>"
        + '<div style="background: #F3F4F6; border-radius: 8px; padding: 16px; margin: 24px 0;">'
        + f"<p><strong>{escape(document_title)}</strong></p>"
        + f"<p>Expires: {escape(expiration_date)}</p></div>"
        + _BUTTON.format(link=escape(signing_link, quote=True), label="Review &amp; Sign Document")
        + "<p><strong>Important:</strong> This link is unique to you and should not be shared. "
        + f"Please complete your signature before {escape(expiration_date)}.</p>"
        + "<p>If you have any questions about this document, please contact GLRS directly.</p>"
        + "</div>"
        + _FOOTER.format(
            organization=escape(organization),
            extra="<br>If you did not expect this document, please contact us immediately.",
        )
    )


def render_reminder_html(
    recipient_name: str,
    document_title: str,
    signing_link: str,
    sender_name: str,
    organization: str,
) -> str:
    """HTML body reminding a signer that their signature is still needed."""
    return (
        _HEADER.format(tagline="Document Signing Reminder")
        + '<div style="padding: 32px 24px;">'
        + f"<h2>Hello {escape(recipient_name)},</h2>"
        + f"<p>This is a friendly reminder that {escape(sender_name)} is waiting for "
        + "your signature on the following document:</p>"
        + '<div style="background: #F3F4F6; border-radius: 8px; padding: 16px; margin: 24px 0;">'
        + f"<p><strong>{escape(document_title)}</strong></p></div>"
        + _BUTTON.format(link=escape(signing_link, quote=True), label="Review &amp; Sign Now")
        + "<p>If you have any questions, please contact GLRS directly.</p>"
        + "</div>"
        + _FOOTER.format(organization=escape(organization), extra="")
    )


def _format_date(value: Optional[datetime]) -> str:
    if value is None:
        return "no expiry"
    return f"{value:%B} {value.day}, {value.year}"


class MailGateway:
    """Queues invitation and reminder emails for signers.

    Args:
        store: Store holding the outbound mail collection.
        base_url: Signing page URL that tokens are appended to.
        sender_name: Name shown as the requester when none is given.
        organization: Organization named in email headers and footers.
    """

    def __init__(
        self,
        store: AgreementStore,
        base_url: str = DEFAULT_SIGNING_BASE_URL,
        sender_name: str = "GLRS",
        organization: str = "Guiding Light Recovery Services",
    ) -> None:
        self.store = store
        self.base_url = base_url
        self.sender_name = sender_name
        self.organization = organization

    def link_for(self, signer: Signer) -> str:
        return link_for(signer, self.base_url)

    def queue_invitation(
        self,
        agreement: Agreement,
        signer: Signer,
        sender_name: Optional[str] = None,
    ) -> MailMessage:
        """Queue the "Action Required" email for a signer whose turn has come.

        Raises:
            NoEmailError: If the signer has no email address.
            MailQueueError: If the queue write fails.
        """
        self._require_email(signer)
        message = MailMessage(
            to=signer.email,
            message=MailContent(
                subject=f'Action Required: Please sign "{agreement.document_title}"',
                html=render_invitation_html(
                    recipient_name=signer.name,
                    document_title=agreement.document_title,
                    signing_link=self.link_for(signer),
                    sender_name=sender_name or self.sender_name,
                    expiration_date=_format_date(agreement.expires_at),
                    organization=self.organization,
                ),
            ),
            agreement_id=agreement.id,
        )
        return self._enqueue(message, signer)

    def queue_reminder(
        self,
        agreement: Agreement,
        signer: Signer,
        sender_name: Optional[str] = None,
    ) -> MailMessage:
        """Queue a reminder email for ``signer``.

        Raises:
            NoEmailError: If the signer has no email address.
            MailQueueError: If the queue write fails.
        """
        self._require_email(signer)
        message = MailMessage(
            to=signer.email,
            message=MailContent(
                subject=f'Reminder: Please sign "{agreement.document_title}"',
                html=render_reminder_html(
                    recipient_name=signer.name,
                    document_title=agreement.document_title,
                    signing_link=self.link_for(signer),
                    sender_name=sender_name or self.sender_name,
                    organization=self.organization,
                ),
            ),
            agreement_id=agreement.id,
        )
        return self._enqueue(message, signer)

    @staticmethod
    def _require_email(signer: Signer) -> None:
        if not signer.email:
            raise NoEmailError(signer.name)

    def _enqueue(self, message: MailMessage, signer: Signer) -> MailMessage:
        try:
            self.store.enqueue_mail(message)
        except PersistenceError as exc:
            logger.error(
                "Could not queue mail for %s on agreement %s: %s",
                signer.role.value,
                (message.agreement_id or "-")[:8],
                exc,
            )
            raise MailQueueError(f"Could not queue email to {signer.name}: {exc}") from exc
        return message
