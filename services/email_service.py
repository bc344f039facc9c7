import logging
from typing import Optional

from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail

from core.config import settings

logger = logging.getLogger(__name__)


class EmailService:
    """
    Centralized email utility for Sortify.
    Sends member invitations and billing alerts via SendGrid; when SendGrid is
    not configured the messages are only logged.
    """

    def __init__(self, api_key: Optional[str] = None, sender_email: Optional[str] = None):
        self.sendgrid_api_key = api_key if api_key is not None else settings.SENDGRID_API_KEY
        self.sender_email = sender_email if sender_email is not None else settings.MAIL_FROM

        self.enabled = bool(self.sendgrid_api_key and self.sender_email)
        if not self.enabled:
            logger.warning("📧 Email service not configured. Missing SENDGRID_API_KEY or MAIL_FROM.")
        else:
            logger.info(f"📧 Email service configured and ready. Sender: {self.sender_email}")

    def _send(self, to_email: str, subject: str, html_content: str) -> bool:
        if not self.enabled:
            # Development fallback (no SendGrid setup)
            logger.info(f"📨 [Mock Email] To: {to_email} | Subject: {subject}")
            return True

        try:
            message = Mail(
                from_email=self.sender_email,
                to_emails=to_email,
                subject=subject,
                html_content=html_content,
            )
            sg = SendGridAPIClient(self.sendgrid_api_key)
            response = sg.send(message)
            logger.info(f"✅ Email '{subject}' sent to {to_email}. Status: {response.status_code}")
            return True
        except Exception as e:
            logger.exception("❌ Failed to send email to %s: %s", to_email, e)
            return False

    # ============================================================
    # ✅ Send Invitation Email (synchronous for BackgroundTasks)
    # ============================================================
    def send_invitation_email(
        self,
        to_email: str,
        invitation_link: str,
        role: str,
        org_name: str,
        invited_by: str = "Admin"
    ) -> bool:
        subject = f"You're invited to join {org_name} on Sortify"

        html_content = f"""
        <div style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
            <h2>Hello!</h2>
            <p><strong>{invited_by}</strong> has invited you to join
            <strong>{org_name}</strong> on <b>Sortify</b> as
            <strong>{role.title()}</strong>.</p>

            <p style="text-align: center; margin: 20px 0;">
                <a href="{invitation_link}" style="
                    background-color: #4F46E5;
                    color: white;
                    padding: 12px 28px;
                    text-decoration: none;
                    border-radius: 6px;
                    font-weight: bold;
                    display: inline-block;
                ">Accept Invitation</a>
            </p>

            <p>If the button doesn't work, copy and paste this link into your browser:</p>
            <p style="word-break: break-all; color: #555;">{invitation_link}</p>

            <p><small>This invitation will expire in 7 days.</small></p>
            <hr style="border:none; border-top:1px solid #eee; margin: 24px 0;">
            <p>Best regards,<br><strong>The Sortify Team</strong></p>
        </div>
        """
        return self._send(to_email, subject, html_content)

    # ============================================================
    # ✅ Billing alert: failed invoice payment
    # ============================================================
    def send_payment_failed_email(
        self,
        to_email: str,
        org_name: str,
        amount_due_cents: Optional[int] = None,
        invoice_url: Optional[str] = None,
    ) -> bool:
        subject = f"Payment failed for {org_name} on Sortify"
        amount = f"${amount_due_cents / 100:.2f}" if amount_due_cents is not None else "your latest invoice"
        link = (
            f'<p><a href="{invoice_url}">View and pay the invoice</a></p>' if invoice_url else ""
        )

        html_content = f"""
        <div style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
            <p>We couldn't collect payment of <strong>{amount}</strong> for
            <strong>{org_name}</strong>.</p>
            <p>Please update your payment method to keep your subscription active.</p>
            {link}
            <p>Best regards,<br><strong>The Sortify Team</strong></p>
        </div>
        """
        return self._send(to_email, subject, html_content)


# ============================================================
# ✅ Global instance for app-wide import
# ============================================================
email_service = EmailService()
