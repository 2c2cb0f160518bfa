import html
import logging
from typing import Dict, List, Optional, Tuple

import resend

from settings import Settings

logger = logging.getLogger(__name__)


class Mailer:
    """Outbound mail through Resend.

    Starts uninitialized; ``initialize`` moves it to ready when an API key is
    configured. A failed send drops it back so the next call re-initializes.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self.ready = False

    def initialize(self) -> bool:
        api_key = (self.settings.resend_api_key or "").strip()
        if not api_key:
            logger.warning("RESEND_API_KEY is not set, outgoing mail is disabled")
            self.ready = False
            return False
        resend.api_key = api_key
        self.ready = True
        logger.info("Email service configured")
        return True

    def ensure_ready(self) -> bool:
        return self.ready or self.initialize()

    def send(self, to: List[str], subject: str, html_body: str, text_body: Optional[str] = None) -> Tuple[bool, Optional[str]]:
        if not self.ensure_ready():
            return False, "Email service not available"
        payload: Dict[str, object] = {
            "from": self.settings.mail_from,
            "to": to,
            "subject": subject,
            "html": html_body,
        }
        if text_body:
            payload["text"] = text_body
        try:
            response = resend.Emails.send(payload)
        except Exception as exc:
            logger.warning("Sending mail to %s failed: %s", to, exc)
            self.ready = False
            return False, str(exc)
        if not isinstance(response, dict) or not response.get("id"):
            return False, str(response)
        return True, None

    # ----------------------- Messages -----------------------
    def send_password_reset(self, email: str, reset_url: str) -> Tuple[bool, Optional[str]]:
        minutes = int(self.settings.reset_token_ttl.total_seconds() // 60)
        html_body = (
            "<h1>Password reset</h1>"
            f"<p>Use the link below to reset your password. It expires in {minutes} minutes.</p>"
            f'<p><a href="{html.escape(reset_url)}">Reset password</a></p>'
        )
        text_body = f"Reset your password within {minutes} minutes: {reset_url}"
        return self.send([email], "Trybee password reset", html_body, text_body)

    def send_contact(self, name: str, email: str, subject: str, message: str) -> Tuple[bool, Optional[str]]:
        name_html, subject_html = html.escape(name), html.escape(subject)
        message_html = html.escape(message).replace("\n", "<br>")
        admin_html = (
            "<h1>New Contact Form Submission</h1>"
            f"<p><strong>Name:</strong> {name_html}</p>"
            f"<p><strong>Email:</strong> {html.escape(email)}</p>"
            f"<p><strong>Subject:</strong> {subject_html}</p>"
            f"<h2>Message:</h2><p>{message_html}</p>"
        )
        ok, error = self.send([self.settings.admin_email], f"New Contact Form: {subject}", admin_html)
        if not ok:
            return ok, error
        user_html = (
            "<h1>Thank You for Contacting Trybee</h1>"
            f"<p>Hello {name_html},</p>"
            "<p>We have received your message regarding:</p>"
            f"<p><strong>{subject_html}</strong></p>"
            "<p>We will get back to you within 24-48 hours during business days.</p>"
            "<p>Best regards,<br>The Trybee Team</p>"
        )
        return self.send([email], "Thank you for contacting us", user_html)
