# backend/inkflow/services/email.py
"""
Email transport for transactional notifications.

Implements the ``send(to, subject, html, text, reply_to)`` contract over
Resend, or over the log when ``EMAIL_PROVIDER=console``. Every transport
failure surfaces as ``NotificationDeliveryError``.
"""

import logging
import re
from typing import Any, Dict, Optional

import resend
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import NotificationDeliveryError, ServiceException
from .base import BaseService, mask_email

logger = logging.getLogger(__name__)


class EmailService(BaseService):
    """Sends email through the configured provider."""

    def __init__(self, db: Session, provider: Optional[str] = None):
        super().__init__(db)
        self.provider = provider or settings.email_provider
        self.from_email = settings.from_email
        self.reply_to = settings.email_reply_to
        if self.provider == "resend":
            if not settings.resend_api_key:
                raise ServiceException("Resend API key not configured")
            resend.api_key = settings.resend_api_key

    @staticmethod
    def _html_to_text(html_content: str) -> str:
        """Convert HTML content to plain text for better deliverability"""
        text = re.sub(r"<[^>]+>", "", html_content)
        text = re.sub(r"\s+", " ", text)
        return text.strip()

    @BaseService.measure_operation("send_email")
    def send(
        self,
        to: str,
        subject: str,
        html: str,
        text: Optional[str] = None,
        reply_to: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Send one email.

        Raises:
            NotificationDeliveryError: If the provider rejects or cannot be reached
        """
        text_content = text or self._html_to_text(html)
        reply = reply_to or self.reply_to

        if self.provider == "console":
            self.logger.info(
                "Console email",
                extra={"to": mask_email(to), "subject": subject, "chars": len(text_content)},
            )
            return {"id": "console"}

        email_data: Dict[str, Any] = {
            "from": self.from_email,
            "to": to,
            "subject": subject,
            "html": html,
            "text": text_content,
        }
        if reply:
            email_data["reply_to"] = reply
        try:
            response = resend.Emails.send(email_data)
        except Exception as e:
            error_msg = str(e) or type(e).__name__
            self.logger.error(f"Failed to send email to {mask_email(to)}: {error_msg}")
            raise NotificationDeliveryError(error_msg) from e

        self.log_operation("email_sent", to_email=mask_email(to), subject=subject)
        return dict(response) if response else {}
