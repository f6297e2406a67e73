"""Operator email alerts for delivery failures."""

import smtplib
from email.message import EmailMessage

from framecast.common.config import settings
from framecast.common.logging import logger


class AdminMailer:
    """Sends plain-text alerts to the configured site operator over SMTP."""

    def __init__(
        self,
        recipient: str | None = None,
        host: str | None = None,
        port: int | None = None,
        sender: str | None = None,
    ) -> None:
        self.recipient = recipient if recipient is not None else settings.admin_email
        self.host = host or settings.smtp_host
        self.port = port or settings.smtp_port
        self.sender = sender or settings.smtp_sender

    def send(self, subject: str, body: str) -> bool:
        """Send one message. Failures are logged, never raised to the caller."""

        if not self.recipient:
            logger.warning("admin_email_skipped reason=no_recipient subject=%s", subject)
            return False
        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = self.sender
        message["To"] = self.recipient
        message.set_content(body)
        try:
            with smtplib.SMTP(self.host, self.port, timeout=10) as smtp:
                smtp.send_message(message)
        except (OSError, smtplib.SMTPException) as exc:
            logger.error("admin_email_failed recipient=%s error=%s", self.recipient, exc)
            return False
        return True
