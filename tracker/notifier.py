"""
Email notifications over SMTP.
"""

import ssl
import smtplib
import logging
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import Callable, Optional

from tracker.metrics import NOTIFICATIONS

logger = logging.getLogger(__name__)


class EmailNotifier:
    """
    Sends plain-text mail to the operator.

    ``send`` never raises. Delivery failures are logged here and passed to
    ``on_error`` (the storage error log), and reported through the return
    value, which the tracking cycle is free to ignore.
    """

    def __init__(self, smtp_server: str, smtp_port: int,
                 sender_email: Optional[str], sender_password: Optional[str],
                 receiver_email: Optional[str],
                 on_error: Optional[Callable[[str], None]] = None,
                 smtp_factory=smtplib.SMTP_SSL):
        self.smtp_server = smtp_server
        self.smtp_port = smtp_port
        self.sender_email = sender_email
        self.sender_password = sender_password
        self.receiver_email = receiver_email
        self.on_error = on_error
        self.smtp_factory = smtp_factory

    @classmethod
    def from_config(cls, config, on_error=None) -> "EmailNotifier":
        return cls(
            config.smtp_server,
            config.smtp_port,
            config.sender_email,
            config.sender_password,
            config.receiver_email,
            on_error=on_error,
        )

    @property
    def configured(self) -> bool:
        return bool(self.sender_email and self.receiver_email)

    def build_message(self, subject: str, body: str) -> MIMEMultipart:
        message = MIMEMultipart("alternative")
        message["Subject"] = subject
        message["From"] = self.sender_email
        message["To"] = self.receiver_email
        message.attach(MIMEText(body, "plain"))
        return message

    def send(self, subject: str, body: str) -> bool:
        if not self.configured:
            logger.warning(f"Email not configured. Skipping notification: {subject}")
            NOTIFICATIONS.labels(status="skipped").inc()
            return False

        message = self.build_message(subject, body)
        context = ssl.create_default_context()
        try:
            with self.smtp_factory(self.smtp_server, self.smtp_port, context=context) as server:
                if self.sender_password:
                    server.login(self.sender_email, self.sender_password)
                server.sendmail(self.sender_email, self.receiver_email, message.as_string())
        except (smtplib.SMTPException, OSError) as e:
            NOTIFICATIONS.labels(status="failed").inc()
            logger.error(f"Failed to send email '{subject}': {e}")
            if self.on_error is not None:
                self.on_error(str(e))
            return False

        NOTIFICATIONS.labels(status="sent").inc()
        logger.info(f"Sent email: {subject}")
        return True
