"""
Email Service

SMTP transport for availability alerts.
"""

import smtplib
import logging
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart

from monitoring.errors import NotifyError
from monitoring.notifier import Notifier, ConsoleNotifier

logger = logging.getLogger(__name__)


class EmailNotifier(Notifier):
    """
    Sends plain-text email over SMTP with STARTTLS.

    Args:
        smtp_server (str): SMTP host
        smtp_port (int): SMTP port
        sender_email (str): From address and login
        sender_password (str): SMTP password
    """

    def __init__(self, smtp_server, smtp_port, sender_email, sender_password, smtp_factory=smtplib.SMTP):
        self.smtp_server = smtp_server
        self.smtp_port = smtp_port
        self.sender_email = sender_email
        self.sender_password = sender_password
        self._smtp_factory = smtp_factory

    def send(self, recipient, subject, body):
        message = MIMEMultipart()
        message["From"] = self.sender_email
        message["To"] = recipient
        message["Subject"] = subject
        message.attach(MIMEText(body, "plain"))

        try:
            with self._smtp_factory(self.smtp_server, self.smtp_port) as server:
                server.starttls()
                server.login(self.sender_email, self.sender_password)
                server.send_message(message)
        except smtplib.SMTPException as e:
            logger.error(f"SMTP error sending email to {recipient}: {e}")
            raise NotifyError(f"SMTP error: {e}", recipient=recipient) from e
        except OSError as e:
            logger.error(f"Error sending email to {recipient}: {e}")
            raise NotifyError(f"Connection error: {e}", recipient=recipient) from e

        logger.info(f"Email notification sent to {recipient}")


def build_notifier(settings):
    """
    Pick the notifier for the configured environment.

    Returns:
        Notifier: EmailNotifier when SMTP credentials are set, else ConsoleNotifier
    """
    if not settings.sender_email or not settings.sender_password:
        logger.warning("Email credentials not configured; notifications will be logged only")
        return ConsoleNotifier()
    return EmailNotifier(
        settings.smtp_server,
        settings.smtp_port,
        settings.sender_email,
        settings.sender_password,
    )
