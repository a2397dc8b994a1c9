import smtplib
import ssl
from email.message import EmailMessage
from email.utils import formataddr
from typing import Optional

import requests

from app.core.config import Settings
from app.core.exceptions import NotificationServiceException, UpstreamAuthException
from app.core.logger import logger

BREVO_API_URL = "https://api.brevo.com/v3/smtp/email"


class EmailTransport:
    """Delivers one message to one recipient, raising on failure."""

    channel = "unknown"
    sender_email: str = ""

    def send(self, to_email: str, subject: str, html_content: str, text_content: str) -> None:
        raise NotImplementedError


class SmtpEmailTransport(EmailTransport):
    channel = "smtp"

    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        sender_name: str = "LuminaMinutes",
        timeout: float = 30.0
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender_email = username
        self.sender_name = sender_name
        self.timeout = timeout

    def send(self, to_email: str, subject: str, html_content: str, text_content: str) -> None:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = formataddr((self.sender_name, self.sender_email))
        msg["To"] = to_email
        msg.set_content(text_content)
        msg.add_alternative(html_content, subtype="html")

        context = ssl.create_default_context()
        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                server.ehlo()
                server.starttls(context=context)
                server.ehlo()
                server.login(self.username, self.password)
                server.send_message(msg)
        except smtplib.SMTPAuthenticationError as e:
            raise UpstreamAuthException(
                "SMTP relay rejected the configured credentials",
                provider=self.channel,
                details={"smtp_code": e.smtp_code}
            )
        except (smtplib.SMTPException, OSError) as e:
            logger.error(
                f"SMTP delivery to {to_email} failed: {e}",
                extra={"recipient": to_email, "provider": self.channel}
            )
            raise NotificationServiceException(
                "SMTP delivery failed",
                channel=self.channel,
                details={"error_type": type(e).__name__}
            )


class BrevoEmailTransport(EmailTransport):
    channel = "brevo"

    def __init__(
        self,
        api_key: str,
        sender_email: str,
        sender_name: str = "LuminaMinutes",
        timeout: float = 30.0
    ):
        self.api_key = api_key
        self.sender_email = sender_email
        self.sender_name = sender_name
        self.timeout = timeout

    def send(self, to_email: str, subject: str, html_content: str, text_content: str) -> None:
        headers = {
            "accept": "application/json",
            "api-key": self.api_key,
            "content-type": "application/json"
        }
        data = {
            "sender": {"name": self.sender_name, "email": self.sender_email},
            "to": [{"email": to_email}],
            "subject": subject,
            "htmlContent": html_content,
            "textContent": text_content
        }

        try:
            response = requests.post(BREVO_API_URL, headers=headers, json=data, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.error(
                f"Email API request for {to_email} failed: {e}",
                extra={"recipient": to_email, "provider": self.channel}
            )
            raise NotificationServiceException(
                "Email API request failed",
                channel=self.channel,
                details={"error_type": type(e).__name__}
            )

        if response.status_code == 201:
            return
        if response.status_code == 401:
            raise UpstreamAuthException(
                "Email API rejected the configured API key",
                provider=self.channel
            )
        raise NotificationServiceException(
            f"Email API returned status {response.status_code}",
            channel=self.channel,
            details={"status_code": response.status_code}
        )


def build_email_transport(settings: Settings) -> Optional[EmailTransport]:
    """Return the configured transport, or None when credentials are missing."""
    if settings.email_provider == "brevo":
        if settings.brevo_api_key and settings.email_user:
            return BrevoEmailTransport(
                settings.brevo_api_key,
                settings.email_user,
                sender_name=settings.email_sender_name,
                timeout=settings.smtp_timeout_seconds
            )
        return None
    if settings.email_user and settings.email_app_password:
        return SmtpEmailTransport(
            settings.smtp_host,
            settings.smtp_port,
            settings.email_user,
            settings.email_app_password,
            sender_name=settings.email_sender_name,
            timeout=settings.smtp_timeout_seconds
        )
    return None
