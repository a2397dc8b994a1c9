import asyncio
import html
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import markdown

from app.clients.email_client import EmailTransport
from app.core.exceptions import (
    AllRecipientsFailedException,
    ConfigurationException,
    LuminaException,
    UpstreamAuthException,
    ValidationException,
)
from app.core.logger import logger
from app.core.rate_limiter import RateLimiterRegistry, RateLimitResult
from app.core.security import is_valid_email, sanitize_text

MAX_RECIPIENTS = 10
EMAIL_LIMIT_MESSAGE = "Email rate limit exceeded. Please try again later."
SEND_FAILED_MESSAGE = "Failed to send email"
SUMMARY_SUBJECT = "Meeting Summary - Generated with LuminaMinutes"
SAMPLE_SUBJECT = "Test Email - LuminaMinutes"
DEFAULT_INSTRUCTION_LABEL = "Default summary"
MARKDOWN_EXTENSIONS = ["extra", "sane_lists"]

SAMPLE_MARKDOWN = """**Test Email - LuminaMinutes**

This is a test email to verify the email configuration and Markdown rendering.

**Features:**

* Markdown to HTML conversion
* Proper formatting
* Bold text support
* Bullet points

**Status:** Working correctly!"""

EMAIL_TEMPLATE = """<!DOCTYPE html>
<html>
  <head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>Meeting Summary - LuminaMinutes</title>
    <style>
      body {{ font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px; }}
      .header {{ background: linear-gradient(135deg, #667eea 0%, #764ba2 100%); color: white; padding: 30px; text-align: center; border-radius: 10px 10px 0 0; }}
      .content {{ background: #f8f9fa; padding: 30px; border-radius: 0 0 10px 10px; }}
      .summary {{ background: white; padding: 20px; border-radius: 8px; margin: 20px 0; border-left: 4px solid #667eea; }}
      .summary h1, .summary h2, .summary h3 {{ font-weight: bold; color: #2c3e50; }}
      .summary p {{ margin: 8px 0; line-height: 1.5; }}
      .summary ul {{ margin: 8px 0; padding-left: 20px; }}
      .summary li {{ margin: 4px 0; line-height: 1.4; }}
      .footer {{ text-align: center; margin-top: 30px; padding-top: 20px; border-top: 1px solid #dee2e6; color: #6c757d; font-size: 14px; }}
      .instruction {{ background: #e3f2fd; padding: 15px; border-radius: 6px; margin: 15px 0; border-left: 4px solid #2196f3; }}
      .timestamp {{ color: #6c757d; font-size: 14px; margin-bottom: 20px; }}
    </style>
  </head>
  <body>
    <div class="header">
      <h1 style="margin: 0; font-size: 28px;">Meeting Summary</h1>
      <p style="margin: 10px 0 0 0; opacity: 0.9;">Generated with LuminaMinutes AI</p>
    </div>
    <div class="content">
      {instruction_block}
      <div class="timestamp">
        <strong>Generated:</strong> {timestamp}
      </div>
      <div class="summary">
        <h2 style="margin-top: 0; color: #2c3e50;">Summary</h2>
        <div style="line-height: 1.6;">{summary_html}</div>
      </div>
      <div class="footer">
        <p>This summary was generated using LuminaMinutes, an AI-powered meeting notes summarizer.</p>
      </div>
    </div>
  </body>
</html>
"""

INSTRUCTION_TEMPLATE = """<div class="instruction">
        <strong>Custom Instruction:</strong> {instruction}
      </div>"""


@dataclass
class RecipientResult:
    email: str
    success: bool
    error: Optional[str] = None
    auth_failure: bool = False


@dataclass
class DispatchResult:
    successful: List[str] = field(default_factory=list)
    failed: List[Dict[str, Any]] = field(default_factory=list)
    rejected: List[str] = field(default_factory=list)
    remaining: int = 0

    @property
    def successful_count(self) -> int:
        return len(self.successful)


def format_timestamp(value: str) -> str:
    """Human-readable form of an ISO 8601 timestamp; unparseable input is returned as is."""
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return value
    return parsed.strftime("%B %d, %Y at %I:%M %p %Z").strip()


def render_summary_email(summary: str, instruction: str, timestamp: str) -> str:
    instruction_block = ""
    if instruction and instruction != DEFAULT_INSTRUCTION_LABEL:
        instruction_block = INSTRUCTION_TEMPLATE.format(instruction=html.escape(instruction, quote=False))

    return EMAIL_TEMPLATE.format(
        instruction_block=instruction_block,
        timestamp=html.escape(format_timestamp(timestamp), quote=False),
        summary_html=markdown.markdown(summary, extensions=MARKDOWN_EXTENSIONS),
    )


class EmailService:
    """Sends a rendered summary to each recipient through the email transport."""

    def __init__(
        self,
        transport: Optional[EmailTransport],
        rate_limiters: RateLimiterRegistry,
        max_recipients: int = MAX_RECIPIENTS
    ):
        self.transport = transport
        self.rate_limiters = rate_limiters
        self.max_recipients = max_recipients

    def _require_transport(self) -> EmailTransport:
        if self.transport is None:
            raise ConfigurationException(
                "Email credentials not configured",
                setting="email_app_password"
            )
        return self.transport

    async def dispatch(
        self,
        recipients: List[str],
        summary: str,
        instruction: Optional[str] = None,
        timestamp: Optional[str] = None,
        client_key: str = "unknown",
        rate: Optional[RateLimitResult] = None
    ) -> DispatchResult:
        """
        Email a summary to every valid recipient, one message each.

        Args:
            recipients: Recipient addresses as submitted
            summary: Summary text in Markdown
            instruction: Optional instruction shown as a callout
            timestamp: ISO 8601 generation time, defaults to now
            client_key: Rate-limit key for the caller
            rate: Decision already taken for this request, if the caller
                applied the email policy itself

        Returns:
            DispatchResult listing successful, failed and rejected addresses

        Raises:
            RateLimitException: If the email policy denies the caller
            ValidationException: If recipients or summary are invalid
            ConfigurationException: If email credentials are missing
            AllRecipientsFailedException: If no message could be sent
        """
        if rate is None:
            rate = self.rate_limiters.enforce("email", client_key, message=EMAIL_LIMIT_MESSAGE)

        if not isinstance(recipients, list) or not recipients:
            raise ValidationException(
                "Recipients are required and must be an array",
                field="recipients"
            )
        if not isinstance(summary, str) or not summary.strip():
            raise ValidationException(
                "Summary is required and must be a string",
                field="summary"
            )
        if len(recipients) > self.max_recipients:
            raise ValidationException(
                f"Maximum {self.max_recipients} recipients allowed per request",
                field="recipients",
                details={"max_recipients": self.max_recipients}
            )

        transport = self._require_transport()

        valid_recipients = []
        rejected = []
        for address in recipients:
            candidate = address.strip() if isinstance(address, str) else address
            if is_valid_email(candidate):
                valid_recipients.append(sanitize_text(candidate))
            else:
                rejected.append(str(candidate))

        if not valid_recipients:
            raise ValidationException(
                "No valid email addresses provided",
                field="recipients",
                details={"rejected": rejected}
            )

        sanitized_summary = sanitize_text(summary)
        sanitized_instruction = sanitize_text(instruction) if instruction else ""
        sanitized_timestamp = (
            sanitize_text(timestamp) if timestamp
            else datetime.now(timezone.utc).isoformat()
        )

        email_html = render_summary_email(sanitized_summary, sanitized_instruction, sanitized_timestamp)

        results = await asyncio.gather(*[
            self._send_one(transport, email, SUMMARY_SUBJECT, email_html, sanitized_summary)
            for email in valid_recipients
        ])

        successful = [r.email for r in results if r.success]
        failures = [r for r in results if not r.success]
        failed = [{"email": r.email, "error": r.error} for r in failures]

        logger.info(
            f"Email sending results: {len(successful)} sent, {len(failed)} failed, {len(rejected)} rejected",
            extra={"client_ip": client_key, "provider": transport.channel}
        )

        if not successful:
            raise AllRecipientsFailedException(
                failed=failed,
                details={
                    "rejected": rejected,
                    "auth_failure": all(r.auth_failure for r in failures)
                }
            )

        return DispatchResult(
            successful=successful,
            failed=failed,
            rejected=rejected,
            remaining=rate.remaining
        )

    async def send_test_email(self, client_key: str = "unknown") -> str:
        """
        Send a fixed Markdown sample to the configured sender address.

        Returns:
            The address the sample was sent to
        """
        self.rate_limiters.enforce("email", client_key, message=EMAIL_LIMIT_MESSAGE)
        transport = self._require_transport()
        recipient = transport.sender_email

        body = markdown.markdown(SAMPLE_MARKDOWN, extensions=MARKDOWN_EXTENSIONS)
        result = await self._send_one(transport, recipient, SAMPLE_SUBJECT, body, SAMPLE_MARKDOWN)
        if not result.success:
            raise AllRecipientsFailedException(
                failed=[{"email": result.email, "error": result.error}],
                message="Failed to send test email",
                details={"auth_failure": result.auth_failure}
            )
        return recipient

    async def _send_one(
        self,
        transport: EmailTransport,
        email: str,
        subject: str,
        html_content: str,
        text_content: str
    ) -> RecipientResult:
        loop = asyncio.get_event_loop()
        try:
            await loop.run_in_executor(
                None, lambda: transport.send(email, subject, html_content, text_content)
            )
        except Exception as e:
            logger.error(
                f"Failed to send email to {email}",
                extra={"recipient": email, "provider": transport.channel, "error": str(e)}
            )
            message = e.message if isinstance(e, LuminaException) else SEND_FAILED_MESSAGE
            return RecipientResult(
                email=email,
                success=False,
                error=message,
                auth_failure=isinstance(e, UpstreamAuthException)
            )

        logger.info(
            "Email sent",
            extra={"recipient": email, "provider": transport.channel}
        )
        return RecipientResult(email=email, success=True)
