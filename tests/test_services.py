"""
Tests for the summarization and email dispatch pipelines and the email transports.
"""

import smtplib
from unittest.mock import Mock, patch

import pytest

from app.clients.email_client import BrevoEmailTransport, SmtpEmailTransport, build_email_transport
from app.clients.llm_client import build_completion_client, normalize_provider_error
from app.core.config import Settings
from app.core.exceptions import (
    AllRecipientsFailedException,
    ConfigurationException,
    LLMServiceException,
    NotificationServiceException,
    RateLimitException,
    UpstreamAuthException,
    UpstreamQuotaException,
    UpstreamTimeoutException,
    ValidationException,
)
from app.services.email_service import format_timestamp, render_summary_email
from app.services.summarization_service import DEFAULT_INSTRUCTION, SUMMARY_SECTIONS, build_summary_prompt
from tests.fakes import ALICE_BOB_TRANSCRIPT, FakeCompletionClient, FakeEmailTransport

TRANSCRIPT = "Team sync: we agreed to move the launch to next Tuesday."


class TestSummarizationService:
    """Test the summarization pipeline."""

    @pytest.mark.asyncio
    async def test_summarize_success(self, container, completion_client):
        outcome = await container.summarization_service.summarize(TRANSCRIPT, None, client_key="1.1.1.1")

        assert outcome.summary == completion_client.reply
        assert outcome.cached is False
        assert outcome.remaining == 9
        assert completion_client.calls == 1

    @pytest.mark.asyncio
    async def test_prompt_contains_transcript_default_instruction_and_sections(self, container, completion_client):
        await container.summarization_service.summarize(TRANSCRIPT)

        prompt = completion_client.prompts[0]
        assert TRANSCRIPT in prompt
        assert DEFAULT_INSTRUCTION in prompt
        for section in SUMMARY_SECTIONS:
            assert f"- {section}" in prompt

    @pytest.mark.asyncio
    async def test_prompt_uses_sanitized_instruction(self, container, completion_client):
        await container.summarization_service.summarize(TRANSCRIPT, "  Focus on <b>risks</b>  ")

        assert "User Instruction: Focus on brisks/b" in completion_client.prompts[0]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("transcript", ["", "short", "x" * 10, "  " + "y" * 10 + "  ", "z" * 50001])
    async def test_invalid_transcript_never_calls_upstream(self, container, completion_client, transcript):
        with pytest.raises(ValidationException) as exc_info:
            await container.summarization_service.summarize(transcript)

        assert exc_info.value.details["field"] == "transcript"
        assert completion_client.calls == 0

    @pytest.mark.asyncio
    async def test_instruction_too_long(self, container, completion_client):
        with pytest.raises(ValidationException) as exc_info:
            await container.summarization_service.summarize(TRANSCRIPT, "x" * 501)

        assert exc_info.value.details["field"] == "instruction"
        assert completion_client.calls == 0

    @pytest.mark.asyncio
    async def test_identical_request_is_cached(self, container, completion_client):
        service = container.summarization_service
        first = await service.summarize(TRANSCRIPT, "Be brief")
        second = await service.summarize(TRANSCRIPT, "Be brief")

        assert second.summary == first.summary
        assert second.cached is True
        assert completion_client.calls == 1

    @pytest.mark.asyncio
    async def test_different_instruction_is_not_cached(self, container, completion_client):
        service = container.summarization_service
        await service.summarize(TRANSCRIPT, "Be brief")
        outcome = await service.summarize(TRANSCRIPT, "Be thorough")

        assert outcome.cached is False
        assert completion_client.calls == 2

    @pytest.mark.asyncio
    async def test_cache_expires_after_ttl(self, container, completion_client, clock):
        service = container.summarization_service
        await service.summarize(TRANSCRIPT)
        clock.advance(300)
        outcome = await service.summarize(TRANSCRIPT)

        assert outcome.cached is False
        assert completion_client.calls == 2

    @pytest.mark.asyncio
    async def test_rate_limit_checked_before_validation(self, container, completion_client):
        service = container.summarization_service
        for _ in range(10):
            with pytest.raises(ValidationException):
                await service.summarize("short", client_key="9.9.9.9")

        with pytest.raises(RateLimitException) as exc_info:
            await service.summarize(TRANSCRIPT, client_key="9.9.9.9")

        assert exc_info.value.retry_after_ms == 120000
        assert completion_client.calls == 0

    @pytest.mark.asyncio
    async def test_missing_provider_raises_configuration_error(self, container):
        container.summarization_service.completion_client = None

        with pytest.raises(ConfigurationException):
            await container.summarization_service.summarize(TRANSCRIPT)

    @pytest.mark.asyncio
    async def test_timeout_cancels_upstream_call(self, container):
        slow_client = FakeCompletionClient(delay=5)
        container.summarization_service.completion_client = slow_client

        with pytest.raises(UpstreamTimeoutException):
            await container.summarization_service.summarize(TRANSCRIPT)

        assert slow_client.cancelled is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error, expected", [
        (Exception("API key not valid. Please pass a valid API key."), UpstreamAuthException),
        (Exception("429 Resource has been exhausted (e.g. check quota)."), UpstreamQuotaException),
        (RuntimeError("connection reset by peer"), LLMServiceException),
    ])
    async def test_provider_errors_are_normalized(self, container, error, expected):
        container.summarization_service.completion_client = FakeCompletionClient(error=error)

        with pytest.raises(expected):
            await container.summarization_service.summarize(TRANSCRIPT)

    @pytest.mark.asyncio
    async def test_empty_summary_is_an_error(self, container):
        container.summarization_service.completion_client = FakeCompletionClient(reply="")

        with pytest.raises(LLMServiceException):
            await container.summarization_service.summarize(TRANSCRIPT)

        assert len(container.summary_cache) == 0

    @pytest.mark.asyncio
    async def test_failed_call_is_not_cached(self, container):
        service = container.summarization_service
        service.completion_client = FakeCompletionClient(error=RuntimeError("boom"))
        with pytest.raises(LLMServiceException):
            await service.summarize(TRANSCRIPT)

        recovered = FakeCompletionClient()
        service.completion_client = recovered
        outcome = await service.summarize(TRANSCRIPT)
        assert outcome.cached is False
        assert recovered.calls == 1

    @pytest.mark.asyncio
    async def test_meeting_example_has_structured_sections(self, container, completion_client):
        outcome = await container.summarization_service.summarize(ALICE_BOB_TRANSCRIPT)

        assert ALICE_BOB_TRANSCRIPT in completion_client.prompts[0]
        assert "Action Items" in outcome.summary
        assert "migration guide" in outcome.summary
        assert "Friday" in outcome.summary


class TestEmailService:
    """Test the email dispatch pipeline."""

    @pytest.mark.asyncio
    async def test_dispatch_success(self, container, email_transport):
        result = await container.email_service.dispatch(
            ["a@example.com", "b@example.com"],
            "## Summary\n\n- item",
            instruction="Action items only",
            timestamp="2024-05-01T10:30:00Z",
            client_key="2.2.2.2"
        )

        assert sorted(result.successful) == ["a@example.com", "b@example.com"]
        assert result.successful_count == 2
        assert result.failed == []
        assert result.rejected == []
        assert result.remaining == 4
        assert sorted(email_transport.recipients) == ["a@example.com", "b@example.com"]

        message = email_transport.sent[0]
        assert message["subject"] == "Meeting Summary - Generated with LuminaMinutes"
        assert "<li>item</li>" in message["html"]
        assert "Action items only" in message["html"]
        assert "May 01, 2024" in message["html"]

    @pytest.mark.asyncio
    async def test_partial_failure(self, container):
        transport = FakeEmailTransport(failures={
            "broken@example.com": NotificationServiceException("Mailbox unavailable", channel="fake")
        })
        container.email_service.transport = transport

        result = await container.email_service.dispatch(
            ["ok@example.com", "not-an-email", "broken@example.com"],
            "Summary body"
        )

        assert result.successful == ["ok@example.com"]
        assert result.rejected == ["not-an-email"]
        assert result.failed == [{"email": "broken@example.com", "error": "Mailbox unavailable"}]
        assert transport.recipients == ["ok@example.com"]

    @pytest.mark.asyncio
    async def test_all_recipients_failed(self, container):
        container.email_service.transport = FakeEmailTransport(failures={
            "a@example.com": RuntimeError("connection refused"),
            "b@example.com": RuntimeError("connection refused"),
        })

        with pytest.raises(AllRecipientsFailedException) as exc_info:
            await container.email_service.dispatch(["a@example.com", "b@example.com"], "Summary body")

        failed = exc_info.value.details["failed"]
        assert {f["email"] for f in failed} == {"a@example.com", "b@example.com"}
        assert all(f["error"] == "Failed to send email" for f in failed)
        assert exc_info.value.details["auth_failure"] is False

    @pytest.mark.asyncio
    async def test_all_auth_failures_still_report_all_recipients_failed(self, container):
        auth_error = UpstreamAuthException("bad credentials", provider="fake")
        container.email_service.transport = FakeEmailTransport(failures={
            "a@example.com": auth_error,
            "b@example.com": auth_error,
        })

        with pytest.raises(AllRecipientsFailedException) as exc_info:
            await container.email_service.dispatch(["a@example.com", "b@example.com"], "Summary body")

        assert exc_info.value.details["auth_failure"] is True
        assert len(exc_info.value.details["failed"]) == 2

    @pytest.mark.asyncio
    async def test_precomputed_rate_decision_is_not_consumed_again(self, container, email_transport):
        rate = container.rate_limiters.enforce("email", "10.0.0.9")

        result = await container.email_service.dispatch(
            ["a@example.com"], "Summary body", client_key="10.0.0.9", rate=rate
        )

        assert result.remaining == 4
        assert container.rate_limiters.consume("email", "10.0.0.9").remaining == 3

    @pytest.mark.asyncio
    async def test_too_many_recipients_never_sends(self, container, email_transport):
        recipients = [f"user{i}@example.com" for i in range(11)]

        with pytest.raises(ValidationException) as exc_info:
            await container.email_service.dispatch(recipients, "Summary body")

        assert exc_info.value.details["field"] == "recipients"
        assert email_transport.sent == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("recipients, summary, field", [
        ([], "Summary body", "recipients"),
        (["a@example.com"], "", "summary"),
        (["a@example.com"], "   ", "summary"),
        (["nope", "also nope"], "Summary body", "recipients"),
    ])
    async def test_invalid_input(self, container, email_transport, recipients, summary, field):
        with pytest.raises(ValidationException) as exc_info:
            await container.email_service.dispatch(recipients, summary)

        assert exc_info.value.details["field"] == field
        assert email_transport.sent == []

    @pytest.mark.asyncio
    async def test_missing_transport_raises_configuration_error(self, container):
        container.email_service.transport = None

        with pytest.raises(ConfigurationException):
            await container.email_service.dispatch(["a@example.com"], "Summary body")

    @pytest.mark.asyncio
    async def test_email_rate_limit(self, container):
        service = container.email_service
        for _ in range(5):
            await service.dispatch(["a@example.com"], "Summary body", client_key="3.3.3.3")

        with pytest.raises(RateLimitException) as exc_info:
            await service.dispatch(["a@example.com"], "Summary body", client_key="3.3.3.3")

        assert exc_info.value.retry_after_ms == 300000

    @pytest.mark.asyncio
    async def test_send_test_email_goes_to_sender(self, container, email_transport):
        recipient = await container.email_service.send_test_email()

        assert recipient == "sender@example.com"
        assert email_transport.sent[0]["subject"] == "Test Email - LuminaMinutes"
        assert "<strong>Features:</strong>" in email_transport.sent[0]["html"]


class TestEmailRendering:
    """Test HTML rendering of the summary email."""

    def test_markdown_is_converted(self):
        body = render_summary_email("**Decisions**\n\n- Ship Friday", "", "2024-05-01T10:30:00Z")

        assert "<strong>Decisions</strong>" in body
        assert "<li>Ship Friday</li>" in body
        assert 'class="instruction"' not in body

    def test_default_instruction_label_is_hidden(self):
        body = render_summary_email("text", "Default summary", "2024-05-01T10:30:00Z")
        assert "Custom Instruction" not in body

    def test_instruction_callout(self):
        body = render_summary_email("text", "Highlight risks & owners", "2024-05-01T10:30:00Z")
        assert "Custom Instruction:</strong> Highlight risks &amp; owners" in body

    def test_format_timestamp(self):
        assert format_timestamp("2024-05-01T10:30:00Z") == "May 01, 2024 at 10:30 AM UTC"
        assert format_timestamp("yesterday") == "yesterday"


def test_normalize_passes_through_application_errors():
    error = ValidationException("bad", field="x")
    assert normalize_provider_error(error, "gemini") is error


def test_build_summary_prompt_with_instruction():
    prompt = build_summary_prompt("transcript text", "Only decisions")
    assert "User Instruction: Only decisions" in prompt
    assert DEFAULT_INSTRUCTION not in prompt


class TestEmailTransports:
    """Test the SMTP and Brevo transports with their network calls patched."""

    def test_smtp_send_uses_starttls_and_login(self):
        transport = SmtpEmailTransport("smtp.example.com", 587, "sender@example.com", "app-password")

        with patch("app.clients.email_client.smtplib.SMTP") as smtp:
            transport.send("a@example.com", "Subject", "<p>hi</p>", "hi")

        server = smtp.return_value.__enter__.return_value
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("sender@example.com", "app-password")
        message = server.send_message.call_args[0][0]
        assert message["To"] == "a@example.com"

    def test_smtp_auth_failure(self):
        transport = SmtpEmailTransport("smtp.example.com", 587, "sender@example.com", "wrong")

        with patch("app.clients.email_client.smtplib.SMTP") as smtp:
            server = smtp.return_value.__enter__.return_value
            server.login.side_effect = smtplib.SMTPAuthenticationError(535, b"Bad credentials")
            with pytest.raises(UpstreamAuthException):
                transport.send("a@example.com", "Subject", "<p>hi</p>", "hi")

    def test_smtp_connection_failure(self):
        transport = SmtpEmailTransport("smtp.example.com", 587, "sender@example.com", "app-password")

        with patch("app.clients.email_client.smtplib.SMTP", side_effect=OSError("connection refused to 10.1.2.3")):
            with pytest.raises(NotificationServiceException) as exc_info:
                transport.send("a@example.com", "Subject", "<p>hi</p>", "hi")

        assert exc_info.value.message == "SMTP delivery failed"
        assert "10.1.2.3" not in exc_info.value.message
        assert exc_info.value.details["error_type"] == "OSError"

    @pytest.mark.parametrize("status_code, expected", [
        (401, UpstreamAuthException),
        (500, NotificationServiceException),
    ])
    def test_brevo_error_statuses(self, status_code, expected):
        transport = BrevoEmailTransport("key", "sender@example.com")

        with patch("app.clients.email_client.requests.post") as post:
            post.return_value = Mock(status_code=status_code)
            with pytest.raises(expected):
                transport.send("a@example.com", "Subject", "<p>hi</p>", "hi")

    def test_brevo_success(self):
        transport = BrevoEmailTransport("key", "sender@example.com")

        with patch("app.clients.email_client.requests.post") as post:
            post.return_value = Mock(status_code=201)
            transport.send("a@example.com", "Subject", "<p>hi</p>", "hi")

        payload = post.call_args.kwargs["json"]
        assert payload["to"] == [{"email": "a@example.com"}]
        assert payload["sender"]["email"] == "sender@example.com"


def test_builders_return_none_without_credentials():
    settings = Settings(
        _env_file=None,
        gemini_api_key=None,
        openai_api_key=None,
        email_user=None,
        email_app_password=None,
        brevo_api_key=None
    )
    assert build_completion_client(settings) is None
    assert build_email_transport(settings) is None


def test_build_email_transport_selects_provider():
    smtp_settings = Settings(_env_file=None, email_user="sender@example.com", email_app_password="pw")
    brevo_settings = Settings(
        _env_file=None,
        email_provider="brevo",
        email_user="sender@example.com",
        brevo_api_key="key"
    )
    assert isinstance(build_email_transport(smtp_settings), SmtpEmailTransport)
    assert isinstance(build_email_transport(brevo_settings), BrevoEmailTransport)
