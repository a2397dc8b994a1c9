import asyncio
from dataclasses import dataclass
from typing import Optional

from app.clients.llm_client import CompletionClient, normalize_provider_error
from app.core.cache import SummaryCache, make_cache_key
from app.core.exceptions import (
    ConfigurationException,
    LLMServiceException,
    UpstreamTimeoutException,
    ValidationException,
)
from app.core.logger import logger
from app.core.rate_limiter import RateLimiterRegistry, RateLimitResult
from app.core.security import (
    is_valid_instruction_length,
    is_valid_transcript_length,
    sanitize_text,
)

DEFAULT_INSTRUCTION = "Please provide a clear, structured summary of this meeting transcript."
SUMMARIZE_LIMIT_MESSAGE = "Rate limit exceeded. Please try again later."

SUMMARY_SECTIONS = (
    "Key topics discussed",
    "Important decisions made",
    "Action items and next steps",
    "Any deadlines or important dates mentioned",
    "Key insights or conclusions",
)


@dataclass(frozen=True)
class SummaryOutcome:
    summary: str
    cached: bool
    remaining: int


def build_summary_prompt(transcript: str, instruction: str) -> str:
    sections = "\n".join(f"- {section}" for section in SUMMARY_SECTIONS)
    return (
        "You are an AI meeting summarizer. Your task is to create a clear, "
        "structured summary of the following meeting transcript.\n\n"
        f"Transcript:\n{transcript}\n\n"
        f"User Instruction: {instruction or DEFAULT_INSTRUCTION}\n\n"
        "Please generate a comprehensive summary that includes:\n"
        f"{sections}\n\n"
        "Format the summary in a clear, professional manner that would be useful "
        "for team members who couldn't attend the meeting."
    )


class SummarizationService:
    """
    Turns a transcript into a summary through the completion provider.

    Order of operations: rate limit, validate, configuration check, cache,
    then exactly one upstream call under a deadline.
    """

    def __init__(
        self,
        completion_client: Optional[CompletionClient],
        cache: SummaryCache,
        rate_limiters: RateLimiterRegistry,
        timeout_seconds: float = 30.0
    ):
        self.completion_client = completion_client
        self.cache = cache
        self.rate_limiters = rate_limiters
        self.timeout_seconds = timeout_seconds

    async def summarize(
        self,
        transcript: str,
        instruction: Optional[str] = None,
        client_key: str = "unknown",
        rate: Optional[RateLimitResult] = None
    ) -> SummaryOutcome:
        """
        Summarize a meeting transcript.

        Args:
            transcript: Raw transcript text
            instruction: Optional user instruction for the summary
            client_key: Rate-limit key for the caller
            rate: Decision already taken for this request, if the caller
                applied the summarize policy itself

        Returns:
            SummaryOutcome with the text, cache flag and remaining quota

        Raises:
            RateLimitException: If the summarize policy denies the caller
            ValidationException: If transcript or instruction is out of bounds
            ConfigurationException: If no completion provider is configured
            UpstreamTimeoutException: If the provider misses the deadline
            UpstreamAuthException: If the provider rejects the API key
            UpstreamQuotaException: If the provider quota is exhausted
            LLMServiceException: For any other provider failure
        """
        if rate is None:
            rate = self.rate_limiters.enforce("summarize", client_key, message=SUMMARIZE_LIMIT_MESSAGE)

        if not isinstance(transcript, str) or not transcript:
            raise ValidationException(
                "Transcript is required and must be a string",
                field="transcript"
            )
        if not is_valid_transcript_length(transcript):
            raise ValidationException(
                "Transcript must be between 10 and 50,000 characters",
                field="transcript"
            )
        if instruction is not None and not isinstance(instruction, str):
            raise ValidationException(
                "Instruction must be a string",
                field="instruction"
            )
        if instruction and not is_valid_instruction_length(instruction):
            raise ValidationException(
                "Instruction must be 500 characters or less",
                field="instruction"
            )

        if self.completion_client is None:
            raise ConfigurationException(
                "Completion provider API key not configured",
                setting="llm_api_key"
            )

        sanitized_transcript = sanitize_text(transcript)
        sanitized_instruction = sanitize_text(instruction) if instruction else ""

        cache_key = make_cache_key(sanitized_transcript, sanitized_instruction)
        cached_summary = self.cache.get(cache_key)
        if cached_summary is not None:
            logger.info(
                "Returning cached summary",
                extra={"client_ip": client_key, "transcript_length": len(sanitized_transcript)}
            )
            return SummaryOutcome(summary=cached_summary, cached=True, remaining=rate.remaining)

        prompt = build_summary_prompt(sanitized_transcript, sanitized_instruction)
        provider = self.completion_client.provider

        logger.info(
            "Requesting summary from completion provider",
            extra={
                "client_ip": client_key,
                "provider": provider,
                "transcript_length": len(sanitized_transcript)
            }
        )

        try:
            summary = await asyncio.wait_for(
                self.completion_client.generate(prompt),
                timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError:
            logger.error(
                f"Completion provider timed out after {self.timeout_seconds}s",
                extra={"client_ip": client_key, "provider": provider}
            )
            raise UpstreamTimeoutException(
                provider=provider,
                timeout_seconds=self.timeout_seconds
            )
        except Exception as e:
            logger.error(
                "Completion provider call failed",
                extra={"client_ip": client_key, "provider": provider, "error": str(e)},
                exc_info=True
            )
            raise normalize_provider_error(e, provider)

        if not summary:
            raise LLMServiceException("Failed to generate summary", provider=provider)

        self.cache.set(cache_key, summary)

        return SummaryOutcome(summary=summary, cached=False, remaining=rate.remaining)
