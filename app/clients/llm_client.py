# app/clients/llm_client.py
from typing import Optional

from app.core.config import Settings
from app.core.exceptions import (
    LuminaException,
    LLMServiceException,
    UpstreamAuthException,
    UpstreamQuotaException,
)

SYSTEM_PROMPT = "You are an AI meeting summarizer."

AUTH_ERROR_MARKERS = ("api key", "api_key", "authentication", "unauthorized", "permission denied")
QUOTA_ERROR_MARKERS = ("quota", "resource exhausted", "resource_exhausted", "rate limit")


class CompletionClient:
    """Single-prompt text completion against a hosted model."""

    provider = "unknown"

    async def generate(self, prompt: str) -> str:
        raise NotImplementedError


# --- Gemini ---
class GeminiCompletionClient(CompletionClient):
    provider = "gemini"

    def __init__(self, api_key: str, model_name: str = "gemini-1.5-flash"):
        import google.generativeai as genai

        genai.configure(api_key=api_key)
        self.model_name = model_name
        self._model = genai.GenerativeModel(model_name)

    async def generate(self, prompt: str) -> str:
        response = await self._model.generate_content_async(prompt)
        return (response.text or "").strip()


# --- OpenAI ---
class OpenAICompletionClient(CompletionClient):
    provider = "openai"

    def __init__(self, api_key: str, model_name: str = "gpt-4o-mini"):
        import openai

        self.model_name = model_name
        self._client = openai.AsyncOpenAI(api_key=api_key)

    async def generate(self, prompt: str) -> str:
        response = await self._client.chat.completions.create(
            model=self.model_name,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt}
            ],
            temperature=0.3,
        )
        return (response.choices[0].message.content or "").strip()


def normalize_provider_error(error: Exception, provider: str) -> LuminaException:
    """
    Map a provider SDK error onto the application's error taxonomy.

    SDK exception classes differ between providers and versions, so the
    mapping keys off the error text the way both SDKs report it.
    """
    if isinstance(error, LuminaException):
        return error

    text = str(error).lower()
    if any(marker in text for marker in AUTH_ERROR_MARKERS):
        return UpstreamAuthException(
            "Invalid API key. Please check your completion provider configuration.",
            provider=provider
        )
    if any(marker in text for marker in QUOTA_ERROR_MARKERS):
        return UpstreamQuotaException(provider=provider)
    return LLMServiceException(
        "Failed to generate summary. Please try again.",
        provider=provider,
        details={"error_type": type(error).__name__}
    )


def build_completion_client(settings: Settings) -> Optional[CompletionClient]:
    """Return the configured provider's client, or None when it has no API key."""
    if settings.llm_provider == "openai":
        if settings.openai_api_key:
            return OpenAICompletionClient(settings.openai_api_key, settings.openai_model)
        return None
    if settings.gemini_api_key:
        return GeminiCompletionClient(settings.gemini_api_key, settings.gemini_model)
    return None
