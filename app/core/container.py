"""
Process-wide service wiring.

Routes receive services through FastAPI dependencies backed by a single
ServiceContainer. Tests substitute their own container through
``app.dependency_overrides[get_container]``.
"""

import time
from typing import Callable, Optional

from fastapi import Depends, Request, Response

from app.clients.email_client import EmailTransport, build_email_transport
from app.clients.llm_client import CompletionClient, build_completion_client
from app.core.cache import SummaryCache
from app.core.config import Settings, settings as default_settings
from app.core.rate_limiter import RateLimiterRegistry, RateLimitResult
from app.core.security import get_client_ip
from app.services.email_service import EMAIL_LIMIT_MESSAGE, EmailService
from app.services.summarization_service import SUMMARIZE_LIMIT_MESSAGE, SummarizationService


class ServiceContainer:
    def __init__(
        self,
        settings: Settings,
        completion_client: Optional[CompletionClient] = None,
        email_transport: Optional[EmailTransport] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.settings = settings
        self.started_at = clock()
        self.clock = clock
        self.rate_limiters = RateLimiterRegistry(clock=clock)
        self.summary_cache = SummaryCache(
            ttl_seconds=settings.cache_ttl_seconds,
            sweep_threshold=settings.cache_sweep_threshold,
            clock=clock
        )
        self.summarization_service = SummarizationService(
            completion_client,
            self.summary_cache,
            self.rate_limiters,
            timeout_seconds=settings.llm_timeout_seconds
        )
        self.email_service = EmailService(email_transport, self.rate_limiters)

    @classmethod
    def from_settings(cls, settings: Settings) -> "ServiceContainer":
        return cls(
            settings,
            completion_client=build_completion_client(settings),
            email_transport=build_email_transport(settings)
        )

    def uptime_seconds(self) -> float:
        return self.clock() - self.started_at

    def reset(self) -> None:
        """Clear rate-limit and cache state."""
        self.rate_limiters.reset()
        self.summary_cache.clear()


_container: Optional[ServiceContainer] = None


def get_container() -> ServiceContainer:
    global _container
    if _container is None:
        _container = ServiceContainer.from_settings(default_settings)
    return _container


def get_summarization_service(
    container: ServiceContainer = Depends(get_container)
) -> SummarizationService:
    return container.summarization_service


def get_email_service(container: ServiceContainer = Depends(get_container)) -> EmailService:
    return container.email_service


def general_rate_limit(
    request: Request,
    response: Response,
    container: ServiceContainer = Depends(get_container)
) -> None:
    """
    FastAPI dependency applying the general policy to auxiliary routes.

    Raises:
        RateLimitException: If the general policy denies the caller
    """
    result = container.rate_limiters.enforce("general", get_client_ip(request))
    response.headers.update(result.headers())


def summarize_rate_limit(
    request: Request,
    container: ServiceContainer = Depends(get_container)
) -> RateLimitResult:
    """
    FastAPI dependency applying the summarize policy.

    Dependencies resolve before the request body is validated, so a blocked
    client is refused even when its payload is malformed.
    """
    return container.rate_limiters.enforce(
        "summarize",
        get_client_ip(request),
        message=SUMMARIZE_LIMIT_MESSAGE
    )


def email_rate_limit(
    request: Request,
    container: ServiceContainer = Depends(get_container)
) -> RateLimitResult:
    """FastAPI dependency applying the email policy ahead of body validation."""
    return container.rate_limiters.enforce(
        "email",
        get_client_ip(request),
        message=EMAIL_LIMIT_MESSAGE
    )
