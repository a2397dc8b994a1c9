from fastapi import APIRouter, Depends, Request, Response

from app.schemas.summary import SummarizeRequest, SummarizeResponse
from app.services.summarization_service import SummarizationService
from app.core.container import get_summarization_service, summarize_rate_limit
from app.core.exceptions import LuminaException, RateLimitException, ValidationException
from app.core.rate_limiter import RateLimitResult
from app.core.security import get_client_ip
from app.core.logger import logger

router = APIRouter(prefix="/api", tags=["summarize"])

@router.post("/summarize", response_model=SummarizeResponse, status_code=200)
async def summarize(
    payload: SummarizeRequest,
    request: Request,
    response: Response,
    rate: RateLimitResult = Depends(summarize_rate_limit),
    service: SummarizationService = Depends(get_summarization_service)
):
    """
    Summarize a meeting transcript with the configured completion provider.

    Identical (transcript, instruction) pairs within the cache TTL are served
    from memory without another upstream call.

    Args:
        payload: Transcript and optional instruction
        request: FastAPI request object for the client address
        response: Response used to attach rate-limit headers
        rate: Summarize-policy decision, taken before the body is validated
        service: Summarization pipeline

    Returns:
        SummarizeResponse: Summary text, cache flag and remaining quota
    """
    client_ip = get_client_ip(request)
    logger.info(
        "Summarize request received",
        extra={
            "client_ip": client_ip,
            "transcript_length": len(payload.transcript),
            "has_instruction": bool(payload.instruction)
        }
    )

    try:
        outcome = await service.summarize(
            payload.transcript,
            payload.instruction,
            client_key=client_ip,
            rate=rate
        )

    except (ValidationException, RateLimitException) as e:
        logger.warning(
            "Summarize request rejected",
            extra={"client_ip": client_ip, "error": e.message, "error_code": e.error_code}
        )
        raise

    except LuminaException as e:
        logger.error(
            "Summarize request failed",
            extra={"client_ip": client_ip, "error": e.message, "error_code": e.error_code}
        )
        raise

    except Exception as e:
        logger.error(
            "Unexpected error in summarize",
            extra={"client_ip": client_ip, "error": str(e)},
            exc_info=True
        )
        raise LuminaException(
            "Failed to generate summary. Please try again.",
            error_code="INTERNAL_SERVER_ERROR"
        )

    response.headers["X-RateLimit-Remaining"] = str(outcome.remaining)
    return SummarizeResponse(
        summary=outcome.summary,
        cached=outcome.cached,
        remaining_requests=outcome.remaining
    )
