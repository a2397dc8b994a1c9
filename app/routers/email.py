from fastapi import APIRouter, Depends, Request, Response

from app.schemas.email import SendEmailRequest, SendEmailResponse, SampleEmailResponse
from app.services.email_service import EmailService
from app.core.container import email_rate_limit, get_email_service
from app.core.exceptions import LuminaException, RateLimitException, ValidationException
from app.core.rate_limiter import RateLimitResult
from app.core.security import get_client_ip
from app.core.logger import logger

router = APIRouter(prefix="/api", tags=["email"])

@router.post("/send-email", response_model=SendEmailResponse, status_code=200)
async def send_email(
    payload: SendEmailRequest,
    request: Request,
    response: Response,
    rate: RateLimitResult = Depends(email_rate_limit),
    service: EmailService = Depends(get_email_service)
):
    """
    Email a meeting summary to up to 10 recipients.

    Each recipient gets one independent send attempt. The request succeeds
    when at least one message was sent; failures and addresses rejected at
    validation are listed alongside.

    Args:
        payload: Recipients, summary and optional instruction/timestamp
        request: FastAPI request object for the client address
        response: Response used to attach rate-limit headers
        rate: Email-policy decision, taken before the body is validated
        service: Email dispatch pipeline

    Returns:
        SendEmailResponse: Per-recipient outcome and remaining quota
    """
    client_ip = get_client_ip(request)
    logger.info(
        "Send-email request received",
        extra={"client_ip": client_ip, "recipient_count": len(payload.recipients)}
    )

    try:
        result = await service.dispatch(
            payload.recipients,
            payload.summary,
            instruction=payload.instruction,
            timestamp=payload.timestamp,
            client_key=client_ip,
            rate=rate
        )

    except (ValidationException, RateLimitException) as e:
        logger.warning(
            "Send-email request rejected",
            extra={"client_ip": client_ip, "error": e.message, "error_code": e.error_code}
        )
        raise

    except LuminaException as e:
        logger.error(
            "Send-email request failed",
            extra={"client_ip": client_ip, "error": e.message, "error_code": e.error_code}
        )
        raise

    except Exception as e:
        logger.error(
            "Unexpected error in send-email",
            extra={"client_ip": client_ip, "error": str(e)},
            exc_info=True
        )
        raise LuminaException(
            "Failed to send email. Please try again.",
            error_code="INTERNAL_SERVER_ERROR"
        )

    response.headers["X-RateLimit-Remaining"] = str(result.remaining)
    return SendEmailResponse(
        message=f"Emails sent successfully to {result.successful_count} recipient(s)",
        successful=result.successful,
        failed=result.failed,
        rejected=result.rejected,
        remaining_requests=result.remaining
    )

@router.get("/test-email", response_model=SampleEmailResponse, status_code=200)
async def send_test_email(
    request: Request,
    service: EmailService = Depends(get_email_service)
):
    """Send a Markdown sample to the configured sender to verify email setup."""
    client_ip = get_client_ip(request)
    recipient = await service.send_test_email(client_key=client_ip)
    return SampleEmailResponse(
        message="Test email sent successfully",
        recipient=recipient
    )
