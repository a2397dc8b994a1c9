from fastapi import FastAPI, Request, Depends
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse, Response
import time
import uuid
from contextlib import asynccontextmanager

from app.routers import summarize, email
from app.core.logger import logger
from app.core.exceptions import LuminaException, RateLimitException, status_code_for
from app.core.config import settings
from app.core.container import ServiceContainer, get_container, general_rate_limit
from app.core.security import SECURITY_HEADERS, API_CORS_HEADERS

# Application lifespan management
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management for startup and shutdown events."""
    logger.info("Starting LuminaMinutes API", extra={"version": settings.app_version})

    container = get_container()
    if container.summarization_service.completion_client is None:
        logger.warning("Completion provider API key not configured; /api/summarize will fail")
    if container.email_service.transport is None:
        logger.warning("Email credentials not configured; /api/send-email will fail")

    yield

    logger.info("Shutting down LuminaMinutes API")

app = FastAPI(
    title=settings.app_name,
    description="""
    Summarizes meeting transcripts with a hosted language model and emails the
    summary to a list of recipients.

    ## Rate Limiting

    Limits are tracked per client address in fixed one-minute windows:
    - **summarize**: 10 requests, then blocked for 2 minutes
    - **email**: 5 requests, then blocked for 5 minutes
    - **general**: 100 requests, then blocked for 1 minute

    Denied requests receive `429` with `Retry-After` and `X-RateLimit-*` headers.

    ## Error Handling

    All errors return structured JSON responses with:
    - `error_code`: Machine-readable error identifier
    - `message`: Human-readable error description
    - `details`: Additional error context
    """,
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json"
)

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=settings.allowed_hosts
)

# Security headers and CORS for API routes
@app.middleware("http")
async def security_headers(request: Request, call_next):
    """Apply security headers everywhere and answer API preflight requests directly."""
    is_api = request.url.path.startswith("/api/")

    if is_api and request.method == "OPTIONS":
        response = Response(status_code=200)
    else:
        response = await call_next(request)

    response.headers.update(SECURITY_HEADERS)
    if is_api:
        response.headers.update(API_CORS_HEADERS)
    return response

# Request ID middleware
@app.middleware("http")
async def add_request_id(request: Request, call_next):
    """Add unique request ID to all requests for tracing."""
    request_id = str(uuid.uuid4())
    request.state.request_id = request_id

    logger.info(
        "Request started",
        extra={
            "request_id": request_id,
            "method": request.method,
            "url": str(request.url),
            "client_ip": request.client.host if request.client else "unknown"
        }
    )

    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time

    response.headers["X-Request-ID"] = request_id
    response.headers["X-Process-Time"] = str(process_time)

    logger.info(
        "Request completed",
        extra={
            "request_id": request_id,
            "status_code": response.status_code,
            "process_time": process_time
        }
    )

    return response

# Global exception handlers
@app.exception_handler(LuminaException)
async def lumina_exception_handler(request: Request, exc: LuminaException):
    """Render application exceptions as structured JSON."""
    status_code = status_code_for(exc)
    log = logger.warning if status_code < 500 else logger.error
    log(
        f"LuminaMinutes exception: {exc.message}",
        extra={
            "request_id": getattr(request.state, "request_id", "unknown"),
            "error_code": exc.error_code,
            "details": exc.details
        }
    )

    headers = exc.headers() if isinstance(exc, RateLimitException) else None
    return JSONResponse(
        status_code=status_code,
        headers=headers,
        content={
            "error_code": exc.error_code,
            "message": exc.message,
            "details": exc.details,
            "request_id": getattr(request.state, "request_id", "unknown")
        }
    )

@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Report malformed request bodies as 400 in the same shape as other errors."""
    errors = [
        {"field": ".".join(str(part) for part in error.get("loc", ())), "message": error.get("msg", "")}
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={
            "error_code": "VALIDATION_ERROR",
            "message": "Invalid request body",
            "details": {"errors": errors},
            "request_id": getattr(request.state, "request_id", "unknown")
        }
    )

# Include routers
app.include_router(summarize.router)
app.include_router(email.router)

# Health check endpoint
@app.get("/health", tags=["monitoring"], dependencies=[Depends(general_rate_limit)])
async def health_check(container: ServiceContainer = Depends(get_container)):
    """
    Health check endpoint for monitoring and load balancers.

    Returns:
        Health status and whether each upstream is configured
    """
    return {
        "status": "healthy",
        "timestamp": time.time(),
        "version": settings.app_version,
        "services": {
            "api": "healthy",
            "completion_provider": (
                "configured" if container.summarization_service.completion_client else "not_configured"
            ),
            "email": "configured" if container.email_service.transport else "not_configured"
        }
    }

# Metrics endpoint
@app.get("/metrics", tags=["monitoring"], dependencies=[Depends(general_rate_limit)])
async def get_metrics(container: ServiceContainer = Depends(get_container)):
    """
    Basic in-process metrics.

    Returns:
        Uptime, cache size and tracked rate-limit clients per policy
    """
    return {
        "timestamp": time.time(),
        "uptime_seconds": round(container.uptime_seconds(), 3),
        "cache_entries": len(container.summary_cache),
        "rate_limit_clients": container.rate_limiters.tracked_clients()
    }

# Root endpoint
@app.get("/", tags=["general"], dependencies=[Depends(general_rate_limit)])
async def root():
    """
    Root endpoint with API information.

    Returns:
        Basic API information and links
    """
    return {
        "message": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
        "health": "/health",
        "metrics": "/metrics",
        "endpoints": {
            "summarize": "/api/summarize",
            "send_email": "/api/send-email",
            "test_email": "/api/test-email"
        }
    }
