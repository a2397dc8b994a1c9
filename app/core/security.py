"""
Input validation, sanitization and HTTP security helpers.

The validators here are pure and are called both at the HTTP boundary and
again at the entry of each pipeline.
"""

import re
from fastapi import Request

# Validation limits
MAX_SANITIZED_LENGTH = 10000  # characters kept by sanitize_text
MAX_EMAIL_LENGTH = 254  # RFC 5321 standard
MIN_TRANSCRIPT_LENGTH = 10  # exclusive
MAX_TRANSCRIPT_LENGTH = 50000
MAX_INSTRUCTION_LENGTH = 500

UNKNOWN_CLIENT = "unknown"

EMAIL_PATTERN = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')

CONTENT_SECURITY_POLICY = "; ".join([
    "default-src 'self'",
    "script-src 'self' 'unsafe-eval' 'unsafe-inline'",
    "style-src 'self' 'unsafe-inline'",
    "img-src 'self' data: https:",
    "font-src 'self'",
    "connect-src 'self'",
    "media-src 'self'",
    "object-src 'none'",
    "base-uri 'self'",
    "form-action 'self'",
    "frame-ancestors 'none'",
    "upgrade-insecure-requests",
])

SECURITY_HEADERS = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "camera=(), microphone=(), geolocation=()",
    "Content-Security-Policy": CONTENT_SECURITY_POLICY,
}

API_CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
}


def sanitize_text(text: str) -> str:
    """
    Strip surrounding whitespace and angle brackets, then truncate.

    This only defeats the crudest tag injection; it does not escape other
    HTML-significant characters.

    Args:
        text: Input text to sanitize

    Returns:
        Sanitized text, at most MAX_SANITIZED_LENGTH characters
    """
    if not text:
        return ""

    text = text.strip()
    text = text.replace("<", "").replace(">", "")
    return text[:MAX_SANITIZED_LENGTH]


def is_valid_email(email: str) -> bool:
    """
    Check that an address has the shape local@domain.tld.

    Args:
        email: Email address to validate

    Returns:
        True if the trimmed address matches and is short enough
    """
    if not isinstance(email, str):
        return False

    email = email.strip()
    if len(email) > MAX_EMAIL_LENGTH:
        return False

    return EMAIL_PATTERN.match(email) is not None


def is_valid_transcript_length(transcript: str) -> bool:
    length = len(transcript.strip())
    return MIN_TRANSCRIPT_LENGTH < length <= MAX_TRANSCRIPT_LENGTH


def is_valid_instruction_length(instruction: str) -> bool:
    return len(instruction.strip()) <= MAX_INSTRUCTION_LENGTH


def get_client_ip(request: Request) -> str:
    """
    Extract client IP address from request.

    Args:
        request: FastAPI request object

    Returns:
        Client IP address, or "unknown" when none can be resolved
    """
    # Check for forwarded headers first (for load balancers/proxies)
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        first_hop = forwarded_for.split(",")[0].strip()
        if first_hop:
            return first_hop

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    # Fallback to direct connection
    return request.client.host if request.client else UNKNOWN_CLIENT

