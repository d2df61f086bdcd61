"""
Correlation ID Utilities
"""
import uuid
from typing import Optional
from fastapi import Request

CORRELATION_HEADER = "X-Correlation-ID"


def get_correlation_id(request: Optional[Request]) -> str:
    """
    Get or generate correlation ID for request tracking.

    Args:
        request: FastAPI request object

    Returns:
        Correlation ID string, reused from request state or the
        X-Correlation-ID header when present
    """
    if not request:
        return generate_correlation_id()

    correlation_id = getattr(request.state, "correlation_id", None)
    if correlation_id:
        return correlation_id

    correlation_id = request.headers.get(CORRELATION_HEADER)
    if correlation_id:
        return correlation_id

    return generate_correlation_id()


def generate_correlation_id() -> str:
    """Generate a new correlation ID."""
    return str(uuid.uuid4())
