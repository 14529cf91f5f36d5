"""Security dependencies: client identification and rate limiting"""
import logging
from fastapi import HTTPException, Request

from marketplace.db.redis import check_rate_limit as redis_check_rate_limit

security_logger = logging.getLogger("security")


def get_client_identifier(request: Request) -> str:
    """Get a unique identifier for rate limiting"""
    client_ip = request.headers.get("X-Forwarded-For", "").split(",")[0].strip()
    if not client_ip:
        client_ip = request.client.host if request.client else "unknown"
    return f"ip:{client_ip}"


def check_rate_limit(identifier: str) -> bool:
    """Check if request is within rate limit

    Fails open: a Redis outage must not block buyers from discovering their order.
    """
    try:
        return redis_check_rate_limit(identifier)
    except Exception as e:
        security_logger.warning(f"Rate limit check unavailable for {identifier}: {e}")
        return True


def require_rate_limit(request: Request) -> str:
    """Dependency: reject the request with 429 once the client exceeds its window"""
    identifier = get_client_identifier(request)
    if not check_rate_limit(identifier):
        security_logger.warning(f"Rate limit exceeded - Identifier: {identifier}, Path: {request.url.path}")
        raise HTTPException(429, "Rate limit exceeded. Please try again later.")
    return identifier
