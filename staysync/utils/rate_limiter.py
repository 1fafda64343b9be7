"""
Rate Limiter Configuration

slowapi limiter keyed on the real client IP, used on the public quote
endpoints (availability, price, calendar export).
"""

from slowapi import Limiter
from slowapi.util import get_remote_address
from fastapi import Request


def get_real_client_ip(request: Request) -> str:
    """Get real client IP behind a reverse proxy"""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # Take the first IP (original client)
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    return get_remote_address(request)


# Global rate limiter instance (in-memory storage)
limiter = Limiter(
    key_func=get_real_client_ip,
    default_limits=["100/minute"]
)


RATE_LIMITS = {
    # Guest-facing quotes
    "availability": "120/minute",
    "quote": "120/minute",

    # Feed republish, polled by channels
    "export": "30/minute",

    # Booking commit
    "reservation_create": "30/minute",
}


def get_rate_limit(operation: str) -> str:
    """Get rate limit for a specific operation."""
    return RATE_LIMITS.get(operation, "100/minute")
