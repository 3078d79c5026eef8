"""Rate limiting middleware using SlowAPI."""

from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from fastapi import Request
from fastapi.responses import JSONResponse

# Create limiter instance using client IP as key
limiter = Limiter(key_func=get_remote_address)

RATE_LIMIT_MESSAGE = "Rate limit exceeded. Please try again later."


def upstream_rate_limited(request: Request) -> bool:
    """True when a fronting proxy reports `x-rate-limit-remaining: 0`."""
    remaining = request.headers.get("x-rate-limit-remaining")
    if remaining is None:
        return False
    try:
        return int(remaining) == 0
    except ValueError:
        return False


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
    """Custom handler for rate limit exceeded errors."""
    return JSONResponse(
        status_code=429,
        content={
            "error": RATE_LIMIT_MESSAGE,
            "retry_after": exc.detail,
        }
    )
