"""Rate limiting middleware using SlowAPI."""

from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from fastapi import Request
from fastapi.responses import JSONResponse

# Create limiter instance using client IP as key
limiter = Limiter(key_func=get_remote_address)

# OAuth endpoints hit Instagram's token endpoints on every call
OAUTH_RATE_LIMIT = "10/minute"
# Detailed media fans out one insights call per post
DETAILED_MEDIA_RATE_LIMIT = "20/minute"


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
    """Custom handler for rate limit exceeded errors."""
    return JSONResponse(
        status_code=429,
        content={
            "detail": "Too many requests. Please try again later.",
            "retry_after": exc.detail,
        }
    )
