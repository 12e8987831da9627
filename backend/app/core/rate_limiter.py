"""
Plote - Rate limiting

slowapi limiter shared by the auth routes. Counters live in memory unless
RATE_LIMIT_STORAGE_URI points at Redis, which is what a multi-worker
deployment needs. Credential endpoints get tighter windows than the default.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from fastapi import Request
from fastapi.responses import JSONResponse
import redis.asyncio as redis

from app.core.config import settings
from app.core.logging_config import logger


LOGIN_LIMIT = "5/minute"
REGISTER_LIMIT = "3/minute"
FORGOT_PASSWORD_LIMIT = "3/minute"


def get_user_identifier(request: Request) -> str:
    """Bucket key: the signed-in student if get_current_user ran, else the client IP"""
    user_id = getattr(request.state, 'user_id', None)
    return f"user:{user_id}" if user_id else f"ip:{get_remote_address(request)}"


limiter = Limiter(
    key_func=get_user_identifier,
    default_limits=[f"{settings.RATE_LIMIT_PER_MINUTE}/minute"],
    storage_uri=settings.RATE_LIMIT_STORAGE_URI,
    strategy="fixed-window",
    enabled=settings.RATE_LIMIT_ENABLED,
)


async def check_rate_limit_storage() -> bool:
    """Ping the Redis rate limit backend at startup; memory storage always passes"""
    uri = settings.RATE_LIMIT_STORAGE_URI
    if not uri.startswith(("redis://", "rediss://")):
        return True

    client = redis.from_url(uri)
    try:
        await client.ping()
        logger.info("[RateLimit] Redis storage reachable")
        return True
    except redis.RedisError as e:
        logger.warning(f"[RateLimit] Redis storage unreachable: {e}")
        return False
    finally:
        await client.aclose()


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
    """Return the standard error body with a Retry-After header"""
    logger.warning(
        f"[RateLimit] Exceeded for {get_user_identifier(request)}: {exc.detail}"
    )

    return JSONResponse(
        status_code=429,
        content={
            "success": False,
            "message": "Too many requests. Please slow down.",
        },
        headers={"Retry-After": "60"}
    )


def rate_limit(limit: str):
    """
    Decorator for applying custom rate limits to endpoints.
    The endpoint must accept a `request: Request` argument.

    Usage:
        @router.post("/login")
        @rate_limit(LOGIN_LIMIT)
        async def login(request: Request, ...):
            ...
    """
    return limiter.limit(limit, key_func=get_user_identifier)
